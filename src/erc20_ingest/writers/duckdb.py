import logging
from typing import Dict, Set
import pyarrow as pa
from .base import DataWriter, table_name
from ..config import DuckdbWriterConfig
from ..schema import NATURAL_KEY, TRANSFER_SCHEMA
import asyncio

logger = logging.getLogger(__name__)


def pyarrow_type_to_duckdb(dt: pa.DataType) -> str:
    if pa.types.is_int64(dt):
        return "BIGINT"
    elif pa.types.is_float64(dt):
        return "DOUBLE"
    elif pa.types.is_string(dt):
        return "VARCHAR"
    elif pa.types.is_timestamp(dt):
        return "TIMESTAMPTZ" if dt.tz is not None else "TIMESTAMP"
    else:
        raise Exception(f"Unimplemented pyarrow type: {dt}")


def create_table_ddl(name: str, schema: pa.Schema = TRANSFER_SCHEMA) -> str:
    columns = [
        f'"{field.name}" {pyarrow_type_to_duckdb(field.type)}'
        + ("" if field.nullable else " NOT NULL")
        for field in schema
    ]
    columns.append(f"PRIMARY KEY ({', '.join(NATURAL_KEY)})")

    return f'CREATE TABLE IF NOT EXISTS "{name}" ({", ".join(columns)})'


class Writer(DataWriter):
    def __init__(self, config: DuckdbWriterConfig):
        self.connection = config.connection
        self.created: Set[str] = set()
        # one connection, so pushes from concurrent blocks take turns
        self._lock = asyncio.Lock()

    def push_data_impl(self, data: Dict[str, pa.Table]) -> None:
        self.connection.begin()

        try:
            for symbol, table_data in data.items():
                name = table_name(symbol)

                if name not in self.created:
                    logger.debug(f"creating table {name} if it doesn't exist yet")
                    self.connection.execute(create_table_ddl(name))
                    self.created.add(name)

                columns = ", ".join(f'"{c}"' for c in TRANSFER_SCHEMA.names)
                self.connection.register("incoming_transfers", table_data)
                try:
                    # rows already present from an earlier attempt are skipped
                    self.connection.execute(
                        f'INSERT OR IGNORE INTO "{name}" ({columns}) SELECT {columns} FROM incoming_transfers'
                    )
                finally:
                    self.connection.unregister("incoming_transfers")
        except BaseException:
            self.connection.rollback()
            raise

        self.connection.commit()

    async def push_data(self, data: Dict[str, pa.Table]) -> None:
        async with self._lock:
            push = asyncio.ensure_future(asyncio.to_thread(self.push_data_impl, data))
            try:
                await asyncio.shield(push)
            except asyncio.CancelledError:
                # the worker thread can't be interrupted, the connection stays ours until it's done
                await asyncio.wait([push])
                raise
