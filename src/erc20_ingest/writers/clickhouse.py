import logging
from typing import Dict, Set
import pyarrow as pa
from ..writers.base import DataWriter, table_name
from ..config import ClickHouseWriterConfig
from ..schema import NATURAL_KEY
import asyncio

logger = logging.getLogger(__name__)


def pyarrow_type_to_clickhouse(dt: pa.DataType) -> str:
    if pa.types.is_int64(dt):
        return "Int64"
    elif pa.types.is_float64(dt):
        return "Float64"
    elif pa.types.is_string(dt) or pa.types.is_large_string(dt):
        return "String"
    elif pa.types.is_timestamp(dt):
        return "DateTime64(6, 'UTC')" if dt.tz is not None else "DateTime64(6)"
    else:
        raise Exception(f"Unimplemented pyarrow type: {dt}")


class Writer(DataWriter):
    def __init__(self, config: ClickHouseWriterConfig):
        self.client = config.client
        self.codec = config.codec
        self.engine = config.engine
        self.created: Set[str] = set()
        self._create_lock = asyncio.Lock()

    async def _create_table_if_not_exists(self, name: str, schema: pa.Schema) -> None:
        async with self._create_lock:
            if name in self.created:
                return

            columns = []
            for field in schema:
                col_def = f"`{field.name}` {pyarrow_type_to_clickhouse(field.type)}"

                table_codec = self.codec.get(name, {})
                if field.name in table_codec:
                    col_def += f" CODEC({table_codec[field.name]})"

                columns.append(col_def)

            # ReplacingMergeTree keeps one row per sorting key, retried batches collapse
            create_table_query = f"""
            CREATE TABLE IF NOT EXISTS {name} (
                {", ".join(columns)}
            ) ENGINE = {self.engine}
            ORDER BY ({", ".join(NATURAL_KEY)})
            """

            logger.debug(f"creating table with: {create_table_query}")

            await self.client.command(create_table_query)
            self.created.add(name)

    async def push_data(self, data: Dict[str, pa.Table]) -> None:
        tasks = []
        for symbol, table_data in data.items():
            name = table_name(symbol)
            await self._create_table_if_not_exists(name, table_data.schema)

            task = asyncio.create_task(
                self.client.insert_arrow(name, table_data),
                name=f"write to {name}",
            )
            tasks.append(task)

        for task in tasks:
            await task
