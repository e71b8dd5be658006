import logging
from typing import Dict
from copy import deepcopy
import asyncio

import pyarrow as pa
from deltalake import DeltaTable, write_deltalake

from ..config import DeltaLakeWriterConfig
from ..schema import NATURAL_KEY
from ..writers.base import DataWriter, table_name

logger = logging.getLogger(__name__)

MERGE_PREDICATE = " AND ".join(f"target.{c} = source.{c}" for c in NATURAL_KEY)


class Writer(DataWriter):
    def __init__(self, config: DeltaLakeWriterConfig):
        self.config = deepcopy(config)
        self.config.data_uri = self.config.data_uri.rstrip("/")
        self._lock = asyncio.Lock()

    def write_table_impl(self, name: str, table_data: pa.Table) -> None:
        uri = f"{self.config.data_uri}/{name}"

        if not DeltaTable.is_deltatable(uri, storage_options=self.config.storage_options):
            logger.debug(f"creating delta table {uri}")
            write_deltalake(
                uri,
                table_data,
                partition_by=self.config.partition_by or None,
                mode="append",
                storage_options=self.config.storage_options,
            )
            return

        # insert only rows whose natural key isn't stored yet
        (
            DeltaTable(uri, storage_options=self.config.storage_options)
            .merge(
                source=table_data,
                predicate=MERGE_PREDICATE,
                source_alias="source",
                target_alias="target",
            )
            .when_not_matched_insert_all()
            .execute()
        )

    async def write_table(self, name: str, table_data: pa.Table) -> None:
        if table_data.num_rows == 0:
            return

        await asyncio.to_thread(self.write_table_impl, name, table_data)

    async def push_data(self, data: Dict[str, pa.Table]) -> None:
        # concurrent merges into one delta table conflict on commit
        async with self._lock:
            for symbol, table_data in data.items():
                await self.write_table(table_name(symbol), table_data)
