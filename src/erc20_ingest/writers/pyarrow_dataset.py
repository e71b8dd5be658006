import logging
from typing import Dict
import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.dataset as pa_dataset
from .base import DataWriter, table_name
from ..config import PyArrowDatasetWriterConfig
from ..utils.tasks import run_all
import asyncio
from copy import deepcopy

logger = logging.getLogger(__name__)


def basename_template(table_data: pa.Table) -> str:
    """File names derived from the blocks they hold, a retried block overwrites its own file"""
    first = pc.min(table_data["block_number"]).as_py()
    last = pc.max(table_data["block_number"]).as_py()
    return f"blocks_{first}_{last}_{{i}}.parquet"


class Writer(DataWriter):
    def __init__(self, config: PyArrowDatasetWriterConfig):
        self.config = deepcopy(config)
        self.config.base_dir = self.config.base_dir.rstrip("/")

    async def _write_table(self, name: str, table_data: pa.Table) -> None:
        if table_data.num_rows == 0:
            return

        await asyncio.to_thread(
            pa_dataset.write_dataset,
            data=table_data,
            base_dir=f"{self.config.base_dir}/{name}",
            basename_template=basename_template(table_data),
            format="parquet",
            filesystem=self.config.filesystem,
            max_rows_per_group=self.config.max_rows_per_group,
            existing_data_behavior="overwrite_or_ignore",
            create_dir=self.config.create_dir,
        )
        logger.debug(f"wrote {table_data.num_rows} rows to {name}")

    async def push_data(self, data: Dict[str, pa.Table]) -> None:
        await run_all(
            [self._write_table(table_name(symbol), t) for symbol, t in data.items()],
            name="write parquet",
        )
