import logging

from ..config import (
    ClickHouseWriterConfig,
    DeltaLakeWriterConfig,
    DuckdbWriterConfig,
    PyArrowDatasetWriterConfig,
    Writer,
    WriterKind,
)
from ..errors import ConfigurationError
from . import clickhouse, delta_lake, duckdb, pyarrow_dataset
from .base import DataWriter

logger = logging.getLogger(__name__)


def _expect_config(writer: Writer, config_type: type) -> None:
    if not isinstance(writer.config, config_type):
        raise ConfigurationError(
            f"{writer.kind.value} writer needs {config_type.__name__}, got {type(writer.config).__name__}"
        )


def create_writer(writer: Writer) -> DataWriter:
    """Sink for transfer tables, selected by `writer.kind`"""
    match writer.kind:
        case WriterKind.DUCKDB:
            _expect_config(writer, DuckdbWriterConfig)
            sink: DataWriter = duckdb.Writer(writer.config)
        case WriterKind.CLICKHOUSE:
            _expect_config(writer, ClickHouseWriterConfig)
            sink = clickhouse.Writer(writer.config)
        case WriterKind.DELTA_LAKE:
            _expect_config(writer, DeltaLakeWriterConfig)
            sink = delta_lake.Writer(writer.config)
        case WriterKind.PYARROW_DATASET:
            _expect_config(writer, PyArrowDatasetWriterConfig)
            sink = pyarrow_dataset.Writer(writer.config)
        case _:
            raise ConfigurationError(f"Invalid writer kind: {writer.kind}")

    logger.info(f"Writing transfers with the {writer.kind.value} writer")
    return sink
