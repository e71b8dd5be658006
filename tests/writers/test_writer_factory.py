import duckdb
import pytest

from erc20_ingest.config import (
    DeltaLakeWriterConfig,
    DuckdbWriterConfig,
    PyArrowDatasetWriterConfig,
    Writer,
    WriterKind,
)
from erc20_ingest.errors import ConfigurationError
from erc20_ingest.writers import create_writer, delta_lake
from erc20_ingest.writers import duckdb as duckdb_writer
from erc20_ingest.writers import pyarrow_dataset


def test_create_writer(tmp_path):
    assert isinstance(
        create_writer(Writer(WriterKind.DUCKDB, DuckdbWriterConfig(connection=duckdb.connect()))),
        duckdb_writer.Writer,
    )
    assert isinstance(
        create_writer(Writer(WriterKind.DELTA_LAKE, DeltaLakeWriterConfig(data_uri=str(tmp_path)))),
        delta_lake.Writer,
    )
    assert isinstance(
        create_writer(
            Writer(WriterKind.PYARROW_DATASET, PyArrowDatasetWriterConfig(base_dir=str(tmp_path)))
        ),
        pyarrow_dataset.Writer,
    )


def test_create_writer_config_mismatch(tmp_path):
    with pytest.raises(ConfigurationError):
        create_writer(Writer(WriterKind.DUCKDB, DeltaLakeWriterConfig(data_uri=str(tmp_path))))
