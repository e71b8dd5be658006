import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from clickhouse_connect.driver.asyncclient import AsyncClient as ClickHouseClient
import duckdb
import pyarrow.fs as pa_fs

logger = logging.getLogger(__name__)

# scanning starts at block 17_000_000
DEFAULT_GENESIS_BLOCK = 16_999_999
DEFAULT_BATCH_SIZE = 150
DEFAULT_CONFIRMATION_LAG = 50


class WriterKind(str, Enum):
    CLICKHOUSE = "clickhouse"
    DELTA_LAKE = "delta_lake"
    PYARROW_DATASET = "pyarrow_dataset"
    DUCKDB = "duckdb"


class CheckpointKind(str, Enum):
    FILE = "file"
    DUCKDB = "duckdb"


@dataclass
class ProviderConfig:
    url: str
    request_timeout_ms: int = 10_000
    # max RPC calls in flight, independent of batch size
    max_concurrency: int = 16


@dataclass
class RetryConfig:
    max_num_retries: Optional[int] = None
    retry_base_ms: int = 1_000
    retry_ceiling_ms: int = 60_000


@dataclass
class ContractConfig:
    address: str
    symbol: str
    decimals: int


@dataclass
class ClickHouseWriterConfig:
    client: ClickHouseClient
    codec: Dict[str, Dict[str, str]] = field(default_factory=dict)
    # dedups rows sharing the natural key on merge
    engine: str = "ReplacingMergeTree()"


@dataclass
class DeltaLakeWriterConfig:
    data_uri: str
    partition_by: List[str] = field(default_factory=list)
    storage_options: Optional[Dict[str, str]] = None


@dataclass
class PyArrowDatasetWriterConfig:
    base_dir: str
    filesystem: Optional[pa_fs.FileSystem] = None
    max_rows_per_group: int = 1024 * 1024
    create_dir: bool = True


@dataclass
class DuckdbWriterConfig:
    connection: duckdb.DuckDBPyConnection


@dataclass
class Writer:
    kind: WriterKind
    config: (
        ClickHouseWriterConfig
        | DeltaLakeWriterConfig
        | PyArrowDatasetWriterConfig
        | DuckdbWriterConfig
    )


@dataclass
class FileCheckpointConfig:
    path: str = "current_block"


@dataclass
class DuckdbCheckpointConfig:
    connection: duckdb.DuckDBPyConnection
    table: str = "ingest_checkpoint"


@dataclass
class CheckpointConfig:
    kind: CheckpointKind
    config: FileCheckpointConfig | DuckdbCheckpointConfig
    genesis_block: int = DEFAULT_GENESIS_BLOCK


@dataclass
class Pipeline:
    provider: ProviderConfig
    contracts: List[ContractConfig]
    writer: Writer
    checkpoint: CheckpointConfig
    name: str = "erc20_transfers"
    treasury_addresses: List[str] = field(default_factory=list)
    self_routing_addresses: List[str] = field(default_factory=list)
    confirmation_lag: int = DEFAULT_CONFIRMATION_LAG
    batch_size: int = DEFAULT_BATCH_SIZE
    poll_interval_ms: int = 12_000
    to_block: Optional[int] = None
    retry: RetryConfig = field(default_factory=RetryConfig)
