from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
import logging
import os

import clickhouse_connect
import dacite
import duckdb
import yaml

from .config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONFIRMATION_LAG,
    DEFAULT_GENESIS_BLOCK,
    CheckpointConfig,
    CheckpointKind,
    ClickHouseWriterConfig,
    ContractConfig,
    DeltaLakeWriterConfig,
    DuckdbCheckpointConfig,
    DuckdbWriterConfig,
    FileCheckpointConfig,
    Pipeline,
    ProviderConfig,
    PyArrowDatasetWriterConfig,
    RetryConfig,
    Writer,
    WriterKind,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class WriterSettings:
    """Declarative writer settings, turned into live clients by `build_pipeline`"""

    kind: WriterKind
    # duckdb database file
    path: Optional[str] = None
    # delta lake table root / pyarrow dataset base directory
    data_uri: Optional[str] = None
    storage_options: Optional[Dict[str, str]] = None
    partition_by: List[str] = field(default_factory=list)
    # clickhouse
    host: str = "localhost"
    port: int = 8123
    username: str = "default"
    password: str = ""
    database: str = "default"
    engine: str = "ReplacingMergeTree()"
    codec: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class CheckpointSettings:
    kind: CheckpointKind = CheckpointKind.FILE
    # checkpoint file, or duckdb database file
    path: str = "current_block"
    table: str = "ingest_checkpoint"
    genesis_block: int = DEFAULT_GENESIS_BLOCK


@dataclass
class Settings:
    provider: ProviderConfig
    contracts: List[ContractConfig]
    writer: WriterSettings
    checkpoint: CheckpointSettings = field(default_factory=CheckpointSettings)
    name: str = "erc20_transfers"
    treasury_addresses: List[str] = field(default_factory=list)
    self_routing_addresses: List[str] = field(default_factory=list)
    confirmation_lag: int = DEFAULT_CONFIRMATION_LAG
    batch_size: int = DEFAULT_BATCH_SIZE
    poll_interval_ms: int = 12_000
    to_block: Optional[int] = None
    retry: RetryConfig = field(default_factory=RetryConfig)


def validate_settings(settings: Settings) -> None:
    if not settings.contracts:
        raise ConfigurationError("no contracts to watch")
    if settings.batch_size < 1:
        raise ConfigurationError(f"batch_size must be at least 1, got {settings.batch_size}")
    if settings.confirmation_lag < 0:
        raise ConfigurationError(
            f"confirmation_lag can't be negative, got {settings.confirmation_lag}"
        )
    if settings.poll_interval_ms <= 0:
        raise ConfigurationError("poll_interval_ms must be positive")
    if settings.provider.max_concurrency < 1:
        raise ConfigurationError("provider.max_concurrency must be at least 1")
    if settings.provider.request_timeout_ms <= 0:
        raise ConfigurationError("provider.request_timeout_ms must be positive")
    if settings.to_block is not None and settings.to_block < settings.checkpoint.genesis_block:
        raise ConfigurationError(
            f"to_block {settings.to_block} is before genesis block {settings.checkpoint.genesis_block}"
        )

    writer = settings.writer
    if writer.kind in (WriterKind.DELTA_LAKE, WriterKind.PYARROW_DATASET) and not writer.data_uri:
        raise ConfigurationError(f"writer {writer.kind.value} needs data_uri")


def parse_settings(config_path: str) -> Settings:
    """Parse configuration from YAML file, ${VAR} references are expanded from the environment"""

    try:
        content = Path(config_path).read_text()
    except OSError as e:
        raise ConfigurationError(f"Error reading config file {config_path}: {e}") from e

    try:
        raw_config = yaml.safe_load(os.path.expandvars(content))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing config file {config_path}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigurationError(f"config file {config_path} must hold a mapping")

    try:
        settings = dacite.from_dict(
            data_class=Settings,
            data=raw_config,
            config=dacite.Config(cast=[Enum, int], strict=True),
        )
    except (dacite.DaciteError, ValueError) as e:
        raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e

    validate_settings(settings)

    logger.info(
        f"Parsed config {settings.name}: {len(settings.contracts)} contracts, writer {settings.writer.kind.value}"
    )

    return settings


async def build_writer(
    settings: WriterSettings, connections: Dict[str, duckdb.DuckDBPyConnection]
) -> Writer:
    match settings.kind:
        case WriterKind.DUCKDB:
            connection = _duckdb_connection(settings.path or ":memory:", connections)
            return Writer(kind=settings.kind, config=DuckdbWriterConfig(connection=connection))
        case WriterKind.CLICKHOUSE:
            client = await clickhouse_connect.get_async_client(
                host=settings.host,
                port=settings.port,
                username=settings.username,
                password=settings.password,
                database=settings.database,
            )
            return Writer(
                kind=settings.kind,
                config=ClickHouseWriterConfig(
                    client=client, codec=settings.codec, engine=settings.engine
                ),
            )
        case WriterKind.DELTA_LAKE:
            assert settings.data_uri is not None
            return Writer(
                kind=settings.kind,
                config=DeltaLakeWriterConfig(
                    data_uri=settings.data_uri,
                    partition_by=settings.partition_by,
                    storage_options=settings.storage_options,
                ),
            )
        case WriterKind.PYARROW_DATASET:
            assert settings.data_uri is not None
            return Writer(
                kind=settings.kind,
                config=PyArrowDatasetWriterConfig(base_dir=settings.data_uri),
            )
        case _:
            raise ConfigurationError(f"Invalid writer kind: {settings.kind}")


def build_checkpoint(
    settings: CheckpointSettings, connections: Dict[str, duckdb.DuckDBPyConnection]
) -> CheckpointConfig:
    match settings.kind:
        case CheckpointKind.FILE:
            config = FileCheckpointConfig(path=settings.path)
        case CheckpointKind.DUCKDB:
            config = DuckdbCheckpointConfig(
                connection=_duckdb_connection(settings.path, connections),
                table=settings.table,
            )
        case _:
            raise ConfigurationError(f"Invalid checkpoint kind: {settings.kind}")

    return CheckpointConfig(
        kind=settings.kind, config=config, genesis_block=settings.genesis_block
    )


def _duckdb_connection(
    path: str, connections: Dict[str, duckdb.DuckDBPyConnection]
) -> duckdb.DuckDBPyConnection:
    # a database file can only be opened once per process, share it through cursors
    if path not in connections:
        connections[path] = duckdb.connect(path)
    return connections[path].cursor()


async def build_pipeline(settings: Settings) -> Pipeline:
    connections: Dict[str, duckdb.DuckDBPyConnection] = {}

    return Pipeline(
        provider=settings.provider,
        contracts=settings.contracts,
        writer=await build_writer(settings.writer, connections),
        checkpoint=build_checkpoint(settings.checkpoint, connections),
        name=settings.name,
        treasury_addresses=settings.treasury_addresses,
        self_routing_addresses=settings.self_routing_addresses,
        confirmation_lag=settings.confirmation_lag,
        batch_size=settings.batch_size,
        poll_interval_ms=settings.poll_interval_ms,
        to_block=settings.to_block,
        retry=settings.retry,
    )


async def load_pipeline(config_path: str, to_block: Optional[int] = None) -> Pipeline:
    """Parse the config file, `to_block` overrides the configured target block"""
    settings = parse_settings(config_path)
    if to_block is not None:
        settings.to_block = to_block
        validate_settings(settings)

    return await build_pipeline(settings)
