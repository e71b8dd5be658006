from abc import ABC, abstractmethod
import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

import duckdb

from .config import CheckpointConfig, CheckpointKind, DuckdbCheckpointConfig, FileCheckpointConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class Checkpoint(ABC):
    """Last block number whose transfers are all durably written to the sink"""

    def __init__(self, genesis_block: int):
        if genesis_block < 0:
            raise ConfigurationError(f"invalid genesis block {genesis_block}")
        self.genesis_block = genesis_block
        self._last: Optional[int] = None

    @abstractmethod
    def _read(self) -> Optional[int]:
        pass

    @abstractmethod
    def _write(self, block_number: int) -> None:
        pass

    async def load(self) -> int:
        stored = await asyncio.to_thread(self._read)
        self._last = self.genesis_block if stored is None else stored
        logger.info(
            f"loaded checkpoint {self._last}"
            + (" (genesis)" if stored is None else "")
        )
        return self._last

    async def commit(self, block_number: int) -> None:
        """Persist synchronously, returns only once the value is durable"""
        if self._last is not None and block_number < self._last:
            raise ValueError(
                f"checkpoint can't move backwards from {self._last} to {block_number}"
            )

        await asyncio.to_thread(self._write, block_number)
        self._last = block_number
        logger.debug(f"committed checkpoint {block_number}")


class FileCheckpoint(Checkpoint):
    def __init__(self, path: str, genesis_block: int):
        super().__init__(genesis_block)
        self.path = Path(path)

    def _read(self) -> Optional[int]:
        if not self.path.exists():
            return None

        content = self.path.read_text().strip()
        try:
            return int(content)
        except ValueError as e:
            raise ConfigurationError(
                f"checkpoint file {self.path} holds {content!r}, expected a block number"
            ) from e

    def _write(self, block_number: int) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        # write aside and rename so a crash never leaves a torn value
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(str(block_number))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class DuckdbCheckpoint(Checkpoint):
    def __init__(
        self,
        connection: duckdb.DuckDBPyConnection,
        genesis_block: int,
        table: str = "ingest_checkpoint",
        pipeline_name: str = "erc20_transfers",
    ):
        super().__init__(genesis_block)
        self.connection = connection
        self.table = table
        self.pipeline_name = pipeline_name
        self.connection.execute(
            f'CREATE TABLE IF NOT EXISTS "{self.table}" (pipeline VARCHAR PRIMARY KEY, block_number BIGINT NOT NULL)'
        )

    def _read(self) -> Optional[int]:
        row = self.connection.execute(
            f'SELECT block_number FROM "{self.table}" WHERE pipeline = ?',
            [self.pipeline_name],
        ).fetchone()
        return None if row is None else int(row[0])

    def _write(self, block_number: int) -> None:
        self.connection.execute(
            f'INSERT OR REPLACE INTO "{self.table}" VALUES (?, ?)',
            [self.pipeline_name, block_number],
        )


def create_checkpoint(config: CheckpointConfig, pipeline_name: str = "erc20_transfers") -> Checkpoint:
    match config.kind:
        case CheckpointKind.FILE:
            assert isinstance(config.config, FileCheckpointConfig)
            return FileCheckpoint(config.config.path, config.genesis_block)
        case CheckpointKind.DUCKDB:
            assert isinstance(config.config, DuckdbCheckpointConfig)
            return DuckdbCheckpoint(
                config.config.connection,
                config.genesis_block,
                table=config.config.table,
                pipeline_name=pipeline_name,
            )
        case _:
            raise ValueError(f"Invalid checkpoint kind: {config.kind}")
