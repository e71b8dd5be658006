import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

from .checkpoint import Checkpoint
from .classifier import LogClassifier
from .data import BlockRange, Category, EnrichedBlock, TransferRecord
from .errors import BatchError, SinkWriteError
from .event_signature import TRANSFER, EventSignature
from .fetcher import BlockFetcher
from .schema import group_by_symbol
from .utils.tasks import run_all
from .writers.base import DataWriter

logger = logging.getLogger(__name__)


def next_range(
    checkpoint: int,
    chain_head: int,
    confirmation_lag: int,
    batch_size: int,
    to_block: Optional[int] = None,
) -> Optional[BlockRange]:
    """Next block range that is safe to scan.

    Blocks within `confirmation_lag` of the head may still be reorganized, so
    the range never reaches past `chain_head - confirmation_lag`. Returns None
    when there is nothing new and safe to read.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    if confirmation_lag < 0:
        raise ValueError(f"confirmation_lag can't be negative, got {confirmation_lag}")

    safe_head = chain_head - confirmation_lag
    if to_block is not None:
        safe_head = min(safe_head, to_block)

    if safe_head <= checkpoint:
        return None

    return BlockRange(checkpoint + 1, min(checkpoint + batch_size, safe_head))


@dataclass
class BatchStats:
    blocks: int = 0
    receipts: int = 0
    categories: Counter = field(default_factory=Counter)

    def add(self, block: EnrichedBlock, records: List[TransferRecord]) -> None:
        self.blocks += 1
        self.receipts += len(block.receipts)
        self.categories.update(r.category.value for r in records)

    def __str__(self) -> str:
        categories = ", ".join(f"{k}={v}" for k, v in sorted(self.categories.items()))
        return f"{self.blocks} blocks, {self.receipts} receipts, records: {categories or 'none'}"


class BatchScheduler:
    """Owns the checkpoint and moves it forward one fully written batch at a time."""

    def __init__(
        self,
        fetcher: BlockFetcher,
        classifier: LogClassifier,
        writer: DataWriter,
        checkpoint: Checkpoint,
        confirmation_lag: int,
        batch_size: int,
        to_block: Optional[int] = None,
        signature: EventSignature = TRANSFER,
    ):
        self.fetcher = fetcher
        self.classifier = classifier
        self.writer = writer
        self._checkpoint = checkpoint
        self.confirmation_lag = confirmation_lag
        self.batch_size = batch_size
        self.to_block = to_block
        self.signature = signature
        self._current: Optional[int] = None

    async def start(self) -> int:
        self._current = await self._checkpoint.load()
        return self._current

    @property
    def checkpoint(self) -> int:
        if self._current is None:
            raise RuntimeError("scheduler not started")
        return self._current

    @property
    def finished(self) -> bool:
        return self.to_block is not None and self.checkpoint >= self.to_block

    def next_range(self, chain_head: int) -> Optional[BlockRange]:
        return next_range(
            self.checkpoint,
            chain_head,
            self.confirmation_lag,
            self.batch_size,
            to_block=self.to_block,
        )

    def extract_records(self, block: EnrichedBlock) -> List[TransferRecord]:
        records = []

        for log in block.logs:
            if not self.signature.matches(log):
                continue
            # other contracts may emit Transfer with a different layout (ERC721)
            if not self.classifier.registry.is_watched(log.address):
                continue

            decoded = self.signature.decode(log)
            record = self.classifier.to_record(block, log, decoded)
            if record is not None:
                records.append(record)

        return records

    async def _process_block(self, block_number: int, stats: BatchStats) -> None:
        block = await self.fetcher.fetch_block_with_receipts(block_number)
        records = self.extract_records(block)

        if records:
            try:
                await self.writer.push_data(group_by_symbol(records))
            except Exception as e:
                raise SinkWriteError(
                    f"failed to write {len(records)} records of block {block_number}: {e}"
                ) from e

        stats.add(block, records)

    async def run_batch(self, block_range: BlockRange) -> int:
        """Process every block of the range, then commit the checkpoint.

        Blocks run concurrently and finish in any order, the checkpoint only
        ever moves to the end of the range once all of them succeeded. Any
        failure abandons the batch with the checkpoint untouched.
        """
        start, end = block_range
        if start != self.checkpoint + 1 or end < start:
            raise ValueError(
                f"range {start}-{end} doesn't continue from checkpoint {self.checkpoint}"
            )

        logger.info(f"processing blocks {start} to {end}")
        stats = BatchStats()

        try:
            await run_all(
                [self._process_block(n, stats) for n in block_range.blocks()],
                name="block",
            )
            await self._checkpoint.commit(end)
        except Exception as e:
            raise BatchError(BlockRange(start, end), e) from e

        self._current = end

        logger.info(f"committed blocks {start} to {end}: {stats}")
        return end
