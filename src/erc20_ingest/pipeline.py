import asyncio
import logging
from typing import Optional

from .checkpoint import create_checkpoint
from .classifier import LogClassifier
from .config import Pipeline, RetryConfig
from .errors import BatchError, IngestError
from .fetcher import BlockFetcher
from .node import NodeClient, Web3NodeClient
from .registry import ContractRegistry
from .scheduler import BatchScheduler
from .writers.writer import create_writer

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_ms: int, ceiling_ms: int) -> float:
    """Seconds to wait before retry number `attempt` (1-based)"""
    delay_ms = min(ceiling_ms, base_ms * 2 ** max(attempt - 1, 0))
    return delay_ms / 1000


async def _wait(stop_event: asyncio.Event, seconds: float) -> None:
    """Sleep, waking up early if a stop is requested"""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


class RetryState:
    def __init__(self, config: RetryConfig):
        self.config = config
        self.failures = 0

    def reset(self) -> None:
        self.failures = 0

    def fail(self, error: IngestError) -> float:
        """Record a failure and return the backoff, re-raises once retries are exhausted"""
        self.failures += 1
        if not error.retryable:
            raise error
        if (
            self.config.max_num_retries is not None
            and self.failures > self.config.max_num_retries
        ):
            logger.error(f"giving up after {self.failures} consecutive failures")
            raise error

        return backoff_delay(
            self.failures, self.config.retry_base_ms, self.config.retry_ceiling_ms
        )


def build_scheduler(pipeline: Pipeline, node: NodeClient) -> BatchScheduler:
    registry = ContractRegistry.from_config(pipeline.contracts)
    classifier = LogClassifier(
        registry,
        treasury_addresses=pipeline.treasury_addresses,
        self_routing_addresses=pipeline.self_routing_addresses,
    )
    fetcher = BlockFetcher(
        node,
        registry,
        max_concurrency=pipeline.provider.max_concurrency,
        request_timeout=pipeline.provider.request_timeout_ms / 1000,
    )

    return BatchScheduler(
        fetcher=fetcher,
        classifier=classifier,
        writer=create_writer(pipeline.writer),
        checkpoint=create_checkpoint(pipeline.checkpoint, pipeline.name),
        confirmation_lag=pipeline.confirmation_lag,
        batch_size=pipeline.batch_size,
        to_block=pipeline.to_block,
    )


async def run_pipeline(
    pipeline: Pipeline,
    stop_event: Optional[asyncio.Event] = None,
    node: Optional[NodeClient] = None,
) -> int:
    """Poll the chain and ingest batches until stopped or `to_block` is reached.

    Returns the last committed checkpoint.
    """
    logger.info(f"Running pipeline: {pipeline.name}")

    if stop_event is None:
        stop_event = asyncio.Event()

    owns_node = node is None
    if node is None:
        node = Web3NodeClient(pipeline.provider)

    try:
        scheduler = build_scheduler(pipeline, node)
        await scheduler.start()
        retry = RetryState(pipeline.retry)
        poll_interval = pipeline.poll_interval_ms / 1000

        # the stop signal is only looked at between batches, never inside one
        while not stop_event.is_set():
            if scheduler.finished:
                logger.info(f"reached target block {pipeline.to_block}")
                break

            try:
                head = await scheduler.fetcher.chain_head()
            except IngestError as e:
                delay = retry.fail(e)
                logger.warning(f"failed to get chain head: {e}, retrying in {delay}s")
                await _wait(stop_event, delay)
                continue

            block_range = scheduler.next_range(head)
            if block_range is None:
                logger.debug(
                    f"caught up at {scheduler.checkpoint} (head {head}, lag {pipeline.confirmation_lag})"
                )
                await _wait(stop_event, poll_interval)
                continue

            try:
                await scheduler.run_batch(block_range)
            except BatchError as e:
                delay = retry.fail(e)
                logger.error(
                    f"{e}, checkpoint stays at {scheduler.checkpoint}, retrying in {delay}s"
                )
                await _wait(stop_event, delay)
                continue

            retry.reset()

        logger.info(f"pipeline {pipeline.name} stopped at block {scheduler.checkpoint}")
        return scheduler.checkpoint
    finally:
        if owns_node:
            await node.close()
