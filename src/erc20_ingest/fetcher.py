import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, TypeVar

import aiohttp
from web3.exceptions import Web3Exception

from .data import EnrichedBlock, RawLog, Receipt
from .errors import MalformedResponseError, TransientNodeError
from .node import NodeClient
from .registry import ADDRESS_RE, ContractRegistry
from .utils.tasks import run_all

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    raise TypeError(f"expected bytes or hex string, got {type(value).__name__}")


def to_hex(value: Any) -> str:
    return "0x" + to_bytes(value).hex()


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("expected integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise TypeError(f"expected integer, got {type(value).__name__}")


def to_address(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)) and len(value) == 20:
        return "0x" + bytes(value).hex()
    if isinstance(value, str) and ADDRESS_RE.match(value):
        return value.lower()
    raise ValueError(f"invalid address {value!r}")


class BlockFetcher:
    """Fetches blocks with full transactions plus the receipts of transactions
    sent to watched contracts.

    Every RPC call goes through one semaphore, so the number of calls in flight
    stays bounded no matter how many blocks are requested at once.
    """

    def __init__(
        self,
        node: NodeClient,
        registry: ContractRegistry,
        max_concurrency: int = 16,
        request_timeout: float = 10.0,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.node = node
        self.registry = registry
        self.request_timeout = request_timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def _call(self, what: str, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        async with self._semaphore:
            try:
                return await asyncio.wait_for(fn(*args), timeout=self.request_timeout)
            except (asyncio.TimeoutError, TimeoutError) as e:
                raise TransientNodeError(
                    f"{what} timed out after {self.request_timeout}s"
                ) from e
            except Web3Exception as e:
                raise TransientNodeError(f"{what}: {e}") from e
            except ValueError as e:
                # web3 6 raises JSON-RPC error responses (rate limits etc.) as ValueError
                raise TransientNodeError(f"{what} returned an error: {e}") from e
            except (aiohttp.ClientError, ConnectionError, OSError) as e:
                raise TransientNodeError(f"{what} failed: {e}") from e

    async def chain_head(self) -> int:
        head = await self._call("get block number", self.node.current_block_number)
        try:
            return to_int(head)
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"invalid block number {head!r}") from e

    def _is_watched_transaction(self, tx: Mapping[str, Any]) -> bool:
        # contract creations have no recipient
        to = tx.get("to")
        if to is None:
            return False
        return self.registry.is_watched(to_address(to))

    async def fetch_block_with_receipts(self, block_number: int) -> EnrichedBlock:
        block = await self._call(
            f"get block {block_number}",
            self.node.get_block_with_transactions,
            block_number,
        )
        if block is None:
            raise TransientNodeError(f"block {block_number} is not available yet")

        try:
            number = to_int(block["number"])
            block_hash = to_hex(block["hash"])
            timestamp = to_int(block["timestamp"])
            tx_hashes = [
                to_hex(tx["hash"])
                for tx in block["transactions"]
                if self._is_watched_transaction(tx)
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedResponseError(
                f"malformed block: {type(e).__name__}: {e}", block_number=block_number
            ) from e

        if number != block_number:
            raise MalformedResponseError(
                f"node returned block {number}", block_number=block_number
            )

        receipts = await run_all(
            [self._fetch_receipt(block_number, tx_hash) for tx_hash in tx_hashes],
            name=f"receipts of block {block_number}",
        )

        logger.debug(
            f"block {block_number}: {len(block['transactions'])} transactions, {len(receipts)} watched"
        )

        return EnrichedBlock(
            number=number, hash=block_hash, timestamp=timestamp, receipts=receipts
        )

    async def _fetch_receipt(self, block_number: int, tx_hash: str) -> Receipt:
        receipt = await self._call(
            f"get receipt {tx_hash}", self.node.get_transaction_receipt, tx_hash
        )
        # a mined transaction always has a receipt, absence means the node lags behind
        if receipt is None:
            raise TransientNodeError(f"receipt for {tx_hash} in block {block_number} is missing")

        return parse_receipt(receipt, block_number, tx_hash)


def parse_receipt(receipt: Mapping[str, Any], block_number: int, tx_hash: str) -> Receipt:
    try:
        status: Optional[Any] = receipt.get("status")
        # reverted transactions emit no events
        if status is not None and to_int(status) == 0:
            return Receipt(transaction_hash=tx_hash)

        logs: List[RawLog] = [
            RawLog(
                address=to_address(log["address"]),
                topics=[to_bytes(topic) for topic in log["topics"]],
                data=to_bytes(log["data"]),
                log_index=to_int(log["logIndex"]),
                transaction_hash=tx_hash,
            )
            for log in receipt["logs"]
        ]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedResponseError(
            f"malformed receipt: {type(e).__name__}: {e}",
            block_number=block_number,
            transaction_hash=tx_hash,
        ) from e

    return Receipt(transaction_hash=tx_hash, logs=logs)
