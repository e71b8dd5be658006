import asyncio
import logging
from collections import Counter
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

from erc20_ingest.config import ContractConfig
from erc20_ingest.classifier import LogClassifier
from erc20_ingest.data import Category, TransferRecord
from erc20_ingest.node import NodeClient
from erc20_ingest.registry import ContractRegistry

WETH = "0xc99a6a985ed2cac1ef41640596c5a5f9f4e19ef5"
AXS = "0x97a9107c1793bc407d6f527b77e7fff4d812bece"
SLP = "0xa8754b9fa15fc18bb59458815510e40a12cd2014"
GATEWAY = "0xfff9ce5f71ca6178d3beecedb61e7eff1602950e"
TREASURY = "0xa99cacd1427f493a95b585a5c7989a08c86a616b"

ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
UNWATCHED = "0x" + "33" * 20

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC0 = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

CONTRACTS = [
    ContractConfig(address=WETH, symbol="WETH", decimals=18),
    ContractConfig(address=AXS, symbol="AXS", decimals=18),
    ContractConfig(address=SLP, symbol="SLP", decimals=0),
    ContractConfig(address=GATEWAY, symbol="GATEWAY", decimals=18),
]


# Configure logging for tests
@pytest.fixture(autouse=True)
def configure_logging():
    # Set up logging
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    yield


@pytest.fixture
def registry():
    return ContractRegistry.from_config(CONTRACTS)


@pytest.fixture
def classifier(registry):
    return LogClassifier(
        registry, treasury_addresses=[TREASURY], self_routing_addresses=[GATEWAY]
    )


def address_topic(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def transfer_log(
    contract: str, sender: str, receiver: str, value: int, log_index: int
) -> Dict[str, Any]:
    """Receipt log as returned by eth_getTransactionReceipt"""
    return {
        "address": contract,
        "topics": [TRANSFER_TOPIC0, address_topic(sender), address_topic(receiver)],
        "data": "0x" + value.to_bytes(32, "big").hex(),
        "logIndex": hex(log_index),
    }


def tx_hash(block_number: int, index: int) -> str:
    return "0x" + f"{block_number:032x}{index:032x}"


def block_timestamp(block_number: int) -> int:
    return 1_700_000_000 + block_number * 3


class FakeNode(NodeClient):
    """In-memory chain. Blocks up to `head` exist, empty unless added explicitly."""

    def __init__(self, head: int = 0):
        self.head = head
        self.blocks: Dict[int, Dict[str, Any]] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}
        # block number -> remaining number of failures
        self.failures: Dict[int, int] = {}
        self.missing_receipts: set = set()
        # raised one by one from current_block_number before it answers again
        self.head_errors: List[BaseException] = []
        self.delay = 0.0
        self.block_calls: Counter = Counter()
        self.receipt_calls: Counter = Counter()
        self.closed = False

    def add_block(
        self,
        number: int,
        transactions: Sequence[Tuple[Optional[str], List[Dict[str, Any]]]] = (),
        status: int = 1,
    ) -> List[str]:
        """Add a block whose transactions are (to, logs) pairs, returns the tx hashes"""
        txs = []
        for i, (to, logs) in enumerate(transactions):
            h = tx_hash(number, i)
            txs.append({"hash": h, "to": to, "blockNumber": hex(number)})
            self.receipts[h] = {"transactionHash": h, "status": hex(status), "logs": logs}

        self.blocks[number] = self._block(number, txs)
        return [tx["hash"] for tx in txs]

    def fail(self, block_number: int, times: int = 1) -> None:
        self.failures[block_number] = times

    def _block(self, number: int, txs: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "number": hex(number),
            "hash": "0x" + f"{number:064x}",
            "timestamp": hex(block_timestamp(number)),
            "transactions": txs,
        }

    async def current_block_number(self) -> int:
        if self.head_errors:
            raise self.head_errors.pop(0)
        return self.head

    async def get_block_with_transactions(self, block_number: int) -> Optional[Mapping[str, Any]]:
        self.block_calls[block_number] += 1
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.failures.get(block_number, 0) > 0:
            self.failures[block_number] -= 1
            raise ConnectionError(f"connection reset while fetching block {block_number}")

        if block_number > self.head:
            return None
        return self.blocks.get(block_number) or self._block(block_number, [])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        self.receipt_calls[tx_hash] += 1
        if tx_hash in self.missing_receipts:
            return None
        return self.receipts.get(tx_hash)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def node():
    return FakeNode(head=1_000)


def make_record(
    block_number: int = 1,
    log_index: int = 0,
    symbol: str = "WETH",
    contract: str = WETH,
    raw_value: int = 10**18,
    value: Decimal = Decimal(1),
    category: Category = Category.GENERIC_TRANSFER,
    tx: Optional[str] = None,
) -> TransferRecord:
    return TransferRecord(
        timestamp=block_timestamp(block_number),
        block_number=block_number,
        transaction_hash=tx or tx_hash(block_number, 0),
        log_index=log_index,
        contract_address=contract,
        from_address=ALICE,
        to_address=BOB,
        value=value,
        raw_value=raw_value,
        contract_symbol=symbol,
        category=category,
    )
