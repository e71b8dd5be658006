from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, NamedTuple


class Category(str, Enum):
    GENERIC_TRANSFER = "generic_transfer"
    TREASURY_DEPOSIT = "treasury_deposit"
    DISCARDED = "discarded"


class BlockRange(NamedTuple):
    """Inclusive range of block numbers"""

    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def blocks(self) -> range:
        return range(self.start, self.end + 1)


@dataclass(frozen=True)
class RawLog:
    address: str
    topics: List[bytes]
    data: bytes
    log_index: int
    transaction_hash: str


@dataclass(frozen=True)
class DecodedTransfer:
    from_address: str
    to_address: str
    raw_value: int


@dataclass
class Receipt:
    transaction_hash: str
    logs: List[RawLog] = field(default_factory=list)


@dataclass
class EnrichedBlock:
    """Block header plus receipts of the transactions sent to watched contracts"""

    number: int
    hash: str
    timestamp: int
    receipts: List[Receipt] = field(default_factory=list)

    @property
    def logs(self) -> List[RawLog]:
        return [log for receipt in self.receipts for log in receipt.logs]


@dataclass(frozen=True)
class TransferRecord:
    timestamp: int
    block_number: int
    transaction_hash: str
    log_index: int
    contract_address: str
    from_address: str
    to_address: str
    value: Decimal
    raw_value: int
    contract_symbol: str
    category: Category

    @property
    def natural_key(self) -> tuple:
        return (self.transaction_hash, self.log_index)
