import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Tuple

from web3 import Web3

from .data import DecodedTransfer, RawLog
from .errors import MalformedResponseError

logger = logging.getLogger(__name__)

WORD_SIZE = 32
ADDRESS_SIZE = 20

# only used for its ABI codec, never connects anywhere
_codec = Web3().codec


@dataclass(frozen=True)
class EventInput:
    name: str
    type_: str
    indexed: bool


@dataclass(frozen=True)
class EventSignature:
    name: str
    inputs: Tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type_ for i in self.inputs)})"

    @cached_property
    def topic0(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature))

    @property
    def num_topics(self) -> int:
        return 1 + sum(1 for i in self.inputs if i.indexed)

    def matches(self, log: RawLog) -> bool:
        return len(log.topics) > 0 and bytes(log.topics[0]) == self.topic0

    def decode(self, log: RawLog) -> DecodedTransfer:
        """Decode a Transfer(address,address,uint256) log.

        The value is decoded at full uint256 width, anything shorter than a
        32 byte word or with extra topics is rejected rather than guessed at.
        """
        if not self.matches(log):
            raise MalformedResponseError(
                f"log {log.log_index} is not a {self.signature} event",
                transaction_hash=log.transaction_hash,
            )

        if len(log.topics) != self.num_topics:
            raise MalformedResponseError(
                f"{self.signature} log {log.log_index} has {len(log.topics)} topics, expected {self.num_topics}",
                transaction_hash=log.transaction_hash,
            )

        if len(log.data) != WORD_SIZE:
            raise MalformedResponseError(
                f"{self.signature} log {log.log_index} has {len(log.data)} data bytes, expected {WORD_SIZE}",
                transaction_hash=log.transaction_hash,
            )

        from_address = _topic_to_address(log, log.topics[1])
        to_address = _topic_to_address(log, log.topics[2])
        (raw_value,) = _codec.decode(["uint256"], bytes(log.data))

        return DecodedTransfer(
            from_address=from_address,
            to_address=to_address,
            raw_value=int(raw_value),
        )


def _topic_to_address(log: RawLog, topic: bytes) -> str:
    topic = bytes(topic)

    if len(topic) != WORD_SIZE:
        raise MalformedResponseError(
            f"topic of log {log.log_index} is {len(topic)} bytes",
            transaction_hash=log.transaction_hash,
        )

    # address is the last 20 bytes, the rest must be zero padding
    if any(topic[: WORD_SIZE - ADDRESS_SIZE]):
        raise MalformedResponseError(
            f"topic of log {log.log_index} is not a left-padded address",
            transaction_hash=log.transaction_hash,
        )

    return "0x" + topic[WORD_SIZE - ADDRESS_SIZE :].hex()


TRANSFER = EventSignature(
    name="Transfer",
    inputs=(
        EventInput(name="from", type_="address", indexed=True),
        EventInput(name="to", type_="address", indexed=True),
        EventInput(name="value", type_="uint256", indexed=False),
    ),
)
