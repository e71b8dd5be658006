import logging
from decimal import Context, Decimal
from typing import Iterable, Optional

from .data import Category, DecodedTransfer, EnrichedBlock, RawLog, TransferRecord
from .errors import ConfigurationError, MalformedResponseError
from .registry import ContractInfo, ContractRegistry, normalize_address

logger = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1

# wide enough to hold any uint256 (78 digits) without rounding
_DECIMAL_CONTEXT = Context(prec=100)


def normalize_value(raw_value: int, decimals: int) -> Decimal:
    if raw_value < 0 or raw_value > MAX_UINT256:
        raise MalformedResponseError(f"transfer value {raw_value} is out of uint256 range")

    return _DECIMAL_CONTEXT.divide(Decimal(raw_value), Decimal(10) ** decimals)


class LogClassifier:
    """Splits Transfer events into treasury deposits, generic transfers and
    internal bookkeeping moves that must not be persisted."""

    def __init__(
        self,
        registry: ContractRegistry,
        treasury_addresses: Iterable[str] = (),
        self_routing_addresses: Iterable[str] = (),
    ):
        self.registry = registry
        self.treasury_addresses = frozenset(normalize_address(a) for a in treasury_addresses)
        self.self_routing_addresses = frozenset(
            normalize_address(a) for a in self_routing_addresses
        )

        overlap = self.treasury_addresses & self.self_routing_addresses
        if overlap:
            raise ConfigurationError(
                f"addresses configured as both treasury and self-routing: {sorted(overlap)}"
            )

    def classify(
        self,
        log: RawLog,
        decoded: DecodedTransfer,
        contract: Optional[ContractInfo],
    ) -> Category:
        watched = self.registry.get(log.address)
        if watched is None or contract is None or watched.address != contract.address:
            return Category.DISCARDED

        to_address = decoded.to_address.lower()

        if to_address in self.treasury_addresses:
            return Category.TREASURY_DEPOSIT
        if to_address in self.self_routing_addresses:
            return Category.DISCARDED

        return Category.GENERIC_TRANSFER

    def to_record(
        self, block: EnrichedBlock, log: RawLog, decoded: DecodedTransfer
    ) -> Optional[TransferRecord]:
        contract = self.registry.get(log.address)
        category = self.classify(log, decoded, contract)

        if category == Category.DISCARDED:
            logger.debug(
                f"discarding transfer tx={log.transaction_hash} log={log.log_index} to={decoded.to_address}"
            )
            return None

        assert contract is not None

        return TransferRecord(
            timestamp=block.timestamp,
            block_number=block.number,
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
            contract_address=contract.address,
            from_address=decoded.from_address.lower(),
            to_address=decoded.to_address.lower(),
            value=normalize_value(decoded.raw_value, contract.decimals),
            raw_value=decoded.raw_value,
            contract_symbol=contract.symbol,
            category=category,
        )
