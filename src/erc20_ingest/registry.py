import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from .config import ContractConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

MAX_DECIMALS = 18


def normalize_address(address: str) -> str:
    if not isinstance(address, str) or not ADDRESS_RE.match(address):
        raise ConfigurationError(f"invalid address: {address!r}")
    return address.lower()


@dataclass(frozen=True)
class ContractInfo:
    address: str
    symbol: str
    decimals: int


class ContractRegistry:
    """Watched ERC20 contracts keyed by lower-cased address. Read-only after construction."""

    def __init__(self, contracts: Iterable[ContractInfo]):
        by_address: Dict[str, ContractInfo] = {}

        for contract in contracts:
            address = normalize_address(contract.address)

            if not contract.symbol:
                raise ConfigurationError(f"contract {address} has no symbol")
            if (
                isinstance(contract.decimals, bool)
                or not isinstance(contract.decimals, int)
                or not 0 <= contract.decimals <= MAX_DECIMALS
            ):
                raise ConfigurationError(
                    f"contract {contract.symbol} has invalid decimal scale {contract.decimals!r}, expected 0..{MAX_DECIMALS}"
                )
            if address in by_address:
                raise ConfigurationError(f"contract {address} is listed more than once")

            by_address[address] = ContractInfo(address, contract.symbol, contract.decimals)

        self._contracts: Mapping[str, ContractInfo] = MappingProxyType(by_address)

    @classmethod
    def from_config(cls, contracts: List[ContractConfig]) -> "ContractRegistry":
        registry = cls(
            ContractInfo(address=c.address, symbol=c.symbol, decimals=c.decimals)
            for c in contracts
        )
        logger.info(
            f"watching {len(registry)} contracts: {', '.join(c.symbol for c in registry)}"
        )
        return registry

    def get(self, address: Optional[str]) -> Optional[ContractInfo]:
        if address is None:
            return None
        return self._contracts.get(address.lower())

    def is_watched(self, address: Optional[str]) -> bool:
        return self.get(address) is not None

    @property
    def addresses(self) -> List[str]:
        return list(self._contracts.keys())

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.is_watched(address)

    def __iter__(self):
        return iter(self._contracts.values())

    def __len__(self) -> int:
        return len(self._contracts)
