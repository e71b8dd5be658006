from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional
import logging

import aiohttp

from web3 import AsyncWeb3, AsyncHTTPProvider

from .config import ProviderConfig

logger = logging.getLogger(__name__)


class NodeClient(ABC):
    """Calls consumed from the chain node. Implementations may fail transiently."""

    @abstractmethod
    async def current_block_number(self) -> int:
        pass

    @abstractmethod
    async def get_block_with_transactions(self, block_number: int) -> Optional[Mapping[str, Any]]:
        """Block with full transaction objects, None if the node doesn't have it"""
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        pass

    async def close(self) -> None:
        pass


class Web3NodeClient(NodeClient):
    def __init__(self, config: ProviderConfig):
        self.w3 = AsyncWeb3(
            AsyncHTTPProvider(
                config.url,
                request_kwargs={
                    "timeout": aiohttp.ClientTimeout(total=config.request_timeout_ms / 1000)
                },
            )
        )
        logger.info(f"Initialized web3 node client for {config.url}")

    async def current_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_block_with_transactions(self, block_number: int) -> Optional[Mapping[str, Any]]:
        return await self.w3.eth.get_block(block_number, full_transactions=True)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        return await self.w3.eth.get_transaction_receipt(tx_hash)

    async def close(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
