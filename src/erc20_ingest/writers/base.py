from abc import ABC, abstractmethod
from typing import Dict, Iterable
import logging
import re

import pyarrow as pa

from ..data import TransferRecord
from ..schema import records_to_table

logger = logging.getLogger(__name__)


def table_name(symbol: str) -> str:
    """Storage table holding the transfers of one contract"""
    return re.sub(r"[^0-9a-z_]", "_", symbol.lower()) + "_transfers"


class DataWriter(ABC):
    """Base class for transfer sinks.

    Writes must tolerate being repeated: a failed batch is re-derived and
    pushed again, so implementations dedup on (transaction_hash, log_index)
    or overwrite harmlessly.
    """

    @abstractmethod
    async def push_data(self, data: Dict[str, pa.Table]) -> None:
        """Push transfer tables keyed by contract symbol"""
        pass

    async def write(self, symbol: str, records: Iterable[TransferRecord]) -> None:
        table = records_to_table(records)
        if table.num_rows == 0:
            return
        await self.push_data({symbol: table})
