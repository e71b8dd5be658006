from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List

import pyarrow as pa

from .data import TransferRecord

NATURAL_KEY = ["transaction_hash", "log_index"]

TRANSFER_SCHEMA = pa.schema(
    [
        pa.field("timestamp", pa.timestamp("us", tz="UTC"), False),
        pa.field("block_number", pa.int64(), False),
        pa.field("transaction_hash", pa.string(), False),
        pa.field("log_index", pa.int64(), False),
        pa.field("contract_address", pa.string(), False),
        pa.field("from_address", pa.string(), False),
        pa.field("to_address", pa.string(), False),
        pa.field("contract_symbol", pa.string(), False),
        pa.field("category", pa.string(), False),
        pa.field("value", pa.float64(), False),
        # decimal string, uint256 doesn't fit any arrow integer type
        pa.field("raw_value", pa.string(), False),
    ]
)


def records_to_table(records: Iterable[TransferRecord]) -> pa.Table:
    rows = [
        {
            "timestamp": datetime.fromtimestamp(r.timestamp, tz=timezone.utc),
            "block_number": r.block_number,
            "transaction_hash": r.transaction_hash,
            "log_index": r.log_index,
            "contract_address": r.contract_address,
            "from_address": r.from_address,
            "to_address": r.to_address,
            "contract_symbol": r.contract_symbol,
            "category": r.category.value,
            "value": float(r.value),
            "raw_value": str(r.raw_value),
        }
        for r in records
    ]

    return pa.Table.from_pylist(rows, schema=TRANSFER_SCHEMA)


def group_by_symbol(records: Iterable[TransferRecord]) -> Dict[str, pa.Table]:
    grouped: Dict[str, List[TransferRecord]] = defaultdict(list)
    for record in records:
        grouped[record.contract_symbol].append(record)

    return {symbol: records_to_table(rs) for symbol, rs in grouped.items()}
