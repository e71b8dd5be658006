import pyarrow as pa
import pytest

from erc20_ingest.config import ClickHouseWriterConfig
from erc20_ingest.schema import group_by_symbol
from erc20_ingest.writers.clickhouse import Writer, pyarrow_type_to_clickhouse

from conftest import AXS, make_record


class FakeClickHouseClient:
    def __init__(self):
        self.commands = []
        self.inserts = []

    async def command(self, query):
        self.commands.append(query)

    async def insert_arrow(self, table, arrow_table):
        self.inserts.append((table, arrow_table))


def test_pyarrow_type_to_clickhouse():
    assert pyarrow_type_to_clickhouse(pa.int64()) == "Int64"
    assert pyarrow_type_to_clickhouse(pa.timestamp("us", tz="UTC")) == "DateTime64(6, 'UTC')"
    with pytest.raises(Exception):
        pyarrow_type_to_clickhouse(pa.bool_())


@pytest.mark.asyncio
async def test_clickhouse_writer():
    client = FakeClickHouseClient()
    writer = Writer(
        ClickHouseWriterConfig(
            client=client, codec={"weth_transfers": {"block_number": "Delta, ZSTD"}}
        )
    )

    await writer.push_data(
        group_by_symbol(
            [make_record(block_number=1), make_record(block_number=1, symbol="AXS", contract=AXS)]
        )
    )
    await writer.push_data(group_by_symbol([make_record(block_number=2)]))

    # tables are created once
    assert len(client.commands) == 2
    weth_ddl = next(c for c in client.commands if "weth_transfers" in c)
    assert "ENGINE = ReplacingMergeTree()" in weth_ddl
    assert "ORDER BY (transaction_hash, log_index)" in weth_ddl
    assert "`block_number` Int64 CODEC(Delta, ZSTD)" in weth_ddl
    assert "`timestamp` DateTime64(6, 'UTC')" in weth_ddl

    assert [(name, t.num_rows) for name, t in client.inserts] == [
        ("weth_transfers", 1),
        ("axs_transfers", 1),
        ("weth_transfers", 1),
    ]
