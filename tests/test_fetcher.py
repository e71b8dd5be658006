import asyncio

import pytest

from erc20_ingest.errors import MalformedResponseError, TransientNodeError
from erc20_ingest.fetcher import BlockFetcher, parse_receipt, to_int

from conftest import ALICE, BOB, UNWATCHED, WETH, block_timestamp, transfer_log, tx_hash


@pytest.fixture
def fetcher(node, registry):
    return BlockFetcher(node, registry, max_concurrency=2, request_timeout=1.0)


def test_to_int():
    assert to_int("0x10") == 16
    assert to_int("16") == 16
    assert to_int(16) == 16
    with pytest.raises(TypeError):
        to_int(True)


@pytest.mark.asyncio
async def test_chain_head(node, fetcher):
    node.head = 17_000_123
    assert await fetcher.chain_head() == 17_000_123


@pytest.mark.asyncio
async def test_fetches_only_watched_receipts(node, fetcher):
    hashes = node.add_block(
        500,
        [
            (WETH, [transfer_log(WETH, ALICE, BOB, 1, 0)]),
            (UNWATCHED, [transfer_log(UNWATCHED, ALICE, BOB, 1, 1)]),
            # contract creation
            (None, []),
        ],
    )

    block = await fetcher.fetch_block_with_receipts(500)

    assert block.number == 500
    assert block.timestamp == block_timestamp(500)
    assert [r.transaction_hash for r in block.receipts] == [hashes[0]]
    assert node.receipt_calls[hashes[1]] == 0
    assert node.receipt_calls[hashes[2]] == 0

    (log,) = block.logs
    assert log.address == WETH
    assert log.log_index == 0
    assert len(log.topics) == 3


@pytest.mark.asyncio
async def test_recipient_address_case_is_ignored(node, fetcher):
    node.add_block(501, [(WETH.upper().replace("0X", "0x"), [transfer_log(WETH, ALICE, BOB, 1, 0)])])

    block = await fetcher.fetch_block_with_receipts(501)
    assert len(block.receipts) == 1


@pytest.mark.asyncio
async def test_missing_block_is_transient(node, fetcher):
    node.head = 10
    with pytest.raises(TransientNodeError):
        await fetcher.fetch_block_with_receipts(11)


@pytest.mark.asyncio
async def test_missing_receipt_is_transient(node, fetcher):
    (h,) = node.add_block(502, [(WETH, [transfer_log(WETH, ALICE, BOB, 1, 0)])])
    node.missing_receipts.add(h)

    with pytest.raises(TransientNodeError):
        await fetcher.fetch_block_with_receipts(502)


@pytest.mark.asyncio
async def test_connection_error_is_transient(node, fetcher):
    node.fail(503)
    with pytest.raises(TransientNodeError):
        await fetcher.fetch_block_with_receipts(503)

    # next attempt goes through
    assert (await fetcher.fetch_block_with_receipts(503)).number == 503


@pytest.mark.asyncio
async def test_timeout_is_transient(node, registry):
    node.delay = 0.5
    fetcher = BlockFetcher(node, registry, request_timeout=0.01)

    with pytest.raises(TransientNodeError):
        await fetcher.fetch_block_with_receipts(504)


@pytest.mark.asyncio
async def test_concurrency_is_bounded(node, registry):
    in_flight = 0
    peak = 0
    get_block = node.get_block_with_transactions

    async def tracking_get_block(block_number):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        try:
            return await get_block(block_number)
        finally:
            in_flight -= 1

    node.get_block_with_transactions = tracking_get_block
    fetcher = BlockFetcher(node, registry, max_concurrency=3)

    await asyncio.gather(*(fetcher.fetch_block_with_receipts(n) for n in range(1, 21)))
    assert peak == 3


@pytest.mark.asyncio
async def test_block_number_mismatch(node, fetcher):
    node.blocks[505] = {"number": hex(506), "hash": "0x00", "timestamp": "0x1", "transactions": []}

    with pytest.raises(MalformedResponseError) as exc_info:
        await fetcher.fetch_block_with_receipts(505)
    assert exc_info.value.block_number == 505


@pytest.mark.asyncio
async def test_malformed_block(node, fetcher):
    node.blocks[506] = {"number": hex(506), "transactions": []}

    with pytest.raises(MalformedResponseError):
        await fetcher.fetch_block_with_receipts(506)


def test_reverted_receipt_has_no_logs():
    receipt = {"status": 0, "logs": [transfer_log(WETH, ALICE, BOB, 1, 0)]}
    assert parse_receipt(receipt, 1, tx_hash(1, 0)).logs == []


def test_malformed_receipt():
    with pytest.raises(MalformedResponseError) as exc_info:
        parse_receipt({"status": 1, "logs": [{"address": WETH}]}, 7, tx_hash(7, 0))

    assert exc_info.value.block_number == 7
    assert exc_info.value.transaction_hash == tx_hash(7, 0)


@pytest.mark.asyncio
async def test_rpc_error_response_is_transient(node, fetcher):
    node.head_errors.append(ValueError({"code": -32005, "message": "limit exceeded"}))

    with pytest.raises(TransientNodeError) as exc_info:
        await fetcher.chain_head()
    assert "limit exceeded" in str(exc_info.value)

    node.head = 42
    assert await fetcher.chain_head() == 42
