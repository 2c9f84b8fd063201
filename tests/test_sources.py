import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from conftest import ALICE, BIG_TOKEN, BOB, CONTRACT, log_entry, make_chain_app, transfer_row, ts_for
from holdpoints.errors import RangeTooLargeError, RetriesExhaustedError
from holdpoints.models import TRANSFER_TOPIC, ZERO_ADDRESS
from holdpoints.sources import ExplorerClient, RpcClient, event_from_log
from holdpoints.transport import JsonClient, RetryPolicy

NO_WAIT = RetryPolicy(max_retries=2, base_delay=0, max_delay=0)


class Chain:
    def __init__(self, app):
        self.app = app

    async def __aenter__(self):
        self.server = TestServer(self.app)
        await self.server.start_server()
        self.session = aiohttp.ClientSession()
        client = JsonClient(self.session, NO_WAIT, timeout=5)
        self.explorer = ExplorerClient(client, str(self.server.make_url("/api")), CONTRACT, "KEY")
        self.rpc = RpcClient(client, str(self.server.make_url("/rpc")), CONTRACT)
        return self

    async def __aexit__(self, *exc):
        await self.session.close()
        await self.server.close()


@pytest.mark.asyncio
async def test_tokennfttx_rows_are_normalized(history):
    async with Chain(make_chain_app(history)) as chain:
        rows = await chain.explorer.fetch_transfers_page(1, 4, "desc")

    assert [(r.block_number, r.log_index) for r in rows] == [(90, 0), (80, 3), (80, 2), (60, 0)]
    assert rows[0].recipient == ZERO_ADDRESS
    assert rows[3].token_id == BIG_TOKEN
    assert rows[3].timestamp == ts_for(60)


@pytest.mark.asyncio
async def test_no_transactions_status_is_an_empty_page(history):
    async with Chain(make_chain_app(history)) as chain:
        assert await chain.explorer.fetch_transfers_page(99, 100, "asc") == []
        assert await chain.explorer.fetch_logs(1000, 2000) == []


@pytest.mark.asyncio
async def test_explorer_error_status_is_retried():
    app = web.Application()
    calls = []

    async def api(request):
        calls.append(dict(request.query))
        if len(calls) == 1:
            return web.json_response({"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
        return web.json_response({"status": "1", "message": "OK", "result": []})

    app.router.add_get("/api", api)
    async with Chain(app) as chain:
        assert await chain.explorer.fetch_transfers_page(1, 10, "desc") == []

    assert len(calls) == 2
    assert calls[0]["apikey"] == "KEY"
    assert calls[0]["contractaddress"] == CONTRACT
    assert calls[0]["action"] == "tokennfttx"


def transfers_app(pages):
    """Serve tokennfttx result lists in order, repeating the last one"""
    app = web.Application()
    app["calls"] = 0

    async def api(request):
        app["calls"] += 1
        result = pages[min(app["calls"], len(pages)) - 1]
        return web.json_response({"status": "1", "message": "OK", "result": result})

    app.router.add_get("/api", api)
    return app


@pytest.mark.asyncio
@pytest.mark.parametrize("field, value", [("to", None), ("tokenID", "not-a-number"), ("from", "0x1234")])
async def test_malformed_transfer_row_retries_the_page(history, field, value):
    bad = transfer_row(history[4])
    bad[field] = value
    app = transfers_app([[transfer_row(history[0]), bad], [transfer_row(history[0]), transfer_row(history[4])]])
    async with Chain(app) as chain:
        rows = await chain.explorer.fetch_transfers_page(1, 2, "desc")

    assert [(r.token_id, r.recipient) for r in rows] == [(1, ALICE), (1, BOB)]
    assert app["calls"] == 2


@pytest.mark.asyncio
async def test_persistently_malformed_page_exhausts_retries(history):
    app = transfers_app([[transfer_row(history[0]), "garbage"]])
    async with Chain(app) as chain:
        with pytest.raises(RetriesExhaustedError) as info:
            await chain.explorer.fetch_transfers_page(3, 2, "desc")

    assert "page 3" in info.value.label
    assert app["calls"] == NO_WAIT.max_retries + 1


@pytest.mark.asyncio
async def test_explorer_logs_are_decoded(history):
    async with Chain(make_chain_app(history)) as chain:
        events = await chain.explorer.fetch_logs(50, 60)

    assert [(e.block_number, e.sender, e.recipient, e.token_id) for e in events] == [
        (50, ALICE, BOB, 1),
        (60, ZERO_ADDRESS, BOB, BIG_TOKEN),
    ]
    assert events[1].timestamp == ts_for(60)


@pytest.mark.asyncio
async def test_rpc_logs_look_up_each_block_timestamp_once(history):
    app = make_chain_app(history)
    async with Chain(app) as chain:
        events = await chain.rpc.fetch_logs(80, 90)
        again = await chain.rpc.fetch_logs(80, 90)
        latest = await chain.rpc.latest_block()

    assert [(e.block_number, e.log_index, e.token_id) for e in events] == [(80, 2, 1), (80, 3, 4), (90, 0, 3)]
    assert [e.timestamp for e in events] == [ts_for(80), ts_for(80), ts_for(90)]
    assert events == again
    assert app["hits"]["blocks"] == 2
    assert latest == 90


@pytest.mark.asyncio
async def test_rpc_range_too_large_is_not_retried():
    app = web.Application()
    calls = []

    async def rpc(request):
        body = await request.json()
        calls.append(body)
        return web.json_response({
            "jsonrpc": "2.0",
            "id": body["id"],
            "error": {"code": -32005, "message": "query returned more than 10000 results"},
        })

    app.router.add_post("/rpc", rpc)
    async with Chain(app) as chain:
        with pytest.raises(RangeTooLargeError):
            await chain.rpc.fetch_logs(0, 1_000_000)

    assert len(calls) == 1
    params = calls[0]["params"][0]
    assert params["fromBlock"] == "0x0"
    assert params["topics"] == [TRANSFER_TOPIC]


def test_erc20_shaped_transfer_is_skipped(history):
    entry = log_entry(history[0])
    entry["topics"] = entry["topics"][:3]
    assert event_from_log(entry) is None


def test_rpc_block_timestamp_field_is_used(history):
    entry = log_entry(history[4], with_timestamp=False)
    entry["blockTimestamp"] = hex(ts_for(50))
    assert event_from_log(entry).timestamp == ts_for(50)
