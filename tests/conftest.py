import pytest
from aiohttp import web

from holdpoints.errors import RangeTooLargeError, RetriesExhaustedError
from holdpoints.models import TRANSFER_TOPIC, ZERO_ADDRESS, RuleConfig, TransferEvent

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
CONTRACT = "0x" + "5e" * 20

START = 1_755_511_200  # 2025-08-18T10:00:00Z
NOW = START + 100_000
BIG_TOKEN = 2 ** 200 + 7


def ts_for(block):
    # Block 20 lands exactly on the accrual start, 10 minutes per block
    return START + (block - 20) * 600


def ev(block, log_index, token_id, sender, recipient):
    return TransferEvent(
        block_number=block,
        log_index=log_index,
        timestamp=ts_for(block),
        sender=sender,
        recipient=recipient,
        token_id=token_id,
        tx_hash=f"0x{block:064x}",
    )


def sample_history():
    return [
        ev(10, 0, 1, ZERO_ADDRESS, ALICE),
        ev(10, 1, 2, ZERO_ADDRESS, ALICE),
        ev(20, 0, 3, ZERO_ADDRESS, BOB),
        ev(30, 0, 4, ZERO_ADDRESS, CAROL),
        ev(50, 0, 1, ALICE, BOB),
        ev(60, 0, BIG_TOKEN, ZERO_ADDRESS, BOB),
        ev(80, 2, 1, BOB, CAROL),
        ev(80, 3, 4, CAROL, ALICE),
        ev(90, 0, 3, BOB, ZERO_ADDRESS),
    ]


@pytest.fixture
def history():
    return sample_history()


@pytest.fixture
def rule():
    return RuleConfig(start_epoch=START, window_seconds=21600, points_per_window=10, target_supply=5)


class FakeExplorer:
    """In-memory stand-in for both the tokennfttx pager and a log scanner"""

    def __init__(self, events, fail_pages=(), fail_ranges=(), max_range=None):
        self.events = list(events)
        self.fail_pages = set(fail_pages)
        self.fail_ranges = set(fail_ranges)
        self.max_range = max_range
        self.page_calls = []
        self.range_calls = []

    async def fetch_transfers_page(self, page, offset, sort="desc"):
        self.page_calls.append((page, offset, sort))
        if page in self.fail_pages:
            raise RetriesExhaustedError(f"page {page} kept failing", label=f"page {page}")
        rows = sorted(self.events, key=lambda e: e.order_key, reverse=(sort == "desc"))
        start = (page - 1) * offset
        return rows[start:start + offset]

    async def fetch_logs(self, from_block, to_block):
        self.range_calls.append((from_block, to_block))
        if (from_block, to_block) in self.fail_ranges:
            raise RetriesExhaustedError("range kept failing", label=f"{from_block}-{to_block}")
        if self.max_range is not None and to_block - from_block + 1 > self.max_range:
            raise RangeTooLargeError("query returned more than 10000 results")
        rows = [e for e in self.events if from_block <= e.block_number <= to_block]
        return sorted(rows, key=lambda e: e.order_key)

    async def latest_block(self):
        return max(e.block_number for e in self.events) if self.events else 0


def topic_for_address(addr):
    return "0x" + "0" * 24 + addr[2:]


def log_entry(event, with_timestamp=True):
    entry = {
        "address": CONTRACT,
        "topics": [
            TRANSFER_TOPIC,
            topic_for_address(event.sender),
            topic_for_address(event.recipient),
            "0x%064x" % event.token_id,
        ],
        "data": "0x",
        "blockNumber": hex(event.block_number),
        "logIndex": hex(event.log_index),
        "transactionHash": event.tx_hash,
    }
    if with_timestamp:
        entry["timeStamp"] = hex(event.timestamp)
    return entry


def transfer_row(event):
    return {
        "blockNumber": str(event.block_number),
        "timeStamp": str(event.timestamp),
        "hash": event.tx_hash,
        "from": event.sender,
        "to": event.recipient,
        "tokenID": str(event.token_id),
        "logIndex": str(event.log_index),
        "contractAddress": CONTRACT,
    }


def make_chain_app(events, rpc_status=None):
    """aiohttp app serving explorer /api and JSON-RPC /rpc views over one history

    rpc_status makes every JSON-RPC call answer with that HTTP status instead.
    """
    app = web.Application()
    app["hits"] = {"api": 0, "rpc": 0, "blocks": 0}
    ordered = sorted(events, key=lambda e: e.order_key)

    async def api(request):
        app["hits"]["api"] += 1
        q = request.query
        if q.get("module") == "account" and q.get("action") == "tokennfttx":
            page, offset = int(q["page"]), int(q["offset"])
            rows = ordered[::-1] if q.get("sort") == "desc" else ordered
            rows = rows[(page - 1) * offset:page * offset]
            if not rows:
                return web.json_response({"status": "0", "message": "No token transfers found", "result": []})
            return web.json_response({"status": "1", "message": "OK", "result": [transfer_row(e) for e in rows]})
        if q.get("module") == "logs" and q.get("action") == "getLogs":
            lo, hi = int(q["fromBlock"]), int(q["toBlock"])
            rows = [log_entry(e) for e in ordered if lo <= e.block_number <= hi]
            if not rows:
                return web.json_response({"status": "0", "message": "No records found", "result": []})
            return web.json_response({"status": "1", "message": "OK", "result": rows})
        return web.json_response({"status": "0", "message": "NOTOK", "result": "Unknown action"})

    async def rpc(request):
        app["hits"]["rpc"] += 1
        if rpc_status is not None:
            return web.Response(status=rpc_status, text="unavailable")
        body = await request.json()
        method, params = body["method"], body["params"]
        if method == "eth_blockNumber":
            result = hex(max(e.block_number for e in ordered))
        elif method == "eth_getLogs":
            lo, hi = int(params[0]["fromBlock"], 16), int(params[0]["toBlock"], 16)
            result = [log_entry(e, with_timestamp=False) for e in ordered if lo <= e.block_number <= hi]
        elif method == "eth_getBlockByNumber":
            app["hits"]["blocks"] += 1
            number = int(params[0], 16)
            result = {"number": params[0], "timestamp": hex(ts_for(number))}
        else:
            return web.json_response({"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}})
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": result})

    app.router.add_get("/api", api)
    app.router.add_post("/rpc", rpc)
    return app
