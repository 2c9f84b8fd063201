"""
Transfer sources: an Etherscan/Blockscout style explorer API and a raw JSON-RPC node

Both hand back TransferEvent lists so discovery never looks at wire formats.
"""

import asyncio
import logging

from .errors import RangeTooLargeError, SourceError, TransientSourceError
from .models import (
    TRANSFER_TOPIC,
    TransferEvent,
    address_from_topic,
    normalize_address,
    to_int,
    token_id_from_topic,
)

log = logging.getLogger(__name__)

EMPTY_MESSAGES = ("no records", "no transactions", "no logs", "no token transfers")
RANGE_TOO_LARGE = (
    "query returned more than",
    "limit exceeded",
    "block range",
    "range is too large",
    "too many results",
)


def _is_empty_message(message):
    message = (message or "").lower()
    return any(s in message for s in EMPTY_MESSAGES)


def _explorer_result(data):
    """Unwrap {status, message, result}; status 0 is only fine when it means "nothing found" """
    if not isinstance(data, dict):
        raise TransientSourceError(f"unexpected explorer body: {str(data)[:120]}")

    result = data.get("result")
    if str(data.get("status", "1")) == "0":
        if _is_empty_message(data.get("message")) or _is_empty_message(str(result)):
            return []
        raise TransientSourceError(f"explorer error: {data.get('message')} {str(result)[:120]}")

    if result is None:
        return []
    if not isinstance(result, list):
        raise TransientSourceError(f"explorer result is not a list: {str(result)[:120]}")
    return result


def event_from_transfer_row(row):
    """Normalize an account/tokennfttx row"""
    return TransferEvent(
        block_number=to_int(row.get("blockNumber")),
        log_index=to_int(row.get("logIndex")),
        timestamp=to_int(row.get("timeStamp")),
        sender=normalize_address(row.get("from")),
        recipient=normalize_address(row.get("to")),
        token_id=to_int(row.get("tokenID", row.get("tokenId"))),
        tx_hash=row.get("hash") or "",
    )


def event_from_log(entry, timestamp=None):
    """Decode a Transfer log; returns None for entries that are not ERC-721 shaped"""
    topics = entry.get("topics") or []
    if len(topics) < 4:
        return None
    if timestamp is None:
        timestamp = to_int(entry.get("timeStamp", entry.get("blockTimestamp")))
    return TransferEvent(
        block_number=to_int(entry.get("blockNumber")),
        log_index=to_int(entry.get("logIndex")),
        timestamp=timestamp,
        sender=address_from_topic(topics[1]),
        recipient=address_from_topic(topics[2]),
        token_id=token_id_from_topic(topics[3]),
        tx_hash=entry.get("transactionHash") or "",
    )


class ExplorerClient:
    """account/tokennfttx pagination plus logs/getLogs range queries"""

    def __init__(self, client, api_base, contract, api_key=""):
        self.client = client
        self.api_base = api_base
        self.contract = contract
        self.api_key = api_key

    def _params(self, **params):
        params = {k: str(v) for k, v in params.items()}
        if self.api_key:
            params["apikey"] = self.api_key
        return params

    async def fetch_transfers_page(self, page, offset, sort="desc"):
        params = self._params(
            module="account",
            action="tokennfttx",
            contractaddress=self.contract,
            page=page,
            offset=offset,
            sort=sort,
        )
        label = f"tokennfttx page {page} ({sort}, offset {offset})"

        def check(data):
            # A bad row is retried with the page; dropping it could hide a token's latest owner
            try:
                return [event_from_transfer_row(row) for row in _explorer_result(data)]
            except (AttributeError, TypeError, ValueError) as e:
                raise TransientSourceError(f"malformed transfer row: {e}", label=label) from e

        return await self.client.get_json(self.api_base, params, label=label, check=check)

    async def fetch_logs(self, from_block, to_block):
        params = self._params(
            module="logs",
            action="getLogs",
            fromBlock=from_block,
            toBlock=to_block,
            address=self.contract,
            topic0=TRANSFER_TOPIC,
        )
        label = f"getLogs blocks {from_block}-{to_block}"

        def check(data):
            if isinstance(data, dict) and str(data.get("status")) == "0":
                text = f"{data.get('message')} {data.get('result')}".lower()
                if any(s in text for s in RANGE_TOO_LARGE):
                    raise RangeTooLargeError(f"{label}: {data.get('message')}", label=label)
            return _explorer_result(data)

        entries = await self.client.get_json(self.api_base, params, label=label, check=check)
        return _decode_logs(entries)

    async def latest_block(self):
        newest = await self.fetch_transfers_page(1, 1, "desc")
        return newest[0].block_number if newest else 0


def _decode_logs(entries, timestamps=None):
    events = []
    for entry in entries:
        ts = None
        if timestamps is not None:
            ts = timestamps.get(to_int(entry.get("blockNumber")))
        event = event_from_log(entry, ts)
        if event is None:
            log.debug("Skipping non ERC-721 transfer log %s", entry.get("transactionHash"))
            continue
        events.append(event)
    return events


class RpcClient:
    """eth_getLogs / eth_getBlockByNumber against a JSON-RPC endpoint"""

    def __init__(self, client, rpc_url, contract, max_pending=8):
        self.client = client
        self.rpc_url = rpc_url
        self.contract = contract
        self._request_id = 0
        self._block_cache = {}
        self._semaphore = asyncio.Semaphore(max_pending)

    async def call(self, method, params, label=None):
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        label = label or method

        def check(data):
            if not isinstance(data, dict):
                raise TransientSourceError(f"unexpected RPC body: {str(data)[:120]}")
            error = data.get("error")
            if error:
                message = str(error.get("message", error) if isinstance(error, dict) else error)
                if any(s in message.lower() for s in RANGE_TOO_LARGE):
                    raise RangeTooLargeError(f"{label}: {message}", label=label)
                raise TransientSourceError(f"RPC error {message}")
            if "result" not in data:
                raise TransientSourceError("RPC response without result")
            return data["result"]

        return await self.client.post_json(self.rpc_url, payload, label=label, check=check)

    async def block_number(self):
        return to_int(await self.call("eth_blockNumber", []))

    async def latest_block(self):
        return await self.block_number()

    async def block_timestamp(self, block_number):
        if block_number in self._block_cache:
            return self._block_cache[block_number]
        async with self._semaphore:
            block = await self.call(
                "eth_getBlockByNumber", [hex(block_number), False], label=f"block {block_number}"
            )
        if not block:
            raise SourceError(f"block {block_number} not found", label=f"block {block_number}")
        timestamp = to_int(block.get("timestamp"))
        self._block_cache[block_number] = timestamp
        return timestamp

    async def fetch_logs(self, from_block, to_block):
        params = {
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "address": self.contract,
            "topics": [TRANSFER_TOPIC],
        }
        entries = await self.call("eth_getLogs", [params], label=f"eth_getLogs blocks {from_block}-{to_block}")
        entries = entries or []

        # Newer nodes include blockTimestamp on each log; otherwise look blocks up once each
        missing = sorted({
            to_int(e.get("blockNumber")) for e in entries if not e.get("blockTimestamp")
        })
        timestamps = {}
        if missing:
            found = await asyncio.gather(*(self.block_timestamp(n) for n in missing))
            timestamps = dict(zip(missing, found))
        for entry in entries:
            if entry.get("blockTimestamp"):
                timestamps[to_int(entry["blockNumber"])] = to_int(entry["blockTimestamp"])
        return _decode_logs(entries, timestamps)
