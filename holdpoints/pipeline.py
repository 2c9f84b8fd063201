"""
One snapshot run: bounds -> discovery -> accrual/ranking -> atomic write
"""

import logging
import time
from dataclasses import dataclass

import aiohttp

from .bounds import BlockSpan, resolve_bounds
from .discovery import (
    ChainedDiscovery,
    DiscoveryReport,
    IndexerAscendingFullScan,
    IndexerDescendingBounded,
    LatestTransferBook,
    RawLogBackfill,
)
from .errors import RetriesExhaustedError, ScanAbortedError
from .leaderboard import build_leaderboard
from .snapshot import build_snapshot, write_snapshot
from .sources import ExplorerClient, RpcClient
from .transport import JsonClient, RetryPolicy

log = logging.getLogger(__name__)


@dataclass
class RunResult:
    snapshot: dict
    report: DiscoveryReport
    output_path: str
    span: BlockSpan = None


async def scan_span(settings, explorer, scanner):
    """Block span for raw log scans: START_BLOCK override, else resolved from the explorer"""
    try:
        if settings.start_block:
            latest = await scanner.latest_block()
            return BlockSpan(latest, latest).clamp(settings.start_block)
        return await resolve_bounds(explorer, settings.start_epoch, settings.page_size)
    except RetriesExhaustedError as e:
        raise ScanAbortedError("bounds", e.label or "latest transfers", e) from e


def build_strategy(settings, explorer, scanner, span):
    supply = settings.total_supply

    def backfill():
        return RawLogBackfill(
            scanner,
            span,
            floor_block=settings.rpc_start_block,
            chunk_size=settings.scan_chunk,
            concurrency=settings.scan_concurrency,
            target_supply=supply,
            strict=settings.strict_backfill,
        )

    if settings.strategy == "indexer-asc":
        return IndexerAscendingFullScan(explorer, settings.page_size, supply)

    fast = IndexerDescendingBounded(explorer, settings.page_size, supply, strict=False)
    if settings.strategy == "indexer-desc":
        return fast
    if span is None:
        return fast if settings.strategy == "indexer-desc+raw-logs" else None
    if settings.strategy == "raw-logs":
        return backfill()
    return ChainedDiscovery(fast, backfill())


async def run(settings, now=None, session=None):
    own_session = session is None
    if own_session:
        connector = aiohttp.TCPConnector(limit=max(4, settings.scan_concurrency * 2))
        session = aiohttp.ClientSession(connector=connector)

    book = LatestTransferBook()
    span = None
    try:
        policy = RetryPolicy(settings.max_retries, settings.backoff_base, settings.backoff_max)
        client = JsonClient(session, policy, settings.request_timeout)
        explorer = ExplorerClient(
            client, settings.explorer_api_base, settings.contract, settings.explorer_api_key
        )
        scanner = explorer
        if settings.log_source == "rpc":
            scanner = RpcClient(client, settings.rpc_url, settings.contract, settings.scan_concurrency * 2)

        if settings.strategy in ("raw-logs", "indexer-desc+raw-logs"):
            span = await scan_span(settings, explorer, scanner)
            if span is not None:
                log.info("Block span: %d -> %d", span.start_block, span.latest_block)

        strategy = build_strategy(settings, explorer, scanner, span)
        if strategy is None:
            report = DiscoveryReport(settings.strategy, target_supply=settings.total_supply)
        else:
            report = await strategy.discover(book)
    finally:
        if own_session:
            await session.close()

    if not report.reconciled:
        log.warning(
            "Supply not reconciled: found %d of %d tokens; leaderboard is partial",
            report.tokens_found, report.target_supply,
        )
    if report.skipped:
        log.warning("Skipped %d slices: %s", len(report.skipped), ", ".join(report.skipped))

    now = int(time.time()) if now is None else now
    rule = settings.rule()
    leaderboard = build_leaderboard(book.records(), now, rule)
    snapshot = build_snapshot(settings.contract, rule, leaderboard, now)
    path = write_snapshot(settings.output_path, snapshot)
    log.info("Wrote %s (%d holders)", path, len(leaderboard))

    return RunResult(snapshot, report, path, span)
