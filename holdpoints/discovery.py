"""
Latest-transfer discovery: reduce a transfer history to one current-owner record per token

Every strategy fills the same LatestTransferBook, so accrual and ranking do not
care whether the history came from ascending explorer pages, descending pages
with an early stop, or a raw log backfill.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import RangeTooLargeError, RetriesExhaustedError, ScanAbortedError
from .models import LatestTransfer

log = logging.getLogger(__name__)


class LatestTransferBook:
    """tokenId -> LatestTransfer"""

    def __init__(self):
        self._records = {}

    def __len__(self):
        return len(self._records)

    def __contains__(self, token_id):
        return token_id in self._records

    def get(self, token_id):
        return self._records.get(token_id)

    def claim(self, event):
        """Insert only if the token is unresolved; used when scanning newest first"""
        if event.token_id in self._records:
            return False
        self._records[event.token_id] = LatestTransfer.from_event(event)
        return True

    def advance(self, item):
        """Keep whichever transfer is later on chain, whatever order they arrive in

        Accepts a TransferEvent or an already reduced LatestTransfer.
        """
        current = self._records.get(item.token_id)
        if current is not None and current.order_key >= item.order_key:
            return False
        if not isinstance(item, LatestTransfer):
            item = LatestTransfer.from_event(item)
        self._records[item.token_id] = item
        return True

    def merge_descending(self, chunks):
        """Merge per-range results that are already ordered newest range first"""
        added = 0
        for events in chunks:
            for event in sorted(events, key=lambda e: e.order_key, reverse=True):
                added += self.claim(event)
        return added

    def is_complete(self, target):
        return target is not None and len(self._records) >= target

    def records(self):
        return [self._records[k] for k in sorted(self._records)]


def latest_by_token(events):
    """Group ascending by (block, logIndex) and keep the last transfer of each token"""
    by_token = defaultdict(list)
    for event in events:
        by_token[event.token_id].append(event)

    latest = {}
    for token_id, history in by_token.items():
        history.sort(key=lambda e: e.order_key)
        latest[token_id] = LatestTransfer.from_event(history[-1])
    return latest


def latest_first_seen(events_descending):
    """The first time a token shows up in a newest-first stream is its latest transfer"""
    latest = {}
    for event in events_descending:
        if event.token_id not in latest:
            latest[event.token_id] = LatestTransfer.from_event(event)
    return latest


@dataclass
class DiscoveryReport:
    strategy: str
    tokens_found: int = 0
    target_supply: Optional[int] = None
    requests: int = 0
    skipped: List[str] = field(default_factory=list)

    @property
    def reconciled(self):
        return self.target_supply is None or self.tokens_found >= self.target_supply


class IndexerAscendingFullScan:
    """Read every tokennfttx page oldest first; authoritative but reads full history"""

    name = "indexer-asc"

    def __init__(self, pager, page_size=1000, target_supply=None):
        self.pager = pager
        self.page_size = page_size
        self.target_supply = target_supply

    async def discover(self, book):
        report = DiscoveryReport(self.name, target_supply=self.target_supply)
        events = []
        page = 1
        while True:
            try:
                rows = await self.pager.fetch_transfers_page(page, self.page_size, "asc")
            except RetriesExhaustedError as e:
                raise ScanAbortedError(self.name, f"page {page}", e) from e
            report.requests += 1
            if not rows:
                break
            events.extend(rows)
            log.info("Ascending scan: page %d, %d transfers so far", page, len(events))
            if len(rows) < self.page_size:
                break
            page += 1

        for record in latest_by_token(events).values():
            book.advance(record)
        report.tokens_found = len(book)
        return report


class IndexerDescendingBounded:
    """Read tokennfttx pages newest first and stop once every token has been seen

    Explorers sort `desc` by block only, so rows of one block can come in
    ascending log order and spill onto the next page. Rows of the oldest block
    on a page are held back until an older block (or the end of history) shows
    that block is complete.
    """

    name = "indexer-desc"

    def __init__(self, pager, page_size=1000, target_supply=None, strict=False):
        self.pager = pager
        self.page_size = page_size
        self.target_supply = target_supply
        self.strict = strict

    async def discover(self, book):
        report = DiscoveryReport(self.name, target_supply=self.target_supply)
        page = 1
        pending = []
        while not book.is_complete(self.target_supply):
            try:
                rows = await self.pager.fetch_transfers_page(page, self.page_size, "desc")
            except RetriesExhaustedError as e:
                if self.strict:
                    raise ScanAbortedError(self.name, f"page {page}", e) from e
                # Older rows may have been superseded by the lost page
                log.warning("Stopping at page %d after retries: %s", page, e)
                report.skipped.append(f"page {page}")
                pending = []
                break
            report.requests += 1
            if not rows:
                break

            batch = pending + rows
            if len(rows) < self.page_size:
                ready, pending = batch, []
            else:
                boundary = min(e.block_number for e in batch)
                ready = [e for e in batch if e.block_number > boundary]
                pending = [e for e in batch if e.block_number == boundary]

            added = book.merge_descending([ready])
            log.info("Descending scan: page %d, +%d tokens (%d found)", page, added, len(book))
            if len(rows) < self.page_size:
                break
            page += 1

        if pending and not book.is_complete(self.target_supply):
            book.merge_descending([pending])

        report.tokens_found = len(book)
        return report


class RawLogBackfill:
    """Scan Transfer logs over block ranges, newest range first, with a small worker pool

    The hot span [span.start_block, latest] is always read in full. Below it the
    scan continues down to floor_block until the target supply is found.
    """

    name = "raw-logs"

    def __init__(
        self,
        scanner,
        span,
        floor_block=0,
        chunk_size=3000,
        concurrency=4,
        target_supply=None,
        strict=True,
    ):
        self.scanner = scanner
        self.span = span
        self.floor_block = min(floor_block, span.start_block)
        self.chunk_size = max(1, chunk_size)
        self.concurrency = max(1, concurrency)
        self.target_supply = target_supply
        self.strict = strict

    def ranges(self):
        """Descending [from, to] chunks covering floor_block..latest_block"""
        to_block = self.span.latest_block
        while to_block >= self.floor_block:
            from_block = max(self.floor_block, to_block - self.chunk_size + 1)
            yield from_block, to_block
            to_block = from_block - 1

    async def _scan_range(self, from_block, to_block, report):
        try:
            report.requests += 1
            return await self.scanner.fetch_logs(from_block, to_block)
        except RangeTooLargeError:
            if from_block >= to_block:
                raise
            mid = (from_block + to_block) // 2
            log.info("Splitting blocks %d-%d", from_block, to_block)
            upper = await self._scan_range(mid + 1, to_block, report)
            lower = await self._scan_range(from_block, mid, report)
            return upper + lower
        except RetriesExhaustedError as e:
            raise ScanAbortedError(self.name, f"blocks {from_block}-{to_block}", e) from e

    async def discover(self, book):
        report = DiscoveryReport(self.name, target_supply=self.target_supply)
        pending = list(self.ranges())

        while pending:
            wave, pending = pending[:self.concurrency], pending[self.concurrency:]
            results = await asyncio.gather(
                *(self._scan_range(a, b, report) for a, b in wave), return_exceptions=True
            )
            chunks = []
            lost = None
            for result in results:
                if isinstance(result, ScanAbortedError) and not self.strict:
                    lost = result
                    break
                if isinstance(result, BaseException):
                    raise result
                chunks.append(result)

            # Single reducer: ranges merged newest first so first-seen still means latest
            added = book.merge_descending(chunks)
            low, high = wave[-1][0], wave[0][1]
            log.info(
                "  blocks %d-%d: %d logs, +%d tokens (%d found)",
                low, high, sum(len(r) for r in chunks), added, len(book),
            )

            if lost is not None:
                # Claims below a lost range could be stale owners
                log.warning("Stopping at %s after retries: %s", lost.label, lost)
                report.skipped.append(lost.label)
                break

            if low <= self.span.start_block and book.is_complete(self.target_supply):
                break

        report.tokens_found = len(book)
        return report


class ChainedDiscovery:
    """Fast explorer pass, then a raw log backfill that only fills tokens still missing"""

    def __init__(self, first, then):
        self.first = first
        self.then = then
        self.name = f"{first.name}+{then.name}"

    async def discover(self, book):
        first = await self.first.discover(book)
        report = DiscoveryReport(self.name, target_supply=first.target_supply)
        report.requests = first.requests
        report.skipped.extend(first.skipped)

        if first.skipped or not first.reconciled:
            log.info("Backfilling from raw logs (%d tokens found so far)", len(book))
            second = await self.then.discover(book)
            report.requests += second.requests
            report.skipped.extend(second.skipped)

        report.tokens_found = len(book)
        return report
