"""
Find the block span that holds every transfer since the accrual start

Uses only the explorer's tokennfttx listing (newest first), so no archive
node or block-by-timestamp lookups are needed.
"""

import logging
from bisect import bisect_right
from dataclasses import dataclass

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockSpan:
    start_block: int
    latest_block: int

    def clamp(self, start_block):
        """Apply a manual start block override, never past the latest block"""
        return BlockSpan(min(start_block, self.latest_block), self.latest_block)


def last_index_at_or_after(rows, start_epoch):
    """Index of the last row with timestamp >= start_epoch in a newest-first page, or -1"""
    # Timestamps descend, so their negations ascend and bisect applies
    negated = [-row.timestamp for row in rows]
    return bisect_right(negated, -start_epoch) - 1


async def resolve_bounds(pager, start_epoch, page_size=1000):
    newest = await pager.fetch_transfers_page(1, 1, "desc")
    if not newest:
        log.warning("No transfers found for this contract")
        return None

    latest_block = newest[0].block_number

    # Even the newest transfer predates the start: nothing moved since then
    if newest[0].timestamp < start_epoch:
        return BlockSpan(latest_block, latest_block)

    candidate = latest_block
    page = 1
    while True:
        rows = await pager.fetch_transfers_page(page, page_size, "desc")
        if not rows:
            break

        if rows[-1].timestamp >= start_epoch:
            candidate = rows[-1].block_number
            log.info("Bounds: page %d still after start (oldest block %d)", page, candidate)
            if len(rows) < page_size:
                break
            page += 1
            continue

        idx = last_index_at_or_after(rows, start_epoch)
        if idx >= 0:
            candidate = rows[idx].block_number
        break

    return BlockSpan(candidate, latest_block)
