"""
Group current-owner accrual by holder and rank it
"""

from collections import defaultdict

from .accrual import periods_for, points_for, token_accruals
from .models import ZERO_ADDRESS, HolderAccrual


def rank_key(row):
    return (-row.points, -row.tokens, -row.holding_seconds, row.address)


def build_leaderboard(records, now, rule):
    holding_seconds = defaultdict(int)
    token_count = defaultdict(int)

    for owner, seconds in token_accruals(records, now, rule):
        if owner == ZERO_ADDRESS:
            continue
        holding_seconds[owner] += seconds
        token_count[owner] += 1

    # Floor once on the holder's total, not per token: 5h + 5h is one 6h window
    rows = []
    for address, seconds in holding_seconds.items():
        periods = periods_for(seconds, rule.window_seconds)
        rows.append(HolderAccrual(
            address=address,
            tokens=token_count[address],
            holding_seconds=seconds,
            periods=periods,
            points=points_for(periods, rule.points_per_window),
        ))

    rows.sort(key=rank_key)
    return rows
