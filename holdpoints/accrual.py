"""
Holding time and whole-window points for current owners
"""


def held_seconds(received_at, now, start_epoch):
    # Time before the accrual start never counts, and clocks never run backwards
    return max(0, now - max(received_at, start_epoch))


def periods_for(seconds, window_seconds):
    return seconds // window_seconds


def points_for(periods, points_per_window):
    return periods * points_per_window


def token_accruals(records, now, rule):
    """(owner, seconds) for every token that is not burned"""
    for record in records:
        if record.is_burned:
            continue
        yield record.owner.lower(), held_seconds(record.received_at, now, rule.start_epoch)
