"""
Error types raised while building a holder points snapshot
"""


class HoldPointsError(Exception):
    """Base class for every failure the snapshot job reports"""


class ConfigError(HoldPointsError):
    pass


class SourceError(HoldPointsError):
    """A request to the explorer or RPC endpoint failed"""

    def __init__(self, message, *, label=None):
        super().__init__(message)
        self.label = label


class TransientSourceError(SourceError):
    """Network failure, rate limit or malformed body; worth retrying"""

    def __init__(self, message, *, label=None, retry_after=None):
        super().__init__(message, label=label)
        self.retry_after = retry_after


class RetriesExhaustedError(SourceError):
    pass


class RangeTooLargeError(SourceError):
    """The endpoint refused a log query because the block range holds too many results"""


class ScanAbortedError(HoldPointsError):
    def __init__(self, stage, label, cause=None):
        message = f"{stage} failed for {label}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.stage = stage
        self.label = label


class SnapshotWriteError(HoldPointsError):
    pass
