"""
Holder points leaderboard: current owners only, selling resets, points per held window
"""

from .models import HolderAccrual, LatestTransfer, RuleConfig, TransferEvent

__version__ = "0.1.0"

__all__ = ["HolderAccrual", "LatestTransfer", "RuleConfig", "TransferEvent", "__version__"]
