"""
Copy Trading Engine Module
==========================
"""

from .copy_engine import CopyTradingEngine, CopyEvent, CopyTradeResult, CopyStats
from .sizing import compute_mirror_size
from .sync_state import SyncState, SyncStateStore

__all__ = [
    "CopyTradingEngine", "CopyEvent", "CopyTradeResult", "CopyStats",
    "compute_mirror_size", "SyncState", "SyncStateStore",
]
