"""
Per-Address Sync State
======================
Tracks, per watched wallet, the high-water mark used as the next fetch
cursor and the fill ids already processed.

The id set is the source of truth for duplicates: a fetch with
since=high_water_mark can return fills sitting exactly on the boundary
again. Ids are kept for a sliding window behind the high-water mark;
anything older than that window is unreachable through the cursor and is
treated as seen.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from copymirror.api.fill_source import Fill

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Cursor and dedup set of one watched wallet."""
    retention_ms: Optional[int] = None
    high_water_mark_ms: int = 0
    seen_fill_ids: Dict[str, int] = field(default_factory=dict)  # id -> fill timestamp
    primed: bool = False

    @property
    def horizon_ms(self) -> Optional[int]:
        """Fills older than this are no longer tracked individually."""
        if self.retention_ms is None or self.high_water_mark_ms == 0:
            return None
        return self.high_water_mark_ms - self.retention_ms

    def observe(self, fills: Iterable[Fill]) -> List[Fill]:
        """
        Record a fetched batch and return the fills not seen before.

        Order of the batch is preserved. The high-water mark only moves
        forward, whatever order the fills arrive in.
        """
        horizon = self.horizon_ms
        new_fills = []
        for fill in fills:
            behind = horizon is not None and fill.timestamp_ms < horizon
            if fill.id not in self.seen_fill_ids and not behind:
                self.seen_fill_ids[fill.id] = fill.timestamp_ms
                new_fills.append(fill)
            self.high_water_mark_ms = max(self.high_water_mark_ms, fill.timestamp_ms)
        self.prune()
        return new_fills

    def prune(self) -> int:
        """Forget ids that fell behind the retention window."""
        horizon = self.horizon_ms
        if horizon is None:
            return 0
        stale = [fid for fid, ts in self.seen_fill_ids.items() if ts < horizon]
        for fid in stale:
            del self.seen_fill_ids[fid]
        if stale:
            logger.debug(f"Pruned {len(stale)} fill id(s) older than {horizon}")
        return len(stale)


class SyncStateStore:
    """Sync states keyed by wallet address, owned by one engine."""

    def __init__(self, retention_ms: Optional[int] = None):
        self.retention_ms = retention_ms
        self._states: Dict[str, SyncState] = {}

    def get(self, address: str) -> SyncState:
        key = address.lower()
        state = self._states.get(key)
        if state is None:
            state = SyncState(retention_ms=self.retention_ms)
            self._states[key] = state
        return state

    def __contains__(self, address: str) -> bool:
        return address.lower() in self._states

    def __len__(self) -> int:
        return len(self._states)
