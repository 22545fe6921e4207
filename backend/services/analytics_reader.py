"""
Analytics Reader Service - Read-only access to the published dashboard snapshot.

Refreshes build a complete DashboardSnapshot off to the side and publish it
with a single reference swap; readers always see either the previous
snapshot or the new one, never a partially built aggregator.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from models.rental import RentalAggregate
from services.aggregation_service import BucketAggregator
from services.yield_service import YieldState


@dataclass(frozen=True)
class DashboardSnapshot:
    """Everything one refresh produced, published as a unit."""
    report: Dict[str, Any]
    aggregator: BucketAggregator
    rental: Optional[RentalAggregate] = None
    yield_state: YieldState = field(default_factory=YieldState)
    built_at: datetime = field(default_factory=datetime.now)


class AnalyticsReader:
    """Holds the live snapshot; publish() swaps it atomically."""

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: Optional[DashboardSnapshot] = None

    def publish(self, snapshot: DashboardSnapshot) -> Optional[DashboardSnapshot]:
        """Make snapshot live; returns the snapshot it replaced."""
        with self._lock:
            previous, self._snapshot = self._snapshot, snapshot
        return previous

    def get_snapshot(self) -> Optional[DashboardSnapshot]:
        with self._lock:
            return self._snapshot

    def get_dashboard(self) -> Optional[Dict[str, Any]]:
        snapshot = self.get_snapshot()
        return snapshot.report if snapshot is not None else None

    def get_yield_state(self) -> YieldState:
        """Yield state of the live snapshot (empty before the first publish)."""
        snapshot = self.get_snapshot()
        return snapshot.yield_state if snapshot is not None else YieldState()

    def get_metadata(self) -> Dict[str, Any]:
        """Get metadata about the live snapshot"""
        snapshot = self.get_snapshot()
        if snapshot is None:
            return {"last_updated": None, "row_count": 0}
        return {
            "last_updated": snapshot.built_at.isoformat(),
            "row_count": snapshot.aggregator.total,
            "rental_count": len(snapshot.rental.records) if snapshot.rental is not None else 0,
            "has_real_rental": snapshot.report.get('hasRealRental', False),
        }


# Singleton instance
_reader = None

def get_reader() -> AnalyticsReader:
    """Get singleton AnalyticsReader instance"""
    global _reader
    if _reader is None:
        _reader = AnalyticsReader()
    return _reader
