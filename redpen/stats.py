from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import copy
import logging
import threading

from redpen.errors import StatisticsUpdateFailure
from redpen.suggestions import SuggestionStatus, SuggestionType

logger = logging.getLogger(__name__)

# status -> top-level counter name
STATUS_COUNTERS: Dict[SuggestionStatus, str] = {
    SuggestionStatus.ACCEPTED: "acceptedSuggestions",
    SuggestionStatus.REJECTED: "rejectedSuggestions",
    SuggestionStatus.SKIPPED: "skippedSuggestions",
    SuggestionStatus.DELETED: "deletedSuggestions",
}
# only these are tracked per type
TYPED_STATUSES = (SuggestionStatus.ACCEPTED, SuggestionStatus.REJECTED)


@dataclass
class StatusChange:
    suggestion_type: SuggestionType
    new_status: SuggestionStatus
    old_status: Optional[SuggestionStatus] = SuggestionStatus.PENDING


@dataclass
class StatisticsDelta:
    totals: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not any(self.totals.values()) and not any(
            v for counters in self.by_type.values() for v in counters.values())


def aggregate(changes: List[StatusChange]) -> StatisticsDelta:
    """Fold status changes into counter deltas: +1 for the new status, -1 for the old."""
    delta = StatisticsDelta()

    def bump(status: SuggestionStatus, stype: SuggestionType, n: int) -> None:
        name = STATUS_COUNTERS.get(status)
        if name is None:
            return
        delta.totals[name] = delta.totals.get(name, 0) + n
        if status in TYPED_STATUSES:
            per_type = delta.by_type.setdefault(stype.value, {})
            per_type[status.value] = per_type.get(status.value, 0) + n

    for c in changes:
        bump(c.new_status, c.suggestion_type, 1)
        if c.old_status is not None and c.old_status != c.new_status:
            bump(c.old_status, c.suggestion_type, -1)
    return delta


class StatisticsSink:
    """Usage statistics collaborator. Implementations may raise; callers go through push_changes."""

    def record_created(self, tenant_id: str, suggestion_type: SuggestionType, count: int = 1) -> None:
        raise NotImplementedError

    def apply(self, tenant_id: str, delta: StatisticsDelta) -> None:
        raise NotImplementedError


class NullStatisticsSink(StatisticsSink):
    def record_created(self, tenant_id, suggestion_type, count=1):
        pass

    def apply(self, tenant_id, delta):
        pass


def _empty_tenant() -> Dict:
    return {
        "totalSuggestions": 0,
        "acceptedSuggestions": 0,
        "rejectedSuggestions": 0,
        "skippedSuggestions": 0,
        "deletedSuggestions": 0,
        "suggestionsByType": {
            t.value: {"total": 0, "accepted": 0, "rejected": 0} for t in SuggestionType
        },
    }


class InMemoryStatisticsSink(StatisticsSink):

    def __init__(self):
        self._lock = threading.Lock()
        self._tenants: Dict[str, Dict] = {}

    def _tenant(self, tenant_id: str) -> Dict:
        return self._tenants.setdefault(tenant_id, _empty_tenant())

    def record_created(self, tenant_id: str, suggestion_type: SuggestionType, count: int = 1) -> None:
        with self._lock:
            t = self._tenant(tenant_id)
            t["totalSuggestions"] += count
            t["suggestionsByType"][suggestion_type.value]["total"] += count

    def apply(self, tenant_id: str, delta: StatisticsDelta) -> None:
        with self._lock:
            t = self._tenant(tenant_id)
            unknown = [name for name in delta.totals if name not in t]
            if unknown:
                raise StatisticsUpdateFailure(f"unknown counters: {', '.join(unknown)}")
            for name, n in delta.totals.items():
                t[name] += n
            for stype, counters in delta.by_type.items():
                slot = t["suggestionsByType"].setdefault(stype, {"total": 0, "accepted": 0, "rejected": 0})
                for status, n in counters.items():
                    slot[status] = slot.get(status, 0) + n

    def snapshot(self, tenant_id: str) -> Dict:
        with self._lock:
            return copy.deepcopy(self._tenants.get(tenant_id) or _empty_tenant())


def push_changes(sink: StatisticsSink, tenant_id: str, changes: List[StatusChange]) -> bool:
    """Best-effort: failures are logged and reported as False, never raised."""
    if not changes:
        return True
    delta = aggregate(changes)
    if delta.is_empty():
        return True
    try:
        sink.apply(tenant_id, delta)
        return True
    except Exception as e:
        logger.error(f"Error updating statistics for tenant {tenant_id}: {type(e).__name__}: {e}")
        return False


def push_created(sink: StatisticsSink, tenant_id: str, suggestion_type: SuggestionType) -> bool:
    try:
        sink.record_created(tenant_id, suggestion_type)
        return True
    except Exception as e:
        logger.error(f"Error recording created suggestion for tenant {tenant_id}: {type(e).__name__}: {e}")
        return False
