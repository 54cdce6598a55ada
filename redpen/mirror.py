"""
Client-side suggestion state mirror.

Local cache of suggestion status changes made in the editor. Each id carries
exactly one status; per-status index sets are kept in step with it so
membership is exclusive by construction. Mutations can be coalesced into one
state update and one notification, and derived statistics are memoized for a
short time-to-live.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
import logging
import threading
import time

from redpen.rules.load_rules import MirrorConfig
from redpen.suggestions import SuggestionStatus

logger = logging.getLogger(__name__)

ACTIVE = SuggestionStatus.PENDING
MARKS = (SuggestionStatus.ACCEPTED, SuggestionStatus.REJECTED, SuggestionStatus.DELETED)


@dataclass
class StateChangeEvent:
    type: str                    # suggestions | accepted | rejected | deleted | batch
    suggestion_ids: List[str]
    timestamp: float


@dataclass
class MirrorStats:
    total: int
    active: int
    accepted: int
    rejected: int
    deleted: int
    by_type: Dict[str, int] = field(default_factory=dict)


@dataclass
class _Computed:
    active: List[Any]
    by_type: Dict[str, List[Any]]
    stats: MirrorStats
    computed_at: float


def _sid(item: Any) -> str:
    return item.id


def _stype(item: Any) -> str:
    # DisplaySuggestion wraps a Suggestion
    s = getattr(item, "suggestion", item)
    return s.type.value if hasattr(s.type, "value") else str(s.type)


class SuggestionStateMirror:

    def __init__(self, suggestions: Optional[Iterable[Any]] = None,
                 config: Optional[MirrorConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or MirrorConfig()
        self.clock = clock
        self._lock = threading.RLock()
        self._suggestions: List[Any] = list(suggestions or [])
        self._status: Dict[str, SuggestionStatus] = {}
        self._index: Dict[SuggestionStatus, Set[str]] = {m: set() for m in MARKS}
        self._subscribers: Dict[str, Callable[[StateChangeEvent], None]] = {}
        self._queue: List[Tuple[str, List[str], Callable[[], None]]] = []
        self._timer: Optional[threading.Timer] = None
        self._computed: Optional[_Computed] = None
        self.last_updated = self.clock()

    # -- subscriptions ------------------------------------------------------

    def subscribe(self, key: str, callback: Callable[[StateChangeEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers[key] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(key, None)
        return unsubscribe

    def _notify(self, event: StateChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._subscribers.values())
        for cb in callbacks:
            try:
                cb(event)
            except Exception as e:
                logger.error(f"Error in state change subscriber: {type(e).__name__}: {e}")

    # -- status index -------------------------------------------------------

    def _set_status(self, suggestion_id: str, status: SuggestionStatus) -> None:
        old = self._status.get(suggestion_id, ACTIVE)
        if old in self._index:
            self._index[old].discard(suggestion_id)
        if status == ACTIVE:
            self._status.pop(suggestion_id, None)
        else:
            self._status[suggestion_id] = status
            self._index[status].add(suggestion_id)

    def status_of(self, suggestion_id: str) -> SuggestionStatus:
        with self._lock:
            return self._status.get(suggestion_id, ACTIVE)

    def is_in_state(self, suggestion_id: str, status: SuggestionStatus) -> bool:
        return self.status_of(suggestion_id) == status

    @property
    def accepted_ids(self) -> Set[str]:
        with self._lock:
            return set(self._index[SuggestionStatus.ACCEPTED])

    @property
    def rejected_ids(self) -> Set[str]:
        with self._lock:
            return set(self._index[SuggestionStatus.REJECTED])

    @property
    def deleted_ids(self) -> Set[str]:
        with self._lock:
            return set(self._index[SuggestionStatus.DELETED])

    # -- scheduling ---------------------------------------------------------

    def _schedule(self, kind: str, ids: List[str], apply: Callable[[], None]) -> None:
        if not self.config.batch_state_updates:
            with self._lock:
                apply()
                self._touch()
            self._notify(StateChangeEvent(kind, ids, self.clock()))
            return
        with self._lock:
            self._queue.append((kind, ids, apply))
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.config.batch_delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> int:
        """Apply queued mutations as one update; returns how many were applied."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            queued, self._queue = self._queue, []
            if not queued:
                return 0
            affected: List[str] = []
            for _, ids, apply in queued:
                apply()
                affected.extend(i for i in ids if i not in affected)
            self._touch()
        self._notify(StateChangeEvent("batch", affected, self.clock()))
        return len(queued)

    @property
    def pending_updates(self) -> int:
        with self._lock:
            return len(self._queue)

    def _touch(self) -> None:
        self.last_updated = self.clock()
        self._computed = None

    # -- mutations ----------------------------------------------------------

    def update_suggestions(self, suggestions: Iterable[Any]) -> None:
        items = list(suggestions)

        def apply() -> None:
            self._suggestions = items
        self._schedule("suggestions", [_sid(s) for s in items], apply)

    def _mark(self, suggestion_id: str, status: SuggestionStatus) -> None:
        self._schedule(status.value, [suggestion_id], lambda: self._set_status(suggestion_id, status))

    def mark_accepted(self, suggestion_id: str) -> None:
        self._mark(suggestion_id, SuggestionStatus.ACCEPTED)

    def mark_rejected(self, suggestion_id: str) -> None:
        self._mark(suggestion_id, SuggestionStatus.REJECTED)

    def mark_deleted(self, suggestion_id: str) -> None:
        self._mark(suggestion_id, SuggestionStatus.DELETED)

    def batch_mark(self, operations: Iterable[Tuple[str, str]]) -> None:
        ops = [(sid, SuggestionStatus(action)) for sid, action in operations]
        for _, status in ops:
            if status not in MARKS:
                raise ValueError(f"cannot mark a suggestion as {status.value}")

        def apply() -> None:
            for sid, status in ops:
                self._set_status(sid, status)
        self._schedule("batch", [sid for sid, _ in ops], apply)

    def undo_marking(self, suggestion_id: str) -> None:
        self._schedule("batch", [suggestion_id], lambda: self._set_status(suggestion_id, ACTIVE))

    def clear(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._queue = []
            self._suggestions = []
            self._status = {}
            self._index = {m: set() for m in MARKS}
            self._touch()

    # -- derived values -----------------------------------------------------

    def _compute(self) -> _Computed:
        with self._lock:
            now = self.clock()
            c = self._computed
            if (self.config.enable_memoization and c is not None
                    and now - c.computed_at < self.config.memoization_ttl):
                return c

            active = [s for s in self._suggestions if _sid(s) not in self._status]
            grouped: Dict[str, List[Any]] = {}
            for s in active:
                grouped.setdefault(_stype(s), []).append(s)
            c = _Computed(
                active=active,
                by_type=grouped,
                stats=MirrorStats(
                    total=len(self._suggestions),
                    active=len(active),
                    accepted=len(self._index[SuggestionStatus.ACCEPTED]),
                    rejected=len(self._index[SuggestionStatus.REJECTED]),
                    deleted=len(self._index[SuggestionStatus.DELETED]),
                    by_type={t: len(v) for t, v in grouped.items()},
                ),
                computed_at=now,
            )
            if self.config.enable_memoization:
                self._computed = c
            return c

    def stats(self) -> MirrorStats:
        return self._compute().stats

    def active_suggestions(self) -> List[Any]:
        return list(self._compute().active)

    def suggestions_by_type(self) -> Dict[str, List[Any]]:
        return {t: list(v) for t, v in self._compute().by_type.items()}

    def suggestions_in_state(self, status: SuggestionStatus) -> List[Any]:
        if status == ACTIVE:
            return self.active_suggestions()
        with self._lock:
            ids = self._index[status]
            return [s for s in self._suggestions if _sid(s) in ids]
