from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import logging
import time

from redpen.conflicts import ConflictResolver, DisplaySuggestion
from redpen.errors import EngineError, IllegalTransition, SuggestionNotFound
from redpen.ir import Version
from redpen.propose import count_created, create_suggestions
from redpen.revalidate import RevalidationReport, Revalidator
from redpen.rules.load_rules import EngineConfig
from redpen.stats import NullStatisticsSink, StatisticsSink, StatusChange, push_changes
from redpen.store import ConditionalCheckFailed, DocumentStore, SuggestionStore, load_document
from redpen.suggestions import (
    SUGGESTION_PREFIX,
    Candidate,
    Suggestion,
    SuggestionStatus,
    can_transition,
    partition_key,
    sort_key,
)

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


DedupKey = Tuple[str, str, str, str, str]


def dedup_key(s: Suggestion) -> DedupKey:
    # the same edit re-created at the same place
    return (s.context_before, s.anchor_text, s.context_after, s.text_to_replace, s.replace_with)


def split_duplicates(suggestions: List[Suggestion]) -> Tuple[List[Suggestion], List[Suggestion]]:
    """Keep the earliest copy of each repeated edit; return (kept, duplicates)."""
    groups: Dict[DedupKey, List[Suggestion]] = {}
    for s in suggestions:
        groups.setdefault(dedup_key(s), []).append(s)
    kept: List[Suggestion] = []
    dupes: List[Suggestion] = []
    for group in groups.values():
        group.sort(key=lambda s: (s.created_at, s.id))
        kept.append(group[0])
        dupes.extend(group[1:])
    order = {s.id: i for i, s in enumerate(suggestions)}
    kept.sort(key=lambda s: order[s.id])
    return kept, dupes


class SuggestionService:
    """Entry points used by the API layer and the document-change handler."""

    def __init__(self, suggestions: SuggestionStore, documents: DocumentStore,
                 config: EngineConfig, stats: Optional[StatisticsSink] = None,
                 clock: Callable[[], int] = _now_ms):
        self.suggestions = suggestions
        self.documents = documents
        self.config = config
        self.stats = stats or NullStatisticsSink()
        self.clock = clock
        self.resolver = ConflictResolver(config.resolver, clock=clock)
        self.revalidator = Revalidator(suggestions, config, stats=self.stats, clock=clock)

    # -- creation -----------------------------------------------------------

    def create(self, document_id: str, tenant_id: str,
               suggestions: List[Union[Candidate, Dict[str, Any]]]) -> int:
        document = load_document(self.documents, tenant_id, document_id)
        results = create_suggestions(document, suggestions, self.suggestions, self.config,
                                     stats=self.stats, clock=self.clock)
        return count_created(results)

    # -- read path ----------------------------------------------------------

    def list_suggestions(self, document_id: str, tenant_id: str,
                         status: Optional[SuggestionStatus] = SuggestionStatus.PENDING) -> List[Suggestion]:
        pk = partition_key(tenant_id, document_id)
        out = []
        for record in self.suggestions.scan_prefix(pk, SUGGESTION_PREFIX, page_size=self.config.store.page_size):
            s = Suggestion.from_dict(record)
            if status is None or s.status == status:
                out.append(s)
        return out

    def resolve_for_display(self, document_id: str, tenant_id: str,
                            version=None) -> List[DisplaySuggestion]:
        document = load_document(self.documents, tenant_id, document_id, editable=False)
        pending = self.list_suggestions(document_id, tenant_id)
        if version is not None:
            wanted = Version.parse(version)
            pending = [s for s in pending if s.content_version == wanted]
        kept, dupes = split_duplicates(pending)
        if dupes:
            self._remove_duplicates(tenant_id, dupes)
        return self.resolver.process(kept, document.body)

    def _remove_duplicates(self, tenant_id: str, dupes: List[Suggestion]) -> None:
        logger.info(f"Found {len(dupes)} duplicate suggestions; removing")
        changes: List[StatusChange] = []
        for s in dupes:
            try:
                self.suggestions.delete((s.pk, s.sk))
                changes.append(StatusChange(s.type, SuggestionStatus.DELETED, s.status))
            except EngineError as e:
                logger.warning(f"Error deleting duplicate suggestion {s.id}: {e}")
        push_changes(self.stats, tenant_id, changes)

    # -- document change ----------------------------------------------------

    def revalidate(self, document_id: str, tenant_id: str, new_body: Optional[str],
                   new_version, is_terminal_publish: bool = False) -> bool:
        return self.revalidate_report(document_id, tenant_id, new_body, new_version,
                                      is_terminal_publish) is not None

    def revalidate_report(self, document_id: str, tenant_id: str, new_body: Optional[str],
                          new_version, is_terminal_publish: bool = False) -> Optional[RevalidationReport]:
        try:
            return self.revalidator.revalidate(document_id, tenant_id, new_body, new_version,
                                               is_terminal_publish=is_terminal_publish)
        except EngineError as e:
            logger.error(f"Post processing error for {tenant_id}#{document_id}: {e}")
            return None

    # -- user actions -------------------------------------------------------

    def update_status(self, document_id: str, tenant_id: str, suggestion_id: str,
                      new_status: Union[SuggestionStatus, str]) -> Optional[Suggestion]:
        """Move a pending suggestion to a terminal status; `deleted` removes the record."""
        new_status = SuggestionStatus(new_status)
        key = (partition_key(tenant_id, document_id), sort_key(suggestion_id))
        record = self.suggestions.get(key)
        if record is None:
            raise SuggestionNotFound(f"Suggestion not found: {suggestion_id}")
        current = Suggestion.from_dict(record)
        if current.status == new_status:
            return current
        if not can_transition(current.status, new_status):
            raise IllegalTransition(f"{suggestion_id}: {current.status.value} -> {new_status.value}")

        expect = {"status": record.get("status")}
        try:
            if new_status == SuggestionStatus.DELETED:
                self.suggestions.delete(key)
                updated = None
            else:
                fields = {"status": new_status.value, "updatedAt": self.clock()}
                updated = Suggestion.from_dict(self.suggestions.update(key, fields, expect=expect))
        except ConditionalCheckFailed:
            raise SuggestionNotFound(f"Suggestion not found: {suggestion_id}")

        push_changes(self.stats, tenant_id, [StatusChange(current.type, new_status, current.status)])
        return updated

    # -- retention ----------------------------------------------------------

    def prune_expired(self, document_id: str, tenant_id: str, now: Optional[int] = None) -> int:
        """Delete pending suggestions past their expiresAt (epoch seconds)."""
        now = now if now is not None else self.clock() // 1000
        removed = 0
        for s in self.list_suggestions(document_id, tenant_id):
            if s.expires_at is not None and s.expires_at <= now:
                try:
                    self.suggestions.delete((s.pk, s.sk))
                    removed += 1
                except EngineError as e:
                    logger.warning(f"Could not prune suggestion {s.id}: {e}")
        if removed:
            logger.info(f"Pruned {removed} expired suggestions from {tenant_id}#{document_id}")
        return removed
