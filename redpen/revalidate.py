"""
Revalidation of pending suggestions after a document edit.

A suggestion stays pending while its anchor text (and the recorded context
around it) still occurs in the new body; its content version then follows the
document. Otherwise it is retired as skipped. On publish every pending
suggestion is rejected.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
import logging
import time

from redpen.ir import Version
from redpen.rules.load_rules import EngineConfig
from redpen.stats import NullStatisticsSink, StatisticsSink, StatusChange, push_changes
from redpen.store import SuggestionStore, write_batch
from redpen.suggestions import (
    SUGGESTION_PREFIX,
    Suggestion,
    SuggestionStatus,
    partition_key,
)

logger = logging.getLogger(__name__)

PENDING_ONLY = {"status": SuggestionStatus.PENDING.value}


@dataclass
class RevalidationReport:
    document_id: str
    version: Optional[str] = None
    checked: int = 0
    migrated: int = 0
    skipped: int = 0
    rejected: int = 0
    failed: int = 0
    skipped_ids: List[str] = field(default_factory=list)
    rejected_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "documentId": self.document_id,
            "version": self.version,
            "checked": self.checked,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "rejected": self.rejected,
            "failed": self.failed,
            "skippedIds": list(self.skipped_ids),
            "rejectedIds": list(self.rejected_ids),
        }


def still_relevant(body: str, anchor_text: str, context_before: str, context_after: str) -> bool:
    if not anchor_text or not body:
        return False
    if anchor_text not in body:
        return False
    if context_before or context_after:
        # substring check on the trimmed neighbourhood; contextHash is not consulted
        pattern = f"{context_before}{anchor_text}{context_after}".strip()
        return pattern in body
    return True


class Revalidator:

    def __init__(self, store: SuggestionStore, config: EngineConfig,
                 stats: Optional[StatisticsSink] = None,
                 clock: Callable[[], int] = lambda: int(time.time() * 1000)):
        self.store = store
        self.config = config
        self.stats = stats or NullStatisticsSink()
        self.clock = clock

    def pending(self, tenant_id: str, document_id: str) -> List[Suggestion]:
        pk = partition_key(tenant_id, document_id)
        out: List[Suggestion] = []
        for record in self.store.scan_prefix(pk, SUGGESTION_PREFIX, page_size=self.config.store.page_size):
            s = Suggestion.from_dict(record)
            if s.is_pending:
                out.append(s)
        return out

    def revalidate(self, document_id: str, tenant_id: str, new_body: Optional[str],
                   new_version, is_terminal_publish: bool = False) -> RevalidationReport:
        version = Version.parse(new_version) if new_version is not None else None
        report = RevalidationReport(document_id=document_id, version=str(version) if version else None)

        if new_body is not None and version is not None:
            self._check_body(tenant_id, document_id, new_body, version, report)
        if is_terminal_publish:
            self._reject_all(tenant_id, document_id, report)

        logger.info(
            f"Revalidated {tenant_id}#{document_id}: checked={report.checked} migrated={report.migrated} "
            f"skipped={report.skipped} rejected={report.rejected} failed={report.failed}")
        return report

    def _check_body(self, tenant_id: str, document_id: str, body: str, version: Version,
                    report: RevalidationReport) -> None:
        updates: List[Tuple[Suggestion, Optional[SuggestionStatus]]] = []
        now = self.clock()
        for s in self.pending(tenant_id, document_id):
            report.checked += 1
            if still_relevant(body, s.anchor_text, s.context_before, s.context_after):
                s.content_version = version
                updates.append((s, None))
            else:
                s.status = SuggestionStatus.SKIPPED
                updates.append((s, SuggestionStatus.SKIPPED))
            s.updated_at = now

        changes = self._write(updates, report)
        push_changes(self.stats, tenant_id, changes)

    def _reject_all(self, tenant_id: str, document_id: str, report: RevalidationReport) -> None:
        updates: List[Tuple[Suggestion, Optional[SuggestionStatus]]] = []
        now = self.clock()
        for s in self.pending(tenant_id, document_id):
            s.status = SuggestionStatus.REJECTED
            s.updated_at = now
            updates.append((s, SuggestionStatus.REJECTED))

        changes = self._write(updates, report)
        push_changes(self.stats, tenant_id, changes)

    def _write(self, updates: List[Tuple[Suggestion, Optional[SuggestionStatus]]],
               report: RevalidationReport) -> List[StatusChange]:
        if not updates:
            return []
        outcomes = write_batch(
            self.store,
            [s.to_dict() for s, _ in updates],
            self.config.store.retry,
            expect=PENDING_ONLY,
        )
        changes: List[StatusChange] = []
        for (s, new_status), error in zip(updates, outcomes):
            if error is not None:
                report.failed += 1
                logger.warning(f"Error processing suggestion {s.id}: {error}")
                continue
            if new_status is None:
                report.migrated += 1
            elif new_status == SuggestionStatus.SKIPPED:
                report.skipped += 1
                report.skipped_ids.append(s.id)
            else:
                report.rejected += 1
                report.rejected_ids.append(s.id)
            if new_status is not None:
                changes.append(StatusChange(s.type, new_status, SuggestionStatus.PENDING))
        return changes
