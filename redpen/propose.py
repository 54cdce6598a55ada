from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union
import logging
import time

from redpen.anchor import build_anchor
from redpen.errors import AnchorNotFound, EngineError, RangeInvalid, StoreWriteFailure, TextMismatch
from redpen.ir import Document
from redpen.rules.load_rules import EngineConfig
from redpen.stats import NullStatisticsSink, StatisticsSink, push_created
from redpen.store import SuggestionStore
from redpen.suggestions import Candidate, Suggestion

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CreationResult:
    """Outcome of one candidate in a creation batch."""
    index: int
    suggestion: Optional[Suggestion] = None
    error: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.suggestion is not None


def anchor_candidate(document: Document, candidate: Candidate, config: EngineConfig,
                     now_ms: int) -> Suggestion:
    anchor = build_anchor(
        document.body,
        candidate.text_to_replace,
        candidate.start_offset,
        tolerance=config.anchor.offset_tolerance,
        window=config.anchor.context_window,
    )
    return Suggestion(
        id=Suggestion.new_id(),
        tenant_id=document.tenant_id,
        document_id=document.id,
        content_version=document.version,
        start_offset=anchor.span.start,
        end_offset=anchor.span.end,
        text_to_replace=candidate.text_to_replace,
        replace_with=candidate.replace_with,
        reason=candidate.reason,
        priority=candidate.priority,
        type=candidate.type,
        anchor_text=anchor.anchor_text,
        context_before=anchor.context_before,
        context_after=anchor.context_after,
        context_hash=anchor.context_hash,
        created_at=now_ms,
        expires_at=now_ms // 1000 + config.creation.retention_days * DAY_SECONDS,
    )


def create_suggestions(
    document: Document,
    candidates: List[Union[Candidate, Dict[str, Any]]],
    store: SuggestionStore,
    config: EngineConfig,
    stats: Optional[StatisticsSink] = None,
    clock: Callable[[], int] = _now_ms,
) -> List[CreationResult]:
    """
    Anchor and persist each candidate independently.

    A failure for one candidate (bad input, text not found, invalid range,
    store write) is logged and recorded on its result; siblings are unaffected.
    The caller is expected to have loaded `document` as editable.
    """
    if not candidates:
        raise EngineError("a creation batch needs at least one suggestion")
    if len(candidates) > config.creation.max_batch_size:
        raise EngineError(
            f"a creation batch holds at most {config.creation.max_batch_size} suggestions, got {len(candidates)}")

    stats = stats or NullStatisticsSink()
    retry = config.store.retry

    def _one(index: int, raw: Union[Candidate, Dict[str, Any]]) -> CreationResult:
        try:
            candidate = raw if isinstance(raw, Candidate) else Candidate.from_dict(raw)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Dropping malformed suggestion #{index}: {e}")
            return CreationResult(index, error=f"invalid: {e}")
        try:
            suggestion = anchor_candidate(document, candidate, config, clock())
        except AnchorNotFound:
            return CreationResult(index, error="not_found")
        except (RangeInvalid, TextMismatch) as e:
            logger.warning(f"Suggestion #{index} failed verification: {e}")
            return CreationResult(index, error=f"{type(e).__name__}: {e}")
        try:
            record = suggestion.to_dict()
            retry.call(lambda: store.put(record, must_not_exist=True), what=f"create {suggestion.sk}")
        except StoreWriteFailure as e:
            logger.warning(f"Could not persist suggestion #{index}: {e}")
            return CreationResult(index, error=f"store: {e}")
        push_created(stats, document.tenant_id, suggestion.type)
        return CreationResult(index, suggestion=suggestion)

    results: List[Optional[CreationResult]] = [None] * len(candidates)
    workers = min(config.creation.max_concurrent, len(candidates))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(_one, i, c): i for i, c in enumerate(candidates)}
        for future in as_completed(futures):
            i = futures[future]
            try:
                results[i] = future.result()
            except Exception as e:
                logger.error(f"Unexpected failure creating suggestion #{i}: {type(e).__name__}: {e}")
                results[i] = CreationResult(i, error=str(e))

    created = sum(1 for r in results if r.created)
    logger.info(f"Created {created} of {len(candidates)} suggestions for {document.tenant_id}#{document.id}")
    return results


def count_created(results: List[CreationResult]) -> int:
    return sum(1 for r in results if r.created)
