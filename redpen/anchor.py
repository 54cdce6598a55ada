"""
Anchor resolution.

Agent-supplied offsets are advisory. The resolver searches a tolerance window
around the hint first, then falls back to a full scan and picks the
occurrence closest to the hint. The result is always re-verified against the
body before it is used.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
import hashlib
import logging

from redpen.errors import AnchorNotFound, RangeInvalid, TextMismatch

logger = logging.getLogger(__name__)

OFFSET_TOLERANCE = 50
CONTEXT_WINDOW = 30


@dataclass(frozen=True)
class Span:
    start: int
    end: int


@dataclass(frozen=True)
class Anchor:
    span: Span
    anchor_text: str
    context_before: str
    context_after: str
    context_hash: str


def context_hash(context_before: str, anchor_text: str, context_after: str) -> str:
    h = hashlib.sha256()
    h.update(f"{context_before}|{anchor_text}|{context_after}".encode("utf-8"))
    return h.hexdigest()[:16]


def find_all(body: str, text: str) -> List[int]:
    """Start index of every (possibly overlapping) occurrence of text in body."""
    hits: List[int] = []
    if not text:
        return hits
    i = body.find(text)
    while i != -1:
        hits.append(i)
        i = body.find(text, i + 1)
    return hits


def _closest(occurrences: List[int], hint: int) -> int:
    # min() keeps the first of equally distant candidates
    return min(occurrences, key=lambda i: abs(i - hint))


def _valid_hint(body: str, hint: Optional[int]) -> bool:
    return hint is not None and 0 <= hint < len(body)


def resolve(body: str, text_to_replace: str, hint_offset: Optional[int] = None,
            tolerance: int = OFFSET_TOLERANCE) -> Span:
    """Locate text_to_replace in body; raises AnchorNotFound when absent."""
    start = -1
    has_hint = _valid_hint(body, hint_offset)

    if has_hint:
        lo = max(0, hint_offset - tolerance)
        hi = min(len(body), hint_offset + tolerance + len(text_to_replace))
        in_window = [lo + i for i in find_all(body[lo:hi], text_to_replace)]
        if in_window:
            start = _closest(in_window, hint_offset)

    if start == -1:
        occurrences = find_all(body, text_to_replace)
        if not occurrences:
            logger.warning(f"Text to replace not found: {text_to_replace!r}")
            raise AnchorNotFound(text_to_replace)
        if len(occurrences) > 1 and has_hint:
            start = _closest(occurrences, hint_offset)
        else:
            start = occurrences[0]

    span = Span(start, start + len(text_to_replace))
    verify_span(body, span, text_to_replace)
    return span


def verify_span(body: str, span: Span, expected: str) -> None:
    if span.end <= span.start:
        raise RangeInvalid(f"endOffset must be > startOffset: [{span.start}, {span.end})")
    if span.start < 0 or span.end > len(body):
        raise RangeInvalid(f"offsets out of bounds: [{span.start}, {span.end}) for len {len(body)}")
    actual = body[span.start:span.end]
    if actual != expected:
        raise TextMismatch(f"expected {expected!r}, found {actual!r}")


def capture_context(body: str, span: Span, window: int = CONTEXT_WINDOW) -> Anchor:
    before = body[max(0, span.start - window):span.start]
    after = body[span.end:min(len(body), span.end + window)]
    text = body[span.start:span.end]
    return Anchor(
        span=span,
        anchor_text=text,
        context_before=before,
        context_after=after,
        context_hash=context_hash(before, text, after),
    )


def build_anchor(body: str, text_to_replace: str, hint_offset: Optional[int] = None,
                 tolerance: int = OFFSET_TOLERANCE, window: int = CONTEXT_WINDOW) -> Anchor:
    span = resolve(body, text_to_replace, hint_offset, tolerance=tolerance)
    return capture_context(body, span, window=window)
