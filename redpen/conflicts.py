"""
Conflict detection and display ordering.

Validates each suggestion against the current body, finds overlapping
ranges, weights each suggestion and decides which member of every conflict
cluster is shown as the primary highlight.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging
import re
import time

from redpen.errors import RangeInvalid
from redpen.rules.load_rules import ConflictStrategy, ResolverConfig
from redpen.suggestions import Suggestion, SuggestionType

logger = logging.getLogger(__name__)

MAX_Z_INDEX = 1000


class ConflictKind(str, Enum):
    EXACT = "exact"
    NESTED = "nested"
    OVERLAP = "overlap"


@dataclass(frozen=True)
class Conflict:
    suggestion_id_a: str
    suggestion_id_b: str
    overlap_start: int
    overlap_end: int
    kind: ConflictKind

    def to_dict(self) -> Dict:
        return {
            "suggestionIdA": self.suggestion_id_a,
            "suggestionIdB": self.suggestion_id_b,
            "overlapStart": self.overlap_start,
            "overlapEnd": self.overlap_end,
            "kind": self.kind.value,
        }


@dataclass
class DisplaySuggestion:
    suggestion: Suggestion
    is_valid: bool
    actual_text: str
    conflicts_with: List[str] = field(default_factory=list)
    display_priority: float = 0.0
    is_visible: bool = False
    z_index: int = 0

    @property
    def id(self) -> str:
        return self.suggestion.id

    def to_dict(self) -> Dict:
        d = self.suggestion.to_dict()
        d.update({
            "isValid": self.is_valid,
            "actualText": self.actual_text,
            "conflictsWith": list(self.conflicts_with),
            "displayPriority": self.display_priority,
            "isVisible": self.is_visible,
            "zIndex": self.z_index,
        })
        return d


def _normalize_ws(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def text_similarity(a: str, b: str) -> float:
    """Share of positions holding the same character, over the longer length."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / longest


def classify(s1: Suggestion, s2: Suggestion) -> Optional[Conflict]:
    a0, a1 = s1.start_offset, s1.end_offset
    b0, b1 = s2.start_offset, s2.end_offset
    if not (a0 < b1 and b0 < a1):
        return None
    if a0 == b0 and a1 == b1:
        kind = ConflictKind.EXACT
    elif (a0 <= b0 and a1 >= b1) or (b0 <= a0 and b1 >= a1):
        kind = ConflictKind.NESTED
    else:
        kind = ConflictKind.OVERLAP
    return Conflict(s1.id, s2.id, max(a0, b0), min(a1, b1), kind)


def detect_conflicts(suggestions: List[Suggestion]) -> List[Conflict]:
    conflicts: List[Conflict] = []
    for i in range(len(suggestions)):
        for j in range(i + 1, len(suggestions)):
            c = classify(suggestions[i], suggestions[j])
            if c is not None:
                conflicts.append(c)
    return conflicts


class _Clusters:
    """Union-find over suggestion ids."""

    def __init__(self, ids: List[str]):
        self.parent = {i: i for i in ids}

    def find(self, x: str) -> str:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, a: str, b: str) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[rb] = ra


class ConflictResolver:
    """One resolver instance applies exactly one conflict strategy."""

    def __init__(self, config: Optional[ResolverConfig] = None,
                 clock: Callable[[], int] = lambda: int(time.time() * 1000)):
        self.config = config or ResolverConfig()
        self.clock = clock

    # -- validation ---------------------------------------------------------

    def offsets_valid(self, s: Suggestion, body_len: int) -> bool:
        if not self.config.enable_offset_validation:
            return True
        return (
            s.start_offset >= 0
            and s.end_offset > s.start_offset
            and s.end_offset <= body_len
            and (s.end_offset - s.start_offset) <= self.config.max_context_length
        )

    def text_matches(self, actual: str, expected: str, anchor_text: str) -> bool:
        if actual == expected:
            return True
        if _normalize_ws(actual) == _normalize_ws(expected):
            return True
        if anchor_text and anchor_text in actual:
            return True
        if len(expected) > self.config.similarity_min_length:
            return text_similarity(actual, expected) >= self.config.similarity_threshold
        return False

    def validate(self, s: Suggestion, body: str) -> DisplaySuggestion:
        start = max(0, s.start_offset)
        actual = body[start:max(start, s.end_offset)]
        valid = self.offsets_valid(s, len(body)) and self.text_matches(
            actual, s.text_to_replace, s.anchor_text)
        return DisplaySuggestion(
            suggestion=s,
            is_valid=valid,
            actual_text=actual,
            display_priority=float(self.base_priority(s)),
        )

    # -- weighting ----------------------------------------------------------

    def base_priority(self, s: Suggestion) -> int:
        return self.config.priority_weights[s.priority] + self.config.type_weights[s.type]

    def conflict_bonus(self, d: DisplaySuggestion) -> float:
        strategy = self.config.strategy
        if strategy == ConflictStrategy.PRIORITY:
            return d.display_priority * 0.1
        if strategy == ConflictStrategy.TIMESTAMP:
            return (self.clock() - d.suggestion.created_at) / 1_000_000
        if strategy == ConflictStrategy.TYPE:
            return self.config.type_boosts[d.suggestion.type]
        raise ValueError(f"Unknown conflict strategy: {strategy}")

    # -- pipeline -----------------------------------------------------------

    def process(self, suggestions: List[Suggestion], body: str) -> List[DisplaySuggestion]:
        """Validated, conflict-annotated suggestions in display order."""
        displayed = [self.validate(s, body) for s in suggestions]
        by_id = {d.id: d for d in displayed}

        conflicts = detect_conflicts(suggestions)
        clusters = _Clusters([d.id for d in displayed if d.is_valid])
        for c in conflicts:
            by_id[c.suggestion_id_a].conflicts_with.append(c.suggestion_id_b)
            by_id[c.suggestion_id_b].conflicts_with.append(c.suggestion_id_a)
            if by_id[c.suggestion_id_a].is_valid and by_id[c.suggestion_id_b].is_valid:
                clusters.union(c.suggestion_id_a, c.suggestion_id_b)

        for d in displayed:
            if d.conflicts_with:
                d.display_priority += self.conflict_bonus(d)

        order = {d.id: i for i, d in enumerate(displayed)}
        ranked = sorted(
            (d for d in displayed if d.is_valid),
            key=lambda d: (-d.display_priority, d.suggestion.created_at, order[d.id]),
        )
        seen_clusters = set()
        for rank, d in enumerate(ranked):
            root = clusters.find(d.id)
            d.is_visible = root not in seen_clusters
            seen_clusters.add(root)
            d.z_index = MAX_Z_INDEX - rank

        invalid = [d for d in displayed if not d.is_valid]
        if invalid:
            logger.info(f"{len(invalid)} of {len(displayed)} suggestions no longer match the document")
        return ranked + invalid


def apply_suggestion(body: str, suggestion: Suggestion) -> str:
    start, end = suggestion.start_offset, suggestion.end_offset
    if start < 0 or end > len(body) or start >= end:
        raise RangeInvalid(f"Invalid suggestion offsets [{start}, {end}) for len {len(body)}")
    return body[:start] + suggestion.replace_with + body[end:]


def remove_suggestion(displayed: List[DisplaySuggestion], suggestion_id: str) -> List[DisplaySuggestion]:
    kept = [d for d in displayed if d.id != suggestion_id]
    for d in kept:
        d.conflicts_with = [i for i in d.conflicts_with if i != suggestion_id]
    return kept


def by_type(displayed: List[DisplaySuggestion], stype: SuggestionType) -> List[DisplaySuggestion]:
    return [d for d in displayed if d.suggestion.type == stype and d.is_valid]


def conflicting(displayed: List[DisplaySuggestion], suggestion_id: str) -> List[DisplaySuggestion]:
    target = next((d for d in displayed if d.id == suggestion_id), None)
    if target is None:
        return []
    return [d for d in displayed if d.id in target.conflicts_with]
