"""
Suggestion anchoring and conflict resolution.

Reviewer agents propose edits against a shared document that a person may be
editing at the same time. This package keeps those edits tied to the right
characters:

1. Anchoring - resolve an approximate text reference to an exact, verified range
2. Conflicts - order overlapping suggestions and pick the primary highlight
3. Revalidation - carry pending suggestions across document versions, or retire them

Main entry point: SuggestionService
"""
from redpen.anchor import Anchor, Span, build_anchor, resolve
from redpen.conflicts import Conflict, ConflictKind, ConflictResolver, DisplaySuggestion, detect_conflicts
from redpen.ir import Document, DocumentStatus, Version
from redpen.mirror import SuggestionStateMirror
from redpen.revalidate import RevalidationReport, Revalidator
from redpen.rules.load_rules import ConflictStrategy, EngineConfig, load_config
from redpen.service import SuggestionService
from redpen.suggestions import Candidate, Priority, Suggestion, SuggestionStatus, SuggestionType

__all__ = [
    "Anchor",
    "Span",
    "build_anchor",
    "resolve",
    "Conflict",
    "ConflictKind",
    "ConflictResolver",
    "DisplaySuggestion",
    "detect_conflicts",
    "Document",
    "DocumentStatus",
    "Version",
    "SuggestionStateMirror",
    "RevalidationReport",
    "Revalidator",
    "ConflictStrategy",
    "EngineConfig",
    "load_config",
    "SuggestionService",
    "Candidate",
    "Priority",
    "Suggestion",
    "SuggestionStatus",
    "SuggestionType",
]
