"""Exceptions raised by the engine."""
from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class AnchorNotFound(EngineError):
    """textToReplace does not occur in the document body."""


class RangeInvalid(EngineError):
    """Computed offsets are empty, reversed or out of bounds."""


class TextMismatch(EngineError):
    """Resolved range does not hold the expected text."""


class StoreWriteFailure(EngineError):
    """A single record could not be written to the suggestion store."""


class StatisticsUpdateFailure(EngineError):
    """The usage statistics sink rejected an update."""


class DocumentNotFound(EngineError):
    pass


class DocumentNotEditable(EngineError):
    """Document is in a terminal status (published/abandoned)."""


class SuggestionNotFound(EngineError):
    pass


class IllegalTransition(EngineError):
    """Suggestion status may only leave pending, never return to it."""


class ConfigError(EngineError):
    pass
