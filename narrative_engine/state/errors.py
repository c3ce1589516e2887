"""
Error taxonomy for the narrative engine.

These are raised inside a component where a failure is detected and
converted to a plain result (LoadResult, None, False) at the component's
public boundary. Callers outside the engine never need to catch them.
"""


class NarrativeEngineError(Exception):
    """Base class for engine errors."""


class DefinitionLoadError(NarrativeEngineError):
    """Story or capability data is unreachable or malformed."""


class StateValidationError(NarrativeEngineError):
    """A snapshot failed structural checks."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class PersistenceError(NarrativeEngineError):
    """Writing to or reading from the storage backend failed."""


class QuotaExceededError(PersistenceError):
    """The storage backend refused a write for lack of space."""


class CorruptionError(NarrativeEngineError):
    """Stored bytes could not be parsed or are structurally invalid."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupted save '{key}': {reason}")
        self.key = key
        self.reason = reason
