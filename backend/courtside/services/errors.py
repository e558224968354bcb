"""
Engine error kinds.

Services raise these; routes translate them to HTTP responses
(see courtside.utils.http_errors). Unresolved bracket slots are not
errors: they stay None and are rendered as "TBD".
"""
from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for errors reported to the caller."""


class ValidationError(EngineError):
    """Malformed or incomplete input (wrong pool size, non-permutation override, missing court)."""


class IntegrityViolation(EngineError):
    """Reference to an entity that does not belong to the tournament (unknown team id)."""


class NotFoundError(EngineError):
    pass


class ConflictError(EngineError):
    """Operation would overwrite existing data without an explicit force."""

    def __init__(self, message: str, existing: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.existing = existing or {}
