"""
Error taxonomy

NotFound and Validation errors also subclass the builtin exceptions that
callers would naturally catch (LookupError, ValueError).
"""

from __future__ import annotations

from typing import Optional


class ProvenanceError(Exception):
    """Base class for every error raised by the provenance core."""


class NotFoundError(ProvenanceError, LookupError):
    """A decision, audit, entry, policy or reviewer id did not resolve."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidTransitionError(ProvenanceError):
    """A state machine was asked to move along an edge it does not have."""

    def __init__(self, kind: str, identifier: str, current: str, requested: str):
        self.kind = kind
        self.identifier = identifier
        self.current = current
        self.requested = requested
        super().__init__(
            f"{kind} {identifier} cannot move from '{current}' to '{requested}'"
        )


class IntegrityViolationError(ProvenanceError):
    """The hash chain does not verify. Carries the first divergence point."""

    def __init__(self, message: str, sequence: Optional[int] = None,
                 entry_id: Optional[str] = None):
        self.sequence = sequence
        self.entry_id = entry_id
        super().__init__(message)


class ValidationError(ProvenanceError, ValueError):
    """Malformed configuration or input (trigger, review, finalize status)."""


class PersistenceError(ProvenanceError):
    """A snapshot backend could not load or save."""
