"""Audit pipeline error taxonomy.

NotFoundError / InvalidStateError / FixValidationError reach API callers
(404 / 409 / 422). RemediationFailure and DetectionFailure are recovered
inside a run. PersistenceFailure aborts a single issue transition.
"""

from __future__ import annotations


class AuditError(Exception):
    """Base class for data quality pipeline errors."""


class NotFoundError(AuditError):
    """Unknown queue item, issue, or audit run."""

    def __init__(self, kind: str, ident: int | str) -> None:
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class InvalidStateError(AuditError):
    """Transition not allowed from the entity's current state."""

    def __init__(self, kind: str, ident: int | str, state: str, detail: str = "") -> None:
        self.kind = kind
        self.ident = ident
        self.state = state
        message = f"{kind} {ident} is {state}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class FixValidationError(AuditError):
    """A proposed fix does not satisfy the record's schema constraints."""


class RemediationFailure(AuditError):
    """The reasoning collaborator errored or timed out."""

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class DetectionFailure(AuditError):
    """A detector failed while scanning the dataset."""

    def __init__(self, detector: str, cause: Exception) -> None:
        self.detector = detector
        self.cause = cause
        super().__init__(f"Detector {detector} failed: {cause}")


class PersistenceFailure(AuditError):
    """A transactional write failed and was rolled back."""


class AuditAlreadyRunningError(AuditError):
    """A run is already in flight for the requested scope."""

    def __init__(self, scope: str, run_id: int | None) -> None:
        self.scope = scope
        self.run_id = run_id
        super().__init__(f"Audit already running for scope {scope!r} (run {run_id})")
