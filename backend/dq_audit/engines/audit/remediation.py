"""Remediation engine — decides between auto-fix and human escalation.

For each detected issue the engine asks the reasoning collaborator for a
proposal, then takes exactly one of two transactional paths:

    auto-fix:   record mutation + issue auto_fixed + success attempt
    escalation: issue escalated + failure attempt + manual queue item

Every invocation writes exactly one RemediationAttempt, in the same
transaction as the issue transition.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from dq_audit.config import settings
from dq_audit.db import database
from dq_audit.engines.audit.errors import (
    FixValidationError,
    InvalidStateError,
    NotFoundError,
    PersistenceFailure,
    RemediationFailure,
)
from dq_audit.engines.audit.fix_applier import apply_fix, snapshot_entity
from dq_audit.engines.audit.queue_manager import ManualQueueManager
from dq_audit.engines.audit.reasoner import RemediationReasoner
from dq_audit.models.audit import AuditIssue, RemediationAttempt, utcnow
from dq_audit.models.remediation import IssueContext, RemediationProposal, dump_fix

logger = logging.getLogger(__name__)


@dataclass
class _Call:
    """What the collaborator returned (or why it didn't)."""

    proposal: RemediationProposal | None
    started_at: datetime
    elapsed_ms: int
    escalation_reason: str | None = None
    error_message: str | None = None


class RemediationEngine:
    """Runs one remediation attempt per call.

    Usage:
        engine = RemediationEngine(reasoner, queue_manager)
        attempt = await engine.attempt_fix(issue_id)
        attempt.outcome  # "success" or "failure"
    """

    def __init__(
        self,
        reasoner: RemediationReasoner,
        queue_manager: ManualQueueManager,
        db_engine: Engine | None = None,
        auto_fix_threshold: float | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.reasoner = reasoner
        self.queue_manager = queue_manager
        self._engine = db_engine if db_engine is not None else database.engine
        self.auto_fix_threshold = (
            auto_fix_threshold if auto_fix_threshold is not None else settings.auto_fix_threshold
        )
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.remediation_timeout_seconds
        )
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}

    @asynccontextmanager
    async def _issue_lock(self, issue_id: int) -> AsyncIterator[None]:
        """Serialize invocations for the same issue; drop the lock when idle."""
        lock = self._locks.setdefault(issue_id, asyncio.Lock())
        self._lock_users[issue_id] = self._lock_users.get(issue_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[issue_id] -= 1
            if self._lock_users[issue_id] == 0:
                del self._lock_users[issue_id]
                del self._locks[issue_id]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def attempt_fix(self, issue_id: int) -> RemediationAttempt:
        """Remediate one detected issue.

        Raises:
            NotFoundError: Unknown issue.
            InvalidStateError: The issue is no longer in ``detected``.
            PersistenceFailure: Neither path could be committed; the issue
                stays ``detected``.
        """
        async with self._issue_lock(issue_id):
            context = self._build_context(issue_id)
            call = await self._call_reasoner(context)
            proposal = call.proposal

            if proposal is None:
                return self._escalate(issue_id, call, call.escalation_reason)

            if proposal.fixes_applied is None:
                return self._escalate(issue_id, call, "no_fix")

            if proposal.confidence_score < self.auto_fix_threshold:
                return self._escalate(issue_id, call, "low_confidence")

            try:
                return self._auto_fix(issue_id, call)
            except FixValidationError as e:
                logger.info("Issue %d: proposed fix rejected (%s), escalating", issue_id, e)
                call.error_message = str(e)
                return self._escalate(issue_id, call, "invalid_fix")
            except SQLAlchemyError as e:
                logger.error("Issue %d: auto-fix could not be persisted: %s", issue_id, e)
                call.error_message = f"Auto-fix rolled back: {e}"
                return self._escalate(issue_id, call, "persistence_error")

    async def escalate_failure(self, issue_id: int, error: Exception | str) -> RemediationAttempt:
        """Force the failure-escalation path without calling the collaborator."""
        async with self._issue_lock(issue_id):
            self._build_context(issue_id)
            call = _Call(
                proposal=None,
                started_at=utcnow(),
                elapsed_ms=0,
                escalation_reason="collaborator_error",
                error_message=str(error),
            )
            return self._escalate(issue_id, call, "collaborator_error")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _build_context(self, issue_id: int) -> IssueContext:
        with Session(self._engine) as session:
            issue = session.get(AuditIssue, issue_id)
            if issue is None:
                raise NotFoundError("issue", issue_id)
            if issue.status != "detected":
                raise InvalidStateError("issue", issue_id, issue.status, "only detected issues can be remediated")
            return IssueContext(
                issue_id=issue.id,
                rule_name=issue.rule_name,
                issue_type=issue.issue_type,
                severity=issue.severity,
                priority=issue.priority,
                entity_type=issue.entity_type,
                entity_id=issue.entity_id,
                description=issue.description,
                suggested_fix=issue.suggested_fix,
                entity_snapshot=snapshot_entity(session, issue.entity_type, issue.entity_id),
                metadata=issue.issue_metadata or {},
            )

    async def _propose(self, context: IssueContext) -> RemediationProposal:
        """Ask the collaborator for a proposal within the timeout.

        Raises:
            RemediationFailure: ``reason`` is ``timeout`` or ``collaborator_error``.
        """
        try:
            return await asyncio.wait_for(self.reasoner.propose(context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RemediationFailure("timeout", f"Reasoning timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise RemediationFailure("collaborator_error", f"{type(e).__name__}: {e}") from e

    async def _call_reasoner(self, context: IssueContext) -> _Call:
        started_at = utcnow()
        t0 = time.monotonic()
        try:
            proposal = await self._propose(context)
        except RemediationFailure as e:
            logger.warning("Issue %d: reasoning failed (%s): %s", context.issue_id, e.reason, e,
                           exc_info=e.reason == "collaborator_error")
            return _Call(None, started_at, int((time.monotonic() - t0) * 1000), e.reason, str(e))
        return _Call(proposal, started_at, int((time.monotonic() - t0) * 1000))

    def _new_attempt(self, issue_id: int, call: _Call) -> RemediationAttempt:
        proposal = call.proposal
        return RemediationAttempt(
            issue_id=issue_id,
            ai_model=getattr(self.reasoner, "model_name", type(self.reasoner).__name__),
            reasoning=proposal.reasoning if proposal else "",
            confidence_score=proposal.confidence_score if proposal else 0.0,
            data_sources=[ds.model_dump(mode="json") for ds in proposal.data_sources] if proposal else [],
            proposed_fix=dump_fix(proposal.fixes_applied) if proposal else None,
            outcome="failure",
            error_message=call.error_message,
            started_at=call.started_at,
            completed_at=utcnow(),
            execution_time_ms=call.elapsed_ms,
        )

    def _auto_fix(self, issue_id: int, call: _Call) -> RemediationAttempt:
        proposal = call.proposal
        with Session(self._engine) as session:
            try:
                issue = self._load_detected(session, issue_id)
                applied = apply_fix(session, issue.entity_type, issue.entity_id, proposal.fixes_applied)

                now = utcnow()
                issue.status = "auto_fixed"
                issue.resolved_by = "ai"
                issue.resolved_at = now
                issue.flagged_for_review = proposal.requires_verification
                issue.resolution_notes = f"Auto-fixed ({proposal.fixes_applied.kind}) at confidence {proposal.confidence_score:.0f}"
                session.add(issue)

                attempt = self._new_attempt(issue_id, call)
                attempt.outcome = "success"
                attempt.fixes_applied = applied.model_dump(mode="json")
                session.add(attempt)
                session.commit()
            except Exception:
                session.rollback()
                raise
            session.refresh(attempt)
            session.expunge(attempt)

        logger.info(
            "Issue %d auto-fixed (%s, confidence=%.0f%s)",
            issue_id, applied.kind, proposal.confidence_score,
            ", flagged for review" if proposal.requires_verification else "",
        )
        return attempt

    def _escalate(self, issue_id: int, call: _Call, reason: str) -> RemediationAttempt:
        proposal = call.proposal
        with Session(self._engine) as session:
            try:
                issue = self._load_detected(session, issue_id)
                priority = issue.priority
                issue.status = "escalated"
                session.add(issue)

                attempt = self._new_attempt(issue_id, call)
                attempt.escalation_reason = reason
                session.add(attempt)

                self.queue_manager.enqueue(
                    session,
                    issue,
                    ai_suggestions=dump_fix(proposal.fixes_applied) if proposal else None,
                    ai_reasoning=proposal.reasoning if proposal else call.error_message,
                )
                session.commit()
            except InvalidStateError:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("Issue %d: escalation could not be persisted: %s", issue_id, e)
                raise PersistenceFailure(f"Could not escalate issue {issue_id}") from e
            session.refresh(attempt)
            session.expunge(attempt)

        logger.info("Issue %d escalated to %s queue (%s)", issue_id, priority, reason)
        return attempt

    @staticmethod
    def _load_detected(session: Session, issue_id: int) -> AuditIssue:
        issue = session.get(AuditIssue, issue_id)
        if issue is None:
            raise NotFoundError("issue", issue_id)
        if issue.status != "detected":
            raise InvalidStateError("issue", issue_id, issue.status)
        return issue
