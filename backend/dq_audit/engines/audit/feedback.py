"""Feedback recorder — annotates remediation attempts with human verdicts.

Annotated attempts (learned=True) are the learning signal external
consumers use to recalibrate confidence thresholds. Consumers either poll
``list_learning_signals`` or register a listener with ``subscribe``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlmodel import Session, func, select

from dq_audit.db import database
from dq_audit.models.audit import AuditIssue, RemediationAttempt

logger = logging.getLogger(__name__)

FEEDBACK_BY_ACTION = {
    "approve": "approved",
    "reject": "rejected",
    "custom": "modified",
}


class LearningSignal(BaseModel):
    """A human verdict on one remediation attempt."""

    attempt_id: int
    issue_id: int
    rule_name: str
    issue_type: str
    entity_type: str
    confidence_score: float
    outcome: str
    human_feedback: str
    feedback_notes: str | None = None
    proposed_fix: dict | None = None
    completed_at: datetime


class FeedbackRecorder:
    """Writes human_feedback / feedback_notes / learned on attempts."""

    def __init__(self, db_engine: Engine | None = None) -> None:
        self._engine = db_engine if db_engine is not None else database.engine
        self._listeners: list[Callable[[LearningSignal], None]] = []

    def record_feedback(
        self,
        issue_id: int,
        action: str,
        notes: str | None,
        session: Session | None = None,
    ) -> RemediationAttempt | None:
        """Annotate the most recent attempt for ``issue_id``.

        When ``session`` is given the change joins the caller's transaction
        and is not committed here.

        Returns:
            The annotated attempt, or None if the issue has no attempts.
        """
        feedback = FEEDBACK_BY_ACTION.get(action)
        if feedback is None:
            raise ValueError(f"Unknown resolution action: {action!r}")

        if session is None:
            with Session(self._engine) as own_session:
                attempt = self._annotate(own_session, issue_id, feedback, notes)
                own_session.commit()
                if attempt is not None:
                    own_session.refresh(attempt)
                    own_session.expunge(attempt)
            if attempt is not None:
                self.publish(attempt.id)
            return attempt

        return self._annotate(session, issue_id, feedback, notes)

    def _annotate(self, session: Session, issue_id: int, feedback: str, notes: str | None):
        attempt = session.exec(
            select(RemediationAttempt)
            .where(RemediationAttempt.issue_id == issue_id)
            .order_by(RemediationAttempt.id.desc())
            .limit(1)
        ).first()
        if attempt is None:
            logger.warning("No remediation attempt to annotate for issue %d", issue_id)
            return None

        attempt.human_feedback = feedback
        attempt.feedback_notes = notes
        attempt.learned = True
        session.add(attempt)
        session.flush()
        logger.info("Recorded %s feedback on attempt %d (issue %d)", feedback, attempt.id, issue_id)
        return attempt

    # --- Consumers ---

    def subscribe(self, listener: Callable[[LearningSignal], None]) -> None:
        self._listeners.append(listener)

    def publish(self, attempt_id: int) -> None:
        """Push a committed signal to listeners; listener errors are logged only."""
        if not self._listeners:
            return
        signals = self._load_signals(attempt_ids=[attempt_id])
        for signal in signals:
            for listener in list(self._listeners):
                try:
                    listener(signal)
                except Exception as e:
                    logger.error("Learning signal listener failed for attempt %d: %s", attempt_id, e)

    def list_learning_signals(self, after_id: int | None = None, limit: int = 100) -> list[LearningSignal]:
        """Learned attempts with id > after_id, oldest first."""
        return self._load_signals(after_id=after_id, limit=limit)

    def _load_signals(
        self,
        after_id: int | None = None,
        limit: int | None = None,
        attempt_ids: list[int] | None = None,
    ) -> list[LearningSignal]:
        with Session(self._engine) as session:
            stmt = (
                select(RemediationAttempt, AuditIssue)
                .join(AuditIssue, RemediationAttempt.issue_id == AuditIssue.id)
                .where(RemediationAttempt.learned == True)  # noqa: E712
                .order_by(RemediationAttempt.id)
            )
            if after_id is not None:
                stmt = stmt.where(RemediationAttempt.id > after_id)
            if attempt_ids is not None:
                stmt = stmt.where(RemediationAttempt.id.in_(attempt_ids))
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = session.exec(stmt).all()
            return [
                LearningSignal(
                    attempt_id=attempt.id,
                    issue_id=issue.id,
                    rule_name=issue.rule_name,
                    issue_type=issue.issue_type,
                    entity_type=issue.entity_type,
                    confidence_score=attempt.confidence_score,
                    outcome=attempt.outcome,
                    human_feedback=attempt.human_feedback or "",
                    feedback_notes=attempt.feedback_notes,
                    proposed_fix=attempt.proposed_fix,
                    completed_at=attempt.completed_at,
                )
                for attempt, issue in rows
            ]

    def get_performance(self) -> dict:
        """Attempt totals for the dashboard's aiPerformance block."""
        with Session(self._engine) as session:
            total = session.exec(select(func.count(RemediationAttempt.id))).one()
            successful = session.exec(
                select(func.count(RemediationAttempt.id)).where(RemediationAttempt.outcome == "success")
            ).one()
            avg_confidence = session.exec(select(func.avg(RemediationAttempt.confidence_score))).one()
            feedback_rows = session.exec(
                select(RemediationAttempt.human_feedback, func.count(RemediationAttempt.id))
                .where(RemediationAttempt.human_feedback.isnot(None))
                .group_by(RemediationAttempt.human_feedback)
            ).all()

        return {
            "total_attempts": total,
            "success_rate": round(successful / total * 100) if total else 0,
            "avg_confidence": round(avg_confidence or 0),
            "feedback": {row[0]: row[1] for row in feedback_rows},
        }
