"""Manual intervention queue — human review of escalated issues.

State machine per item: pending → in_progress → resolved (terminal).
in_progress is optional; resolve accepts either active state. Every
transition is an atomic conditional UPDATE on the current status, so two
reviewers racing on the same item cannot both win.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import case, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from dq_audit.config import settings
from dq_audit.db import database
from dq_audit.engines.audit.errors import (
    FixValidationError,
    InvalidStateError,
    NotFoundError,
    PersistenceFailure,
)
from dq_audit.engines.audit.feedback import FeedbackRecorder
from dq_audit.engines.audit.fix_applier import apply_fix
from dq_audit.models.audit import (
    ACTIVE_QUEUE_STATUSES,
    PRIORITY_ORDER,
    AuditIssue,
    ManualQueueItem,
    as_utc,
    utcnow,
)
from dq_audit.models.remediation import parse_fix

logger = logging.getLogger(__name__)

RESOLUTION_ACTIONS = ("approve", "reject", "custom")


class ResolutionResult(BaseModel):
    success: bool = True
    message: str = "Issue resolved successfully"
    queue_id: int
    issue_id: int
    sla_missed: bool
    time_to_resolve_minutes: int
    applied_fix: dict | None = None


def default_sla_windows() -> dict[str, timedelta]:
    return {
        "P0": timedelta(hours=settings.sla_window_p0_hours),
        "P1": timedelta(hours=settings.sla_window_p1_hours),
        "P2": timedelta(hours=settings.sla_window_p2_hours),
    }


class ManualQueueManager:
    """Owns ManualQueueItems from creation to resolution.

    Usage:
        queue = ManualQueueManager(feedback=FeedbackRecorder())
        items = queue.list_queue(priority="P0")
        result = queue.resolve(items[0][0].id, "approve", "looks right", apply_ai_suggestion=True)
    """

    def __init__(
        self,
        feedback: FeedbackRecorder | None = None,
        db_engine: Engine | None = None,
        sla_windows: dict[str, timedelta] | None = None,
    ) -> None:
        self._engine = db_engine if db_engine is not None else database.engine
        self.feedback = feedback or FeedbackRecorder(db_engine=self._engine)
        self.sla_windows = sla_windows or default_sla_windows()

    def sla_deadline_for(self, priority: str, queued_at: datetime) -> datetime:
        try:
            window = self.sla_windows[priority]
        except KeyError:
            raise ValueError(f"No SLA window configured for priority {priority!r}") from None
        return queued_at + window

    # ------------------------------------------------------------------
    # Creation (called by the remediation engine inside its transaction)
    # ------------------------------------------------------------------

    def enqueue(
        self,
        session: Session,
        issue: AuditIssue,
        ai_suggestions: dict | None,
        ai_reasoning: str | None,
        now: datetime | None = None,
    ) -> ManualQueueItem:
        """Add a queue item for ``issue`` within the caller's session."""
        active = session.exec(
            select(ManualQueueItem)
            .where(ManualQueueItem.issue_id == issue.id)
            .where(ManualQueueItem.status.in_(ACTIVE_QUEUE_STATUSES))
        ).first()
        if active is not None:
            raise InvalidStateError("issue", issue.id, "queued", f"active queue item {active.id} exists")

        queued_at = now or utcnow()
        item = ManualQueueItem(
            issue_id=issue.id,
            priority=issue.priority,
            status="pending",
            queued_at=queued_at,
            sla_deadline=self.sla_deadline_for(issue.priority, queued_at),
            ai_suggestions=ai_suggestions,
            ai_reasoning=ai_reasoning,
        )
        session.add(item)
        session.flush()
        return item

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def claim(self, queue_id: int, assignee: str) -> ManualQueueItem:
        """pending → in_progress."""
        with Session(self._engine) as session:
            result = session.execute(
                update(ManualQueueItem)
                .where(ManualQueueItem.id == queue_id)
                .where(ManualQueueItem.status == "pending")
                .values(status="in_progress", assigned_to=assignee)
            )
            if result.rowcount != 1:
                session.rollback()
                item = session.get(ManualQueueItem, queue_id)
                if item is None:
                    raise NotFoundError("queue item", queue_id)
                raise InvalidStateError("queue item", queue_id, item.status, "only pending items can be claimed")
            session.commit()
            item = session.get(ManualQueueItem, queue_id)
            session.refresh(item)
            session.expunge(item)
        logger.info("Queue item %d claimed by %s", queue_id, assignee)
        return item

    def resolve(
        self,
        queue_id: int,
        action: str,
        notes: str | None = None,
        apply_ai_suggestion: bool = False,
        now: datetime | None = None,
    ) -> ResolutionResult:
        """Resolve a queue item with a human verdict.

        Raises:
            NotFoundError: No queue item with ``queue_id``; nothing is changed.
            InvalidStateError: The item is already resolved; nothing is changed.
            FixValidationError: apply_ai_suggestion was requested but the
                stored suggestion is missing or no longer valid.
            PersistenceFailure: The transaction failed and was rolled back.
        """
        if action not in RESOLUTION_ACTIONS:
            raise ValueError(f"Unknown resolution action: {action!r}")

        with Session(self._engine) as session:
            item = session.get(ManualQueueItem, queue_id)
            if item is None:
                raise NotFoundError("queue item", queue_id)
            if item.status not in ACTIVE_QUEUE_STATUSES:
                raise InvalidStateError("queue item", queue_id, item.status)

            issue = session.get(AuditIssue, item.issue_id)
            if issue is None:
                raise NotFoundError("issue", item.issue_id)

            queued_at = as_utc(item.queued_at)
            resolved_at = max(as_utc(now) if now else utcnow(), queued_at)
            minutes = round((resolved_at - queued_at).total_seconds() / 60)
            sla_missed = resolved_at > as_utc(item.sla_deadline)

            try:
                applied = None
                if apply_ai_suggestion:
                    fix = parse_fix(item.ai_suggestions)
                    if fix is None:
                        raise FixValidationError(f"Queue item {queue_id} has no AI suggestion to apply")
                    applied = apply_fix(session, issue.entity_type, issue.entity_id, fix)

                result = session.execute(
                    update(ManualQueueItem)
                    .where(ManualQueueItem.id == queue_id)
                    .where(ManualQueueItem.status.in_(ACTIVE_QUEUE_STATUSES))
                    .values(
                        status="resolved",
                        resolved_at=resolved_at,
                        time_to_resolve_minutes=minutes,
                        sla_missed=sla_missed,
                        notes=notes,
                        resolution_action={"action": action, "apply_ai_suggestion": apply_ai_suggestion},
                    )
                )
                if result.rowcount != 1:
                    # Lost the race to a concurrent resolve
                    raise InvalidStateError("queue item", queue_id, "resolved")

                issue.status = "resolved"
                issue.resolved_by = "human"
                issue.resolved_at = resolved_at
                issue.resolution_notes = notes
                session.add(issue)

                attempt = self.feedback.record_feedback(issue.id, action, notes, session=session)
                session.commit()
            except (FixValidationError, InvalidStateError):
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("Resolving queue item %d failed: %s", queue_id, e)
                raise PersistenceFailure(f"Could not resolve queue item {queue_id}") from e

            issue_id = issue.id
            attempt_id = attempt.id if attempt is not None else None

        if attempt_id is not None:
            self.feedback.publish(attempt_id)

        logger.info(
            "Queue item %d resolved (%s, apply_ai=%s, sla_missed=%s, %d min)",
            queue_id, action, apply_ai_suggestion, sla_missed, minutes,
        )
        return ResolutionResult(
            queue_id=queue_id,
            issue_id=issue_id,
            sla_missed=sla_missed,
            time_to_resolve_minutes=minutes,
            applied_fix=applied.model_dump(mode="json") if applied else None,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_queue(
        self,
        priority: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[tuple[ManualQueueItem, AuditIssue]]:
        """Queue items with their issues, P0 first, oldest first within a tier."""
        priority_rank = case(PRIORITY_ORDER, value=ManualQueueItem.priority, else_=len(PRIORITY_ORDER))
        with Session(self._engine) as session:
            stmt = (
                select(ManualQueueItem, AuditIssue)
                .join(AuditIssue, ManualQueueItem.issue_id == AuditIssue.id)
                .order_by(priority_rank, ManualQueueItem.queued_at, ManualQueueItem.id)
            )
            if priority:
                stmt = stmt.where(ManualQueueItem.priority == priority)
            if status:
                stmt = stmt.where(ManualQueueItem.status == status)
            if limit:
                stmt = stmt.limit(limit)
            rows = session.exec(stmt).all()
            for item, issue in rows:
                session.expunge(item)
                session.expunge(issue)
        return [(item, issue) for item, issue in rows]

    def get_item(self, queue_id: int) -> ManualQueueItem:
        with Session(self._engine) as session:
            item = session.get(ManualQueueItem, queue_id)
            if item is None:
                raise NotFoundError("queue item", queue_id)
            session.expunge(item)
        return item

    def get_stats(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        with Session(self._engine) as session:
            status_rows = session.exec(
                select(ManualQueueItem.status, func.count(ManualQueueItem.id))
                .group_by(ManualQueueItem.status)
            ).all()
            sla_missed = session.exec(
                select(func.count(ManualQueueItem.id)).where(ManualQueueItem.sla_missed == True)  # noqa: E712
            ).one()
            active_deadlines = session.exec(
                select(ManualQueueItem.sla_deadline)
                .where(ManualQueueItem.status.in_(ACTIVE_QUEUE_STATUSES))
            ).all()

        by_status = {row[0]: row[1] for row in status_rows}
        return {
            "pending": by_status.get("pending", 0),
            "in_progress": by_status.get("in_progress", 0),
            "resolved": by_status.get("resolved", 0),
            "total": sum(by_status.values()),
            "sla_missed": sla_missed,
            "overdue": sum(1 for deadline in active_deadlines if as_utc(deadline) < now),
        }
