"""Data quality audit models.

Includes: AuditRun, AuditIssue, RemediationAttempt, ManualQueueItem (SQL tables).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from sqlalchemy import Index, text
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

Severity = Literal["error", "warning", "info"]
Priority = Literal["P0", "P1", "P2"]
RunStatus = Literal["running", "completed", "failed", "interrupted"]
IssueStatus = Literal["detected", "auto_fixed", "escalated", "resolved"]
ResolvedBy = Literal["ai", "human"]
AttemptOutcome = Literal["success", "failure"]
EscalationReason = Literal[
    "low_confidence", "invalid_fix", "no_fix", "collaborator_error", "timeout", "persistence_error",
]
HumanFeedback = Literal["approved", "rejected", "modified"]
QueueStatus = Literal["pending", "in_progress", "resolved"]
ResolutionAction = Literal["approve", "reject", "custom"]

ACTIVE_QUEUE_STATUSES = ("pending", "in_progress")
PRIORITY_ORDER = {"P0": 0, "P1": 1, "P2": 2}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditRun(SQLModel, table=True):
    """A single audit execution."""

    __tablename__ = "audit_run"

    id: int | None = SQLField(default=None, primary_key=True)
    scope: str = "global"
    trigger: str = "manual"  # "manual" | "scheduled" | "api"
    status: str = "running"  # RunStatus

    started_at: datetime = SQLField(default_factory=utcnow)
    completed_at: datetime | None = None

    total_issues: int = 0
    errors: int = 0
    warnings: int = 0
    info: int = 0
    auto_fixed: int = 0
    flagged_for_review: int = 0
    manual_queue: int = 0

    data_quality_score: float | None = None
    improvement_from_last: float | None = None
    execution_time_ms: int | None = None
    error_message: str | None = None
    detector_errors: list = SQLField(default_factory=list, sa_column=Column(JSON))


class AuditIssue(SQLModel, table=True):
    """One detected anomaly tied to a business record."""

    __tablename__ = "audit_issue"

    id: int | None = SQLField(default=None, primary_key=True)
    audit_run_id: int = SQLField(foreign_key="audit_run.id", index=True)

    rule_name: str
    issue_type: str = "other"
    severity: str  # Severity
    priority: str  # Priority

    entity_type: str
    entity_id: int
    entity_description: str = ""

    description: str
    suggested_fix: str | None = None
    issue_metadata: dict = SQLField(default_factory=dict, sa_column=Column(JSON))

    status: str = "detected"  # IssueStatus
    flagged_for_review: bool = False

    detected_at: datetime = SQLField(default_factory=utcnow)
    resolved_by: str | None = None  # ResolvedBy
    resolved_at: datetime | None = None
    resolution_notes: str | None = None


class RemediationAttempt(SQLModel, table=True):
    """One reasoning-collaborator invocation for an issue and its outcome."""

    __tablename__ = "remediation_attempt"

    id: int | None = SQLField(default=None, primary_key=True)
    issue_id: int = SQLField(foreign_key="audit_issue.id", index=True)

    ai_model: str = ""
    reasoning: str = ""
    confidence_score: float = 0.0
    data_sources: list = SQLField(default_factory=list, sa_column=Column(JSON))
    proposed_fix: dict | None = SQLField(default=None, sa_column=Column(JSON))
    fixes_applied: dict | None = SQLField(default=None, sa_column=Column(JSON))

    outcome: str  # AttemptOutcome
    escalation_reason: str | None = None  # EscalationReason
    error_message: str | None = None

    started_at: datetime = SQLField(default_factory=utcnow)
    completed_at: datetime = SQLField(default_factory=utcnow)
    execution_time_ms: int = 0

    # Written only by the feedback recorder
    human_feedback: str | None = None  # HumanFeedback
    feedback_notes: str | None = None
    learned: bool = False


class ManualQueueItem(SQLModel, table=True):
    """A pending human task for an escalated issue."""

    __tablename__ = "manual_queue_item"
    __table_args__ = (
        # One active item per issue
        Index(
            "uq_manual_queue_active_issue",
            "issue_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'in_progress')"),
            postgresql_where=text("status IN ('pending', 'in_progress')"),
        ),
    )

    id: int | None = SQLField(default=None, primary_key=True)
    issue_id: int = SQLField(foreign_key="audit_issue.id", index=True)

    priority: str  # Priority
    status: str = "pending"  # QueueStatus
    assigned_to: str | None = None

    queued_at: datetime = SQLField(default_factory=utcnow)
    sla_deadline: datetime

    ai_suggestions: dict | None = SQLField(default=None, sa_column=Column(JSON))
    ai_reasoning: str | None = None

    resolved_at: datetime | None = None
    time_to_resolve_minutes: int | None = None
    sla_missed: bool = False
    notes: str | None = None
    resolution_action: dict | None = SQLField(default=None, sa_column=Column(JSON))
