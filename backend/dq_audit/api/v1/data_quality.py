"""Data Quality API — audit runs, manual queue, resolution, reports.

GET    /api/v1/data-quality/dashboard                 — latest score, trend, queue + AI stats
GET    /api/v1/data-quality/audit-history             — recent audit runs
POST   /api/v1/data-quality/run-audit                 — start an audit in the background
GET    /api/v1/data-quality/runs/{id}                 — poll one audit run
GET    /api/v1/data-quality/manual-queue              — queue items (filter: priority, status)
POST   /api/v1/data-quality/manual-queue/{id}/claim   — claim a pending item
POST   /api/v1/data-quality/resolve-issue             — resolve a queue item
GET    /api/v1/data-quality/learning-signals          — human feedback on AI attempts
GET    /api/v1/data-quality/report/{audit_id}         — CSV download
GET    /api/v1/data-quality/email-preview/{audit_id}  — HTML report
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Body, HTTPException, Query
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dq_audit.config import settings
from dq_audit.email.templates.audit_report import render_audit_email
from dq_audit.engines.audit.errors import (
    AuditAlreadyRunningError,
    FixValidationError,
    InvalidStateError,
    NotFoundError,
    PersistenceFailure,
)
from dq_audit.engines.audit.feedback import FeedbackRecorder
from dq_audit.engines.audit.orchestrator import AuditOrchestrator, trend_for
from dq_audit.engines.audit.queue_manager import ManualQueueManager
from dq_audit.engines.audit.report_builder import render_csv_report, report_filename
from dq_audit.engines.audit.supervisor import AuditSupervisor
from dq_audit.models.audit import AuditIssue, AuditRun, ManualQueueItem

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/data-quality", tags=["data-quality"])

# Module-level dependencies, set during app startup
_orchestrator: AuditOrchestrator | None = None
_supervisor: AuditSupervisor | None = None
_queue: ManualQueueManager | None = None
_feedback: FeedbackRecorder | None = None


def set_dependencies(
    orchestrator: AuditOrchestrator,
    supervisor: AuditSupervisor,
    queue_manager: ManualQueueManager,
    feedback: FeedbackRecorder,
) -> None:
    """Wire pipeline components during app startup."""
    global _orchestrator, _supervisor, _queue, _feedback
    _orchestrator = orchestrator
    _supervisor = supervisor
    _queue = queue_manager
    _feedback = feedback


def _require(component, name: str):
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not available")
    return component


# === Request / Response Models ===


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuditRunResponse(CamelModel):
    id: int
    scope: str
    trigger: str
    status: str
    started_at: datetime
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
    detector_errors: list[dict] = Field(default_factory=list)


class IssueResponse(CamelModel):
    id: int
    audit_run_id: int
    rule_name: str
    issue_type: str
    severity: str
    priority: str
    entity_type: str
    entity_id: int
    entity_description: str = ""
    description: str
    suggested_fix: str | None = None
    metadata: dict = Field(default_factory=dict)
    status: str
    flagged_for_review: bool = False
    detected_at: datetime
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None


class QueueItemResponse(CamelModel):
    id: int
    issue_id: int
    priority: str
    status: str
    assigned_to: str | None = None
    queued_at: datetime
    sla_deadline: datetime
    ai_suggestions: dict | None = None
    ai_reasoning: str | None = None
    resolved_at: datetime | None = None
    time_to_resolve_minutes: int | None = None
    sla_missed: bool = False
    notes: str | None = None


class QueueEntry(CamelModel):
    queue_item: QueueItemResponse
    issue: IssueResponse


class ManualQueueResponse(CamelModel):
    items: list[QueueEntry]


class AuditHistoryResponse(CamelModel):
    runs: list[AuditRunResponse]


class QueueStats(CamelModel):
    pending: int = 0
    in_progress: int = 0
    resolved: int = 0
    total: int = 0
    sla_missed: int = 0
    overdue: int = 0


class AIPerformance(CamelModel):
    total_attempts: int = 0
    success_rate: int = 0
    avg_confidence: int = 0
    feedback: dict[str, int] = Field(default_factory=dict)


class DashboardResponse(CamelModel):
    has_data: bool
    message: str | None = None
    current_score: float | None = None
    improvement: float | None = None
    trend: str | None = None
    latest_audit: AuditRunResponse | None = None
    manual_queue: QueueStats | None = None
    ai_performance: AIPerformance | None = None


class RunAuditRequest(CamelModel):
    scope: str = Field(default="global", min_length=1, max_length=100)


class RunAuditResponse(CamelModel):
    status: str
    audit_run_id: int
    message: str


class ClaimRequest(CamelModel):
    assignee: str = Field(min_length=1, max_length=200)


class ResolveIssueRequest(CamelModel):
    queue_id: int
    action: str = Field(pattern=r"^(approve|reject|custom)$")
    notes: str | None = Field(default=None, max_length=5000)
    apply_ai_suggestion: bool = False


class ResolveIssueResponse(CamelModel):
    success: bool
    message: str
    sla_missed: bool


class LearningSignalResponse(CamelModel):
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


class LearningSignalsResponse(CamelModel):
    signals: list[LearningSignalResponse]


# === Helpers ===


def _to_run_response(r: AuditRun) -> AuditRunResponse:
    return AuditRunResponse(
        id=r.id,
        scope=r.scope,
        trigger=r.trigger,
        status=r.status,
        started_at=r.started_at,
        completed_at=r.completed_at,
        total_issues=r.total_issues,
        errors=r.errors,
        warnings=r.warnings,
        info=r.info,
        auto_fixed=r.auto_fixed,
        flagged_for_review=r.flagged_for_review,
        manual_queue=r.manual_queue,
        data_quality_score=r.data_quality_score,
        improvement_from_last=r.improvement_from_last,
        execution_time_ms=r.execution_time_ms,
        error_message=r.error_message,
        detector_errors=r.detector_errors or [],
    )


def _to_issue_response(i: AuditIssue) -> IssueResponse:
    return IssueResponse(
        id=i.id,
        audit_run_id=i.audit_run_id,
        rule_name=i.rule_name,
        issue_type=i.issue_type,
        severity=i.severity,
        priority=i.priority,
        entity_type=i.entity_type,
        entity_id=i.entity_id,
        entity_description=i.entity_description,
        description=i.description,
        suggested_fix=i.suggested_fix,
        metadata=i.issue_metadata or {},
        status=i.status,
        flagged_for_review=i.flagged_for_review,
        detected_at=i.detected_at,
        resolved_by=i.resolved_by,
        resolved_at=i.resolved_at,
        resolution_notes=i.resolution_notes,
    )


def _to_queue_response(q: ManualQueueItem) -> QueueItemResponse:
    return QueueItemResponse(
        id=q.id,
        issue_id=q.issue_id,
        priority=q.priority,
        status=q.status,
        assigned_to=q.assigned_to,
        queued_at=q.queued_at,
        sla_deadline=q.sla_deadline,
        ai_suggestions=q.ai_suggestions,
        ai_reasoning=q.ai_reasoning,
        resolved_at=q.resolved_at,
        time_to_resolve_minutes=q.time_to_resolve_minutes,
        sla_missed=q.sla_missed,
        notes=q.notes,
    )


def _get_run_or_404(audit_id: int) -> AuditRun:
    orchestrator = _require(_orchestrator, "Audit orchestrator")
    try:
        return orchestrator.get_run(audit_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# === Dashboard ===


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard() -> DashboardResponse:
    """Latest completed run with trend, queue stats and AI performance."""
    orchestrator = _require(_orchestrator, "Audit orchestrator")
    latest = orchestrator.latest_completed_run()
    if latest is None:
        return DashboardResponse(has_data=False, message="No audit runs yet. Run your first audit!")

    previous_score = orchestrator.previous_score(latest)
    current = latest.data_quality_score or 0
    improvement = current - previous_score if previous_score is not None else 0

    return DashboardResponse(
        has_data=True,
        current_score=current,
        improvement=improvement,
        trend=trend_for(improvement),
        latest_audit=_to_run_response(latest),
        manual_queue=QueueStats(**_require(_queue, "Manual queue").get_stats()),
        ai_performance=AIPerformance(**_require(_feedback, "Feedback recorder").get_performance()),
    )


@router.get("/audit-history", response_model=AuditHistoryResponse)
async def get_audit_history(
    limit: int = Query(default=settings.audit_history_default_limit, ge=1, le=100),
) -> AuditHistoryResponse:
    """Recent audit runs, newest first."""
    runs = _require(_orchestrator, "Audit orchestrator").list_runs(limit)
    return AuditHistoryResponse(runs=[_to_run_response(r) for r in runs])


# === Runs ===


@router.post("/run-audit", response_model=RunAuditResponse)
async def run_audit(request: RunAuditRequest | None = Body(default=None)) -> RunAuditResponse:
    """Start an audit in the background and return its run id immediately."""
    supervisor = _require(_supervisor, "Audit supervisor")
    scope = request.scope if request else "global"
    try:
        run_id = supervisor.start(scope=scope, trigger="api")
    except AuditAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return RunAuditResponse(
        status="running",
        audit_run_id=run_id,
        message="Audit started. Poll the run or refresh the dashboard for results.",
    )


@router.get("/runs/{run_id}", response_model=AuditRunResponse)
async def get_run(run_id: int) -> AuditRunResponse:
    return _to_run_response(_get_run_or_404(run_id))


# === Manual Queue ===


@router.get("/manual-queue", response_model=ManualQueueResponse)
async def get_manual_queue(
    priority: str | None = Query(default=None, pattern=r"^P[012]$"),
    status: str | None = Query(default=None, pattern=r"^(pending|in_progress|resolved)$"),
) -> ManualQueueResponse:
    """Queue items joined with their issues; P0 first, oldest first."""
    rows = _require(_queue, "Manual queue").list_queue(priority=priority, status=status)
    return ManualQueueResponse(items=[
        QueueEntry(queue_item=_to_queue_response(item), issue=_to_issue_response(issue))
        for item, issue in rows
    ])


@router.post("/manual-queue/{queue_id}/claim", response_model=QueueItemResponse)
async def claim_queue_item(queue_id: int, request: ClaimRequest) -> QueueItemResponse:
    queue = _require(_queue, "Manual queue")
    try:
        item = queue.claim(queue_id, request.assignee)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _to_queue_response(item)


@router.post("/resolve-issue", response_model=ResolveIssueResponse)
async def resolve_issue(request: ResolveIssueRequest) -> ResolveIssueResponse:
    """Resolve a queue item with a human verdict."""
    queue = _require(_queue, "Manual queue")
    try:
        result = queue.resolve(
            request.queue_id,
            request.action,
            request.notes,
            apply_ai_suggestion=request.apply_ai_suggestion,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except FixValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceFailure as e:
        logger.error("Resolve failed for queue item %d: %s", request.queue_id, e)
        raise HTTPException(status_code=500, detail="Resolution could not be saved")

    return ResolveIssueResponse(success=result.success, message=result.message, sla_missed=result.sla_missed)


# === Learning Signals ===


@router.get("/learning-signals", response_model=LearningSignalsResponse)
async def get_learning_signals(
    after_id: int | None = Query(default=None, alias="afterId", ge=0),
    limit: int = Query(default=100, ge=1, le=500),
) -> LearningSignalsResponse:
    signals = _require(_feedback, "Feedback recorder").list_learning_signals(after_id=after_id, limit=limit)
    return LearningSignalsResponse(
        signals=[LearningSignalResponse.model_validate(s.model_dump()) for s in signals]
    )


# === Reports ===


@router.get("/report/{audit_id}")
async def get_report(audit_id: int) -> Response:
    """CSV export of every issue in a run."""
    run = _get_run_or_404(audit_id)
    issues = _orchestrator.get_run_issues(run.id)
    return Response(
        content=render_csv_report(issues),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={report_filename(run.id)}"},
    )


@router.get("/email-preview/{audit_id}", response_class=HTMLResponse)
async def get_email_preview(audit_id: int) -> HTMLResponse:
    run = _get_run_or_404(audit_id)
    email = render_audit_email(run, _orchestrator.previous_score(run))
    return HTMLResponse(content=email.html_body)
