"""Audit orchestrator — runs detectors, persists issues, drives remediation.

Run lifecycle:
    open_run()  → AuditRun(status="running")
    run_audit() → detect → classify + persist → remediate (bounded fan-out)
               → finalize counters from the persisted issues → "completed"

A failure outside per-issue processing marks the run "failed" and is
re-raised. Runs still "running" when the process restarts are marked
"interrupted" by mark_interrupted_runs().
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Sequence

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from dq_audit.config import settings
from dq_audit.db import database
from dq_audit.engines.audit.classifier import IssueClassifier
from dq_audit.engines.audit.detectors import Detector, default_detectors
from dq_audit.engines.audit.errors import DetectionFailure, NotFoundError, PersistenceFailure
from dq_audit.engines.audit.remediation import RemediationEngine
from dq_audit.models.audit import AuditIssue, AuditRun, utcnow

logger = logging.getLogger(__name__)


class AuditRunSummary(BaseModel):
    """Counters of one finished run."""

    run_id: int
    scope: str
    status: str
    total_issues: int = 0
    errors: int = 0
    warnings: int = 0
    info: int = 0
    auto_fixed: int = 0
    flagged_for_review: int = 0
    manual_queue: int = 0
    data_quality_score: float | None = None
    improvement_from_last: float | None = None
    execution_time_ms: int = 0
    detector_errors: list[dict] = []


def compute_quality_score(
    errors: int,
    warnings: int,
    info: int,
    auto_fixed: int,
    weights: dict[str, float] | None = None,
) -> float:
    """100 minus weighted issue counts plus credit for AI fixes, clamped to [0, 100]."""
    w = weights or {
        "error": settings.score_weight_error,
        "warning": settings.score_weight_warning,
        "info": settings.score_weight_info,
        "autofix": settings.score_autofix_credit,
    }
    raw = 100 - w["error"] * errors - w["warning"] * warnings - w["info"] * info + w["autofix"] * auto_fixed
    # Halves round up
    return float(max(0, min(100, math.floor(raw + 0.5))))


def trend_for(improvement: float | None) -> str:
    if improvement is None or improvement == 0:
        return "stable"
    return "improving" if improvement > 0 else "declining"


class AuditOrchestrator:
    """Coordinates one audit run end to end.

    Usage:
        orchestrator = AuditOrchestrator(remediation_engine=engine)
        summary = await orchestrator.run_audit()
    """

    def __init__(
        self,
        remediation_engine: RemediationEngine,
        detectors: Sequence[Detector] | None = None,
        classifier: IssueClassifier | None = None,
        db_engine: Engine | None = None,
        concurrency_limit: int | None = None,
        score_weights: dict[str, float] | None = None,
    ) -> None:
        self.remediation_engine = remediation_engine
        self.detectors = list(detectors) if detectors is not None else default_detectors()
        self.classifier = classifier or IssueClassifier()
        self._engine = db_engine if db_engine is not None else database.engine
        self.concurrency_limit = concurrency_limit or settings.audit_concurrency_limit
        self.score_weights = score_weights

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def open_run(self, scope: str = "global", trigger: str = "manual") -> int:
        """Persist a new running AuditRun and return its id."""
        with Session(self._engine) as session:
            run = AuditRun(scope=scope, trigger=trigger, status="running")
            session.add(run)
            session.commit()
            session.refresh(run)
            run_id = run.id
        logger.info("Audit run %d opened (scope=%s, trigger=%s)", run_id, scope, trigger)
        return run_id

    async def run_audit(
        self,
        run_id: int | None = None,
        scope: str = "global",
        trigger: str = "manual",
    ) -> AuditRunSummary:
        """Execute a full audit; opens a run first when ``run_id`` is None."""
        if run_id is None:
            run_id = self.open_run(scope, trigger)
        t0 = time.monotonic()

        try:
            issue_ids, detector_errors = await self._detect_and_persist(run_id)
            logger.info("Audit run %d: %d issues detected, remediating", run_id, len(issue_ids))
            await self._remediate_all(issue_ids)
            summary = self._finalize(run_id, detector_errors, int((time.monotonic() - t0) * 1000))
        except Exception as e:
            logger.error("Audit run %d failed: %s", run_id, e, exc_info=True)
            self._mark_failed(run_id, e, int((time.monotonic() - t0) * 1000))
            raise

        logger.info(
            "Audit run %d completed: %d issues, %d auto-fixed, %d queued, score=%.0f",
            run_id, summary.total_issues, summary.auto_fixed, summary.manual_queue,
            summary.data_quality_score,
        )
        return summary

    async def _detect_and_persist(self, run_id: int) -> tuple[list[int], list[dict]]:
        issue_ids: list[int] = []
        detector_errors: list[dict] = []

        for detector in self.detectors:
            name = getattr(detector, "name", type(detector).__name__)
            with Session(self._engine) as session:
                try:
                    anomalies = await detector.detect(session)
                except Exception as e:
                    failure = DetectionFailure(name, e)
                    logger.error("%s", failure, exc_info=True)
                    detector_errors.append({"detector": name, "error": str(e)})
                    session.rollback()
                    continue

                issues = []
                for anomaly in anomalies:
                    c = self.classifier.classify(anomaly)
                    issue = AuditIssue(
                        audit_run_id=run_id,
                        rule_name=anomaly.rule,
                        issue_type=c.issue_type,
                        severity=c.severity,
                        priority=c.priority,
                        entity_type=anomaly.entity_type,
                        entity_id=anomaly.entity_id,
                        entity_description=anomaly.entity_description,
                        description=anomaly.message,
                        suggested_fix=c.suggested_fix,
                        issue_metadata=anomaly.metadata,
                    )
                    session.add(issue)
                    issues.append(issue)
                session.commit()
                issue_ids.extend(issue.id for issue in issues)
            logger.debug("Detector %s: %d anomalies", name, len(anomalies))

        return issue_ids, detector_errors

    async def _remediate_all(self, issue_ids: list[int]) -> None:
        semaphore = asyncio.Semaphore(self.concurrency_limit)

        async def _bounded(issue_id: int) -> None:
            async with semaphore:
                await self._process_issue(issue_id)

        # Tasks are created in detection order; all must finish before finalize
        await asyncio.gather(*[_bounded(issue_id) for issue_id in issue_ids])

    async def _process_issue(self, issue_id: int) -> None:
        try:
            attempt = await self.remediation_engine.attempt_fix(issue_id)
            logger.debug("Issue %d: %s", issue_id, attempt.outcome)
        except PersistenceFailure as e:
            # Issue stays detected; finalize counts it as unremediated
            logger.error("Issue %d: %s", issue_id, e)
        except Exception as e:
            logger.error("Issue %d: remediation failed, escalating: %s", issue_id, e, exc_info=True)
            try:
                await self.remediation_engine.escalate_failure(issue_id, e)
            except Exception as escalation_error:
                logger.error("Issue %d: forced escalation failed: %s", issue_id, escalation_error)

    def _finalize(self, run_id: int, detector_errors: list[dict], elapsed_ms: int) -> AuditRunSummary:
        with Session(self._engine) as session:
            run = session.get(AuditRun, run_id)
            if run is None:
                raise NotFoundError("audit run", run_id)
            issues = session.exec(select(AuditIssue).where(AuditIssue.audit_run_id == run_id)).all()

            run.total_issues = len(issues)
            run.errors = sum(1 for i in issues if i.severity == "error")
            run.warnings = sum(1 for i in issues if i.severity == "warning")
            run.info = sum(1 for i in issues if i.severity == "info")
            run.auto_fixed = sum(1 for i in issues if i.status == "auto_fixed" and not i.flagged_for_review)
            run.flagged_for_review = sum(1 for i in issues if i.status == "auto_fixed" and i.flagged_for_review)
            run.manual_queue = sum(
                1 for i in issues if i.status == "escalated" or (i.status == "resolved" and i.resolved_by == "human")
            )
            run.data_quality_score = compute_quality_score(
                run.errors, run.warnings, run.info, run.auto_fixed, self.score_weights,
            )

            previous = self._previous_completed(session, run)
            run.improvement_from_last = (
                run.data_quality_score - previous.data_quality_score
                if previous is not None and previous.data_quality_score is not None
                else None
            )
            run.detector_errors = detector_errors
            run.execution_time_ms = elapsed_ms
            run.completed_at = utcnow()
            run.status = "completed"
            session.add(run)
            session.commit()
            session.refresh(run)
            return AuditRunSummary(
                run_id=run.id,
                scope=run.scope,
                status=run.status,
                total_issues=run.total_issues,
                errors=run.errors,
                warnings=run.warnings,
                info=run.info,
                auto_fixed=run.auto_fixed,
                flagged_for_review=run.flagged_for_review,
                manual_queue=run.manual_queue,
                data_quality_score=run.data_quality_score,
                improvement_from_last=run.improvement_from_last,
                execution_time_ms=run.execution_time_ms,
                detector_errors=run.detector_errors,
            )

    def _mark_failed(self, run_id: int, error: Exception, elapsed_ms: int) -> None:
        try:
            with Session(self._engine) as session:
                run = session.get(AuditRun, run_id)
                if run is None:
                    return
                run.status = "failed"
                run.error_message = f"{type(error).__name__}: {error}"
                run.completed_at = utcnow()
                run.execution_time_ms = elapsed_ms
                session.add(run)
                session.commit()
        except Exception as e:
            logger.error("Could not mark audit run %d failed: %s", run_id, e)

    def mark_interrupted_runs(self) -> int:
        """Mark runs left 'running' by a previous process as interrupted."""
        with Session(self._engine) as session:
            result = session.execute(
                update(AuditRun)
                .where(AuditRun.status == "running")
                .values(status="interrupted", completed_at=utcnow(),
                        error_message="Process stopped before the run finished")
            )
            session.commit()
            count = result.rowcount
        if count:
            logger.warning("Marked %d stale audit run(s) as interrupted", count)
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _previous_completed(session: Session, run: AuditRun) -> AuditRun | None:
        return session.exec(
            select(AuditRun)
            .where(AuditRun.scope == run.scope)
            .where(AuditRun.status == "completed")
            .where(AuditRun.id < run.id)
            .order_by(AuditRun.id.desc())
            .limit(1)
        ).first()

    def get_run(self, run_id: int) -> AuditRun:
        with Session(self._engine) as session:
            run = session.get(AuditRun, run_id)
            if run is None:
                raise NotFoundError("audit run", run_id)
            session.expunge(run)
        return run

    def list_runs(self, limit: int | None = None) -> list[AuditRun]:
        """Most recent runs first."""
        with Session(self._engine) as session:
            runs = session.exec(
                select(AuditRun)
                .order_by(AuditRun.started_at.desc(), AuditRun.id.desc())
                .limit(limit or settings.audit_history_default_limit)
            ).all()
            for run in runs:
                session.expunge(run)
        return list(runs)

    def latest_completed_run(self, scope: str | None = None) -> AuditRun | None:
        with Session(self._engine) as session:
            stmt = select(AuditRun).where(AuditRun.status == "completed")
            if scope:
                stmt = stmt.where(AuditRun.scope == scope)
            run = session.exec(stmt.order_by(AuditRun.id.desc()).limit(1)).first()
            if run is not None:
                session.expunge(run)
        return run

    def previous_score(self, run: AuditRun) -> float | None:
        with Session(self._engine) as session:
            previous = self._previous_completed(session, run)
            return previous.data_quality_score if previous is not None else None

    def get_run_issues(self, run_id: int) -> list[AuditIssue]:
        """Issues of a run, P0 first then detection order."""
        self.get_run(run_id)
        with Session(self._engine) as session:
            issues = session.exec(
                select(AuditIssue)
                .where(AuditIssue.audit_run_id == run_id)
                .order_by(AuditIssue.priority, AuditIssue.id)
            ).all()
            for issue in issues:
                session.expunge(issue)
        return list(issues)
