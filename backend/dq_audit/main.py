"""Data Quality Audit FastAPI Application.

Entry point for the backend server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dq_audit.api.health import router as health_router
from dq_audit.api.health import set_scheduler as set_health_scheduler
from dq_audit.api.v1.data_quality import router as data_quality_router
from dq_audit.api.v1.data_quality import set_dependencies as set_data_quality_deps
from dq_audit.config import settings
from dq_audit.db.database import create_db_and_tables
from dq_audit.engines.audit.feedback import FeedbackRecorder
from dq_audit.engines.audit.orchestrator import AuditOrchestrator
from dq_audit.engines.audit.queue_manager import ManualQueueManager
from dq_audit.engines.audit.reasoner import LLMRemediationReasoner
from dq_audit.engines.audit.remediation import RemediationEngine
from dq_audit.engines.audit.scheduler import AuditScheduler
from dq_audit.engines.audit.supervisor import AuditSupervisor
from dq_audit.llm.layer import LLMLayer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Startup: create tables
    create_db_and_tables()

    feedback = FeedbackRecorder()
    queue_manager = ManualQueueManager(feedback=feedback)
    reasoner = LLMRemediationReasoner(LLMLayer())
    remediation = RemediationEngine(reasoner, queue_manager)
    orchestrator = AuditOrchestrator(remediation_engine=remediation)
    orchestrator.mark_interrupted_runs()

    supervisor = AuditSupervisor(orchestrator)
    set_data_quality_deps(orchestrator, supervisor, queue_manager, feedback)

    scheduler = AuditScheduler(
        supervisor,
        interval_hours=settings.audit_interval_hours,
        enabled=settings.audit_schedule_enabled,
    )
    set_health_scheduler(scheduler)
    await scheduler.start()
    logger.info("Data quality pipeline initialized (auto-fix threshold %.0f)", remediation.auto_fix_threshold)

    yield

    # Shutdown: stop the scheduler, cancel in-flight runs
    scheduler.stop()
    await supervisor.shutdown()


app = FastAPI(
    title="Data Quality Audit",
    description="Automated data quality audits with AI remediation and a human review queue",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# Global exception handler: never leak internal details
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Let FastAPI handle HTTPExceptions normally (preserves status codes like 404, 409)
    if isinstance(exc, HTTPException):
        raise exc
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


# Routes
app.include_router(health_router)
app.include_router(data_quality_router)


@app.get("/")
async def root():
    return {"name": "Data Quality Audit", "version": "0.1.0", "status": "running"}
