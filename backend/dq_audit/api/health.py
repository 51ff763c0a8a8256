"""Health check endpoint — dependency checks for the audit service.

Checks: LLM API key, SQLite DB, audit scheduler.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from dq_audit.config import settings
from dq_audit.db import database

router = APIRouter()

VERSION = "0.1.0"

# Set during app startup
_scheduler = None


def set_scheduler(scheduler) -> None:
    global _scheduler
    _scheduler = scheduler


class HealthStatus(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    version: str
    checks: dict[str, dict]
    dependencies: dict[str, str]  # Simplified view for frontend
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Check system dependencies."""
    checks: dict[str, dict] = {}
    overall_healthy = True
    has_warning = False

    # 1. LLM API key (remediation degrades to escalation without it)
    api_key = settings.anthropic_api_key
    if api_key == "test":
        checks["llm_api"] = {"status": "ok", "detail": "test mode"}
    elif api_key:
        checks["llm_api"] = {"status": "ok", "detail": "API key configured"}
    else:
        checks["llm_api"] = {"status": "warning", "detail": "ANTHROPIC_API_KEY not set (all issues will escalate)"}
        has_warning = True

    # 2. Database
    try:
        with database.engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            if database.engine.dialect.name == "sqlite":
                wal = conn.execute(text("PRAGMA journal_mode")).fetchone()
                checks["database"] = {"status": "ok", "detail": f"journal_mode={wal[0]}"}
            else:
                checks["database"] = {"status": "ok", "detail": database.engine.dialect.name}
    except Exception as e:
        checks["database"] = {"status": "error", "detail": str(e)}
        overall_healthy = False

    # 3. Audit scheduler (informational)
    if _scheduler is None:
        checks["audit_scheduler"] = {"status": "disabled", "detail": "not started"}
    else:
        sched = _scheduler.get_status()
        if sched["running"]:
            checks["audit_scheduler"] = {"status": "ok", "detail": f"every {sched['interval_hours']:g}h"}
        else:
            checks["audit_scheduler"] = {
                "status": "disabled",
                "detail": "set AUDIT_SCHEDULE_ENABLED=true to run audits periodically",
            }

    dependencies = {name: check["status"] for name, check in checks.items()}

    if overall_healthy:
        status = "degraded" if has_warning else "healthy"
    else:
        status = "unhealthy"

    return HealthStatus(
        status=status,
        version=VERSION,
        checks=checks,
        dependencies=dependencies,
        timestamp=datetime.now(timezone.utc),
    )
