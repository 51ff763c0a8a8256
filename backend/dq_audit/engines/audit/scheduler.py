"""Audit Scheduler — periodic data quality audits.

Follows the IntegrityScheduler pattern: an asyncio background task that
wakes on a configurable interval and triggers a scoped run through the
supervisor. A tick is skipped while a run for the scope is in flight.
"""

from __future__ import annotations

import asyncio
import logging

from dq_audit.engines.audit.errors import AuditAlreadyRunningError
from dq_audit.engines.audit.supervisor import AuditSupervisor

logger = logging.getLogger(__name__)


class AuditScheduler:
    """Runs periodic audits.

    Usage:
        scheduler = AuditScheduler(supervisor, interval_hours=24.0, enabled=True)
        await scheduler.start()
        # ... app runs ...
        scheduler.stop()
    """

    def __init__(
        self,
        supervisor: AuditSupervisor | None,
        interval_hours: float = 24.0,
        enabled: bool = True,
        scope: str = "global",
    ) -> None:
        self._supervisor = supervisor
        self._interval_seconds = interval_hours * 3600
        self._enabled = enabled
        self._scope = scope
        self._task: asyncio.Task | None = None
        self._running = False
        self._last_run_id: int | None = None

    async def start(self) -> None:
        """Start the scheduler as a background task."""
        if not self._enabled:
            logger.info("Audit scheduler disabled")
            return
        if self._supervisor is None:
            logger.warning("Audit scheduler: no supervisor, disabled")
            return
        if self._running:
            logger.warning("Audit scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Audit scheduler started (interval: %.1f hours)", self._interval_seconds / 3600)

    def stop(self) -> None:
        """Stop the scheduler."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Audit scheduler stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval_seconds)
                if not self._running:
                    break
                self.trigger()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Audit scheduler error: %s", e, exc_info=True)
                await asyncio.sleep(300)  # Back off 5 min on error

    def trigger(self) -> int | None:
        """Start a scheduled run unless one is already in flight."""
        try:
            run_id = self._supervisor.start(scope=self._scope, trigger="scheduled")
        except AuditAlreadyRunningError as e:
            logger.info("Scheduled audit skipped: run %s still in flight", e.run_id)
            return None
        self._last_run_id = run_id
        logger.info("Scheduled audit run %d started", run_id)
        return run_id

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def get_status(self) -> dict:
        """Get scheduler status for health checks."""
        return {
            "enabled": self._enabled,
            "running": self.is_running,
            "interval_hours": self._interval_seconds / 3600,
            "scope": self._scope,
            "last_run_id": self._last_run_id,
        }
