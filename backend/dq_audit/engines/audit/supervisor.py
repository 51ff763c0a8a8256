"""Audit supervisor — one background task per run, single-flight per scope.

The trigger opens the AuditRun row before the task starts so callers get a
run id they can poll immediately. Task exceptions are logged; the
orchestrator has already recorded them on the run.
"""

from __future__ import annotations

import asyncio
import logging

from dq_audit.engines.audit.errors import AuditAlreadyRunningError
from dq_audit.engines.audit.orchestrator import AuditOrchestrator, AuditRunSummary

logger = logging.getLogger(__name__)


class AuditSupervisor:
    """Starts and tracks audit runs.

    Usage:
        supervisor = AuditSupervisor(orchestrator)
        run_id = supervisor.start(scope="global", trigger="api")
        summary = await supervisor.wait(run_id)
    """

    def __init__(self, orchestrator: AuditOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._tasks: dict[int, asyncio.Task] = {}
        self._active: dict[str, int] = {}  # scope -> run id in flight

    def start(self, scope: str = "global", trigger: str = "manual") -> int:
        """Open a run and execute it in the background.

        Raises:
            AuditAlreadyRunningError: A run for ``scope`` is still in flight.
        """
        if scope in self._active:
            raise AuditAlreadyRunningError(scope, self._active[scope])

        run_id = self.orchestrator.open_run(scope, trigger)
        self._active[scope] = run_id
        task = asyncio.create_task(self.orchestrator.run_audit(run_id=run_id, scope=scope, trigger=trigger))
        self._tasks[run_id] = task
        task.add_done_callback(lambda t, s=scope, r=run_id: self._on_done(s, r, t))
        return run_id

    def _on_done(self, scope: str, run_id: int, task: asyncio.Task) -> None:
        if self._active.get(scope) == run_id:
            del self._active[scope]
        self._tasks.pop(run_id, None)
        if task.cancelled():
            logger.warning("Audit run %d was cancelled", run_id)
        elif task.exception() is not None:
            logger.error("Audit run %d task exception: %s", run_id, task.exception())

    def is_running(self, scope: str = "global") -> bool:
        return scope in self._active

    def active_run_id(self, scope: str = "global") -> int | None:
        return self._active.get(scope)

    async def wait(self, run_id: int) -> AuditRunSummary | None:
        """Await a run started by this supervisor; None if it already finished."""
        task = self._tasks.get(run_id)
        if task is None:
            return None
        return await task

    async def shutdown(self) -> None:
        """Cancel in-flight runs. Their rows are marked interrupted on next startup."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight audit run(s)", len(tasks))

    def get_status(self) -> dict:
        return {"active_runs": dict(self._active)}
