"""DeferredTaskPoller — resumes runs suspended by ``wait`` steps.

Each poll selects due pending tasks, claims each one with a conditional
update (pending → processing), and only the claimant resumes the run.  A
second poller that selected the same task loses the claim and skips it.

Start standalone with:  python -m autoflow.triggers.poller
or through the CLI:     autoflow poll [--once]
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime, timezone
from typing import Callable, Optional

from autoflow.config import AutoflowConfig
from autoflow.engine.runner import AutomationRunner
from autoflow.exceptions import DeferredTaskError
from autoflow.interfaces import (
    AutomationCatalog,
    ConnectionStore,
    ContactStore,
    DeferredTaskStore,
)
from autoflow.types import DeferredTask, PollReport, RunOutcome

logger = logging.getLogger(__name__)


class DeferredTaskPoller:
    """Polls the deferred task store every ``poll_interval_seconds``."""

    def __init__(
        self,
        tasks: DeferredTaskStore,
        catalog: AutomationCatalog,
        contacts: ContactStore,
        connections: ConnectionStore,
        runner: AutomationRunner,
        config: AutoflowConfig = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._tasks = tasks
        self._catalog = catalog
        self._contacts = contacts
        self._connections = connections
        self._runner = runner
        self._config = config or AutoflowConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: asyncio.Task | None = None

    @property
    def runner(self) -> AutomationRunner:
        return self._runner

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background loop."""
        self._task = asyncio.create_task(self._loop(), name="autoflow-task-poller")
        logger.info("DeferredTaskPoller started (interval=%ds)", self._config.poll_interval_seconds)

    async def stop(self) -> None:
        """Cancel the background loop."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("DeferredTaskPoller stopped")

    # ── Core tick ────────────────────────────────────────────────────────────

    async def poll_once(self) -> PollReport:
        """Resume every due task once; returns aggregate counts."""
        report = PollReport()
        due = await self._tasks.list_due(self._clock(), self._config.poll_batch_size)
        if not due:
            logger.debug("No pending tasks to process")
            return report

        for task in due:
            if not await self._tasks.claim(task.id):
                logger.info("Task %s already claimed by another poller", task.id)
                report.skipped += 1
                continue
            try:
                await self._resume(task)
            except Exception as exc:
                if isinstance(exc, DeferredTaskError):
                    logger.warning("Task %s failed: %s", task.id, exc)
                else:
                    logger.exception("Task %s raised while resuming", task.id)
                await self._tasks.mark_failed(task.id, str(exc) or type(exc).__name__)
                report.failed += 1
                report.errors[task.id] = str(exc)
            else:
                await self._tasks.mark_processed(task.id)
                report.processed += 1

        logger.info(
            "Poll finished. Processed: %d, failed: %d, skipped: %d",
            report.processed, report.failed, report.skipped,
        )
        return report

    async def _resume(self, task: DeferredTask) -> None:
        automation = await self._catalog.get_automation(task.automation_id)
        contact = await self._contacts.get_contact(task.contact_id)
        connection = (
            await self._connections.get_connection(task.connection_id)
            if task.connection_id else None
        )
        if automation is None or contact is None or connection is None:
            raise DeferredTaskError(
                f"Could not find required data for task {task.id}. "
                f"Automation: {automation is not None}, Contact: {contact is not None}, "
                f"Connection: {connection is not None}",
                task_id=task.id,
            )

        result = await self._runner.run(
            automation,
            contact,
            task.context,
            connection,
            resume_from_node_id=task.resume_from_node_id,
        )
        if result.outcome == RunOutcome.ABORTED:
            logger.warning("Task %s resumed into an aborted run: %s", task.id, result.error)

    # ── Internal ─────────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("DeferredTaskPoller tick raised unexpectedly")
            await asyncio.sleep(self._config.poll_interval_seconds)


async def run(once: bool = False) -> PollReport | None:
    """Main coroutine: poll once, or loop until SIGINT / SIGTERM."""
    from autoflow.clients.messaging import WhatsAppClient
    from autoflow.wiring import build_services

    async with WhatsAppClient() as messaging:
        poller = build_services(messaging).poller
        if once:
            report = await poller.poll_once()
            await poller.runner.drain()
            return report

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
        loop.add_signal_handler(signal.SIGINT, stop_event.set)

        await poller.start()
        await stop_event.wait()
        logger.info("Shutting down DeferredTaskPoller…")
        await poller.stop()
        await poller.runner.drain()
    return None


def main() -> None:
    config = AutoflowConfig()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
