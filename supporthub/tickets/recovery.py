from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from .models import SyncStatus
from .orchestrator import TicketCreationOrchestrator
from .repository import TicketStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecoveryReport:
    """Outcome of a single sweep."""

    scanned: int = 0
    recovered: int = 0
    failed: int = 0
    skipped: bool = False


class TicketRecoveryService:
    """Periodically replay the counter update for tickets left ``FAILED``.

    Sweeps are single-flight: a sweep requested while another one is running
    returns immediately with ``skipped=True``. The background loop waits
    ``interval_seconds`` after each sweep finishes before starting the next.
    """

    def __init__(
        self,
        repository: TicketStore,
        orchestrator: TicketCreationOrchestrator,
        *,
        interval_seconds: float = 300.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._repository = repository
        self._orchestrator = orchestrator
        self._interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def recover_failed_tickets(self) -> RecoveryReport:
        if self._lock.locked():
            logger.info("Recovery sweep already in progress; skipping")
            return RecoveryReport(skipped=True)

        async with self._lock:
            report = RecoveryReport()
            failed_tickets = await self._repository.find_by_sync_status(SyncStatus.FAILED)
            report.scanned = len(failed_tickets)
            logger.info("Found %d failed tickets to retry recovery", report.scanned)

            for ticket in failed_tickets:
                try:
                    recovered = await self._orchestrator.recover_ticket(ticket)
                except Exception:
                    logger.exception("Failed to retry recovery for ticket: %s", ticket.id)
                    recovered = False
                if recovered:
                    report.recovered += 1
                else:
                    report.failed += 1

            if report.scanned:
                logger.info(
                    "Recovery sweep finished: %d recovered, %d still failed", report.recovered, report.failed
                )
            return report

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="ticket-recovery-sweeper")
        logger.info("Ticket recovery sweeper started (interval %.1fs)", self._interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Ticket recovery sweeper stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.recover_failed_tickets()
            except Exception:
                logger.exception("Recovery sweep aborted")
            await asyncio.sleep(self._interval_seconds)
