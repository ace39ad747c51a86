"""Periodic automatic updates."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from regen.exceptions import RegenError, RunInProgressError
from regen.orchestrator import PipelineResult, ProgressCallback, UpdateOrchestrator

logger = structlog.get_logger()

DEFAULT_POLL_SECONDS = 60.0


class AutoUpdateScheduler:
    """Runs ``run_all`` whenever the update interval has elapsed.

    The interval is measured from the last successful run recorded in
    state.json. Checks are skipped while another run is in flight.

    Example:
        >>> scheduler = AutoUpdateScheduler(orchestrator, interval_hours=24)
        >>> scheduler.run_forever()  # blocks until stop() is called
    """

    def __init__(
        self,
        orchestrator: UpdateOrchestrator,
        *,
        interval_hours: float,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        on_event: ProgressCallback | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator: Orchestrator to drive.
            interval_hours: Minimum time between successful updates.
            poll_seconds: How often to check whether an update is due.
            on_event: Progress observer passed through to each run.
            clock: Returns the current UTC time (for tests).
        """
        self.orchestrator = orchestrator
        self.interval = timedelta(hours=interval_hours)
        self.poll_seconds = poll_seconds
        self.on_event = on_event
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._stop = threading.Event()

    def next_due(self) -> datetime | None:
        """When the next update is due, or None if one is due now."""
        last = self.orchestrator.state_store.last_success()
        if last is None:
            return None
        return last + self.interval

    def is_due(self) -> bool:
        """Whether an update should start now."""
        if self.orchestrator.is_running():
            return False
        due = self.next_due()
        return due is None or self._clock() >= due

    def tick(self) -> list[PipelineResult] | None:
        """Run all sources if an update is due.

        Returns:
            Pipeline results, or None if nothing ran.
        """
        if not self.is_due():
            return None

        logger.info("Auto-update starting")
        try:
            results = self.orchestrator.run_all(on_event=self.on_event)
        except RunInProgressError:
            logger.info("Auto-update skipped, update already running")
            return None
        except RegenError as e:
            logger.error("Auto-update failed", error=str(e))
            return None

        logger.info(
            "Auto-update finished",
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    def run_forever(self) -> None:
        """Check for due updates until stop() is called."""
        logger.info(
            "Auto-update enabled",
            interval_hours=self.interval.total_seconds() / 3600,
        )
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.poll_seconds)
        logger.info("Auto-update stopped")

    def stop(self) -> None:
        """Ask run_forever() to return after the current check."""
        self._stop.set()
