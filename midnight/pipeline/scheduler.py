"""
Scheduler
=========
Fires one PipelineRun per cron instant.

Semantics:
    - Fire-and-forget: the run is started as a background task and the
      scheduler immediately computes the next instant. It never waits for,
      retries, or suppresses a run.
    - Trigger miss: if the loop wakes up more than ``misfire_grace_seconds``
      after the instant (host suspended, process down), that instant is
      skipped and logged. Nothing is backfilled by default.
    - Catch-up (opt-in): with ``catch_up=True`` the run ledger is compared
      against the latest scheduled instant at start-up and on every missed
      tick; a missing instant is fired once with trigger ``catch_up``.
      Only the latest missed instant is fired, never a backlog.

The sleep is chunked so that wall-clock jumps are noticed within a minute.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from midnight.core.config import SCHEDULE_CATCH_UP, SCHEDULE_MISFIRE_GRACE_SECONDS
from midnight.pipeline.orchestrator import PipelineOrchestrator
from midnight.pipeline.schedule import CronSchedule
from midnight.services.run_ledger import RunLedger

logger = logging.getLogger(__name__)

_MAX_SLEEP_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        schedule: CronSchedule,
        misfire_grace_seconds: int = SCHEDULE_MISFIRE_GRACE_SECONDS,
        catch_up: bool = SCHEDULE_CATCH_UP,
        ledger: Optional[RunLedger] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep=asyncio.sleep,
    ) -> None:
        self.orchestrator = orchestrator
        self.schedule = schedule
        self.misfire_grace_seconds = misfire_grace_seconds
        self.catch_up = catch_up
        self.ledger = ledger or RunLedger()
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._runs: set[asyncio.Task] = set()
        self.next_fire_at: Optional[datetime] = None
        self.missed: List[datetime] = []
        self.fired: List[datetime] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(
            "[SCHEDULER] Started | cron='%s' | grace=%ds | catch_up=%s",
            self.schedule.expression, self.misfire_grace_seconds, self.catch_up,
        )
        self._task = asyncio.create_task(self._loop(), name="midnight-scheduler")

    async def stop(self) -> None:
        """Stop triggering. Runs already in flight are left to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[SCHEDULER] Stopped")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def _loop(self) -> None:
        if self.catch_up:
            self.check_catch_up()
        while True:
            fire_at = self.schedule.next_after(self._clock())
            self.next_fire_at = fire_at
            logger.info("[SCHEDULER] Next trigger at %s", fire_at.isoformat())
            await self.wait_until(fire_at)
            self.tick(fire_at)

    async def wait_until(self, fire_at: datetime) -> None:
        while True:
            remaining = (fire_at - self._clock()).total_seconds()
            if remaining <= 0:
                return
            await self._sleep(min(remaining, _MAX_SLEEP_SECONDS))

    def tick(self, fire_at: datetime) -> Optional[asyncio.Task]:
        """Handle one scheduled instant: fire it, or record a miss."""
        lateness = (self._clock() - fire_at).total_seconds()
        if lateness > self.misfire_grace_seconds:
            self.missed.append(fire_at)
            logger.warning(
                "[SCHEDULER] Trigger missed for %s (woke %.0fs late), skipping",
                fire_at.isoformat(), lateness,
            )
            if self.catch_up:
                return self.check_catch_up()
            return None
        return self.fire(fire_at, "schedule")

    def fire(self, fire_at: datetime, trigger: str) -> asyncio.Task:
        """Start one PipelineRun in the background and record the instant."""
        logger.info("[SCHEDULER] Firing %s run for %s", trigger, fire_at.isoformat())
        task = asyncio.create_task(self.orchestrator.run(trigger=trigger, triggered_at=fire_at))
        self._runs.add(task)
        task.add_done_callback(self._on_run_done)
        self.fired.append(fire_at)
        try:
            self.ledger.record_fire(fire_at, trigger)
        except OSError as e:
            logger.warning("[SCHEDULER] Could not update run ledger: %s", e)
        return task

    def _on_run_done(self, task: asyncio.Task) -> None:
        self._runs.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[SCHEDULER] Run task failed: %s", exc, exc_info=exc)

    def check_catch_up(self) -> Optional[asyncio.Task]:
        """Fire the latest scheduled instant if the ledger shows it never ran."""
        expected = self.schedule.previous_at_or_before(self._clock())
        last_fired = self.ledger.last_fired_at()
        if last_fired is None:
            logger.info("[SCHEDULER] Run ledger empty, no catch-up reference yet")
            return None
        if last_fired >= expected:
            return None
        logger.warning(
            "[SCHEDULER] Last fired %s, expected %s: firing catch-up run",
            last_fired.isoformat(), expected.isoformat(),
        )
        return self.fire(expected, "catch_up")
