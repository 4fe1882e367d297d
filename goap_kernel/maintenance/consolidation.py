"""
Consolidation Worker — periodic maintenance of the pattern library.

Each pass merges near-duplicate patterns and prunes stale, low-value ones.
Passes fire on a cron schedule (hourly by default) and run in a worker
thread so the event loop is never blocked by store I/O.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from croniter import croniter

from goap_kernel.errors import PlannerError
from goap_kernel.models.config import ConsolidationConfig
from goap_kernel.models.stats import ConsolidationReport
from goap_kernel.patterns.store import PatternStore

logger = logging.getLogger(__name__)


class ConsolidationWorker:
    """Runs PatternStore.consolidate() on a cron schedule."""

    def __init__(self, store: PatternStore, config: Optional[ConsolidationConfig] = None):
        self.store = store
        self.config = config or ConsolidationConfig()
        if not croniter.is_valid(self.config.schedule):
            raise ValueError(f"Invalid consolidation schedule: {self.config.schedule!r}")
        self.reports: List[ConsolidationReport] = []
        self._running = False

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    @property
    def last_report(self) -> Optional[ConsolidationReport]:
        return self.reports[-1] if self.reports else None

    def run_once(self, now: Optional[datetime] = None) -> ConsolidationReport:
        """Run a single consolidation pass."""
        report = self.store.consolidate(self.config, now=now)
        self.reports.append(report)
        return report

    def next_run_after(self, moment: datetime) -> datetime:
        """Next fire time of the schedule strictly after moment."""
        return croniter(self.config.schedule, moment).get_next(datetime)

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run consolidation passes until stop_event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                now = datetime.utcnow()
                wait_seconds = (self.next_run_after(now) - now).total_seconds()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=max(wait_seconds, 0.0))
                    break
                except asyncio.TimeoutError:
                    pass

                try:
                    await asyncio.to_thread(self.run_once)
                except PlannerError as exc:
                    logger.warning("Consolidation pass failed: %s", exc)
        finally:
            self._running = False
