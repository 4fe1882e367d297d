"""Tests for the Consolidation Worker."""

import asyncio
from datetime import datetime, timedelta

import pytest

from goap_kernel.maintenance.consolidation import ConsolidationWorker
from goap_kernel.models.config import ConsolidationConfig
from goap_kernel.models.pattern import ActionSequence, Pattern
from goap_kernel.patterns.similarity import build_signature
from goap_kernel.patterns.store import PatternStore, new_pattern_id


def _make_pattern(goal, confidence=0.8, usage=1, created_at=None) -> Pattern:
    return Pattern(
        id=new_pattern_id(),
        context=build_signature(goal, {}),
        action_sequence=ActionSequence(actions=["act"], total_cost=1.0),
        confidence=confidence,
        usage_count=usage,
        success_count=usage,
        average_cost=1.0,
        created_at=created_at or datetime.utcnow(),
    )


class TestConsolidationWorker:
    def setup_method(self):
        self.store = PatternStore()

    def test_run_once_prunes_and_reports(self):
        old = datetime.utcnow() - timedelta(days=60)
        self.store.store(_make_pattern({"a": True}, confidence=0.1, created_at=old))
        self.store.store(_make_pattern({"b": True}))

        worker = ConsolidationWorker(self.store)
        report = worker.run_once()

        assert report.pruned == 1
        assert report.scanned == 2
        assert self.store.count() == 1
        assert worker.last_report == report

    def test_hourly_schedule(self):
        worker = ConsolidationWorker(self.store)
        moment = datetime(2024, 3, 1, 10, 15)
        assert worker.next_run_after(moment) == datetime(2024, 3, 1, 11, 0)

    def test_daily_schedule(self):
        worker = ConsolidationWorker(self.store, ConsolidationConfig(schedule="0 3 * * *"))
        assert worker.next_run_after(datetime(2024, 3, 1, 10, 15)) == datetime(2024, 3, 2, 3, 0)

    def test_weekly_schedule(self):
        worker = ConsolidationWorker(self.store, ConsolidationConfig(schedule="0 2 * * 0"))
        # 2024-03-01 is a Friday
        assert worker.next_run_after(datetime(2024, 3, 1, 10, 15)) == datetime(2024, 3, 3, 2, 0)

    def test_invalid_schedule_rejected(self):
        with pytest.raises(ValueError):
            ConsolidationWorker(self.store, ConsolidationConfig(schedule="not a cron"))

    def test_run_async_stops_on_event(self):
        worker = ConsolidationWorker(self.store)

        async def scenario():
            stop = asyncio.Event()
            task = asyncio.create_task(worker.run_async(stop))
            await asyncio.sleep(0.01)
            assert worker.status == "running"
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())
        assert worker.status == "stopped"
        assert worker.reports == []

    def test_run_async_runs_passes(self):
        # Every-minute schedule with the wait shortened so a pass fires at once
        worker = ConsolidationWorker(self.store, ConsolidationConfig(schedule="* * * * *"))
        worker.next_run_after = lambda moment: moment

        async def scenario():
            stop = asyncio.Event()
            task = asyncio.create_task(worker.run_async(stop))
            while not worker.reports:
                await asyncio.sleep(0.01)
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())
        assert len(worker.reports) >= 1
