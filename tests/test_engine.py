"""Tests for the engine facade, background digestion and the maintenance schedule."""

import asyncio
from datetime import datetime, timezone

import pytest

from livingmemory import LivingMemory
from livingmemory.categories import Category
from livingmemory.memory.schema import SCHEMA_VERSION, bootstrap, get_schema_version
from livingmemory.scheduler import MaintenanceScheduler

from conftest import StubOracle


class TestBackgroundDigestion:
    """Tests for observe() feeding the digestion worker."""

    def test_observe_is_digested_by_worker(self, memory):
        async def scenario():
            await memory.start()
            memory.observe("feeling hopeful", created_at=datetime(2025, 11, 2, 9))
            memory.observe("Promised Sarah a book", created_at=datetime(2025, 11, 3, 9))
            await memory.wait_idle()
            await memory.stop()

        asyncio.run(scenario())

        assert memory.read_summary("mood").content == "feeling hopeful"
        assert memory.read_summary("people").observation_count == 1
        assert memory.ledger.count() == 2

    def test_start_catches_up_on_leftovers(self, memory):
        memory.observe("feeling patient", created_at=datetime(2025, 11, 1, 9))

        async def scenario():
            await memory.start(catch_up=True)
            await memory.wait_idle()
            await memory.stop()

        asyncio.run(scenario())
        assert memory.observations.undigested() == []

    def test_observe_without_worker_only_stores(self, memory, oracle):
        obs = memory.observe("feeling restful")
        assert memory.observations.get(obs.id) == obs
        assert oracle.prompts == []
        assert [o.id for o in memory.observations.undigested()] == [obs.id]

    def test_worker_survives_failed_digestion(self, make_memory):
        memory = make_memory(StubOracle(fail_on={"merge"}))

        async def scenario():
            await memory.start()
            memory.observe("feeling shaky")
            await memory.wait_idle()
            assert memory._worker is not None and not memory._worker.done()
            await memory.stop()

        asyncio.run(scenario())
        assert memory.read_summary("mood").is_default

    def test_stop_without_start(self, memory):
        asyncio.run(memory.stop())


class TestCapture:
    """Tests for timestamp handling at capture."""

    def test_aware_string_and_datetime_store_the_same_text(self, memory):
        as_datetime = memory.observe(
            "feeling a", created_at=datetime(2025, 11, 10, 12, tzinfo=timezone.utc))
        as_string = memory.observe("feeling b", created_at="2025-11-10T12:00:00+00:00")
        as_zulu = memory.observe("feeling c", created_at="2025-11-10T12:00:00Z")

        assert as_string.created_at == as_datetime.created_at
        assert as_zulu.created_at == as_datetime.created_at
        assert "+" not in as_string.created_at

    def test_window_counts_mixed_formats(self, memory):
        memory.observe("feeling one", created_at=datetime(2025, 11, 10, 12))
        memory.observe("feeling two", created_at="2025-11-11T12:00:00+00:00")
        memory.observe("feeling three", created_at="2025-11-12T12:00:00Z")
        memory.observe("feeling old", created_at="2025-10-01T12:00:00Z")

        assert memory.observations.count_since("2025-11-05T00:00:00") == 3
        texts = [o.text for o in memory.observations.all_ascending()]
        assert texts == ["feeling old", "feeling one", "feeling two", "feeling three"]

    def test_bad_timestamp_is_refused_and_audited(self, memory):
        with pytest.raises(ValueError):
            memory.observe("feeling lost", created_at="sometime last week")

        assert memory.observations.undigested() == []
        entry = memory.audit_log.get_recent(category="capture")[0]
        assert entry.severity == "block"
        assert not entry.success

    def test_digest_accepts_zulu_timestamp(self, memory):
        touched = asyncio.run(
            memory.digest("ext-1", "feeling odd", "2025-11-10T12:00:00Z"))

        assert touched == [Category.MOOD]
        assert memory.read_summary("mood").content == "feeling odd"


class TestFacade:
    """Tests for the pass-through operations."""

    def test_read_all_summaries_in_enumeration_order(self, memory):
        summaries = memory.read_all_summaries()
        assert list(summaries) == list(Category)
        assert all(s.is_default for s in summaries.values())

    def test_state_survives_restart(self, memory, settings, oracle, clock):
        obs = memory.observe("feeling rested")
        asyncio.run(memory.catch_up())

        reopened = LivingMemory(settings=settings, oracle=oracle, clock=clock)
        assert reopened.read_summary("mood").content == "feeling rested"
        assert reopened.ledger.has(obs.id)

    def test_rebuild_all_accepts_any_case(self, memory):
        memory.observe("feeling light")
        asyncio.run(memory.catch_up())
        assert asyncio.run(memory.rebuild("ALL")) == 1

    def test_get_summary(self, memory):
        memory.observe("feeling light")
        asyncio.run(memory.catch_up())
        asyncio.run(memory.take_snapshot(2025, 10))
        assert memory.get_summary() == (
            "1/6 summaries active, 1 observations digested, 1 snapshot periods"
        )

    def test_reflect_zero_lookback_is_not_the_default(self, memory, oracle):
        asyncio.run(memory.take_snapshot(2025, 10))

        result = asyncio.run(memory.reflect(0))

        assert not result.sufficient
        assert oracle.calls("reflect") == []

    def test_reflect_defaults_to_configured_lookback(self, memory):
        asyncio.run(memory.take_snapshot(2025, 10))
        result = asyncio.run(memory.reflect())
        assert result.periods == ["2025-10", "current"]


class TestMaintenanceScheduler:
    """Tests for the cron-driven maintenance jobs."""

    def test_registers_both_jobs(self, memory):
        async def scenario():
            scheduler = MaintenanceScheduler(memory)
            scheduler.start()
            try:
                return scheduler.next_run_times()
            finally:
                scheduler.stop()

        times = asyncio.run(scenario())
        assert set(times) == {"consolidation", "monthly_snapshot"}
        assert all(t is not None for t in times.values())

    def test_monthly_snapshot_job(self, memory):
        scheduler = MaintenanceScheduler(memory)
        asyncio.run(scheduler._run_monthly_snapshot())
        assert memory.snapshots.exists_for_month(2025, 10)

    def test_consolidation_job(self, memory):
        scheduler = MaintenanceScheduler(memory)
        asyncio.run(scheduler._run_consolidation())
        assert memory.consolidation_store.count_runs() == 1

    def test_failed_job_is_audited(self, memory, monkeypatch):
        scheduler = MaintenanceScheduler(memory)

        async def boom(now):
            raise RuntimeError("disk full")

        monkeypatch.setattr(memory.consolidator, "snapshot_closed_month", boom)
        asyncio.run(scheduler._run_monthly_snapshot())

        entry = memory.audit_log.get_recent(category="scheduler")[0]
        assert entry.severity == "reject"
        assert "disk full" in entry.details


class TestSchema:
    """Tests for database bootstrap."""

    def test_bootstrap_is_repeatable_and_versioned(self, memory):
        conn = memory.state._get_conn()
        try:
            bootstrap(conn)
            assert get_schema_version(conn) == SCHEMA_VERSION
        finally:
            conn.close()
