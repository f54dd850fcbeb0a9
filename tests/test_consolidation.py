"""Tests for the weekly consolidation pass."""

import asyncio
from datetime import datetime

import pytest

from livingmemory.categories import Category
from livingmemory.consolidation import NO_DIGEST, parse_patterns, staleness_score

from conftest import StubOracle

PATTERN_REPLY = """Here is what I found:
- Pattern: Late nights before deadlines | Frequency: 3 | Category: projects | Significance: high
- Pattern: Worry about money | Frequency: 2 | Category: finances | Significance: urgent
* Pattern: Calls with Sarah | Category: People
- Frequency: 4 | Category: mood
No bullet here: Pattern: ignored
"""


def digest_at(memory, text, when):
    obs = memory.observe(text, created_at=when)
    asyncio.run(memory.digest(obs.id, obs.text, obs.created_at))
    return obs


class TestParsePatterns:
    """Tests for reading the oracle's pattern list."""

    def test_parses_well_formed_and_defaults(self):
        patterns = parse_patterns(PATTERN_REPLY)

        assert [p.pattern for p in patterns] == [
            "Late nights before deadlines", "Worry about money", "Calls with Sarah",
        ]
        first, second, third = patterns
        assert (first.frequency, first.category, first.significance) == (3, Category.PROJECTS, "high")
        # Unknown category and significance fall back
        assert (second.category, second.significance) == (Category.NARRATIVE, "medium")
        # Missing frequency and significance
        assert (third.frequency, third.category, third.significance) == (1, Category.PEOPLE, "medium")

    def test_nothing_detected(self):
        assert parse_patterns("No clear patterns detected.") == []
        assert parse_patterns("") == []

    def test_to_dict_uses_category_name(self):
        pattern = parse_patterns(PATTERN_REPLY)[0]
        assert pattern.to_dict()["category"] == "projects"


class TestStalenessScore:
    """Tests for the age/breadth staleness formula."""

    def test_untouched_is_very_stale(self):
        assert staleness_score(0, 10) == 0.9

    def test_single_category(self):
        assert staleness_score(1, 73) == pytest.approx(0.7)

    def test_multi_category_fades_slower(self):
        assert staleness_score(3, 73) == pytest.approx(0.4)

    def test_clamped(self):
        assert staleness_score(1, 1000) == 1.0


class TestConsolidationRun:
    """Tests for a full run against the engine."""

    def test_quiet_week_still_records_a_run(self, memory, oracle):
        digest_at(memory, "feeling fine", datetime(2025, 11, 12, 9))
        digest_at(memory, "Walked by the river", datetime(2025, 11, 13, 9))

        run = asyncio.run(memory.run_consolidation())

        assert run.id is not None
        assert run.observations_analyzed == 2
        assert run.patterns_detected == 0
        assert run.weekly_digest == "digest response"
        assert run.failed_steps == []
        assert oracle.calls("patterns") == []
        assert memory.consolidation_store.count_runs() == 1
        assert memory.last_digest() == "digest response"

    def test_snapshots_the_closed_month_once(self, memory):
        first = asyncio.run(memory.run_consolidation())
        second = asyncio.run(memory.run_consolidation())

        assert first.snapshot_period == "2025-10"
        assert second.snapshot_period is None
        assert memory.snapshots.exists_for_month(2025, 10)

    def test_closed_month_snapshot_waits_for_rebuild(self, make_memory):
        memory = make_memory(StubOracle(delay=0.005))
        for day in (3, 10, 20):
            digest_at(memory, f"feeling day {day}", datetime(2025, 10, day, 9))
        live = memory.read_summary("mood").content

        async def scenario():
            rebuild = asyncio.create_task(memory.rebuild("all"))
            await asyncio.sleep(0)
            assert memory.digester.gate.rebuilding
            run = await memory.run_consolidation()
            await rebuild
            return run

        run = asyncio.run(scenario())

        assert run.snapshot_period == "2025-10"
        assert memory.recall("mood", 2025, 10).content == live
        assert memory.read_summary("mood").content == live

    def test_patterns_detected(self, make_memory):
        oracle = StubOracle(replies={"patterns": PATTERN_REPLY})
        memory = make_memory(oracle)
        for day in (10, 11, 12):
            digest_at(memory, f"feeling busy on the {day}th", datetime(2025, 11, day, 9))

        run = asyncio.run(memory.run_consolidation())

        assert run.patterns_detected == 3
        assert run.pattern_details[0]["pattern"] == "Late nights before deadlines"
        digest_prompt = oracle.calls("digest")[0]
        assert "- Late nights before deadlines (high significance)" in digest_prompt
        assert "OBSERVATIONS THIS WEEK: 3" in digest_prompt

    def test_failing_oracle_degrades_every_step(self, make_memory):
        memory = make_memory(StubOracle(fail_on={"patterns", "digest"}))
        for day in (10, 11, 12):
            digest_at(memory, f"feeling busy on the {day}th", datetime(2025, 11, day, 9))

        run = asyncio.run(memory.run_consolidation())

        assert run.failed_steps == ["patterns", "digest"]
        assert run.patterns_detected == 0
        assert run.weekly_digest == NO_DIGEST
        assert memory.consolidation_history()[0].failed_steps == ["patterns", "digest"]
        entry = memory.audit_log.get_recent(category="consolidation")[0]
        assert entry.severity == "warn"

    def test_history_newest_first(self, memory):
        for _ in range(3):
            asyncio.run(memory.run_consolidation())
        history = memory.consolidation_history(limit=2)
        assert len(history) == 2
        assert history[0].id > history[1].id


class TestStaleness:
    """Tests for strengthening and stale-marking."""

    def test_strengthen_recent_salient_observations(self, memory):
        salient = digest_at(memory, "I believe rest matters", datetime(2025, 11, 12, 9))
        broad = digest_at(memory, "Promised Sarah a visit", datetime(2025, 11, 13, 9))
        plain = digest_at(memory, "feeling okay", datetime(2025, 11, 14, 9))

        run = asyncio.run(memory.run_consolidation())

        assert run.strengthened_items == 2
        assert memory.consolidation_store.get_staleness(salient.id) == 0
        assert memory.consolidation_store.get_staleness(broad.id) == 0
        assert memory.consolidation_store.get_staleness(plain.id) is None

    def test_strengthen_floors_at_zero(self, memory):
        store = memory.consolidation_store
        store.mark_stale({"abc": 0.1})
        store.strengthen(["abc"], 0.2)
        assert store.get_staleness("abc") == 0

    def test_strengthen_subtracts(self, memory):
        store = memory.consolidation_store
        store.mark_stale({"abc": 0.5})
        store.strengthen(["abc"], 0.2)
        assert store.get_staleness("abc") == pytest.approx(0.3)

    def test_mark_stale_overwrites(self, memory):
        store = memory.consolidation_store
        store.strengthen(["abc"], 0.2)
        store.mark_stale({"abc": 0.7})
        assert store.get_staleness("abc") == pytest.approx(0.7)

    def test_old_observations_marked_stale(self, memory):
        narrow = digest_at(memory, "feeling grey", datetime(2025, 9, 16, 12))
        broad = digest_at(memory, "Promised Sarah lunch", datetime(2025, 9, 16, 12))
        untouched = digest_at(memory, "Walked by the river", datetime(2025, 9, 16, 12))
        digest_at(memory, "feeling bright", datetime(2025, 11, 10, 12))

        run = asyncio.run(memory.run_consolidation())

        assert run.stale_items_faded == 3
        store = memory.consolidation_store
        assert store.get_staleness(narrow.id) == pytest.approx(0.5 + 60 / 365)
        assert store.get_staleness(broad.id) == pytest.approx(0.3 + 60 / 730)
        assert store.get_staleness(untouched.id) == pytest.approx(0.9)

    def test_aware_timestamps_do_not_break_stale_marking(self, memory):
        digest_at(memory, "feeling grey", "2025-09-16T12:00:00+00:00")
        digest_at(memory, "feeling dim", "2025-09-16T12:00:00Z")
        digest_at(memory, "feeling flat", datetime(2025, 9, 16, 12))

        run = asyncio.run(memory.run_consolidation())

        assert run.failed_steps == []
        assert run.stale_items_faded == 3
