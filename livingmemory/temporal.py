"""
Temporal memory - the living summaries across time.

Living summaries are "now". Snapshots are "then": a verbatim copy of every
summary for one calendar month. On top of the archive:

- recall:  what a category looked like in a given month
- compare: what changed between two months
- reflect: how the self-narrative evolved over the last few months

The current month is always answered from the live summary, even if a
snapshot for it exists. Nothing here raises for "no data yet"; results
carry an explicit found / sufficient flag instead.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from .audit_log import AuditLog
from .categories import ALL_CATEGORIES, Category, to_category
from .digestion import RebuildGate
from .memory import DistilledStateStore, ObservationLog, Snapshot, SnapshotStore
from .model_router import TextOracle
from .periods import format_period, is_current_month, shift_month

logger = logging.getLogger(__name__)

INSUFFICIENT_HISTORY = "Not enough history yet for temporal reflection. Add more observations!"
PERIODS_UNAVAILABLE = "Could not find snapshots for one or both periods."


@dataclass
class RecallResult:
    category: Category
    period: str              # "2024-11", or "current" for the live summary
    content: str = ""
    observation_count: int = 0
    is_snapshot: bool = False
    found: bool = True


@dataclass
class Comparison:
    category: Category
    period_a: str
    period_b: str
    narrative: str
    available: bool = True


@dataclass
class Reflection:
    text: str
    periods: list[str] = field(default_factory=list)
    sufficient: bool = True


@dataclass
class MonthlySnapshot:
    period: str
    year: int
    month: int
    categories: dict[Category, str]
    total_observations: int
    key_observations: list[dict]
    snapshot_date: str


class TemporalMemory:

    def __init__(self,
                 state: DistilledStateStore,
                 snapshots: SnapshotStore,
                 observations: ObservationLog,
                 oracle: TextOracle,
                 clock: Callable[[], datetime] = datetime.now,
                 audit_log: AuditLog | None = None,
                 gate: RebuildGate | None = None,
                 subject: str = "the user",
                 key_observation_limit: int = 10,
                 key_observation_chars: int = 200):
        self.state = state
        self.snapshots = snapshots
        self.observations = observations
        self.oracle = oracle
        self.clock = clock
        self.audit = audit_log
        self.gate = gate or RebuildGate()
        self.subject = subject
        self.key_observation_limit = key_observation_limit
        self.key_observation_chars = key_observation_chars

    # ============== CAPTURE ==============

    async def take_snapshot(self, year: int | None = None,
                            month: int | None = None,
                            only_if_missing: bool = False) -> MonthlySnapshot | None:
        """
        Snapshot every living summary for a month (default: the current one).

        Holds the shared side of the rebuild gate, so a snapshot never sees
        summaries that a rebuild has reset and is still replaying.

        Re-capturing a month overwrites it. That is expected for the current
        month; for a closed month it replaces what was supposed to be a
        settled record, so it is allowed but logged and audited. With
        only_if_missing, an already archived month is left alone and None is
        returned.
        """
        async with self.gate.shared():
            return self._capture(year, month, only_if_missing)

    def _capture(self, year: int | None, month: int | None,
                 only_if_missing: bool) -> MonthlySnapshot | None:
        now = self.clock()
        year = year if year is not None else now.year
        month = month if month is not None else now.month
        period = format_period(year, month)
        if not 1 <= month <= 12:
            raise ValueError(f"Month out of range: {month}")

        exists = self.snapshots.exists_for_month(year, month)
        if exists and only_if_missing:
            return None

        closed = (year, month) < (now.year, now.month)
        if closed and exists:
            logger.warning(f"Overwriting snapshot for closed month {period}")
            if self.audit:
                self.audit.log("warn", "snapshot", f"Re-captured closed month {period}")

        logger.info(f"Taking snapshot for {period}...")
        summaries = self.state.read_all()
        total = self.observations.count_in_month(year, month)
        key_obs = [
            {
                "id": obs.id,
                "date": obs.created_at[:10],
                "summary": obs.text[:self.key_observation_chars],
            }
            for obs in self.observations.key_observations(
                year, month, min_touches=2, limit=self.key_observation_limit
            )
        ]

        self.snapshots.upsert([
            Snapshot(
                category=category,
                content=summaries[category].content,
                year=year,
                month=month,
                observation_count=total,
                key_observations=key_obs,
            )
            for category in ALL_CATEGORIES
        ])

        logger.info(f"Snapshot stored: {total} observations, {len(key_obs)} key items")
        return MonthlySnapshot(
            period=period,
            year=year,
            month=month,
            categories={c: s.content for c, s in summaries.items()},
            total_observations=total,
            key_observations=key_obs,
            snapshot_date=now.isoformat(),
        )

    # ============== QUERIES ==============

    def recall(self, category, year: int, month: int) -> RecallResult:
        """What a category looked like in a month. Never raises for missing data."""
        category = to_category(category)

        if is_current_month(year, month, self.clock()):
            live = self.state.read(category)
            return RecallResult(
                category=category,
                period="current",
                content=live.content,
                observation_count=live.observation_count,
                is_snapshot=False,
            )

        snap = self.snapshots.get(category, year, month)
        if snap is None:
            return RecallResult(category=category, period=format_period(year, month),
                                found=False)

        return RecallResult(
            category=category,
            period=snap.period,
            content=snap.content,
            observation_count=snap.observation_count,
            is_snapshot=True,
        )

    def month_snapshot(self, year: int, month: int) -> dict[Category, RecallResult]:
        """Every archived category for one month (empty if none)."""
        return {
            category: RecallResult(
                category=category,
                period=snap.period,
                content=snap.content,
                observation_count=snap.observation_count,
                is_snapshot=True,
            )
            for category, snap in self.snapshots.get_month(year, month).items()
        }

    def list_snapshots(self) -> list[dict]:
        return self.snapshots.list_periods()

    async def compare(self, category, period_a: tuple[int, int],
                      period_b: tuple[int, int]) -> Comparison:
        """Narrative of what changed in a category between two months. Read-only."""
        category = to_category(category)
        snap_a = self.recall(category, *period_a)
        snap_b = self.recall(category, *period_b)

        if not snap_a.found or not snap_b.found:
            return Comparison(category, snap_a.period, snap_b.period,
                              narrative=PERIODS_UNAVAILABLE, available=False)

        prompt = f"""Compare these two snapshots of {self.subject}'s {category.value} from different time periods.

PERIOD 1 ({snap_a.period}):
{snap_a.content}

PERIOD 2 ({snap_b.period}):
{snap_b.content}

Analyze:
1. What changed between these periods?
2. What stayed the same?
3. Any notable patterns or shifts?
4. What do these changes suggest about the trajectory?

Be concise and insightful. Focus on meaningful differences, not minor wording changes.

COMPARISON:"""

        narrative = await self.oracle.generate(prompt)
        return Comparison(category, snap_a.period, snap_b.period, narrative=narrative.strip())

    async def reflect(self, lookback_months: int = 3) -> Reflection:
        """Longitudinal reflection over the narrative summary."""
        now = self.clock()
        history = []
        for i in range(lookback_months, 0, -1):
            year, month = shift_month(now.year, now.month, -i)
            snap = self.recall(Category.NARRATIVE, year, month)
            if snap.found:
                history.append(snap)

        live = self.state.read(Category.NARRATIVE)
        if not history and live.is_default:
            return Reflection(text=INSUFFICIENT_HISTORY, sufficient=False)

        historical_context = (
            "\n\n".join(f"{s.period}:\n{s.content}" for s in history)
            if history else "(No historical snapshots yet)"
        )

        prompt = f"""Reflect on {self.subject}'s personal evolution based on their self-narrative over time.

HISTORICAL NARRATIVES:
{historical_context}

CURRENT NARRATIVE:
{live.content}

Write a thoughtful 2-3 paragraph reflection on:
1. How has their sense of self evolved?
2. What values or priorities have shifted?
3. What growth patterns are visible?
4. What seems to be staying constant (core identity)?

Be warm, specific, and insightful.

REFLECTION:"""

        text = await self.oracle.generate(prompt)
        return Reflection(
            text=text.strip(),
            periods=[s.period for s in history] + ["current"],
        )
