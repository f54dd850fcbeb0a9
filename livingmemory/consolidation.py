"""
Consolidation - the "sleep" pass over memory.

Like sleep consolidates human memory, this runs periodically (weekly) to:
1. Detect recurring patterns in the last week of observations
2. Strengthen recent multi-category / high-salience observations
3. Mark old observations stale (score from age and breadth)
4. Write a short weekly digest
5. Snapshot the most recently closed month if it has no snapshot yet

Every step is fault-isolated: a failing step logs, falls back to an empty
value, and the run record is written regardless. Only one run at a time.
"""

import asyncio
import logging
import re
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable

from .audit_log import AuditLog
from .categories import ALL_CATEGORIES, Category
from .memory import (
    ConsolidationRun, ConsolidationStore, DistilledStateStore, ObservationLog,
)
from .model_router import TextOracle
from .periods import previous_month
from .settings import Settings
from .temporal import TemporalMemory

logger = logging.getLogger(__name__)

NO_DIGEST = "No digest could be generated this week."
SIGNIFICANCE_LEVELS = ("low", "medium", "high")

_BULLETS = ("-", "*", "•")
_PATTERN_RE = re.compile(r"Pattern:\s*(.+?)\s*(?:\||$)", re.IGNORECASE)
_FREQ_RE = re.compile(r"Frequency:\s*(\d+)", re.IGNORECASE)
_CAT_RE = re.compile(r"Category:\s*(\w+)", re.IGNORECASE)
_SIG_RE = re.compile(r"Significance:\s*(\w+)", re.IGNORECASE)


@dataclass
class WeeklyPattern:
    pattern: str
    frequency: int
    category: Category
    significance: str  # low, medium, high

    def to_dict(self) -> dict:
        data = asdict(self)
        data["category"] = self.category.value
        return data


def parse_patterns(response: str) -> list[WeeklyPattern]:
    """Parse the oracle's bullet list. Lines that don't fit are dropped."""
    patterns = []
    for raw in (response or "").splitlines():
        line = raw.strip()
        if not line.startswith(_BULLETS):
            continue

        pattern_match = _PATTERN_RE.search(line)
        if not pattern_match or not pattern_match.group(1).strip():
            continue

        freq_match = _FREQ_RE.search(line)
        cat_match = _CAT_RE.search(line)
        sig_match = _SIG_RE.search(line)

        cat_name = cat_match.group(1).lower() if cat_match else ""
        significance = sig_match.group(1).lower() if sig_match else "medium"

        patterns.append(WeeklyPattern(
            pattern=pattern_match.group(1).strip(),
            frequency=int(freq_match.group(1)) if freq_match else 1,
            category=Category(cat_name) if cat_name in Category._value2member_map_ else Category.NARRATIVE,
            significance=significance if significance in SIGNIFICANCE_LEVELS else "medium",
        ))
    return patterns


def staleness_score(touch_count: int, age_days: float) -> float:
    """Older and narrower means staler. Clamped to [0, 1]."""
    if touch_count == 0:
        score = 0.9  # No impact on any summary
    elif touch_count == 1:
        score = 0.5 + age_days / 365
    else:
        score = 0.3 + age_days / 730
    return max(0.0, min(1.0, score))


class Consolidator:

    def __init__(self,
                 observations: ObservationLog,
                 state: DistilledStateStore,
                 store: ConsolidationStore,
                 temporal: TemporalMemory,
                 oracle: TextOracle,
                 settings: Settings | None = None,
                 clock: Callable[[], datetime] = datetime.now,
                 audit_log: AuditLog | None = None):
        self.observations = observations
        self.state = state
        self.store = store
        self.temporal = temporal
        self.oracle = oracle
        self.settings = settings or Settings()
        self.clock = clock
        self.audit = audit_log
        self._lock = asyncio.Lock()

    async def run(self) -> ConsolidationRun:
        """Run the full consolidation process and record it."""
        async with self._lock:
            return await self._run()

    async def _run(self) -> ConsolidationRun:
        logger.info("Starting memory consolidation...")
        started = time.monotonic()
        now = self.clock()
        run = ConsolidationRun()

        week_cutoff = (now - timedelta(days=self.settings.pattern_window_days)).isoformat()
        try:
            run.observations_analyzed = self.observations.count_since(week_cutoff)
        except Exception as e:
            self._step_failed(run, "count", e)

        # 1. Patterns
        patterns: list[WeeklyPattern] = []
        try:
            patterns = await self.detect_patterns(now)
            logger.info(f"Found {len(patterns)} patterns")
        except Exception as e:
            self._step_failed(run, "patterns", e)
        run.patterns_detected = len(patterns)
        run.pattern_details = [p.to_dict() for p in patterns]

        # 2. Strengthen
        try:
            run.strengthened_items = self.strengthen(now)
            logger.info(f"Strengthened {run.strengthened_items} memories")
        except Exception as e:
            self._step_failed(run, "strengthen", e)

        # 3. Stale-marking
        try:
            run.stale_items_faded = self.mark_stale(now)
            logger.info(f"Marked {run.stale_items_faded} items as stale")
        except Exception as e:
            self._step_failed(run, "stale", e)

        # 4. Digest
        try:
            run.weekly_digest = await self.generate_digest(patterns, run.observations_analyzed)
        except Exception as e:
            self._step_failed(run, "digest", e)
        if not run.weekly_digest:
            run.weekly_digest = NO_DIGEST

        # 5. Snapshot of the month that just closed
        try:
            run.snapshot_period = await self.snapshot_closed_month(now)
        except Exception as e:
            self._step_failed(run, "snapshot", e)

        run.created_at = now.isoformat()
        run.duration_ms = int((time.monotonic() - started) * 1000)
        self.store.append_run(run)

        logger.info(f"Consolidation complete in {run.duration_ms}ms")
        if self.audit:
            self.audit.log(
                "warn" if run.failed_steps else "info", "consolidation",
                f"Consolidation run #{run.id}",
                details=f"failed steps: {', '.join(run.failed_steps) or 'none'}",
                success=not run.failed_steps,
            )
        return run

    # ============== STEPS ==============

    async def detect_patterns(self, now: datetime) -> list[WeeklyPattern]:
        """Recurring themes in the trailing window. Needs a minimum sample."""
        days = self.settings.pattern_window_days
        cutoff = (now - timedelta(days=days)).isoformat()
        recent = self.observations.since(cutoff)

        if len(recent) < self.settings.min_pattern_observations:
            logger.info(f"Only {len(recent)} recent observations, skipping pattern detection")
            return []

        joined = "\n---\n".join(obs.text for obs in recent)
        category_list = "/".join(c.value for c in ALL_CATEGORIES)
        prompt = f"""Analyze these recent observations from {self.settings.subject_name}'s life and identify recurring patterns or themes.

OBSERVATIONS (Last {days} days):
{joined}

Identify 3-5 patterns. For each pattern, provide:
1. The pattern (a brief description)
2. How often it appears (rough count)
3. Which category it relates to ({category_list})
4. Significance level (low/medium/high based on potential impact)

Format your response as a simple list:
- Pattern: [description] | Frequency: [count] | Category: [cat] | Significance: [level]

Only list clear patterns. If none are obvious, say "No clear patterns detected."

PATTERNS:"""

        response = await self.oracle.generate(prompt)
        return parse_patterns(response)

    def strengthen(self, now: datetime) -> int:
        """Lower staleness of recent multi-category or high-salience observations."""
        cutoff = (now - timedelta(days=self.settings.strengthen_window_days)).isoformat()
        salient = set(self.settings.high_salience_categories)

        important = [
            item.observation.id
            for item in self.observations.digested_since(cutoff)
            if item.touch_count >= 2 or salient.intersection(c.value for c in item.categories)
        ]
        return self.store.strengthen(important, self.settings.strengthen_amount, now.isoformat())

    def mark_stale(self, now: datetime) -> int:
        """Overwrite staleness for everything older than the stale window."""
        cutoff = (now - timedelta(days=self.settings.stale_after_days)).isoformat()
        scores = {}
        for item in self.observations.digested_before(cutoff):
            created = datetime.fromisoformat(item.observation.created_at)
            age_days = (now - created).total_seconds() / 86400
            scores[item.observation.id] = staleness_score(item.touch_count, age_days)
        return self.store.mark_stale(scores, now.isoformat())

    async def generate_digest(self, patterns: list[WeeklyPattern], week_count: int) -> str:
        summaries = self.state.read_all()
        summary_text = "\n\n".join(
            f"{c.value.upper()}:\n{s.content}" for c, s in summaries.items()
        )
        pattern_text = (
            "\n".join(f"- {p.pattern} ({p.significance} significance)" for p in patterns)
            if patterns else "No strong patterns detected this week."
        )

        prompt = f"""Generate a brief weekly digest for {self.settings.subject_name} based on their memory system's current state.

CURRENT LIVING SUMMARIES:
{summary_text}

PATTERNS DETECTED THIS WEEK:
{pattern_text}

OBSERVATIONS THIS WEEK: {week_count}

Write a warm, personal 2-3 paragraph digest that:
1. Highlights what mattered most this week
2. Notes any emerging patterns or shifts
3. Gently surfaces anything that might need attention
4. Ends with a supportive reflection

Be concise but caring.

WEEKLY DIGEST:"""

        response = await self.oracle.generate(prompt)
        return (response or "").strip()

    async def snapshot_closed_month(self, now: datetime) -> str | None:
        """Snapshot last month if nothing archived it yet. Returns the period taken."""
        year, month = previous_month(now)
        snapshot = await self.temporal.take_snapshot(year, month, only_if_missing=True)
        if snapshot is None:
            return None
        logger.info(f"Monthly snapshot stored for {snapshot.period}")
        return snapshot.period

    # ============== HISTORY ==============

    def last_digest(self) -> str | None:
        return self.store.last_digest()

    def history(self, limit: int = 5) -> list[ConsolidationRun]:
        return self.store.history(limit)

    def _step_failed(self, run: ConsolidationRun, step: str, error: Exception):
        logger.error(f"Consolidation step '{step}' failed: {error}")
        run.failed_steps.append(step)
