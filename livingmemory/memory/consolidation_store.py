"""
Consolidation Store - staleness annotations and the run log.

Staleness scores run 0 (fresh/important) to 1 (very stale):
- Strengthening subtracts a fixed amount, floored at 0
- Stale-marking overwrites the score outright on every run
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from .base import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class ConsolidationRun:
    """One pass of the consolidation process."""
    id: int | None = None
    created_at: str = ""
    observations_analyzed: int = 0
    patterns_detected: int = 0
    strengthened_items: int = 0
    stale_items_faded: int = 0
    weekly_digest: str = ""
    pattern_details: list[dict] = field(default_factory=list)
    snapshot_period: str | None = None
    failed_steps: list[str] = field(default_factory=list)
    duration_ms: int = 0


class ConsolidationStore(SQLiteStore):

    # ============== STALENESS ==============

    def strengthen(self, observation_ids: list[str], amount: float,
                   now: str | None = None) -> int:
        """Lower staleness for important observations. Returns count touched."""
        if not observation_ids:
            return 0
        now = now or datetime.now().isoformat()
        with self.transaction() as conn:
            for oid in observation_ids:
                conn.execute(
                    """INSERT INTO staleness (observation_id, score, last_consolidated_at)
                       VALUES (?, 0, ?)
                       ON CONFLICT(observation_id) DO UPDATE SET
                           score = MAX(staleness.score - ?, 0),
                           last_consolidated_at = excluded.last_consolidated_at""",
                    (oid, now, amount),
                )
        return len(observation_ids)

    def mark_stale(self, scores: dict[str, float], now: str | None = None) -> int:
        """Overwrite staleness scores. Returns count written."""
        if not scores:
            return 0
        now = now or datetime.now().isoformat()
        with self.transaction() as conn:
            for oid, score in scores.items():
                conn.execute(
                    """INSERT INTO staleness (observation_id, score, last_consolidated_at)
                       VALUES (?, ?, ?)
                       ON CONFLICT(observation_id) DO UPDATE SET
                           score = excluded.score,
                           last_consolidated_at = excluded.last_consolidated_at""",
                    (oid, max(0.0, min(1.0, score)), now),
                )
        return len(scores)

    def get_staleness(self, observation_id: str) -> float | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT score FROM staleness WHERE observation_id = ?", (observation_id,)
        ).fetchone()
        conn.close()
        return row["score"] if row else None

    # ============== RUN LOG ==============

    def append_run(self, run: ConsolidationRun) -> int:
        run.created_at = run.created_at or datetime.now().isoformat()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO consolidation_log
                   (created_at, observations_analyzed, patterns_detected,
                    strengthened_items, stale_items_faded, weekly_digest,
                    pattern_details, snapshot_period, failed_steps, duration_ms)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (run.created_at, run.observations_analyzed, run.patterns_detected,
                 run.strengthened_items, run.stale_items_faded, run.weekly_digest,
                 json.dumps(run.pattern_details), run.snapshot_period,
                 json.dumps(run.failed_steps), run.duration_ms),
            )
            run.id = cursor.lastrowid
        logger.debug(f"Recorded consolidation run #{run.id}")
        return run.id

    def last_digest(self) -> str | None:
        conn = self._get_conn()
        row = conn.execute(
            """SELECT weekly_digest FROM consolidation_log
               ORDER BY created_at DESC, id DESC LIMIT 1"""
        ).fetchone()
        conn.close()
        return row["weekly_digest"] if row and row["weekly_digest"] else None

    def history(self, limit: int = 5) -> list[ConsolidationRun]:
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT * FROM consolidation_log
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (limit,),
        ).fetchall()
        conn.close()
        return [self._to_run(row) for row in rows]

    def count_runs(self) -> int:
        conn = self._get_conn()
        total = conn.execute("SELECT COUNT(*) FROM consolidation_log").fetchone()[0]
        conn.close()
        return total

    def _to_run(self, row) -> ConsolidationRun:
        return ConsolidationRun(
            id=row["id"],
            created_at=row["created_at"],
            observations_analyzed=row["observations_analyzed"] or 0,
            patterns_detected=row["patterns_detected"] or 0,
            strengthened_items=row["strengthened_items"] or 0,
            stale_items_faded=row["stale_items_faded"] or 0,
            weekly_digest=row["weekly_digest"] or "",
            pattern_details=json.loads(row["pattern_details"] or "[]"),
            snapshot_period=row["snapshot_period"],
            failed_steps=json.loads(row["failed_steps"] or "[]"),
            duration_ms=row["duration_ms"] or 0,
        )
