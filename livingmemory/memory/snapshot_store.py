"""
Snapshot Store - monthly crystallized copies of the living summaries.

Keyed by (category, year, month). Writing an existing key overwrites it.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from ..categories import Category, to_category
from ..periods import format_period
from .base import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    category: Category
    content: str
    year: int
    month: int
    observation_count: int
    key_observations: list[dict] = field(default_factory=list)
    taken_at: str = ""

    @property
    def period(self) -> str:
        return format_period(self.year, self.month)


class SnapshotStore(SQLiteStore):

    def upsert(self, snapshots: list[Snapshot]) -> None:
        """Write a month's snapshots in one transaction, overwriting any existing."""
        now = datetime.now().isoformat()
        with self.transaction() as conn:
            for snap in snapshots:
                snap.taken_at = now
                conn.execute(
                    """INSERT INTO summary_snapshots
                       (category, content, period_year, period_month,
                        observation_count, key_observations, snapshot_taken_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT (category, period_year, period_month) DO UPDATE SET
                           content = excluded.content,
                           observation_count = excluded.observation_count,
                           key_observations = excluded.key_observations,
                           snapshot_taken_at = excluded.snapshot_taken_at""",
                    (snap.category.value, snap.content, snap.year, snap.month,
                     snap.observation_count, json.dumps(snap.key_observations), now),
                )

    def get(self, category, year: int, month: int) -> Snapshot | None:
        category = to_category(category)
        conn = self._get_conn()
        row = conn.execute(
            """SELECT * FROM summary_snapshots
               WHERE category = ? AND period_year = ? AND period_month = ?""",
            (category.value, year, month),
        ).fetchone()
        conn.close()
        return self._to_snapshot(row) if row else None

    def get_month(self, year: int, month: int) -> dict[Category, Snapshot]:
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT * FROM summary_snapshots
               WHERE period_year = ? AND period_month = ?""",
            (year, month),
        ).fetchall()
        conn.close()
        snaps = [self._to_snapshot(row) for row in rows]
        return {s.category: s for s in snaps if s is not None}

    def exists_for_month(self, year: int, month: int) -> bool:
        conn = self._get_conn()
        row = conn.execute(
            """SELECT 1 FROM summary_snapshots
               WHERE period_year = ? AND period_month = ? LIMIT 1""",
            (year, month),
        ).fetchone()
        conn.close()
        return row is not None

    def count_rows(self, category, year: int, month: int) -> int:
        category = to_category(category)
        conn = self._get_conn()
        total = conn.execute(
            """SELECT COUNT(*) FROM summary_snapshots
               WHERE category = ? AND period_year = ? AND period_month = ?""",
            (category.value, year, month),
        ).fetchone()[0]
        conn.close()
        return total

    def list_periods(self) -> list[dict]:
        """Available periods, newest first."""
        conn = self._get_conn()
        rows = conn.execute("""
            SELECT period_year, period_month,
                   COUNT(*) AS categories_stored,
                   MAX(observation_count) AS total_observations,
                   MAX(snapshot_taken_at) AS taken_at
            FROM summary_snapshots
            GROUP BY period_year, period_month
            ORDER BY period_year DESC, period_month DESC
        """).fetchall()
        conn.close()
        return [
            {
                "period": format_period(row["period_year"], row["period_month"]),
                "year": row["period_year"],
                "month": row["period_month"],
                "categories_stored": row["categories_stored"],
                "total_observations": row["total_observations"] or 0,
                "taken_at": row["taken_at"],
            }
            for row in rows
        ]

    def _to_snapshot(self, row) -> Snapshot | None:
        if row["category"] not in Category._value2member_map_:
            # Category was removed from the enumeration after this was taken
            logger.warning(f"Skipping snapshot for retired category: {row['category']}")
            return None
        return Snapshot(
            category=Category(row["category"]),
            content=row["content"],
            year=row["period_year"],
            month=row["period_month"],
            observation_count=row["observation_count"] or 0,
            key_observations=json.loads(row["key_observations"] or "[]"),
            taken_at=row["snapshot_taken_at"],
        )
