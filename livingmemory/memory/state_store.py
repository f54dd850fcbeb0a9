"""
Distilled State Store - the living summaries.

One row per category. A category nobody has written to reads as its default
sentinel with a zero count; reading never fails for "no data yet".
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime

from ..categories import ALL_CATEGORIES, Category, default_content, to_category
from .base import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class DistilledState:
    """The current living summary for one category."""
    category: Category
    content: str
    last_observation_id: str | None
    observation_count: int
    updated_at: str

    @property
    def is_default(self) -> bool:
        return self.observation_count == 0 and self.content == default_content(self.category)


class DistilledStateStore(SQLiteStore):

    def __init__(self, db_path=None):
        super().__init__(db_path)
        self.seed()

    def seed(self) -> int:
        """Insert the default row for any category that has none."""
        now = datetime.now().isoformat()
        with self.transaction() as conn:
            added = 0
            for category in ALL_CATEGORIES:
                cursor = conn.execute(
                    """INSERT OR IGNORE INTO distilled_state
                       (key, content, observation_count, updated_at, created_at)
                       VALUES (?, ?, 0, ?, ?)""",
                    (category.value, default_content(category), now, now),
                )
                added += cursor.rowcount
        if added:
            logger.info(f"Seeded {added} living summaries")
        return added

    def read(self, category) -> DistilledState:
        category = to_category(category)
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM distilled_state WHERE key = ?", (category.value,)
        ).fetchone()
        conn.close()

        if row is None:
            return DistilledState(
                category=category,
                content=default_content(category),
                last_observation_id=None,
                observation_count=0,
                updated_at=datetime.now().isoformat(),
            )
        return self._to_state(row)

    def read_all(self) -> dict[Category, DistilledState]:
        conn = self._get_conn()
        rows = conn.execute("SELECT * FROM distilled_state").fetchall()
        conn.close()

        found = {
            row["key"]: self._to_state(row)
            for row in rows if row["key"] in Category._value2member_map_
        }
        return {c: found.get(c.value) or self.read(c) for c in ALL_CATEGORIES}

    def replace(self, category, content: str, last_observation_id: str | None,
                conn: sqlite3.Connection | None = None) -> None:
        """Swap in a new summary and count one more observation."""
        category = to_category(category)
        if conn is None:
            with self.transaction() as conn:
                return self.replace(category, content, last_observation_id, conn)

        now = datetime.now().isoformat()
        conn.execute(
            """INSERT INTO distilled_state
               (key, content, last_observation_id, observation_count, updated_at, created_at)
               VALUES (?, ?, ?, 1, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   content = excluded.content,
                   last_observation_id = excluded.last_observation_id,
                   observation_count = distilled_state.observation_count + 1,
                   updated_at = excluded.updated_at""",
            (category.value, content, last_observation_id, now, now),
        )

    def reset(self, category, conn: sqlite3.Connection | None = None) -> None:
        """Back to the default sentinel with a zero count (rebuild only)."""
        category = to_category(category)
        if conn is None:
            with self.transaction() as conn:
                return self.reset(category, conn)

        now = datetime.now().isoformat()
        conn.execute(
            """INSERT INTO distilled_state
               (key, content, last_observation_id, observation_count, updated_at, created_at)
               VALUES (?, ?, NULL, 0, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   content = excluded.content,
                   last_observation_id = NULL,
                   observation_count = 0,
                   updated_at = excluded.updated_at""",
            (category.value, default_content(category), now, now),
        )

    def _to_state(self, row) -> DistilledState:
        return DistilledState(
            category=Category(row["key"]),
            content=row["content"],
            last_observation_id=row["last_observation_id"],
            observation_count=row["observation_count"] or 0,
            updated_at=row["updated_at"] or "",
        )
