"""
Digestion Ledger - which observations have been folded in, and where.

One row per observation id. A hit means "already digested": the pipeline
must do nothing further for that id. Writes that belong to a digestion take
the caller's connection so they commit together with the summary updates.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime

from ..categories import Category, ordered, to_category
from .base import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class DigestionRecord:
    observation_id: str
    categories: list[Category]
    digested_at: str


class DigestionLedger(SQLiteStore):

    def has(self, observation_id: str) -> bool:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT 1 FROM digestion_log WHERE observation_id = ?", (observation_id,)
        ).fetchone()
        conn.close()
        return row is not None

    def get(self, observation_id: str) -> DigestionRecord | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM digestion_log WHERE observation_id = ?", (observation_id,)
        ).fetchone()
        conn.close()
        return self._to_record(row) if row else None

    def count(self) -> int:
        conn = self._get_conn()
        total = conn.execute("SELECT COUNT(*) FROM digestion_log").fetchone()[0]
        conn.close()
        return total

    def count_touching(self, category) -> int:
        """Number of records whose touched-set contains the category."""
        category = to_category(category)
        conn = self._get_conn()
        total = conn.execute(
            "SELECT COUNT(*) FROM digestion_log WHERE categories_touched LIKE ?",
            (f'%"{category.value}"%',),
        ).fetchone()[0]
        conn.close()
        return total

    # ============== TRANSACTIONAL WRITES ==============

    def insert(self, conn: sqlite3.Connection, observation_id: str,
               categories: list[Category]) -> None:
        """Record a digestion. Fails on a duplicate id (primary key)."""
        cats = ordered(categories)
        conn.execute(
            """INSERT INTO digestion_log
               (observation_id, categories_touched, touch_count, digested_at)
               VALUES (?, ?, ?, ?)""",
            (observation_id, json.dumps([c.value for c in cats]), len(cats),
             datetime.now().isoformat()),
        )

    def set_categories(self, conn: sqlite3.Connection, observation_id: str,
                       categories: list[Category]) -> None:
        cats = ordered(categories)
        conn.execute(
            """UPDATE digestion_log
               SET categories_touched = ?, touch_count = ?
               WHERE observation_id = ?""",
            (json.dumps([c.value for c in cats]), len(cats), observation_id),
        )

    def remove_category(self, conn: sqlite3.Connection, category: Category) -> int:
        """Strip one category from every touched-set. Returns rows changed."""
        rows = conn.execute(
            "SELECT * FROM digestion_log WHERE categories_touched LIKE ?",
            (f'%"{category.value}"%',),
        ).fetchall()
        for row in rows:
            record = self._to_record(row)
            remaining = [c for c in record.categories if c != category]
            self.set_categories(conn, record.observation_id, remaining)
        return len(rows)

    def clear(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute("DELETE FROM digestion_log")
        logger.info(f"Cleared {cursor.rowcount} digestion records")
        return cursor.rowcount

    def _to_record(self, row) -> DigestionRecord:
        names = json.loads(row["categories_touched"] or "[]")
        return DigestionRecord(
            observation_id=row["observation_id"],
            categories=[Category(n) for n in names if n in Category._value2member_map_],
            digested_at=row["digested_at"],
        )
