"""
Observation Log - the append-only source the engine distills from.

Capture itself belongs to whatever records observations; this adapter only
stores (id, text, created_at) and answers the time-window queries digestion,
rebuild and consolidation need. Observations are never edited.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from ..categories import Category
from ..periods import month_bounds, to_iso
from .base import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class Observation:
    """A single free-text observation about the subject."""
    id: str
    text: str
    created_at: str


@dataclass
class DigestedObservation:
    """An observation joined with its ledger record (if any)."""
    observation: Observation
    categories: list[Category] = field(default_factory=list)
    digested: bool = False

    @property
    def touch_count(self) -> int:
        return len(self.categories)


class ObservationLog(SQLiteStore):
    """Append-only observation storage."""

    def add(self, text: str, created_at: datetime | str | None = None,
            observation_id: str | None = None) -> Observation:
        """Record an observation. Returns it once it is durable."""
        obs = Observation(
            id=observation_id or uuid.uuid4().hex,
            text=text,
            created_at=to_iso(created_at) or datetime.now().isoformat(),
        )
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO observations (id, text, created_at) VALUES (?, ?, ?)",
                (obs.id, obs.text, obs.created_at),
            )
        logger.debug(f"Stored observation {obs.id}")
        return obs

    def get(self, observation_id: str) -> Observation | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM observations WHERE id = ?", (observation_id,)
        ).fetchone()
        conn.close()
        return self._to_observation(row) if row else None

    def all_ascending(self) -> list[Observation]:
        """Every observation, oldest first (replay order)."""
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM observations ORDER BY created_at ASC, rowid ASC"
        ).fetchall()
        conn.close()
        return [self._to_observation(row) for row in rows]

    def undigested(self) -> list[Observation]:
        """Observations with no ledger record, oldest first."""
        conn = self._get_conn()
        rows = conn.execute("""
            SELECT o.* FROM observations o
            LEFT JOIN digestion_log d ON o.id = d.observation_id
            WHERE d.observation_id IS NULL
            ORDER BY o.created_at ASC, o.rowid ASC
        """).fetchall()
        conn.close()
        return [self._to_observation(row) for row in rows]

    def since(self, cutoff: str) -> list[Observation]:
        """Observations created after cutoff, newest first."""
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM observations WHERE created_at > ? ORDER BY created_at DESC",
            (cutoff,),
        ).fetchall()
        conn.close()
        return [self._to_observation(row) for row in rows]

    def count_since(self, cutoff: str) -> int:
        conn = self._get_conn()
        count = conn.execute(
            "SELECT COUNT(*) FROM observations WHERE created_at > ?", (cutoff,)
        ).fetchone()[0]
        conn.close()
        return count

    def count_in_month(self, year: int, month: int) -> int:
        start, end = month_bounds(year, month)
        conn = self._get_conn()
        count = conn.execute(
            "SELECT COUNT(*) FROM observations WHERE created_at >= ? AND created_at < ?",
            (start, end),
        ).fetchone()[0]
        conn.close()
        return count

    def digested_since(self, cutoff: str) -> list[DigestedObservation]:
        """Observations after cutoff joined with their ledger records."""
        return self._digested_where("o.created_at > ?", (cutoff,))

    def digested_before(self, cutoff: str) -> list[DigestedObservation]:
        """Observations older than cutoff joined with their ledger records."""
        return self._digested_where("o.created_at < ?", (cutoff,))

    def key_observations(self, year: int, month: int, min_touches: int = 2,
                         limit: int = 10) -> list[Observation]:
        """The month's multi-category observations, newest first."""
        start, end = month_bounds(year, month)
        conn = self._get_conn()
        rows = conn.execute("""
            SELECT o.* FROM observations o
            JOIN digestion_log d ON o.id = d.observation_id
            WHERE o.created_at >= ? AND o.created_at < ?
            AND d.touch_count >= ?
            ORDER BY o.created_at DESC
            LIMIT ?
        """, (start, end, min_touches, limit)).fetchall()
        conn.close()
        return [self._to_observation(row) for row in rows]

    def _digested_where(self, clause: str, params: tuple) -> list[DigestedObservation]:
        conn = self._get_conn()
        rows = conn.execute(f"""
            SELECT o.id, o.text, o.created_at,
                   d.observation_id AS digested_id, d.categories_touched
            FROM observations o
            LEFT JOIN digestion_log d ON o.id = d.observation_id
            WHERE {clause}
            ORDER BY o.created_at DESC
        """, params).fetchall()
        conn.close()

        results = []
        for row in rows:
            digested = row["digested_id"] is not None
            names = json.loads(row["categories_touched"]) if digested else []
            results.append(DigestedObservation(
                observation=self._to_observation(row),
                categories=[Category(n) for n in names if n in Category._value2member_map_],
                digested=digested,
            ))
        return results

    def _to_observation(self, row) -> Observation:
        return Observation(id=row["id"], text=row["text"], created_at=row["created_at"])
