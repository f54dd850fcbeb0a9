"""
Maintenance audit log.

The engine degrades instead of failing: a merge that errors drops one
category, a consolidation step that errors is skipped, a closed month can be
re-snapshotted. Each of those leaves an entry here so the degradation can be
found and repaired later (usually with a rebuild).

Entries are append-only. Categories name the engine area ("capture",
"digestion", "consolidation", "snapshot", "scheduler"), not living-summary categories.
"""

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

SEVERITIES = ("info", "warn", "block", "reject")
ALERT_SEVERITIES = ("block", "reject")


@dataclass
class AuditEntry:
    id: int
    timestamp: str
    severity: str
    category: str
    action: str
    details: str
    success: bool


class AuditLog:

    def __init__(self, db_path: str | Path = "data/audit_log.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._alert_callback = None
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    category TEXT NOT NULL,
                    action TEXT NOT NULL,
                    details TEXT DEFAULT '',
                    success INTEGER DEFAULT 1
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_category_time ON audit_log(category, timestamp)"
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def set_alert_callback(self, callback):
        """Called with a one-line message for block and reject entries."""
        self._alert_callback = callback

    def log(self, severity: str, category: str, action: str,
            details: str = "", success: bool = True):
        """
        Append an entry.

        Severity levels:
            info   - maintenance that went as planned (rebuild, run finished)
            warn   - degraded but continuing (merge dropped, step skipped)
            block  - input refused, nothing stored (bad capture timestamp)
            reject - operation failed, needs a rebuild or an operator
        """
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {severity}")

        with self._connect() as conn:
            conn.execute(
                """INSERT INTO audit_log
                   (timestamp, severity, category, action, details, success)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (datetime.now().isoformat(), severity, category, action,
                 details, int(success)),
            )

        if severity in ALERT_SEVERITIES and self._alert_callback:
            self._alert_callback(f"[{severity.upper()}] {category}: {action}\n{details}")

    def get_daily_summary(self, day: date | None = None) -> dict:
        """Entry counts for one day (default today), split by severity."""
        day = (day or date.today()).isoformat()
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT severity, COUNT(*) AS cnt, SUM(success = 0) AS failed
                   FROM audit_log WHERE DATE(timestamp) = ?
                   GROUP BY severity""",
                (day,),
            ).fetchall()

        by_severity = {row["severity"]: row["cnt"] for row in rows}
        return {
            "date": day,
            "total_actions": sum(by_severity.values()),
            "errors": sum(row["failed"] or 0 for row in rows),
            "by_severity": by_severity,
        }

    def get_recent(self, category: str | None = None,
                   limit: int = 50) -> list[AuditEntry]:
        """Newest entries first, optionally for one engine area."""
        query = "SELECT * FROM audit_log"
        params: tuple = ()
        if category:
            query += " WHERE category = ?"
            params = (category,)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"

        with self._connect() as conn:
            rows = conn.execute(query, params + (limit,)).fetchall()
        return [self._to_entry(row) for row in rows]

    def _to_entry(self, row) -> AuditEntry:
        return AuditEntry(
            id=row["id"],
            timestamp=row["timestamp"],
            severity=row["severity"],
            category=row["category"],
            action=row["action"],
            details=row["details"] or "",
            success=bool(row["success"]),
        )
