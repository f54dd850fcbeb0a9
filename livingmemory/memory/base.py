"""
Shared SQLite plumbing for the memory stores.

All stores point at the same database file so a digestion can write its
ledger record and every summary update in one transaction.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from .schema import bootstrap

logger = logging.getLogger(__name__)

DB_PATH = Path("data/livingmemory.db")


class SQLiteStore:

    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path or DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self):
        conn = self._get_conn()
        bootstrap(conn)
        conn.close()

    @contextmanager
    def transaction(self):
        """Yield a connection; commit on success, roll back on any error."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
