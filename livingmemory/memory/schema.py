"""Schema bootstrap for the living memory database."""

import sqlite3

# Increment whenever schema changes
SCHEMA_VERSION = 1

# Executed in order during bootstrap(). Safe to call repeatedly.
SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS schema_meta (
        key TEXT PRIMARY KEY,
        value TEXT
    );
    """,
    # Observation source adapter. Observations are immutable once written.
    """
    CREATE TABLE IF NOT EXISTS observations (
        id TEXT PRIMARY KEY,
        text TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_observations_created ON observations(created_at);",
    # Living summaries, one row per category
    """
    CREATE TABLE IF NOT EXISTS distilled_state (
        key TEXT PRIMARY KEY,
        content TEXT NOT NULL,
        last_observation_id TEXT,
        observation_count INTEGER DEFAULT 0,
        updated_at TEXT,
        created_at TEXT
    );
    """,
    # Exactly-once record of digested observations
    """
    CREATE TABLE IF NOT EXISTS digestion_log (
        observation_id TEXT PRIMARY KEY,
        categories_touched TEXT NOT NULL DEFAULT '[]',
        touch_count INTEGER NOT NULL DEFAULT 0,
        digested_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_digestion_log_time ON digestion_log(digested_at);",
    # Staleness annotations written by consolidation
    """
    CREATE TABLE IF NOT EXISTS staleness (
        observation_id TEXT PRIMARY KEY,
        score REAL NOT NULL DEFAULT 0,
        last_consolidated_at TEXT
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_staleness_score ON staleness(score);",
    # Consolidation runs (append-only)
    """
    CREATE TABLE IF NOT EXISTS consolidation_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL,
        observations_analyzed INTEGER DEFAULT 0,
        patterns_detected INTEGER DEFAULT 0,
        strengthened_items INTEGER DEFAULT 0,
        stale_items_faded INTEGER DEFAULT 0,
        weekly_digest TEXT,
        pattern_details TEXT DEFAULT '[]',
        snapshot_period TEXT,
        failed_steps TEXT DEFAULT '[]',
        duration_ms INTEGER
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_consolidation_created ON consolidation_log(created_at);",
    # Monthly snapshots of every living summary
    """
    CREATE TABLE IF NOT EXISTS summary_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        category TEXT NOT NULL,
        content TEXT NOT NULL,
        period_year INTEGER NOT NULL,
        period_month INTEGER NOT NULL CHECK (period_month BETWEEN 1 AND 12),
        observation_count INTEGER DEFAULT 0,
        key_observations TEXT DEFAULT '[]',
        snapshot_taken_at TEXT NOT NULL,
        UNIQUE (category, period_year, period_month)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_snapshots_period ON summary_snapshots(period_year, period_month);",
]


def bootstrap(conn: sqlite3.Connection) -> None:
    """Create tables if missing and stamp schema version.

    Safe to call more than once.
    """
    cur = conn.cursor()
    for stmt in SCHEMA_STATEMENTS:
        cur.executescript(stmt)
    cur.execute(
        "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )
    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute(
        "SELECT value FROM schema_meta WHERE key = 'schema_version'"
    ).fetchone()
    return int(row[0]) if row else 0
