"""
Runtime settings for the living memory engine.

Loaded from config/livingmemory.yaml (path overridable with LIVINGMEMORY_CONFIG).
Anything missing from the file falls back to the defaults below.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.environ.get("LIVINGMEMORY_DATA_DIR", "data"))
CONFIG_PATH = os.environ.get("LIVINGMEMORY_CONFIG", "config/livingmemory.yaml")


@dataclass
class Settings:
    db_path: Path = field(default_factory=lambda: DATA_DIR / "livingmemory.db")
    audit_db_path: Path = field(default_factory=lambda: DATA_DIR / "audit_log.db")
    subject_name: str = "the user"  # how prompts refer to the person observed

    # Consolidation windows
    pattern_window_days: int = 7
    min_pattern_observations: int = 3
    strengthen_window_days: int = 7
    strengthen_amount: float = 0.2
    high_salience_categories: list[str] = field(
        default_factory=lambda: ["narrative", "tensions"]
    )
    stale_after_days: int = 30

    # Snapshots
    key_observation_limit: int = 10
    key_observation_chars: int = 200
    reflect_lookback_months: int = 3

    # Schedule (cron fields, local time)
    consolidation_cron: dict = field(
        default_factory=lambda: {"day_of_week": "sun", "hour": 3, "minute": 0}
    )
    snapshot_cron: dict = field(
        default_factory=lambda: {"day": 1, "hour": 0, "minute": 30}
    )


def load_settings(config_path: str | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults."""
    path = Path(config_path or CONFIG_PATH)
    settings = Settings()
    if not path.exists():
        logger.warning(f"Config not found at {path}, using defaults")
        return settings

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    known = {f.name for f in fields(Settings)}
    for key, value in config.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting: {key}")
            continue
        if key in ("db_path", "audit_db_path"):
            value = Path(value)
        setattr(settings, key, value)

    return settings
