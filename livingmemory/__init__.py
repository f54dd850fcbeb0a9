"""
Living Memory - incremental distillation of an observation log.

Observations are folded, as they arrive, into a handful of living summaries
(commitments, people, projects, tensions, mood, narrative). A weekly
consolidation pass maintains staleness scores and writes a digest, and
monthly snapshots preserve how each summary looked at the time.

LivingMemory is the entry point; everything else is wired up by it.
"""

from .categories import ALL_CATEGORIES, Category, UnknownCategoryError, default_content
from .engine import LivingMemory
from .model_router import ModelRouter, OracleError, TextOracle
from .settings import Settings, load_settings

__all__ = [
    "LivingMemory",
    "Category", "ALL_CATEGORIES", "UnknownCategoryError", "default_content",
    "ModelRouter", "OracleError", "TextOracle",
    "Settings", "load_settings",
]
