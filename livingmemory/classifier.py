"""
Category Classifier.

Decides which living summaries an observation touches. The oracle answers in
free text, so its reply is tokenized and filtered against the enumeration;
anything unrecognized is dropped. A failed call classifies as nothing.
"""

import logging
import re

from .categories import ALL_CATEGORIES, CATEGORY_DESCRIPTIONS, Category, ordered
from .model_router import TextOracle

logger = logging.getLogger(__name__)

_TOKEN_SPLIT = re.compile(r"[^a-z]+")


def build_prompt(text: str) -> str:
    category_lines = "\n".join(
        f"- {c.value}: {CATEGORY_DESCRIPTIONS[c]}" for c in ALL_CATEGORIES
    )
    return f"""Analyze this personal observation and determine which categories it relates to.

Observation: "{text}"

Categories:
{category_lines}

Return ONLY a comma-separated list of relevant categories (e.g., "commitments,people" or "mood,narrative" or "none").
If none apply, return "none".

Categories:"""


def parse_categories(response: str) -> list[Category]:
    """Pull known category names out of a free-text reply."""
    if not isinstance(response, str):
        return []
    tokens = set(_TOKEN_SPLIT.split(response.lower()))
    return ordered(c for c in ALL_CATEGORIES if c.value in tokens)


class CategoryClassifier:

    def __init__(self, oracle: TextOracle):
        self.oracle = oracle

    async def classify(self, text: str) -> list[Category]:
        """Categories this text touches, in enumeration order. Never raises."""
        try:
            response = await self.oracle.generate(build_prompt(text))
        except Exception as e:
            logger.warning(f"Classification failed, treating as no categories: {e}")
            return []

        categories = parse_categories(response)
        if not categories:
            logger.debug(f"Observation touches no tracked categories: {response!r}")
        return categories
