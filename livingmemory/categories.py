"""
Category enumeration - the closed set of living summaries.

Each category owns one living summary. Adding a category only needs a new
member here (its default row is seeded on startup). Removing one orphans
any snapshot still referencing it.
"""

from enum import Enum


class Category(str, Enum):
    COMMITMENTS = "commitments"
    PEOPLE = "people"
    PROJECTS = "projects"
    TENSIONS = "tensions"
    MOOD = "mood"
    NARRATIVE = "narrative"

    def __str__(self) -> str:
        return self.value


ALL_CATEGORIES: list[Category] = list(Category)

# Used by the classifier prompt
CATEGORY_DESCRIPTIONS = {
    Category.COMMITMENTS: (
        "promises, tasks, things to do, deadlines, obligations, ALSO anything "
        "marked as done/paid/completed/finished, task status updates"
    ),
    Category.PEOPLE: "mentions of specific people, relationships, interactions",
    Category.PROJECTS: "ongoing work, goals, initiatives, creative endeavors",
    Category.TENSIONS: "concerns, conflicts, contradictions, unresolved issues, worries",
    Category.MOOD: "emotional states, energy levels, feelings, stress, happiness",
    Category.NARRATIVE: (
        "self-reflection, identity statements, values expressed, personal growth, "
        "beliefs about self, life philosophy, \"I am...\" or \"I believe...\" statements"
    ),
}


class UnknownCategoryError(ValueError):
    """Raised when a name is not part of the category enumeration."""
    pass


def to_category(value) -> Category:
    """Coerce a Category or its string value (case-insensitive)."""
    if isinstance(value, Category):
        return value
    try:
        return Category(str(value).strip().lower())
    except ValueError:
        raise UnknownCategoryError(f"Unknown category: {value!r}") from None


def default_content(category) -> str:
    """The sentinel summary for a category nothing has touched yet."""
    return f"No {to_category(category).value} tracked yet."


def ordered(categories) -> list[Category]:
    """De-duplicate and sort into enumeration order."""
    wanted = {to_category(c) for c in categories}
    return [c for c in ALL_CATEGORIES if c in wanted]
