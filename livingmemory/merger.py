"""
Summary Merger - folds one observation into one living summary.

The oracle returns the whole replacement summary, never a patch. Each
category has its own policy:

    commitments / people / projects  itemized lists with status
    tensions                          itemized, resolved items drop out
    mood / narrative                  prose

"Keep what wasn't mentioned" is an instruction in the prompt, nothing more.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from .categories import Category, to_category
from .model_router import TextOracle
from .periods import parse_timestamp

logger = logging.getLogger(__name__)


class MergeError(Exception):
    """The oracle could not produce a replacement summary."""
    pass


@dataclass
class MergePolicy:
    role: str            # "You maintain {s} commitment tracker."
    current_label: str
    instructions: str
    output_label: str


POLICIES = {
    Category.COMMITMENTS: MergePolicy(
        role="You maintain {possessive} commitment tracker. Here's the current state and a new observation.",
        current_label="CURRENT COMMITMENTS",
        instructions=(
            "Update the commitments summary to incorporate any new, changed, or completed items.\n"
            "Format: List each commitment with status (pending/completed/overdue if date passed), "
            "who it's to (if known), and when.\n"
            "Keep items that weren't mentioned - they're still active unless explicitly completed.\n"
            "Be concise. Only track real commitments, not vague intentions."
        ),
        output_label="UPDATED COMMITMENTS",
    ),
    Category.PEOPLE: MergePolicy(
        role="You maintain {possessive} relationship memory. Here's who they know and a new observation.",
        current_label="CURRENT PEOPLE",
        instructions=(
            "Update the people summary to incorporate any new people, relationship changes, or recent interactions.\n"
            "Format: List each person with their role/relationship, last known interaction, and any current context.\n"
            "Keep people who weren't mentioned - they're still part of {subject}'s life.\n"
            "Be concise. Focus on who matters and what's current."
        ),
        output_label="UPDATED PEOPLE",
    ),
    Category.PROJECTS: MergePolicy(
        role="You maintain {possessive} project tracker. Here's what they're working on and a new observation.",
        current_label="CURRENT PROJECTS",
        instructions=(
            "Update the projects summary to incorporate any new projects, progress, or changes.\n"
            "Format: List each project/goal with current status and recent developments.\n"
            "Keep projects that weren't mentioned - they're still active unless explicitly done.\n"
            "Be concise. Focus on what's actively being worked on."
        ),
        output_label="UPDATED PROJECTS",
    ),
    Category.TENSIONS: MergePolicy(
        role="You track {possessive} open loops and concerns. Here's the current state and a new observation.",
        current_label="CURRENT TENSIONS/CONCERNS",
        instructions=(
            "Update the tensions summary to incorporate any new concerns, resolved issues, or contradictions.\n"
            "Format: List each tension/concern with context and whether it's active.\n"
            "Remove items that are clearly resolved. Keep active items that weren't mentioned. "
            "Add new worries or conflicts.\n"
            "Be concise. Focus on what's actually bothering or conflicting."
        ),
        output_label="UPDATED TENSIONS",
    ),
    Category.MOOD: MergePolicy(
        role="You track {possessive} emotional patterns. Here's recent mood data and a new observation.",
        current_label="RECENT MOOD PATTERNS",
        instructions=(
            "Update the mood summary to incorporate any emotional indicators from this observation.\n"
            "Format: Short prose describing current emotional state, recent trajectory, and contributing factors.\n"
            "Look for explicit feelings AND implicit mood indicators (energy, stress, enthusiasm).\n"
            "Be concise. Focus on patterns, not moment-to-moment fluctuations."
        ),
        output_label="UPDATED MOOD",
    ),
    Category.NARRATIVE: MergePolicy(
        role=(
            "You maintain {possessive} self-narrative - their understanding of who they are, "
            "what they value, and who they're becoming. This is deeper than mood or projects; "
            "it's about identity."
        ),
        current_label="CURRENT SELF-NARRATIVE",
        instructions=(
            "Update the self-narrative to incorporate any identity-relevant insights:\n"
            "- Values expressed or demonstrated\n"
            "- Self-realizations and beliefs about what matters\n"
            "- Growth patterns or changes in perspective\n"
            "Format: A cohesive narrative paragraph (not a list), written in third person about {subject}.\n"
            "Preserve core identity elements. Add new insights. Note meaningful changes in self-understanding."
        ),
        output_label="UPDATED SELF-NARRATIVE",
    ),
}


def build_prompt(category: Category, current_summary: str, observation: str,
                 timestamp: datetime | str, subject: str = "the user") -> str:
    policy = POLICIES[category]
    if isinstance(timestamp, str):
        timestamp = parse_timestamp(timestamp)
    date_str = timestamp.strftime("%Y-%m-%d")
    possessive = f"{subject}'s"

    role = policy.role.format(possessive=possessive, subject=subject)
    instructions = policy.instructions.format(possessive=possessive, subject=subject)

    return f"""{role}

{policy.current_label}:
{current_summary}

NEW OBSERVATION ({date_str}):
{observation}

{instructions}

{policy.output_label}:"""


class SummaryMerger:

    def __init__(self, oracle: TextOracle, subject: str = "the user"):
        self.oracle = oracle
        self.subject = subject

    async def merge(self, category, current_summary: str, observation: str,
                    timestamp: datetime | str) -> str:
        """Return the full replacement summary. Raises MergeError on failure."""
        category = to_category(category)
        prompt = build_prompt(category, current_summary, observation,
                              timestamp, self.subject)
        try:
            response = await self.oracle.generate(prompt)
        except Exception as e:
            raise MergeError(f"{category.value} merge failed: {e}") from e

        if not isinstance(response, str) or not response.strip():
            raise MergeError(f"{category.value} merge returned no text")
        return response.strip()
