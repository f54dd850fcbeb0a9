"""Shared fixtures: a deterministic oracle, a fixed clock and a throwaway database."""

import asyncio
import re
from datetime import datetime

import pytest

from livingmemory import LivingMemory, Settings
from livingmemory.model_router import OracleError, TextOracle

DEFAULT_KEYWORDS = {
    "promised": "commitments",
    "report": "commitments",
    "dentist": "commitments",
    "marcus": "people",
    "sarah": "people",
    "app": "projects",
    "worried": "tensions",
    "feeling": "mood",
    "tired": "mood",
    "i believe": "narrative",
    "i am": "narrative",
}

_CLASSIFY_RE = re.compile(r'Observation: "(.*)"\n')
_MERGE_RE = re.compile(r":\n(.*?)\n\nNEW OBSERVATION \([^)]*\):\n(.*?)\n\n", re.S)


def prompt_kind(prompt: str) -> str:
    if prompt.startswith("Analyze this personal observation"):
        return "classify"
    if "NEW OBSERVATION (" in prompt:
        return "merge"
    if "identify recurring patterns" in prompt:
        return "patterns"
    if prompt.startswith("Generate a brief weekly digest"):
        return "digest"
    if prompt.startswith("Compare these two snapshots"):
        return "compare"
    if prompt.startswith("Reflect on"):
        return "reflect"
    return "unknown"


class StubOracle(TextOracle):
    """
    Deterministic stand-in for a model.

    Classifies by keyword, merges by appending the observation to the
    current summary, and answers everything else with canned text.
    """

    def __init__(self, keywords=None, fail_on=(), replies=None, delay=0.0):
        self.keywords = keywords or DEFAULT_KEYWORDS
        self.delay = delay
        self.fail_on = set(fail_on)
        self.replies = replies or {}
        self.prompts: list[str] = []

    def calls(self, kind: str) -> list[str]:
        return [p for p in self.prompts if prompt_kind(p) == kind]

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        await asyncio.sleep(self.delay)  # yield like a real network call would
        kind = prompt_kind(prompt)
        if kind in self.fail_on:
            raise OracleError(f"stub refused {kind}")
        if kind in self.replies:
            return self.replies[kind]

        if kind == "classify":
            text = _CLASSIFY_RE.search(prompt).group(1).lower()
            found = [cat for word, cat in self.keywords.items() if word in text]
            return ", ".join(dict.fromkeys(found)) or "none"

        if kind == "merge":
            current, observation = _MERGE_RE.search(prompt).groups()
            if current.startswith("No ") and current.endswith("tracked yet."):
                return observation
            return f"{current}\n{observation}"

        return f"{kind} response"


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=tmp_path / "livingmemory.db",
        audit_db_path=tmp_path / "audit_log.db",
    )


@pytest.fixture
def oracle():
    return StubOracle()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 11, 15, 12, 0))


@pytest.fixture
def memory(settings, oracle, clock):
    return LivingMemory(settings=settings, oracle=oracle, clock=clock)


@pytest.fixture
def make_memory(settings, clock):
    """Build an engine around a custom oracle (same database and clock)."""
    def _make(oracle):
        return LivingMemory(settings=settings, oracle=oracle, clock=clock)
    return _make
