"""
Digestion - folding observations into the living summaries.

    observation -> classify -> merge (per touched category) -> commit

Guarantees:
- Exactly once: the ledger is checked before any work and again once the
  category locks are held. The ledger row and every summary update for an
  observation commit in one SQLite transaction, so a crash mid-digestion
  leaves nothing behind and catch_up() redoes it.
- No lost updates: merges into one category are serialized by that
  category's lock. Locks are always taken in enumeration order.
- Rebuilds run alone: live digestion holds the shared side of the rebuild
  gate, a rebuild holds the exclusive side.

Merge is a full-text regeneration, so a rebuild that is interrupted and
resumed can differ from an uninterrupted pass even with the same oracle.
"""

import asyncio
import logging
import sqlite3
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime

from .audit_log import AuditLog
from .categories import ALL_CATEGORIES, Category, to_category
from .classifier import CategoryClassifier
from .merger import MergeError, SummaryMerger
from .memory import DigestionLedger, DistilledStateStore, ObservationLog
from .periods import to_iso

logger = logging.getLogger(__name__)


class RebuildGate:
    """Many digestions at once, or one rebuild alone. Waiting rebuilds go first."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def rebuilding(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def shared(self):
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self):
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class Digester:

    def __init__(self,
                 classifier: CategoryClassifier,
                 merger: SummaryMerger,
                 state: DistilledStateStore,
                 ledger: DigestionLedger,
                 observations: ObservationLog,
                 audit_log: AuditLog | None = None):
        self.classifier = classifier
        self.merger = merger
        self.state = state
        self.ledger = ledger
        self.observations = observations
        self.audit = audit_log
        self.gate = RebuildGate()
        self._locks = {c: asyncio.Lock() for c in ALL_CATEGORIES}

    # ============== LIVE DIGESTION ==============

    async def digest(self, observation_id: str, text: str,
                     timestamp: datetime | str) -> list[Category]:
        """
        Digest one observation. Idempotent: an id already in the ledger
        returns its recorded categories without touching anything.
        """
        existing = self.ledger.get(observation_id)
        if existing is not None:
            logger.debug(f"Observation {observation_id} already digested, skipping")
            return existing.categories

        async with self.gate.shared():
            return await self._digest(observation_id, text, to_iso(timestamp))

    async def catch_up(self) -> int:
        """Digest every observation that has no ledger record, oldest first."""
        pending = self.observations.undigested()
        if pending:
            logger.info(f"Catching up on {len(pending)} undigested observations")
        for obs in pending:
            await self.digest(obs.id, obs.text, obs.created_at)
        return len(pending)

    async def _digest(self, observation_id: str, text: str,
                      timestamp: str) -> list[Category]:
        categories = await self.classifier.classify(text)

        async with AsyncExitStack() as stack:
            for category in categories:
                await stack.enter_async_context(self._locks[category])

            # Another digestion of the same id may have committed while we classified
            existing = self.ledger.get(observation_id)
            if existing is not None:
                return existing.categories

            merged = {}
            for category in categories:
                current = self.state.read(category).content
                try:
                    merged[category] = await self.merger.merge(
                        category, current, text, timestamp
                    )
                except MergeError as e:
                    logger.warning(f"Observation {observation_id}: {e}")
                    self._audit("warn", f"Merge failed: {category.value}",
                                f"observation={observation_id} error={e}")

            touched = [c for c in categories if c in merged]
            try:
                with self.state.transaction() as conn:
                    for category in touched:
                        self.state.replace(category, merged[category], observation_id, conn)
                    self.ledger.insert(conn, observation_id, touched)
            except sqlite3.IntegrityError:
                # Lost the race on a disjoint category set; the other commit stands
                logger.info(f"Observation {observation_id} was digested concurrently")
                record = self.ledger.get(observation_id)
                return record.categories if record else []

        if touched:
            logger.info(f"Digested {observation_id} into: {', '.join(c.value for c in touched)}")
        else:
            logger.info(f"Observation {observation_id} doesn't touch any tracked categories")
        return touched

    # ============== REBUILD / REPLAY ==============

    async def rebuild(self, target="all") -> int:
        """Rebuild one category, or every category when target is "all"."""
        if isinstance(target, str) and target.strip().lower() == "all":
            return await self.rebuild_all()
        return await self.rebuild_category(target)

    async def rebuild_category(self, category) -> int:
        """
        Recompute one summary from scratch.

        Resets the summary, strips the category from the ledger, then replays
        every digested observation oldest-first through classify + merge for
        this category only. Observations with no ledger record are left for
        live digestion / catch_up(). Returns the number merged.
        """
        category = to_category(category)
        logger.info(f"Rebuilding {category.value} from all observations...")

        async with self.gate.exclusive():
            with self.state.transaction() as conn:
                self.state.reset(category, conn)
                self.ledger.remove_category(conn, category)

            count = 0
            for obs in self.observations.all_ascending():
                record = self.ledger.get(obs.id)
                if record is None:
                    continue

                categories = await self.classifier.classify(obs.text)
                if category not in categories:
                    continue

                current = self.state.read(category).content
                try:
                    merged = await self.merger.merge(category, current, obs.text, obs.created_at)
                except MergeError as e:
                    logger.warning(f"Rebuild of {category.value} skipped {obs.id}: {e}")
                    self._audit("warn", f"Rebuild merge failed: {category.value}",
                                f"observation={obs.id} error={e}")
                    continue

                with self.state.transaction() as conn:
                    self.state.replace(category, merged, obs.id, conn)
                    self.ledger.set_categories(conn, obs.id, record.categories + [category])
                count += 1

        logger.info(f"Rebuilt {category.value} from {count} observations")
        self._audit("info", f"Rebuilt {category.value}", f"{count} observations merged")
        return count

    async def rebuild_all(self) -> int:
        """Clear the ledger, reset every summary, re-digest everything in order."""
        logger.info("Rebuilding all living summaries...")

        async with self.gate.exclusive():
            with self.state.transaction() as conn:
                self.ledger.clear(conn)
                for category in ALL_CATEGORIES:
                    self.state.reset(category, conn)

            observations = self.observations.all_ascending()
            logger.info(f"Processing {len(observations)} observations...")
            for obs in observations:
                await self._digest(obs.id, obs.text, obs.created_at)

        logger.info("Rebuild complete")
        self._audit("info", "Rebuilt all categories", f"{len(observations)} observations replayed")
        return len(observations)

    def _audit(self, severity: str, action: str, details: str = ""):
        if self.audit:
            self.audit.log(severity, "digestion", action, details=details,
                           success=severity == "info")
