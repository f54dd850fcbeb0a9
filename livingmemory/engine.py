"""
Living Memory - the engine facade.

Wires the stores, oracle, digestion, consolidation and temporal queries
together and exposes the public operations.

Capture and digestion are decoupled: observe() returns as soon as the
observation is durable and queues it for the background digestion worker.
A digestion failure never undoes a capture; catch_up() or rebuild() repair
whatever was missed.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from .audit_log import AuditLog
from .categories import Category, to_category
from .classifier import CategoryClassifier
from .consolidation import Consolidator
from .digestion import Digester
from .memory import (
    ConsolidationRun, ConsolidationStore, DigestionLedger, DistilledState,
    DistilledStateStore, Observation, ObservationLog, SnapshotStore,
)
from .merger import SummaryMerger
from .model_router import ModelRouter, TextOracle
from .settings import Settings
from .temporal import Comparison, MonthlySnapshot, RecallResult, Reflection, TemporalMemory

logger = logging.getLogger(__name__)


class LivingMemory:
    """Main orchestrator. One instance per database."""

    def __init__(self,
                 settings: Settings | None = None,
                 oracle: TextOracle | None = None,
                 model_router: ModelRouter | None = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.settings = settings or Settings()
        self.clock = clock
        db_path = self.settings.db_path

        # Oracles: one injected oracle for everything (tests), or a router per task
        if oracle is None:
            router = model_router or ModelRouter()
            classify_oracle = router.for_task("classify", temperature=0.0)
            merge_oracle = router.for_task("merge")
            consolidate_oracle = router.for_task("consolidate", temperature=0.3)
            temporal_oracle = router.for_task("temporal", temperature=0.2)
        else:
            classify_oracle = merge_oracle = consolidate_oracle = temporal_oracle = oracle

        # Stores
        self.audit_log = AuditLog(self.settings.audit_db_path)
        self.observations = ObservationLog(db_path)
        self.ledger = DigestionLedger(db_path)
        self.state = DistilledStateStore(db_path)
        self.snapshots = SnapshotStore(db_path)
        self.consolidation_store = ConsolidationStore(db_path)

        # Pipeline
        self.digester = Digester(
            classifier=CategoryClassifier(classify_oracle),
            merger=SummaryMerger(merge_oracle, subject=self.settings.subject_name),
            state=self.state,
            ledger=self.ledger,
            observations=self.observations,
            audit_log=self.audit_log,
        )
        self.temporal = TemporalMemory(
            state=self.state,
            snapshots=self.snapshots,
            observations=self.observations,
            oracle=temporal_oracle,
            clock=clock,
            audit_log=self.audit_log,
            gate=self.digester.gate,
            subject=self.settings.subject_name,
            key_observation_limit=self.settings.key_observation_limit,
            key_observation_chars=self.settings.key_observation_chars,
        )
        self.consolidator = Consolidator(
            observations=self.observations,
            state=self.state,
            store=self.consolidation_store,
            temporal=self.temporal,
            oracle=consolidate_oracle,
            settings=self.settings,
            clock=clock,
            audit_log=self.audit_log,
        )

        # Background digestion
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None

    # ============== LIFECYCLE ==============

    async def start(self, catch_up: bool = True):
        """Start the digestion worker (and digest anything left over)."""
        if self._worker is not None:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._digest_worker())
        logger.info("Digestion worker started")
        if catch_up:
            for obs in self.observations.undigested():
                self._queue.put_nowait(obs)

    async def stop(self):
        """Stop the worker after the queue drains."""
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info("Digestion worker stopped")

    async def wait_idle(self):
        """Block until every queued observation has been digested."""
        if self._queue is not None:
            await self._queue.join()

    async def _digest_worker(self):
        while True:
            obs = await self._queue.get()
            try:
                await self.digester.digest(obs.id, obs.text, obs.created_at)
            except Exception as e:
                logger.error(f"Digestion of {obs.id} failed: {e}")
                self.audit_log.log(
                    "reject", "digestion", f"Digestion failed: {obs.id}",
                    details=str(e), success=False,
                )
            finally:
                self._queue.task_done()

    # ============== CAPTURE ==============

    def observe(self, text: str, created_at: datetime | str | None = None,
                observation_id: str | None = None) -> Observation:
        """
        Record an observation and queue it for digestion.

        Returns once the observation is stored; digestion happens later on
        the worker (or on catch_up() if no worker is running). A timestamp
        that is not ISO 8601 is refused with ValueError and nothing is stored.
        """
        try:
            obs = self.observations.add(text, created_at=created_at,
                                        observation_id=observation_id)
        except ValueError as e:
            logger.warning(f"Observation refused: {e}")
            self.audit_log.log("block", "capture", "Observation refused",
                               details=str(e), success=False)
            raise
        if self._queue is not None:
            self._queue.put_nowait(obs)
        return obs

    # ============== DISTILLED STATE ==============

    def read_summary(self, category) -> DistilledState:
        return self.state.read(category)

    def read_all_summaries(self) -> dict[Category, DistilledState]:
        return self.state.read_all()

    async def digest(self, observation_id: str, text: str,
                     timestamp: datetime | str) -> list[Category]:
        """Digest one observation directly. Idempotent per observation id."""
        return await self.digester.digest(observation_id, text, timestamp)

    async def catch_up(self) -> int:
        return await self.digester.catch_up()

    async def rebuild(self, target="all") -> int:
        """Rebuild one category, or "all"."""
        if not (isinstance(target, str) and target.strip().lower() == "all"):
            target = to_category(target)
        return await self.digester.rebuild(target)

    # ============== CONSOLIDATION ==============

    async def run_consolidation(self) -> ConsolidationRun:
        return await self.consolidator.run()

    def last_digest(self) -> str | None:
        return self.consolidator.last_digest()

    def consolidation_history(self, limit: int = 5) -> list[ConsolidationRun]:
        return self.consolidator.history(limit)

    # ============== TEMPORAL ==============

    async def take_snapshot(self, year: int | None = None,
                            month: int | None = None) -> MonthlySnapshot:
        return await self.temporal.take_snapshot(year, month)

    def recall(self, category, year: int, month: int) -> RecallResult:
        return self.temporal.recall(category, year, month)

    def month_snapshot(self, year: int, month: int) -> dict[Category, RecallResult]:
        return self.temporal.month_snapshot(year, month)

    def list_snapshots(self) -> list[dict]:
        return self.temporal.list_snapshots()

    async def compare(self, category, period_a: tuple[int, int],
                      period_b: tuple[int, int]) -> Comparison:
        return await self.temporal.compare(category, period_a, period_b)

    async def reflect(self, lookback_months: int | None = None) -> Reflection:
        if lookback_months is None:
            lookback_months = self.settings.reflect_lookback_months
        return await self.temporal.reflect(lookback_months)

    def get_summary(self) -> str:
        """One-line status for startup logs."""
        states = self.state.read_all()
        tracked = sum(1 for s in states.values() if s.observation_count > 0)
        return (
            f"{tracked}/{len(states)} summaries active, "
            f"{self.ledger.count()} observations digested, "
            f"{len(self.snapshots.list_periods())} snapshot periods"
        )
