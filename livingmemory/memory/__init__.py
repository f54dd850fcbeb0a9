"""
Living memory persistence.

Five record kinds share one SQLite file:
- ObservationLog: the append-only source observations
- DigestionLedger: which observations were digested, into which categories
- DistilledStateStore: the living summary per category
- ConsolidationStore: staleness annotations + consolidation runs
- SnapshotStore: monthly crystallized summaries
"""

from .observation_log import ObservationLog, Observation, DigestedObservation
from .ledger import DigestionLedger, DigestionRecord
from .state_store import DistilledStateStore, DistilledState
from .consolidation_store import ConsolidationStore, ConsolidationRun
from .snapshot_store import SnapshotStore, Snapshot

__all__ = [
    "ObservationLog", "Observation", "DigestedObservation",
    "DigestionLedger", "DigestionRecord",
    "DistilledStateStore", "DistilledState",
    "ConsolidationStore", "ConsolidationRun",
    "SnapshotStore", "Snapshot",
]
