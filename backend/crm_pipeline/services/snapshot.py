"""Pipeline page state - immutable snapshots behind a generation guard.

Each refresh takes a generation number when it starts. Its result is
committed only if no later-started refresh has committed already, so a slow
earlier fetch can't overwrite newer data. A failed refresh leaves the last
good snapshot in place.
"""

import itertools
import threading
from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict

from crm_pipeline.schemas.crm import ActivityLog, Agent, Lead
from crm_pipeline.schemas.pipeline import ExpandedLead, PipelineStats
from crm_pipeline.services.grouping import expand_leads_by_project
from crm_pipeline.services.stats import calculate_pipeline_stats

logger = structlog.get_logger()


class PipelineSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    generation: int
    leads: tuple[Lead, ...] = ()
    rows: tuple[ExpandedLead, ...] = ()
    activities: tuple[ActivityLog, ...] = ()
    agents: tuple[Agent, ...] = ()
    stats: PipelineStats = PipelineStats()
    fetched_at: datetime

    def find_lead(self, lead_id: str) -> Optional[Lead]:
        return next((lead for lead in self.leads if lead.id == lead_id), None)


def build_snapshot(
    generation: int,
    leads: list[Lead],
    activities: list[ActivityLog],
    agents: list[Agent],
) -> PipelineSnapshot:
    return PipelineSnapshot(
        generation=generation,
        leads=tuple(leads),
        rows=tuple(expand_leads_by_project(leads)),
        activities=tuple(activities),
        agents=tuple(agents),
        stats=calculate_pipeline_stats(leads),
        fetched_at=datetime.now(timezone.utc),
    )


class SnapshotStore:
    """Holds the latest committed snapshot per view key (e.g. agent filter)."""

    def __init__(self):
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self._snapshots: dict[str, PipelineSnapshot] = {}

    def begin(self) -> int:
        """Reserve a generation for a refresh that is about to start."""
        with self._lock:
            return next(self._counter)

    def commit(self, key: str, snapshot: PipelineSnapshot) -> bool:
        """Store ``snapshot`` unless a newer generation is already committed."""
        with self._lock:
            current = self._snapshots.get(key)
            if current is not None and current.generation > snapshot.generation:
                logger.info(
                    "snapshot_stale_discarded",
                    key=key, generation=snapshot.generation, current=current.generation,
                )
                return False
            self._snapshots[key] = snapshot
            return True

    def get(self, key: str) -> Optional[PipelineSnapshot]:
        with self._lock:
            return self._snapshots.get(key)

    def find_lead(self, lead_id: str) -> Optional[Lead]:
        """Look a lead up across every cached view."""
        with self._lock:
            snapshots = list(self._snapshots.values())
        for snapshot in sorted(snapshots, key=lambda s: s.generation, reverse=True):
            lead = snapshot.find_lead(lead_id)
            if lead is not None:
                return lead
        return None

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()
