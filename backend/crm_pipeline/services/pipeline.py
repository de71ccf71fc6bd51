"""Pipeline service - fetch, reshape and serve the board and lead detail."""

import asyncio
from typing import Optional

import structlog

from crm_pipeline.adapters.crm_api import CRMApiClient
from crm_pipeline.schemas.pipeline import (
    ActivityFeedItem,
    BoardResponse,
    LeadDetailResponse,
    StageColumn,
    TimelineEntry,
)
from crm_pipeline.services.board_config import BoardConfig
from crm_pipeline.services.grouping import (
    activities_for_lead,
    build_unified_timeline,
    group_by_stage,
    group_visits_by_project,
)
from crm_pipeline.services.metrics import BOARD_BUILDS
from crm_pipeline.services.snapshot import PipelineSnapshot, SnapshotStore, build_snapshot
from crm_pipeline.services.stats import format_stats

logger = structlog.get_logger()

ALL_AGENTS = "all"


class LeadNotFoundError(Exception):
    def __init__(self, lead_id: str):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} not found")


class UpstreamError(Exception):
    def __init__(self, reason: str, status_code: Optional[int] = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason)


class InvalidStageError(Exception):
    def __init__(self, stage: str, allowed: list[str]):
        self.stage = stage
        self.allowed = allowed
        super().__init__(f"Unknown stage '{stage}'. Allowed: {', '.join(allowed)}")


class PipelineService:
    """One instance per request; the snapshot store outlives it."""

    def __init__(self, client: CRMApiClient, store: SnapshotStore, board_config: BoardConfig):
        self.client = client
        self.store = store
        self.board_config = board_config

    async def refresh(self, assigned_to: Optional[str] = None) -> tuple[PipelineSnapshot, list[str]]:
        """Refetch leads, activities and agents; commit a new snapshot.

        Returns the snapshot to render plus user-facing notices for whatever
        failed. Failed pieces keep their previous values.
        """
        key = assigned_to or ALL_AGENTS
        generation = self.store.begin()
        previous = self.store.get(key)

        leads_res, activities_res, agents_res = await asyncio.gather(
            self.client.list_leads(assigned_to=assigned_to),
            self.client.list_activities(),
            self.client.list_agents(),
        )

        notices = []
        if leads_res.ok:
            leads = leads_res.data
        else:
            notices.append(f"Could not load leads: {leads_res.error}")
            leads = list(previous.leads) if previous else []
        if activities_res.ok:
            activities = activities_res.data
        else:
            notices.append(f"Could not load activity: {activities_res.error}")
            activities = list(previous.activities) if previous else []
        if agents_res.ok:
            agents = agents_res.data
        else:
            notices.append(f"Could not load agents: {agents_res.error}")
            agents = list(previous.agents) if previous else []

        if not leads_res.ok:
            # Never committed: a failed fetch must not supersede one still in flight
            if previous is not None:
                snapshot = previous.model_copy(update={"activities": tuple(activities), "agents": tuple(agents)})
            else:
                snapshot = build_snapshot(generation, [], activities, agents)
            BOARD_BUILDS.labels(outcome="stale").inc()
            logger.warning("pipeline_refresh_failed", key=key, generation=generation, error=leads_res.error)
            return snapshot, notices

        snapshot = build_snapshot(generation, leads, activities, agents)
        if not self.store.commit(key, snapshot):
            # A newer refresh finished first; render what it committed
            snapshot = self.store.get(key) or snapshot
        BOARD_BUILDS.labels(outcome="ok" if not notices else "partial").inc()
        logger.info(
            "pipeline_refreshed",
            key=key, generation=snapshot.generation, leads=len(snapshot.leads), rows=len(snapshot.rows),
        )
        return snapshot, notices

    def render_board(self, snapshot: PipelineSnapshot, notices: Optional[list[str]] = None) -> BoardResponse:
        buckets = group_by_stage(snapshot.rows, self.board_config.stage_values)
        columns = [
            StageColumn(value=stage.value, label=stage.label, color=stage.color, rows=buckets[stage.value])
            for stage in self.board_config.stages
        ]
        placed = sum(len(rows) for rows in buckets.values())
        return BoardResponse(
            columns=columns,
            stats=snapshot.stats,
            formatted_stats=format_stats(snapshot.stats),
            agents=list(snapshot.agents),
            unstaged=len(snapshot.rows) - placed,
            generation=snapshot.generation,
            notices=notices or [],
        )

    async def board(self, assigned_to: Optional[str] = None) -> BoardResponse:
        snapshot, notices = await self.refresh(assigned_to)
        return self.render_board(snapshot, notices)

    async def _load_lead(self, lead_id: str):
        result = await self.client.get_lead(lead_id)
        if result.ok and result.data is not None:
            return result.data, []
        if result.ok or result.status_code == 404:
            raise LeadNotFoundError(lead_id)
        cached = self.store.find_lead(lead_id)
        if cached is None:
            raise UpstreamError(result.error, result.status_code)
        return cached, [f"Showing cached details: {result.error}"]

    async def lead_detail(self, lead_id: str) -> LeadDetailResponse:
        """Lead plus same-phone siblings, grouped by project when visits exist."""
        lead, notices = await self._load_lead(lead_id)

        related_res = await self.client.list_related_leads(lead.phone, exclude_id=lead.id)
        related = related_res.data if related_res.ok else []
        if not related_res.ok:
            notices.append(f"Could not load related leads: {related_res.error}")

        activities = await self._activities()
        groups = group_visits_by_project(lead, related)
        if groups:
            return LeadDetailResponse(
                lead=lead,
                related_leads=related,
                mode="projects",
                project_groups=list(groups.values()),
                activities=activities_for_lead(activities, lead),
                notices=notices,
            )
        return LeadDetailResponse(
            lead=lead,
            related_leads=related,
            mode="timeline",
            timeline=build_unified_timeline(lead),
            activities=activities_for_lead(activities, lead),
            notices=notices,
        )

    async def timeline(self, lead_id: str) -> list[TimelineEntry]:
        lead, _ = await self._load_lead(lead_id)
        return build_unified_timeline(lead)

    async def _activities(self):
        snapshot = self.store.get(ALL_AGENTS)
        if snapshot is not None:
            return list(snapshot.activities)
        result = await self.client.list_activities()
        return result.data if result.ok else []

    async def activity_feed(self, limit: Optional[int] = None) -> list[ActivityFeedItem]:
        result = await self.client.list_activities(limit)
        if not result.ok:
            raise UpstreamError(result.error, result.status_code)
        return [
            ActivityFeedItem(activity=activity, label=self.board_config.action_label(activity.action))
            for activity in result.data
        ]

    async def move_lead(self, lead_id: str, stage: str) -> None:
        """Move a lead (every card of it) to ``stage``."""
        allowed = self.board_config.stage_values
        if stage not in allowed:
            raise InvalidStageError(stage, allowed)
        result = await self.client.update_lead_stage(lead_id, stage)
        if not result.ok:
            if result.status_code == 404:
                raise LeadNotFoundError(lead_id)
            raise UpstreamError(result.error, result.status_code)
