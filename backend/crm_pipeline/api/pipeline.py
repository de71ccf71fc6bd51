"""Sales pipeline endpoints - kanban board, lead detail, stage moves."""

from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from crm_pipeline.adapters.crm_api import CRMApiClient
from crm_pipeline.middleware.auth import Principal, require_pipeline_role
from crm_pipeline.schemas.pipeline import (
    ActivityFeedItem,
    BoardResponse,
    LeadDetailResponse,
    StageUpdateRequest,
    StageUpdateResponse,
    TimelineEntry,
)
from crm_pipeline.services.board_config import get_board_config
from crm_pipeline.services.pipeline import (
    InvalidStageError,
    LeadNotFoundError,
    PipelineService,
    UpstreamError,
)
from crm_pipeline.services.snapshot import SnapshotStore

router = APIRouter(prefix="/pipeline", tags=["pipeline"])

_store = SnapshotStore()


def get_snapshot_store() -> SnapshotStore:
    return _store


def get_crm_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Default network transport; swapped out in tests."""
    return None


def get_pipeline_service(
    principal: Principal = Depends(require_pipeline_role),
    store: SnapshotStore = Depends(get_snapshot_store),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_crm_transport),
) -> PipelineService:
    client = CRMApiClient(principal.token, transport=transport)
    return PipelineService(client, store, get_board_config())


def _upstream_failed(e: UpstreamError) -> HTTPException:
    return HTTPException(status_code=502, detail=f"CRM API unavailable: {e.reason}")


@router.get("/board", response_model=BoardResponse)
async def get_board(
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Kanban columns of (lead, project) cards plus headline stats."""
    if assigned_to == "all":
        assigned_to = None
    return await service.board(assigned_to)


@router.get("/leads/{lead_id}", response_model=LeadDetailResponse)
async def get_lead_detail(
    lead_id: str,
    service: PipelineService = Depends(get_pipeline_service),
):
    """Lead detail: per-project visit tabs, or a flat timeline when there are none."""
    try:
        return await service.lead_detail(lead_id)
    except LeadNotFoundError:
        raise HTTPException(status_code=404, detail="Lead not found")
    except UpstreamError as e:
        raise _upstream_failed(e)


@router.get("/leads/{lead_id}/timeline", response_model=list[TimelineEntry])
async def get_lead_timeline(
    lead_id: str,
    service: PipelineService = Depends(get_pipeline_service),
):
    try:
        return await service.timeline(lead_id)
    except LeadNotFoundError:
        raise HTTPException(status_code=404, detail="Lead not found")
    except UpstreamError as e:
        raise _upstream_failed(e)


@router.post("/leads/{lead_id}/stage", response_model=StageUpdateResponse)
async def update_lead_stage(
    lead_id: str,
    body: StageUpdateRequest,
    service: PipelineService = Depends(get_pipeline_service),
):
    """Move a lead to another stage. All of its cards move together."""
    try:
        await service.move_lead(lead_id, body.stage)
    except InvalidStageError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LeadNotFoundError:
        raise HTTPException(status_code=404, detail="Lead not found")
    except UpstreamError as e:
        raise _upstream_failed(e)
    return StageUpdateResponse(ok=True, lead_id=lead_id, stage=body.stage)


@router.get("/activities", response_model=list[ActivityFeedItem])
async def list_activities(
    limit: int = Query(50, ge=1, le=200),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Recent team activity with display labels."""
    try:
        return await service.activity_feed(limit)
    except UpstreamError as e:
        raise _upstream_failed(e)
