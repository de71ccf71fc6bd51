"""Health check and metrics endpoints."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from crm_pipeline.adapters.crm_api import CRMApiClient
from crm_pipeline.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    reachable = await CRMApiClient(token="").ping()
    return HealthResponse(
        status="healthy" if reachable else "degraded",
        crm_api="ok" if reachable else "error",
    )


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
