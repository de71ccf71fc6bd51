"""CRM REST API adapter - typed access to leads, activities and agents.

Every public call returns an ``ApiSuccess`` or ``ApiFailure`` instead of
raising, so callers branch on ``result.ok``. Response shape checks live here
and nowhere else.
"""

import time
from typing import Any, Optional, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from crm_pipeline.config import settings
from crm_pipeline.schemas.common import ApiFailure, ApiResult, ApiSuccess
from crm_pipeline.schemas.crm import ActivityLog, Agent, Lead
from crm_pipeline.services.metrics import CRM_API_LATENCY, CRM_API_REQUESTS, SKIPPED_RECORDS

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)


def extract_items(payload: Any) -> list:
    """Collection endpoints answer with a bare list or ``{"data": [...]}``.

    Anything else is treated as no data.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    return []


def parse_items(items: list, model: type[M], endpoint: str) -> list[M]:
    """Validate each item, dropping the ones that don't fit the model."""
    parsed = []
    for item in items:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as e:
            SKIPPED_RECORDS.labels(endpoint=endpoint).inc()
            logger.warning("crm_record_skipped", endpoint=endpoint, errors=e.error_count())
    return parsed


def normalize_phone(phone: str) -> str:
    return "".join(ch for ch in phone if ch.isdigit() or ch == "+")


class CRMApiClient:
    """Bearer-token client for the CRM REST API."""

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._token = token
        self._base_url = (base_url or settings.crm_api_url).rstrip("/")
        self._timeout = timeout or settings.crm_api_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers=headers,
        )

    async def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> ApiResult:
        start = time.time()
        try:
            async with self._client() as client:
                resp = await client.request(method, path, params=params, json=json)
                resp.raise_for_status()
                payload = resp.json() if resp.content else None
        except httpx.HTTPStatusError as e:
            CRM_API_REQUESTS.labels(endpoint=endpoint, outcome="http_error").inc()
            logger.error("crm_api_request_failed", endpoint=endpoint, status=e.response.status_code)
            return ApiFailure(error=_error_message(e.response), status_code=e.response.status_code)
        except (httpx.HTTPError, ValueError) as e:
            # ValueError covers an undecodable JSON body
            CRM_API_REQUESTS.labels(endpoint=endpoint, outcome="error").inc()
            logger.error("crm_api_request_failed", endpoint=endpoint, error=str(e))
            return ApiFailure(error=str(e) or e.__class__.__name__)
        finally:
            CRM_API_LATENCY.labels(endpoint=endpoint).observe(time.time() - start)

        CRM_API_REQUESTS.labels(endpoint=endpoint, outcome="ok").inc()
        return ApiSuccess(data=payload)

    async def _get_collection(
        self, path: str, model: type[M], endpoint: str, params: Optional[dict] = None,
    ) -> ApiResult:
        result = await self._request("GET", path, endpoint, params=params)
        if not result.ok:
            return result
        items = extract_items(result.data)
        if not items and result.data not in ([], None):
            logger.warning("crm_api_unexpected_shape", endpoint=endpoint, type=type(result.data).__name__)
        return ApiSuccess(data=parse_items(items, model, endpoint))

    async def list_leads(
        self,
        assigned_to: Optional[str] = None,
        stage: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> ApiResult:
        """List leads with nested deals, site visits and call logs."""
        params = {}
        if assigned_to:
            params["assignedTo"] = assigned_to
        if stage:
            params["stage"] = stage
        if phone:
            params["phone"] = phone
        return await self._get_collection("/leads", Lead, "leads", params=params or None)

    async def get_lead(self, lead_id: str) -> ApiResult:
        """Fetch one lead with its full history. ``data`` is None if malformed."""
        result = await self._request("GET", f"/leads/{lead_id}", "lead")
        if not result.ok:
            return result
        if not isinstance(result.data, dict):
            return ApiSuccess(data=None)
        leads = parse_items([result.data], Lead, "lead")
        return ApiSuccess(data=leads[0] if leads else None)

    async def list_related_leads(self, phone: str, exclude_id: Optional[str] = None) -> ApiResult:
        """Other lead records of the same person, matched by phone number.

        The upstream phone filter is a substring match, so results are
        narrowed to exact matches here.
        """
        if not phone:
            return ApiSuccess(data=[])
        result = await self.list_leads(phone=phone)
        if not result.ok:
            return result
        wanted = normalize_phone(phone)
        related = [
            lead for lead in result.data
            if lead.id != exclude_id and normalize_phone(lead.phone) == wanted
        ]
        return ApiSuccess(data=related)

    async def list_activities(self, limit: Optional[int] = None) -> ApiResult:
        return await self._get_collection(
            "/activities", ActivityLog, "activities",
            params={"limit": limit or settings.activity_limit},
        )

    async def list_agents(self, role: Optional[str] = None) -> ApiResult:
        return await self._get_collection(
            "/users", Agent, "users", params={"role": role or settings.agent_role},
        )

    async def update_lead_stage(self, lead_id: str, stage: str) -> ApiResult:
        result = await self._request("PATCH", f"/leads/{lead_id}", "lead_update", json={"stage": stage})
        if result.ok:
            logger.info("lead_stage_updated", lead_id=lead_id, stage=stage)
        return result

    async def ping(self) -> bool:
        """Cheap reachability check for the health endpoint."""
        try:
            async with self._client() as client:
                resp = await client.get("/health")
                return resp.status_code < 500
        except httpx.HTTPError:
            return False


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or f"HTTP {resp.status_code}")
    return f"HTTP {resp.status_code}"
