"""Upstream CRM payload schemas.

The CRM REST API speaks camelCase JSON. Models accept either camelCase or
snake_case keys, ignore fields we don't use and are frozen: the service only
ever holds read-only snapshots of upstream records.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

# Funnel order of the kanban board. No transition graph is enforced.
STAGES = ("new", "contacted", "site_visit", "negotiation", "token", "completed", "closed", "lost")
TEMPERATURES = ("hot", "warm", "cold")
VISIT_STATUSES = ("scheduled", "rescheduled", "completed", "cancelled")


class CRMModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Upstream mixes naive and offset timestamps; naive ones are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Agent(CRMModel):
    id: str
    full_name: str = ""
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[str] = None


class ProjectRef(CRMModel):
    id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None


class PropertyRef(CRMModel):
    id: Optional[str] = None
    title: Optional[str] = None
    location: Optional[str] = None


class SiteVisit(CRMModel):
    id: str
    scheduled_at: datetime
    status: str = "scheduled"  # scheduled, rescheduled, completed, cancelled
    project: Optional[ProjectRef] = None
    property: Optional[PropertyRef] = None
    rating: Optional[int] = None  # 1-5
    feedback: Optional[str] = None

    normalize_scheduled_at = field_validator("scheduled_at")(_as_utc)


class CallLog(CRMModel):
    id: str
    call_date: datetime
    call_status: str
    duration: Optional[int] = None
    call_duration: Optional[int] = None
    notes: Optional[str] = None
    type: Optional[str] = None  # call, whatsapp
    agent: Optional[Agent] = None

    normalize_call_date = field_validator("call_date")(_as_utc)


class Deal(CRMModel):
    id: str
    deal_value: Optional[float] = None
    stage: Optional[str] = None
    expected_close_date: Optional[datetime] = None
    notes: Optional[str] = None


class Lead(CRMModel):
    id: str
    name: str
    phone: str = ""
    email: Optional[str] = None
    stage: str = "new"
    temperature: Optional[str] = None  # hot, warm, cold
    source: Optional[str] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    created_at: Optional[datetime] = None
    notes: Optional[str] = None
    project: Optional[ProjectRef] = None
    property: Optional[PropertyRef] = None
    assigned_to_id: Optional[str] = None
    assigned_to: Optional[Agent] = None
    deals: list[Deal] = []
    call_logs: list[CallLog] = []
    site_visits: list[SiteVisit] = []

    @field_validator("deals", "call_logs", "site_visits", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ActivityUser(CRMModel):
    id: Optional[str] = None
    full_name: Optional[str] = None


class ActivityLog(CRMModel):
    id: str
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details: dict[str, Any] = {}
    created_at: datetime
    user: Optional[ActivityUser] = None

    normalize_created_at = field_validator("created_at")(_as_utc)

    @field_validator("details", mode="before")
    @classmethod
    def _details_as_dict(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}
