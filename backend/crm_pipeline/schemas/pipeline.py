"""Derived pipeline structures served to the board and detail views."""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import Field

from crm_pipeline.schemas.crm import ActivityLog, Agent, CallLog, CRMModel, Lead, SiteVisit


class ExpandedLead(Lead):
    """One kanban card: a lead paired with one project/property it visited."""
    lead_id: str
    display_project: Optional[str] = None
    project_key: str
    project_visit_count: int = 0


class TimelineEntry(CRMModel):
    type: Literal["visit", "call"]
    date: datetime
    record: Union[SiteVisit, CallLog]


class ProjectGroup(CRMModel):
    project_name: str
    project_id: Optional[str] = None
    lead: Lead
    visits: list[SiteVisit] = []


class PipelineStats(CRMModel):
    total_value: float = 0.0
    total_deals: int = 0
    avg_deal_size: float = 0.0
    closing_this_month: float = 0.0
    conversion_rate: float = 0.0


class FormattedStats(CRMModel):
    total_value: str
    avg_deal_size: str
    closing_this_month: str
    conversion_rate: str


class StageColumn(CRMModel):
    value: str
    label: str
    color: str
    rows: list[ExpandedLead] = []


class BoardResponse(CRMModel):
    columns: list[StageColumn]
    stats: PipelineStats
    formatted_stats: FormattedStats
    agents: list[Agent] = []
    unstaged: int = 0
    generation: int = 0
    notices: list[str] = []


class LeadDetailResponse(CRMModel):
    lead: Lead
    related_leads: list[Lead] = []
    mode: Literal["projects", "timeline"]
    project_groups: list[ProjectGroup] = []
    timeline: list[TimelineEntry] = []
    activities: list[ActivityLog] = []
    notices: list[str] = []


class ActivityFeedItem(CRMModel):
    activity: ActivityLog
    label: str


class StageUpdateRequest(CRMModel):
    stage: str = Field(..., min_length=1)


class StageUpdateResponse(CRMModel):
    ok: bool
    lead_id: str
    stage: str
