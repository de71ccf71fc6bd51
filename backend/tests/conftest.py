"""Shared factories for CRM payloads (camelCase, as the upstream API sends them)."""

import pytest

from crm_pipeline.schemas.crm import Lead


def visit_payload(visit_id, scheduled_at, project=None, prop=None, project_id=None, property_id=None, **extra):
    payload = {"id": visit_id, "scheduledAt": scheduled_at, "status": "scheduled", **extra}
    if project is not None:
        payload["project"] = {"name": project, "location": "Pune"}
        if project_id:
            payload["project"]["id"] = project_id
    if prop is not None:
        payload["property"] = {"title": prop, "location": "Pune"}
        if property_id:
            payload["property"]["id"] = property_id
    return payload


def call_payload(call_id, call_date, status="connected_positive", **extra):
    return {"id": call_id, "callDate": call_date, "callStatus": status, **extra}


def lead_payload(lead_id, name, stage="new", visits=None, calls=None, deals=None, **extra):
    return {
        "id": lead_id,
        "name": name,
        "phone": extra.pop("phone", f"98765{lead_id:0>5}"),
        "stage": stage,
        "temperature": "warm",
        "source": "website",
        "siteVisits": visits or [],
        "callLogs": calls or [],
        "deals": deals or [],
        **extra,
    }


@pytest.fixture
def make_lead():
    def _make(lead_id, name, **kwargs) -> Lead:
        return Lead.model_validate(lead_payload(lead_id, name, **kwargs))
    return _make
