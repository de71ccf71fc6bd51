"""Tests for the CRM REST API adapter against a mocked transport."""

import json
from typing import get_args

import httpx
import pytest

from conftest import lead_payload, visit_payload
from crm_pipeline.adapters.crm_api import CRMApiClient, extract_items, normalize_phone
from crm_pipeline.schemas.common import ApiFailure, ApiResult, ApiSuccess


def make_client(handler, token="tok-123"):
    return CRMApiClient(token, base_url="http://crm.test/api", transport=httpx.MockTransport(handler))


class TestExtractItems:
    def test_bare_list(self):
        assert extract_items([1, 2]) == [1, 2]

    def test_data_envelope(self):
        assert extract_items({"data": [1]}) == [1]

    def test_anything_else_is_empty(self):
        assert extract_items({"error": "nope"}) == []
        assert extract_items(None) == []
        assert extract_items("oops") == []
        assert extract_items({"data": "oops"}) == []


class TestNormalizePhone:
    def test_strips_formatting(self):
        assert normalize_phone("+91 98765-43210") == "+919876543210"


class TestApiResult:
    def test_union_members(self):
        assert get_args(ApiResult) == (ApiSuccess, ApiFailure)

    def test_tags(self):
        assert ApiSuccess(data=[1]).ok is True
        assert ApiFailure(error="boom").ok is False


@pytest.mark.asyncio
class TestCRMApiClient:
    async def test_list_leads_sends_bearer_and_filters(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers.get("authorization")
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[lead_payload("1", "Asha", visits=[
                visit_payload("v1", "2024-01-01T10:00:00Z", project="Lakeview"),
            ])])

        result = await make_client(handler).list_leads(assigned_to="u1")
        assert isinstance(result, ApiSuccess)
        assert result.data[0].site_visits[0].project.name == "Lakeview"
        assert seen["auth"] == "Bearer tok-123"
        assert seen["path"] == "/api/leads"
        assert seen["params"] == {"assignedTo": "u1"}

    async def test_invalid_items_skipped(self):
        def handler(request):
            return httpx.Response(200, json=[lead_payload("1", "Asha"), {"id": "2"}])

        result = await make_client(handler).list_leads()
        assert result.ok
        assert [lead.id for lead in result.data] == ["1"]

    async def test_unexpected_shape_is_no_data(self):
        def handler(request):
            return httpx.Response(200, json={"message": "maintenance"})

        result = await make_client(handler).list_activities()
        assert result.ok
        assert result.data == []

    async def test_activities_envelope_and_limit(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"data": [{
                "id": "a1", "action": "lead_created", "entityType": "lead",
                "details": {"leadId": "1"}, "createdAt": "2024-01-01T00:00:00Z",
            }]})

        result = await make_client(handler).list_activities(limit=10)
        assert [a.id for a in result.data] == ["a1"]
        assert seen["params"] == {"limit": "10"}

    async def test_http_error_is_failure(self):
        def handler(request):
            return httpx.Response(500, json={"error": "Failed to fetch leads"})

        result = await make_client(handler).list_leads()
        assert isinstance(result, ApiFailure)
        assert result.status_code == 500
        assert result.error == "Failed to fetch leads"

    async def test_network_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_client(handler).list_agents()
        assert not result.ok
        assert result.status_code is None
        assert "connection refused" in result.error

    async def test_invalid_json_is_failure(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"})

        result = await make_client(handler).list_leads()
        assert not result.ok

    async def test_get_lead(self):
        def handler(request):
            assert request.url.path == "/api/leads/1"
            return httpx.Response(200, json=lead_payload("1", "Asha"))

        result = await make_client(handler).get_lead("1")
        assert result.data.name == "Asha"

    async def test_get_lead_malformed(self):
        def handler(request):
            return httpx.Response(200, json=[])

        result = await make_client(handler).get_lead("1")
        assert result.ok
        assert result.data is None

    async def test_get_lead_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"error": "Lead not found"})

        result = await make_client(handler).get_lead("missing")
        assert result.status_code == 404

    async def test_related_leads_exact_phone_only(self):
        def handler(request):
            assert request.url.params["phone"] == "9876543210"
            return httpx.Response(200, json=[
                lead_payload("1", "Asha", phone="9876543210"),
                lead_payload("2", "Asha", phone="98765 43210"),
                lead_payload("3", "Other", phone="919876543210"),
            ])

        result = await make_client(handler).list_related_leads("9876543210", exclude_id="1")
        assert [lead.id for lead in result.data] == ["2"]

    async def test_related_leads_without_phone(self):
        def handler(request):
            raise AssertionError("should not be called")

        result = await make_client(handler).list_related_leads("")
        assert result.ok
        assert result.data == []

    async def test_update_lead_stage(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = request.content
            return httpx.Response(200, json={"id": "1", "stage": "token"})

        result = await make_client(handler).update_lead_stage("1", "token")
        assert result.ok
        assert seen["method"] == "PATCH"
        assert json.loads(seen["body"]) == {"stage": "token"}

    async def test_ping(self):
        def handler(request):
            return httpx.Response(404)

        assert await make_client(handler, token="").ping() is True

    async def test_ping_down(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        assert await make_client(handler).ping() is False
