"""Tests for PipelineService refresh ordering and board rendering."""

import asyncio

import pytest

from crm_pipeline.schemas.common import ApiFailure, ApiSuccess
from crm_pipeline.services.board_config import DEFAULT_BOARD
from crm_pipeline.services.pipeline import PipelineService
from crm_pipeline.services.snapshot import SnapshotStore


class FakeClient:
    """Serves a fixed leads result, optionally held until ``gate`` opens."""

    def __init__(self, leads_result, gate=None):
        self.leads_result = leads_result
        self.gate = gate

    async def list_leads(self, assigned_to=None, stage=None, phone=None):
        if self.gate is not None:
            await self.gate.wait()
        return self.leads_result

    async def list_activities(self, limit=None):
        return ApiSuccess(data=[])

    async def list_agents(self, role=None):
        return ApiSuccess(data=[])


@pytest.mark.asyncio
class TestRefresh:
    def setup_method(self):
        self.store = SnapshotStore()

    async def test_board_renders_columns(self, make_lead):
        client = FakeClient(ApiSuccess(data=[make_lead("1", "Asha", stage="token")]))
        board = await PipelineService(client, self.store, DEFAULT_BOARD).board()
        assert len(board.columns) == len(DEFAULT_BOARD.stages)
        columns = {c.value: c for c in board.columns}
        assert [r.lead_id for r in columns["token"].rows] == ["1"]
        assert board.notices == []

    async def test_failed_refresh_is_not_committed(self):
        service = PipelineService(FakeClient(ApiFailure(error="upstream down")), self.store, DEFAULT_BOARD)
        snapshot, notices = await service.refresh()
        assert snapshot.leads == ()
        assert notices == ["Could not load leads: upstream down"]
        assert self.store.get("all") is None

    async def test_fast_failure_does_not_hide_slow_success(self, make_lead):
        gate = asyncio.Event()
        slow = PipelineService(
            FakeClient(ApiSuccess(data=[make_lead("1", "Asha")]), gate), self.store, DEFAULT_BOARD,
        )
        fast = PipelineService(FakeClient(ApiFailure(error="upstream down")), self.store, DEFAULT_BOARD)

        slow_task = asyncio.create_task(slow.refresh())
        await asyncio.sleep(0)
        failed, _ = await fast.refresh()
        gate.set()
        older, notices = await slow_task

        assert failed.leads == ()
        assert [lead.id for lead in older.leads] == ["1"]
        assert notices == []
        assert [lead.id for lead in self.store.get("all").leads] == ["1"]

    async def test_newer_success_still_wins(self, make_lead):
        gate = asyncio.Event()
        slow = PipelineService(
            FakeClient(ApiSuccess(data=[make_lead("1", "Old")]), gate), self.store, DEFAULT_BOARD,
        )
        fast = PipelineService(FakeClient(ApiSuccess(data=[make_lead("2", "New")])), self.store, DEFAULT_BOARD)

        slow_task = asyncio.create_task(slow.refresh())
        await asyncio.sleep(0)
        await fast.refresh()
        gate.set()
        older, _ = await slow_task

        assert [lead.name for lead in older.leads] == ["New"]
        assert [lead.name for lead in self.store.get("all").leads] == ["New"]
