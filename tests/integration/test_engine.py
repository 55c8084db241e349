"""Integration tests for the SyncEngine facade."""
from datetime import date, timedelta

import asyncio
from unittest.mock import AsyncMock

import pytest

from lighthouse.clickup.client import ClickUpNetworkError
from lighthouse.engine import SyncEngine
from lighthouse.scheduler.jobs import DEBOUNCE_JOB_ID
from lighthouse.sync.params import DateRange, SyncParameters
from lighthouse.sync.session import SyncKind, SyncOutcome, SyncPhase, SyncSession


@pytest.fixture(name="sync_engine")
def sync_engine_fixture(clickup, store, settings, clock) -> SyncEngine:
    return SyncEngine(clickup, store, settings=settings, clock=clock)


class TestReads:
    def test_initial_state_from_store(self, sync_engine):
        state = sync_engine.read()
        assert state.entities.members == {}
        assert not state.is_syncing
        assert state.phase == SyncPhase.IDLE

    @pytest.mark.asyncio
    async def test_subscribers_see_progress_and_state(self, sync_engine):
        seen = []
        sync_engine.subscribe(seen.append)
        await sync_engine.sync()
        assert seen
        assert sync_engine.read().entities.members["1"]["name"] == "Ada Lovelace"


class TestParameters:
    def test_unchanged_parameters_ignored(self, sync_engine):
        assert sync_engine.set_parameters(SyncParameters.from_settings(sync_engine.settings)) is False
        assert sync_engine.scheduler.scheduler.get_job(DEBOUNCE_JOB_ID) is None

    def test_change_cancels_in_flight_and_arms_debounce(self, sync_engine):
        session = SyncSession(phase=SyncPhase.FETCHING)
        sync_engine.executor.current = session

        changed = sync_engine.params.with_date_range(DateRange(start=date(2025, 1, 13)))
        assert sync_engine.set_parameters(changed) is True

        assert session.token.cancelled
        assert sync_engine.params == changed
        assert sync_engine.scheduler.scheduler.get_job(DEBOUNCE_JOB_ID) is not None

    def test_poll_interval_change_reschedules(self, sync_engine):
        sync_engine.set_parameters(sync_engine.params.with_poll_interval(60000))
        job = sync_engine.scheduler.scheduler.get_job("poll_sync")
        assert job.trigger.interval == timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_debounced_attempt_uses_final_parameters(self, sync_engine):
        sync_engine.executor.run = AsyncMock()
        ranges = [DateRange(start=date(2025, 1, day)) for day in range(6, 11)]
        sync_engine.start(initial_sync=False)
        try:
            for date_range in ranges:
                sync_engine.set_parameters(sync_engine.params.with_date_range(date_range))
                await asyncio.sleep(0.04)
            sync_engine.executor.run.assert_not_awaited()
            await asyncio.sleep(0.6)
        finally:
            sync_engine.scheduler.shutdown()

        sync_engine.executor.run.assert_awaited_once()
        params = sync_engine.executor.run.await_args.args[0]
        assert params.date_range == ranges[-1]

    @pytest.mark.asyncio
    async def test_sync_uses_latest_parameters(self, sync_engine, clickup):
        sync_engine.set_parameters(sync_engine.params.with_entity_filter(["1"]))
        await sync_engine.sync()
        assert clickup.list_entities.await_args.args[0] == frozenset({"1"})


class TestInitialSync:
    @pytest.mark.asyncio
    async def test_empty_cache_runs_backfill(self, sync_engine, clickup):
        result = await sync_engine.initial_sync()
        assert result.kind == SyncKind.BACKFILL
        assert result.outcome == SyncOutcome.COMPLETED
        assert clickup.list_tasks_page.await_args.args[0]["assignees"] == []

    @pytest.mark.asyncio
    async def test_fresh_cache_runs_incremental(self, sync_engine):
        await sync_engine.sync(SyncKind.BACKFILL)
        result = await sync_engine.initial_sync()
        assert result.kind == SyncKind.INCREMENTAL

    @pytest.mark.asyncio
    async def test_failed_backfill_falls_back_to_incremental(self, sync_engine, clickup, make_member):
        clickup.list_entities.side_effect = [ClickUpNetworkError("down"), [make_member("1")]]
        result = await sync_engine.initial_sync()
        assert result.kind == SyncKind.INCREMENTAL
        assert result.outcome == SyncOutcome.COMPLETED


class TestOperations:
    @pytest.mark.asyncio
    async def test_online_operation_goes_straight_to_clickup(self, sync_engine, clickup):
        out = await sync_engine.submit_operation("time_entry_start", {"task_id": "t1"})
        assert out == {"queued": False, "operation_id": None}
        clickup.start_timer.assert_awaited_once_with("t1")
        assert sync_engine.queue.stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_offline_operation_is_queued(self, sync_engine, clickup):
        await sync_engine.set_online(False)
        out = await sync_engine.submit_operation("task_update", {"task_id": "t1", "updates": {"status": "done"}})
        assert out["queued"] is True
        clickup.update_task.assert_not_awaited()
        assert sync_engine.queue.stats()["pending"] == 1

    @pytest.mark.asyncio
    async def test_network_failure_queues_operation(self, sync_engine, clickup):
        clickup.stop_timer.side_effect = ClickUpNetworkError("timeout")
        out = await sync_engine.submit_operation("time_entry_stop", {})
        assert out["queued"] is True

    @pytest.mark.asyncio
    async def test_unknown_operation_rejected(self, sync_engine):
        with pytest.raises(ValueError):
            await sync_engine.submit_operation("launch_rocket", {})

    @pytest.mark.asyncio
    async def test_reconnect_replays_queue_then_syncs(self, sync_engine, clickup):
        order = []
        clickup.start_timer.side_effect = lambda task_id: order.append(("start_timer", task_id))
        original = clickup.list_entities.return_value

        async def list_entities(entity_filter=()):
            order.append(("list_entities", None))
            return original

        clickup.list_entities.side_effect = list_entities

        await sync_engine.set_online(False)
        await sync_engine.submit_operation("time_entry_start", {"task_id": "a"})
        await sync_engine.submit_operation("time_entry_start", {"task_id": "b"})
        result = await sync_engine.set_online(True)

        assert order == [("start_timer", "a"), ("start_timer", "b"), ("list_entities", None)]
        assert result.outcome == SyncOutcome.COMPLETED
        assert sync_engine.queue.stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_rejected_operation_set_aside_after_max_attempts(self, clickup, store, settings, clock):
        settings.max_replay_attempts = 2
        sync_engine = SyncEngine(clickup, store, settings=settings, clock=clock)
        clickup.update_task.side_effect = RuntimeError("404 task not found")
        await sync_engine.set_online(False)
        await sync_engine.submit_operation("task_update", {"task_id": "gone", "updates": {}})
        await sync_engine.submit_operation("time_entry_stop", {})

        await sync_engine.replay_offline()
        await sync_engine.replay_offline()
        result = await sync_engine.replay_offline()

        assert result.replayed == 1
        clickup.stop_timer.assert_awaited_once()
        assert sync_engine.queue.stats()["pending"] == 0
        assert sync_engine.queue.stats()["failed"] == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, sync_engine, clickup):
        sync_engine.start(initial_sync=False)
        assert sync_engine.scheduler.scheduler.running
        await sync_engine.shutdown()
        clickup.aclose.assert_awaited_once()
