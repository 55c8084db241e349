"""Tests for the leave / WFH sync helpers."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from lighthouse.clickup.client import ClickUpNetworkError
from lighthouse.sync.leaves import build_leaves, fetch_leave_tasks, leave_lists
from lighthouse.sync.session import CancellationToken

MEMBERS = {"1": "Ada Lovelace"}


def task(task_id, assignee="1", **extra):
    return {
        "id": task_id,
        "name": "Time off",
        "status": {"status": "to do"},
        "assignees": [{"id": int(assignee)}],
        "start_date": "1737331200000",
        **extra,
    }


class TestLeaveLists:
    def test_only_configured_lists(self, settings):
        assert leave_lists(settings) == []
        settings.wfh_list_id = "W1"
        assert leave_lists(settings) == [("W1", "wfh")]
        settings.leave_list_id = "L1"
        assert leave_lists(settings) == [("L1", "annual"), ("W1", "wfh")]


class TestFetchLeaveTasks:
    @pytest.mark.asyncio
    async def test_reads_every_page_of_each_list(self, settings):
        settings.leave_list_id = "L1"
        settings.wfh_list_id = "W1"
        client = MagicMock()
        client.list_list_tasks_page = AsyncMock(side_effect=[
            ([task("a")], True),
            ([task("b")], False),
            ([task("c")], False),
        ])

        tasks = await fetch_leave_tasks(client, settings, CancellationToken())

        assert [(kind, raw["id"]) for kind, raw in tasks] == [("annual", "a"), ("annual", "b"), ("wfh", "c")]
        assert [c.args for c in client.list_list_tasks_page.await_args_list] == [("L1", 0), ("L1", 1), ("W1", 0)]

    @pytest.mark.asyncio
    async def test_failed_list_returns_none(self, settings):
        settings.leave_list_id = "L1"
        client = MagicMock()
        client.list_list_tasks_page = AsyncMock(side_effect=ClickUpNetworkError("timeout"))
        assert await fetch_leave_tasks(client, settings, CancellationToken()) is None


class TestBuildLeaves:
    def test_normalizes_and_sorts(self):
        leaves = build_leaves(
            [("wfh", task("z")), ("annual", task("b")), ("annual", task("a", assignee="9"))],
            MEMBERS,
        )
        assert [l["leave_id"] for l in leaves] == ["leave_b", "wfh_z"]
        assert leaves[0]["requested_days"] is None
        assert leaves[1]["kind"] == "wfh"

    def test_malformed_task_skipped(self):
        leaves = build_leaves([("annual", {"name": "no id"}), ("annual", task("b"))], MEMBERS)
        assert [l["leave_id"] for l in leaves] == ["leave_b"]
