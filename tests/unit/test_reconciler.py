"""Tests for the pure reconciler."""
import copy

import pytest

from lighthouse.sync.reconciler import (
    EntitySnapshot,
    ReconciliationError,
    RemoteBatch,
    reconcile,
    summarize,
)

MIN = 60 * 1000
HOUR = 60 * MIN
NOW = 1736949600000
DAY_START = 1736899200000
DAY_END = DAY_START + 24 * HOUR - 1


@pytest.fixture(name="batch")
def batch_fixture(make_member, make_task, remote_entries):
    def _batch(**overrides) -> RemoteBatch:
        fields = dict(
            members=[make_member("1"), make_member("2", username="Grace Hopper")],
            time_entries=remote_entries,
            tasks=[make_task("t1")],
            running_timers={"1": None, "2": None},
            range_start_ms=DAY_START,
            range_end_ms=DAY_END,
            fetched_at_ms=NOW,
        )
        fields.update(overrides)
        return RemoteBatch(**fields)
    return _batch


class TestReconcile:
    def test_inserts_into_empty_local(self, batch):
        out = reconcile(EntitySnapshot(), batch())
        assert set(out.members) == {"1", "2"}
        assert set(out.tasks) == {"t1"}
        assert set(out.time_entries) == {"e1", "e2"}

    def test_derived_fields_from_time_entries(self, batch):
        member = reconcile(EntitySnapshot(), batch()).members["1"]
        assert member["tracked_hours"] == 2.0
        assert member["status"] == "offline"
        assert member["breaks_count"] == 1
        assert member["breaks_minutes"] == 30
        assert member["tasks"] == 1
        assert member["current_task"] == "Task t1"
        assert member["updated_at_ms"] == NOW

    def test_member_without_entries_has_no_activity(self, batch):
        member = reconcile(EntitySnapshot(), batch()).members["2"]
        assert member["status"] == "noActivity"
        assert member["tracked_hours"] == 0.0
        assert member["initials"] == "GH"

    def test_running_timer_marks_working(self, batch, make_entry):
        running = make_entry("r1", "2", NOW - 15 * MIN, -1)
        member = reconcile(EntitySnapshot(), batch(running_timers={"2": running})).members["2"]
        assert member["status"] == "working"
        assert member["timer_seconds"] == 15 * 60

    def test_remote_replaces_local(self, batch):
        first = reconcile(EntitySnapshot(), batch())
        tasks = copy.deepcopy(first.tasks)
        tasks["t1"]["status"] = "stale status"
        local = EntitySnapshot(first.members, tasks, first.time_entries)
        out = reconcile(local, batch())
        assert out.tasks["t1"]["status"] == "in progress"

    def test_local_only_entries_kept_without_entry_window(self, batch):
        first = reconcile(EntitySnapshot(), batch())
        out = reconcile(first, batch(tasks=[], time_entries=[]))
        assert set(out.tasks) == {"t1"}
        assert set(out.time_entries) == {"e1", "e2"}

    def test_entity_filter_limits_members(self, batch):
        out = reconcile(EntitySnapshot(), batch(entity_filter=frozenset({"2"})))
        assert set(out.members) == {"2"}

    def test_local_target_hours_preserved(self, batch):
        first = reconcile(EntitySnapshot(), batch())
        members = copy.deepcopy(first.members)
        members["1"]["target_hours"] = 1.0
        out = reconcile(EntitySnapshot(members, first.tasks, first.time_entries), batch())
        assert out.members["1"]["target_hours"] == 1.0
        assert out.members["1"]["is_overworking"] is True

    def test_previous_derived_values_never_carried_over(self, batch):
        first = reconcile(EntitySnapshot(), batch())
        members = copy.deepcopy(first.members)
        members["2"]["status"] = "working"
        members["2"]["tracked_hours"] = 9.0
        out = reconcile(EntitySnapshot(members, first.tasks, first.time_entries), batch())
        assert out.members["2"]["status"] == "noActivity"
        assert out.members["2"]["tracked_hours"] == 0.0

    def test_fields_not_derived_reset_to_default(self, batch):
        first = reconcile(EntitySnapshot(), batch())
        out = reconcile(first, batch(), derive_fns=[])
        assert out.members["1"]["tracked_hours"] == 0.0
        assert out.members["1"]["status"] == "noActivity"

    def test_idempotent(self, batch):
        once = reconcile(EntitySnapshot(), batch())
        twice = reconcile(once, batch())
        assert twice == once
        assert twice.to_json() == once.to_json()

    def test_deterministic_encoding(self, batch):
        assert reconcile(EntitySnapshot(), batch()).to_json() == reconcile(EntitySnapshot(), batch()).to_json()

    def test_does_not_mutate_inputs(self, batch):
        local = reconcile(EntitySnapshot(), batch())
        before = local.to_json()
        reconcile(local, batch(tasks=[], members=[]))
        assert local.to_json() == before

    def test_entries_outside_range_ignored_for_derivation(self, batch, make_entry):
        yesterday = make_entry("old", "2", DAY_START - 5 * HOUR, HOUR)
        member = reconcile(EntitySnapshot(), batch(time_entries=[yesterday])).members["2"]
        assert member["tracked_hours"] == 0.0
        assert member["last_active_ms"] == DAY_START - 4 * HOUR

    def test_malformed_task_raises(self, batch):
        with pytest.raises(ReconciliationError, match="item 0"):
            reconcile(EntitySnapshot(), batch(tasks=[{"name": "no id"}]))

    def test_malformed_entry_raises(self, batch):
        with pytest.raises(ReconciliationError):
            reconcile(EntitySnapshot(), batch(time_entries=[{"id": "x", "start": "1"}]))

    def test_non_object_payload_raises(self, batch):
        with pytest.raises(ReconciliationError):
            reconcile(EntitySnapshot(), batch(members=["not a dict"]))



class TestStaleEntries:
    """The fetched time-entry window is authoritative for the fetched users."""

    def _window(self, batch, entries, users=("1", "2")):
        return batch(
            time_entries=entries,
            entry_user_ids=frozenset(users),
            entries_window_end_ms=NOW,
        )

    def test_entry_deleted_remotely_is_dropped(self, batch, remote_entries):
        first = reconcile(EntitySnapshot(), self._window(batch, remote_entries))
        assert first.members["1"]["tracked_hours"] == 2.0

        out = reconcile(first, self._window(batch, remote_entries[:1]))

        assert set(out.time_entries) == {"e1"}
        assert out.members["1"]["tracked_hours"] == 1.0

    def test_entries_of_users_not_fetched_are_kept(self, batch, remote_entries):
        first = reconcile(EntitySnapshot(), self._window(batch, remote_entries))
        out = reconcile(first, self._window(batch, [], users=("2",)))
        assert set(out.time_entries) == {"e1", "e2"}

    def test_entries_after_window_end_are_kept(self, batch, make_entry):
        later = make_entry("later", "1", NOW + HOUR, HOUR)
        first = reconcile(EntitySnapshot(), self._window(batch, [later]))
        out = reconcile(first, self._window(batch, []))
        assert set(out.time_entries) == {"later"}

    def test_pruning_is_idempotent(self, batch, remote_entries):
        first = reconcile(EntitySnapshot(), self._window(batch, remote_entries))
        once = reconcile(first, self._window(batch, remote_entries[:1]))
        twice = reconcile(once, self._window(batch, remote_entries[:1]))
        assert twice.to_json() == once.to_json()

class TestSummarize:
    def test_team_stats(self, batch):
        remote = batch()
        stats = summarize(reconcile(EntitySnapshot(), remote), remote)
        assert stats["members"] == 2
        assert stats["status_counts"] == {"noActivity": 1, "offline": 1}
        assert stats["tracked_hours"] == 2.0
        assert stats["projects"] == {"Website": 2.0}


class TestRecoveredFields:
    def test_work_window_and_score(self, batch):
        member = reconcile(EntitySnapshot(), batch()).members["1"]
        assert member["start_ms"] == NOW - 3 * HOUR
        assert member["end_ms"] == NOW - 30 * MIN
        assert member["score"] > 0
        assert set(member["score_breakdown"]) == {"tracked", "tasks_worked", "tasks_done", "compliance"}

    def test_baseline_reaches_derivers(self, batch):
        low = reconcile(EntitySnapshot(), batch(avg_tasks_baseline=1.0)).members["1"]
        high = reconcile(EntitySnapshot(), batch(avg_tasks_baseline=10.0)).members["1"]
        assert low["score_breakdown"]["tasks_worked"] == 20.0
        assert high["score_breakdown"]["tasks_worked"] == 2.0
