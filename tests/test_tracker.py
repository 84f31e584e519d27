# tests/test_tracker.py
"""Tests for cross-sample liveness tracking."""

from power_scope.models import (
    CoalitionId,
    ExitedProcessInfo,
    MetricsState,
    Pid,
    ProcessCoalition,
    ProcessInfo,
    history_for,
)
from power_scope.tracker import LivenessTracker


def _proc(pid: int, name: str = "Tab") -> ProcessInfo:
    return ProcessInfo(pid=Pid(pid), name=name, coalition_name="Browser")


def _coalition(coalition_id: int, name: str = "Browser") -> ProcessCoalition:
    return ProcessCoalition(coalition_id=CoalitionId(coalition_id), name=name)


class TestRecordExit:
    def test_record_exit_creates_entry(self, state: MetricsState, tracker: LivenessTracker):
        """First exit under a name creates the ledger entry."""
        state.last_seen[Pid(202)] = 10.0

        entry = tracker.record_exit(Pid(202), "Tab", 20.0)

        assert state.recently_exited["Tab"] is entry
        assert entry.pids == [Pid(202)]
        assert entry.first_seen == 10.0
        assert entry.last_exit == 20.0

    def test_record_exit_merges_by_name(self, state: MetricsState, tracker: LivenessTracker):
        """Worker PIDs with the same name share one entry."""
        tracker.record_exit(Pid(1), "worker", 10.0)
        tracker.record_exit(Pid(2), "worker", 11.0)
        tracker.record_exit(Pid(2), "worker", 12.0)

        entry = state.recently_exited["worker"]
        assert entry.pids == [Pid(1), Pid(2)]
        assert entry.occurrences == 2
        assert entry.last_exit == 12.0

    def test_record_exit_moves_pid_between_names(
        self, state: MetricsState, tracker: LivenessTracker
    ):
        """A PID recorded under a second name leaves its first entry."""
        tracker.record_exit(Pid(202), "Tab", 10.0)
        tracker.record_exit(Pid(203), "Tab", 10.0)
        tracker.record_exit(Pid(202), "Unknown Process (PID 202)", 11.0)

        assert state.recently_exited["Tab"].pids == [Pid(203)]
        assert state.recently_exited["Unknown Process (PID 202)"].pids == [Pid(202)]

    def test_record_exit_without_last_seen(self, state: MetricsState, tracker: LivenessTracker):
        """A PID never seen alive gets first_seen equal to its exit time."""
        entry = tracker.record_exit(Pid(9), "Unknown Process (PID 9)", 30.0)
        assert entry.first_seen == 30.0


class TestRetractAndPrune:
    def test_retract_removes_pid_and_empty_entry(
        self, state: MetricsState, tracker: LivenessTracker
    ):
        """Retracting the last PID deletes the entry."""
        state.recently_exited["Tab"] = ExitedProcessInfo(name="Tab", pids=[Pid(202)])
        assert tracker.retract(Pid(202))
        assert "Tab" not in state.recently_exited

    def test_retract_keeps_other_pids(self, state: MetricsState, tracker: LivenessTracker):
        """Other PIDs under the same name stay in the ledger."""
        state.recently_exited["Tab"] = ExitedProcessInfo(name="Tab", pids=[Pid(202), Pid(203)])
        tracker.retract(Pid(202))
        assert state.recently_exited["Tab"].pids == [Pid(203)]

    def test_retract_clears_every_entry(self, state: MetricsState, tracker: LivenessTracker):
        """A PID held by more than one entry is removed from all of them."""
        state.recently_exited["Tab"] = ExitedProcessInfo(name="Tab", pids=[Pid(202), Pid(203)])
        state.recently_exited["Unknown Process (PID 202)"] = ExitedProcessInfo(
            name="Unknown Process (PID 202)", pids=[Pid(202)]
        )

        assert tracker.retract(Pid(202))

        assert not state.is_exited(Pid(202))
        assert list(state.recently_exited) == ["Tab"]
        assert state.recently_exited["Tab"].pids == [Pid(203)]

    def test_retract_unknown_pid(self, tracker: LivenessTracker):
        """Retracting a PID not in the ledger is a no-op."""
        assert not tracker.retract(Pid(1))

    def test_prune_drops_old_entries(self, state: MetricsState):
        """Entries older than the retention window are dropped."""
        tracker = LivenessTracker(state, retention_seconds=300.0)
        state.recently_exited["old"] = ExitedProcessInfo(name="old", pids=[Pid(1)], last_exit=0.0)
        state.recently_exited["new"] = ExitedProcessInfo(
            name="new", pids=[Pid(2)], last_exit=250.0
        )

        assert tracker.prune(300.0) == 1
        assert list(state.recently_exited) == ["new"]


class TestReconcile:
    def test_missing_pid_becomes_pending(self, state: MetricsState, tracker: LivenessTracker):
        """A PID that vanished is queued with its last known name."""
        tracker.reconcile([_proc(201), _proc(202)], [_coalition(100)], 1.0)
        pending = tracker.reconcile([_proc(201)], [_coalition(100)], 2.0)

        assert pending == {Pid(202): "Tab"}
        assert state.last_seen[Pid(201)] == 2.0
        # Not exited until settled
        assert state.recently_exited == {}

    def test_coalition_id_overlap_is_not_an_exit(
        self, state: MetricsState, tracker: LivenessTracker
    ):
        """A PID now reported only as a coalition ID is dropped silently."""
        tracker.reconcile([_proc(100, "Browser")], [_coalition(100)], 1.0)
        pending = tracker.reconcile([], [_coalition(100)], 2.0)

        assert pending == {}
        assert Pid(100) not in state.last_seen

    def test_ghost_pid_is_dropped(self, state: MetricsState, tracker: LivenessTracker):
        """A tracked PID with no recorded name is dropped, not probed."""
        state.last_seen[Pid(77)] = 1.0
        history_for(state.process_cpu_history, Pid(77), 10).push(1.0)

        pending = tracker.reconcile([], [], 2.0)

        assert pending == {}
        assert Pid(77) not in state.last_seen
        assert Pid(77) not in state.process_cpu_history

    def test_reappearing_pid_is_retracted(self, state: MetricsState, tracker: LivenessTracker):
        """A PID in the ledger that shows up again is removed from it."""
        state.recently_exited["Tab"] = ExitedProcessInfo(
            name="Tab", pids=[Pid(202)], last_exit=1.0
        )
        tracker.reconcile([_proc(202)], [], 2.0)
        assert state.recently_exited == {}
        assert not state.is_exited(Pid(202))

    def test_name_change_is_recorded(self, state: MetricsState, tracker: LivenessTracker):
        """The name registry follows the latest name for a PID."""
        tracker.reconcile([_proc(5, "old")], [_coalition(1, "A")], 1.0)
        tracker.reconcile([_proc(5, "new")], [_coalition(1, "B")], 2.0)
        assert state.process_names[Pid(5)] == "new"
        assert state.coalition_names[CoalitionId(1)] == "B"


class TestSettle:
    def test_dead_verdict_records_exit(self, state: MetricsState, tracker: LivenessTracker):
        """A dead candidate goes into the ledger and its histories are purged."""
        tracker.reconcile([_proc(201), _proc(202)], [], 1.0)
        history_for(state.process_cpu_history, Pid(202), 10).push(3.0)
        state.processes = [_proc(201)]
        tracker.reconcile(state.processes, [], 2.0)

        exited = tracker.settle({Pid(202): False}, 3.0)

        assert exited == [Pid(202)]
        assert state.recently_exited["Tab"].pids == [Pid(202)]
        assert Pid(202) not in state.last_seen
        assert Pid(202) not in state.process_cpu_history
        assert tracker.pending == {}

    def test_alive_verdict_keeps_tracking(self, state: MetricsState, tracker: LivenessTracker):
        """An alive candidate is not exited and stays tracked."""
        tracker.reconcile([_proc(202)], [], 1.0)
        tracker.reconcile([], [], 2.0)

        assert tracker.settle({Pid(202): True}, 3.0) == []
        assert state.recently_exited == {}
        assert Pid(202) in state.last_seen

    def test_candidate_back_in_roster_is_ignored(
        self, state: MetricsState, tracker: LivenessTracker
    ):
        """A dead verdict for a PID that is live again is discarded."""
        tracker.reconcile([_proc(202)], [], 1.0)
        tracker.reconcile([], [], 2.0)
        state.processes = [_proc(202)]

        assert tracker.settle({Pid(202): False}, 3.0) == []
        assert state.recently_exited == {}

    def test_unknown_verdict_is_ignored(self, tracker: LivenessTracker):
        """Verdicts for PIDs that were never pending are ignored."""
        assert tracker.settle({Pid(1): False}, 1.0) == []
