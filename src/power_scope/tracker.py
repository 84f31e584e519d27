# src/power_scope/tracker.py
"""Cross-sample process liveness tracking.

Each committed roster is compared with the PIDs seen before it. A PID that
disappears is not declared exited straight away: it becomes a pending
candidate, the caller probes it outside the write lock, and ``settle``
records the verdict. Entries are written to ``MetricsState.recently_exited``
keyed by process name.
"""

from __future__ import annotations

import structlog

from power_scope.models import (
    CoalitionId,
    ExitedProcessInfo,
    MetricsState,
    Pid,
    ProcessCoalition,
    ProcessInfo,
)

log = structlog.get_logger()

EXIT_RETENTION_SECONDS = 300.0


class LivenessTracker:
    """Tracks last-seen PIDs, name registries and the exited ledger."""

    def __init__(
        self,
        state: MetricsState,
        retention_seconds: float = EXIT_RETENTION_SECONDS,
    ) -> None:
        self.state = state
        self.retention_seconds = retention_seconds
        # Missing PIDs waiting for a liveness verdict, with their last known name
        self.pending: dict[Pid, str] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Ledger
    # ─────────────────────────────────────────────────────────────────────

    def record_exit(self, pid: Pid, name: str, now: float) -> ExitedProcessInfo:
        """Merge an exited PID into the ledger entry for its name.

        A PID already recorded under another name moves to this one, so it
        is never held by two entries.
        """
        for previous in self._drop_from_ledger(pid, keep=name):
            log.debug("exit_renamed", pid=pid, old_name=previous, new_name=name)

        entry = self.state.recently_exited.get(name)
        if entry is None:
            # A PID that died mid-sample may never have been seen before
            first_seen = self.state.last_seen.get(pid, now)
            entry = ExitedProcessInfo(name=name, pids=[pid], first_seen=first_seen, last_exit=now)
            self.state.recently_exited[name] = entry
        else:
            if pid not in entry.pids:
                entry.pids.append(pid)
            entry.last_exit = now

        log.info("process_exited", pid=pid, name=name, occurrences=entry.occurrences)
        return entry

    def retract(self, pid: Pid) -> bool:
        """Remove a reappearing PID from every ledger entry. Empty entries are deleted."""
        names = self._drop_from_ledger(pid)
        for name in names:
            log.info("exit_retracted", pid=pid, name=name)
        return bool(names)

    def _drop_from_ledger(self, pid: Pid, keep: str | None = None) -> list[str]:
        """Take ``pid`` out of every entry except ``keep``; return the names touched."""
        touched = []
        for name, entry in list(self.state.recently_exited.items()):
            if name == keep or pid not in entry.pids:
                continue
            entry.pids.remove(pid)
            if not entry.pids:
                del self.state.recently_exited[name]
            touched.append(name)
        return touched

    def prune(self, now: float) -> int:
        """Drop ledger entries whose last exit is older than the retention window."""
        stale = [
            name
            for name, entry in self.state.recently_exited.items()
            if now - entry.last_exit >= self.retention_seconds
        ]
        for name in stale:
            del self.state.recently_exited[name]
        return len(stale)

    # ─────────────────────────────────────────────────────────────────────
    # Per-sample reconciliation
    # ─────────────────────────────────────────────────────────────────────

    def reconcile(
        self,
        processes: list[ProcessInfo],
        coalitions: list[ProcessCoalition],
        now: float,
    ) -> dict[Pid, str]:
        """Compare a freshly committed roster with the last one.

        Call with the write lock held. PIDs that vanished become pending
        candidates for ``settle``; tracking for PIDs in the roster is
        refreshed.

        Returns:
            The pending candidates (PID -> last known name)
        """
        state = self.state
        live = {p.pid for p in processes}
        coalition_ids = {c.coalition_id for c in coalitions}

        for pid in list(state.last_seen):
            if pid in live:
                continue
            if CoalitionId(pid) in coalition_ids:
                # Leader PID reported only as its coalition row this time
                log.debug("coalition_pid_overlap", pid=pid)
                state.purge_process(pid)
                continue
            name = state.process_names.get(pid)
            if not name:
                log.debug("ghost_pid_dropped", pid=pid)
                state.purge_process(pid)
                state.process_names.pop(pid, None)
                continue
            self.pending[pid] = name

        self.prune(now)

        for proc in processes:
            state.last_seen[proc.pid] = now
            self._register_process_name(proc.pid, proc.name)
            self.retract(proc.pid)
            self.pending.pop(proc.pid, None)

        for coalition in coalitions:
            self._register_coalition_name(coalition.coalition_id, coalition.name)

        return dict(self.pending)

    def take_pending(self) -> dict[Pid, str]:
        """Return the pending candidates without clearing them."""
        return dict(self.pending)

    def settle(self, verdicts: dict[Pid, bool], now: float) -> list[Pid]:
        """Apply liveness verdicts. Call with the write lock held.

        A candidate that came back into the live roster since it was queued
        is ignored. Alive candidates stay tracked and are checked again if
        they are still missing next sample.

        Returns:
            PIDs recorded as exited
        """
        state = self.state
        live = state.live_pids()
        exited = []
        for pid, alive in verdicts.items():
            name = self.pending.pop(pid, None)
            if name is None or pid in live:
                continue
            if alive:
                log.debug("exit_suppressed", pid=pid, name=name)
                continue
            self.record_exit(pid, name, now)
            state.purge_process(pid)
            exited.append(pid)
        return exited

    # ─────────────────────────────────────────────────────────────────────
    # Name registries
    # ─────────────────────────────────────────────────────────────────────

    def _register_process_name(self, pid: Pid, name: str) -> None:
        previous = self.state.process_names.get(pid)
        if previous is not None and previous != name:
            log.warning("process_name_changed", pid=pid, old_name=previous, new_name=name)
        self.state.process_names[pid] = name

    def _register_coalition_name(self, coalition_id: CoalitionId, name: str) -> None:
        previous = self.state.coalition_names.get(coalition_id)
        if previous is not None and previous != name:
            log.warning(
                "coalition_name_changed",
                coalition_id=coalition_id,
                old_name=previous,
                new_name=name,
            )
        self.state.coalition_names[coalition_id] = name
