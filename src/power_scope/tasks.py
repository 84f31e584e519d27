# src/power_scope/tasks.py
"""Running tasks section: the coalition/subprocess roster.

powermetrics prints each coalition unindented, followed by its member
processes indented beneath it:

    Name                       ID     CPU ms/s  User%  ...
    com.apple.Safari           812    45.12     71.30  ...
      Safari                   812    20.01     80.10  ...
      Safari Web Content       9951   25.11     65.00  ...
    ALL_TASKS                  -2     ...

The handler builds a fresh roster for the sample and swaps it into the
state when the section ends. Rows with an empty name are tasks that died
during the sampling window; they go straight to the exited ledger.
"""

from __future__ import annotations

import structlog

from power_scope import matchers
from power_scope.matchers import TaskRow
from power_scope.models import (
    ORPHANED,
    CoalitionId,
    Pid,
    ProcessCoalition,
    ProcessInfo,
    history_for,
)
from power_scope.state_machine import (
    Outcome,
    ParserContext,
    ParserState,
    StateHandler,
    TasksMode,
    stay,
)

log = structlog.get_logger()


def dead_task_name(task_id: int) -> str:
    return f"Unknown Process (PID {task_id})"


class RunningTasksHandler(StateHandler):
    """Builds the coalition tree for one sample and commits it on exit."""

    state = ParserState.RUNNING_TASKS

    def enter(self, ctx: ParserContext) -> None:
        ctx.reset_tasks()

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        if matchers.END_OF_TASKS.match(line):
            return stay(ParserState.IN_SAMPLE)

        if (
            not line.strip()
            or matchers.is_tasks_header(line)
            or matchers.SEPARATOR.search(line)
            or matchers.DEAD_TASKS.search(line)
        ):
            return stay(self.state)

        row = matchers.parse_task_row(line)
        if row is None:
            return stay(self.state)

        if row.indented:
            self._subprocess(ctx, row)
        else:
            self._coalition(ctx, row)
        return stay(self.state)

    def exit(self, ctx: ParserContext) -> None:
        self.commit(ctx)

    # ─────────────────────────────────────────────────────────────────────
    # Rows
    # ─────────────────────────────────────────────────────────────────────

    def _coalition(self, ctx: ParserContext, row: TaskRow) -> None:
        self._finalize_open_coalition(ctx)

        if not row.name:
            self._dead_task(ctx, row)
            return

        ctx.open_coalition = ProcessCoalition(
            coalition_id=CoalitionId(row.task_id),
            name=row.name,
            cpu_percent=row.cpu_percent,
            memory=row.user_percent,
        )
        ctx.tasks_mode = TasksMode.COALITION

    def _subprocess(self, ctx: ParserContext, row: TaskRow) -> None:
        if not row.name:
            self._dead_task(ctx, row)
            return

        proc = ProcessInfo(
            pid=Pid(row.task_id),
            name=row.name,
            cpu_percent=row.cpu_percent,
            memory=row.user_percent,
        )
        if ctx.tasks_mode is TasksMode.NONE:
            # Before the first coalition row, or after a dead one
            ctx.orphans.append(proc)
            return

        coalition = ctx.open_coalition
        assert coalition is not None
        proc.coalition_name = coalition.name
        coalition.subprocesses.append(proc)
        ctx.new_processes.append(proc)
        ctx.tasks_mode = TasksMode.SUBPROCESS

    def _dead_task(self, ctx: ParserContext, row: TaskRow) -> None:
        pid = Pid(row.task_id)
        ctx.tracker.record_exit(pid, dead_task_name(row.task_id), ctx.clock())
        # Already in the ledger, so it must not come back as a missing-PID candidate
        ctx.state.purge_process(pid)
        ctx.tracker.pending.pop(pid, None)

    def _finalize_open_coalition(self, ctx: ParserContext) -> None:
        if ctx.open_coalition is not None:
            ctx.new_coalitions.append(ctx.open_coalition)
            ctx.open_coalition = None
        ctx.tasks_mode = TasksMode.NONE

    # ─────────────────────────────────────────────────────────────────────
    # Commit
    # ─────────────────────────────────────────────────────────────────────

    def commit(self, ctx: ParserContext) -> None:
        """Swap the sample's roster into the state and reconcile liveness."""
        state = ctx.state
        self._finalize_open_coalition(ctx)
        self._fold_orphans(ctx)

        now = ctx.clock()
        for proc in ctx.new_processes:
            cpu = history_for(state.process_cpu_history, proc.pid, state.process_samples)
            mem = history_for(state.process_mem_history, proc.pid, state.process_samples)
            cpu.push(proc.cpu_percent)
            mem.push(proc.memory)
            proc.cpu_history = cpu.samples
            proc.memory_history = mem.samples

        live_coalitions = {c.coalition_id for c in ctx.new_coalitions}
        for coalition in ctx.new_coalitions:
            cpu = history_for(
                state.coalition_cpu_history, coalition.coalition_id, state.process_samples
            )
            mem = history_for(
                state.coalition_mem_history, coalition.coalition_id, state.process_samples
            )
            cpu.push(coalition.cpu_percent)
            mem.push(coalition.memory)
            coalition.cpu_history = cpu.samples
            coalition.memory_history = mem.samples
        for coalition_id in set(state.coalition_cpu_history) - live_coalitions:
            del state.coalition_cpu_history[coalition_id]
            state.coalition_mem_history.pop(coalition_id, None)

        state.processes = ctx.new_processes
        state.coalitions = ctx.new_coalitions

        ctx.tracker.reconcile(state.processes, state.coalitions, now)

        log.debug(
            "roster_committed",
            processes=len(state.processes),
            coalitions=len(state.coalitions),
            pending_exits=len(ctx.tracker.pending),
        )
        ctx.reset_tasks()

    def _fold_orphans(self, ctx: ParserContext) -> None:
        """Attach orphans to a same-named coalition, else tag them orphaned.

        An indented row can arrive before any coalition row when upstream
        output is cut or interleaved. If its own name matches a coalition
        committed in this sample it joins that coalition.
        """
        by_name = {c.name: c for c in ctx.new_coalitions}
        for proc in ctx.orphans:
            coalition = by_name.get(proc.name)
            if coalition is not None:
                proc.coalition_name = coalition.name
                coalition.subprocesses.append(proc)
            else:
                proc.coalition_name = ORPHANED
            ctx.new_processes.append(proc)
        ctx.orphans = []
