# src/power_scope/state_machine.py
"""Section router for powermetrics text output.

The machine reads one line at a time. Sample markers and section boundary
lines are routed here; every other line goes to the handler of the current
state. A handler answers with an Outcome: the next state, and whether it
consumed the line. An unconsumed line is handed to the next state's handler,
so no line is dropped on a state change.

Transitions always run the old handler's ``exit`` and then the new
handler's ``enter``. That pair is where per-section data is committed.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple

import structlog

from power_scope import matchers
from power_scope.models import MetricsState, ProcessCoalition, ProcessInfo

if TYPE_CHECKING:
    from power_scope.tracker import LivenessTracker

log = structlog.get_logger()

# Upper bound on handler hand-offs for a single line
MAX_HOPS = 4


class ParserError(Exception):
    """Structural parser failure. The current sample is discarded."""


class UnroutableStateError(ParserError):
    """A transition targeted a state with no registered handler."""

    def __init__(self, state: ParserState) -> None:
        super().__init__(f"No handler registered for state {state.name}")
        self.state = state


class RoutingLoopError(ParserError):
    """Handlers kept passing a line along without consuming it."""


class ParserState(enum.Enum):
    WAITING_FOR_SAMPLE = "waiting_for_sample"
    IN_SAMPLE = "in_sample"
    PROCESSOR_USAGE = "processor_usage"
    CPU_INTERRUPTS = "cpu_interrupts"
    POWER_METRICS = "power_metrics"
    FREQUENCIES = "frequencies"
    NETWORK_IO = "network_io"
    DISK_IO = "disk_io"
    MEMORY_STATS = "memory_stats"
    THERMAL_DATA = "thermal_data"
    GPU_USAGE = "gpu_usage"
    BATTERY = "battery"
    SFI = "sfi"
    RUNNING_TASKS = "running_tasks"
    ERROR = "error"


# Checked in order against the lowercased section name
SECTION_STATES: tuple[tuple[str, ParserState], ...] = (
    ("processor usage", ParserState.PROCESSOR_USAGE),
    ("running tasks", ParserState.RUNNING_TASKS),
    ("interrupt distribution", ParserState.CPU_INTERRUPTS),
    ("network activity", ParserState.NETWORK_IO),
    ("disk activity", ParserState.DISK_IO),
    ("thermal pressure", ParserState.THERMAL_DATA),
    ("system memory", ParserState.MEMORY_STATS),
    ("battery and backlight", ParserState.BATTERY),
    ("gpu usage", ParserState.GPU_USAGE),
    ("selective forced idle", ParserState.SFI),
    ("frequency", ParserState.FREQUENCIES),
    ("power", ParserState.POWER_METRICS),
)


def route_section(name: str) -> ParserState:
    """Map a section name to its state. Unknown sections stay in-sample."""
    lowered = name.lower()
    for needle, state in SECTION_STATES:
        if needle in lowered:
            return state
    return ParserState.IN_SAMPLE


class Outcome(NamedTuple):
    next_state: ParserState
    consumed: bool = True


def stay(state: ParserState) -> Outcome:
    """Line consumed; continue in ``state``."""
    return Outcome(state, True)


def route(state: ParserState) -> Outcome:
    """Line not consumed; hand it to ``state``'s handler."""
    return Outcome(state, False)


class TasksMode(enum.Enum):
    """Running-tasks sub-mode.

    ``NONE`` means no coalition is open, so indented rows are orphans.
    ``COALITION`` and ``SUBPROCESS`` mean the last row opened a coalition
    or attached a member to it.
    """

    NONE = "none"
    COALITION = "coalition"
    SUBPROCESS = "subprocess"


@dataclass
class ParserContext:
    """Per-parse working data passed to every handler.

    ``state`` and ``tracker`` live for the whole parse; everything else
    belongs to the current sample and is reset when a new one starts.
    Section handlers write readings here, and only a committed sample
    copies them into ``state``.
    """

    state: MetricsState
    tracker: LivenessTracker
    clock: Callable[[], float] = time.time

    sample_open: bool = False
    elapsed_ms: float | None = None
    current_cpu: str | None = None
    current_cluster: str | None = None  # "E" or "P"

    # MetricsState attribute -> value read in this sample
    readings: dict[str, float | int | str] = field(default_factory=dict)
    cpus: set[str] = field(default_factory=set)
    per_cpu_interrupts: dict[str, float] = field(default_factory=dict)
    per_cpu_ipis: dict[str, float] = field(default_factory=dict)
    per_cpu_timers: dict[str, float] = field(default_factory=dict)
    ipi_total: float = 0.0
    timer_total: float = 0.0
    interrupts_total: float = 0.0
    frequencies: dict[int, int] = field(default_factory=dict)
    cluster_freq: dict[str, int] = field(default_factory=dict)
    cluster_markers: set[tuple[str, int]] = field(default_factory=set)
    temperature: dict[str, float] = field(default_factory=dict)

    # Running tasks accumulators
    tasks_mode: TasksMode = TasksMode.NONE
    open_coalition: ProcessCoalition | None = None
    new_coalitions: list[ProcessCoalition] = field(default_factory=list)
    new_processes: list[ProcessInfo] = field(default_factory=list)
    orphans: list[ProcessInfo] = field(default_factory=list)

    def begin_sample(self, elapsed_ms: float | None = None) -> None:
        """Reset per-sample data and mark a sample as open."""
        self.discard_sample()
        self.sample_open = True
        self.elapsed_ms = elapsed_ms

    def discard_sample(self) -> None:
        """Drop everything gathered for the current sample."""
        self.sample_open = False
        self.elapsed_ms = None
        self.current_cpu = None
        self.current_cluster = None
        self.readings = {}
        self.cpus = set()
        self.per_cpu_interrupts = {}
        self.per_cpu_ipis = {}
        self.per_cpu_timers = {}
        self.ipi_total = 0.0
        self.timer_total = 0.0
        self.interrupts_total = 0.0
        self.frequencies = {}
        self.cluster_freq = {}
        self.cluster_markers = set()
        self.temperature = {}
        self.reset_tasks()

    def reset_tasks(self) -> None:
        self.tasks_mode = TasksMode.NONE
        self.open_coalition = None
        self.new_coalitions = []
        self.new_processes = []
        self.orphans = []


class StateHandler:
    """Base handler. Subclasses set ``state`` and implement process_line."""

    state: ParserState

    def enter(self, ctx: ParserContext) -> None:
        pass

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        raise NotImplementedError

    def exit(self, ctx: ParserContext) -> None:
        pass


class StateMachine:
    """Drives handlers line by line."""

    def __init__(self, ctx: ParserContext, handlers: Iterable[StateHandler]) -> None:
        self.ctx = ctx
        self.handlers: dict[ParserState, StateHandler] = {h.state: h for h in handlers}
        self.state = ParserState.WAITING_FOR_SAMPLE

    def transition(self, next_state: ParserState) -> None:
        """Move to ``next_state``, running exit then enter. Same state is a no-op."""
        if next_state == self.state:
            return
        handler = self.handlers.get(next_state)
        if handler is None:
            raise UnroutableStateError(next_state)
        current = self.handlers.get(self.state)
        if current is not None:
            current.exit(self.ctx)
        log.debug("state_transition", old=self.state.value, new=next_state.value)
        self.state = next_state
        handler.enter(self.ctx)

    def process_line(self, line: str) -> None:
        """Route one line.

        Raises:
            ParserError: On a structural failure. The machine is left in the
                ERROR state with the partial sample discarded; it recovers at
                the next sample marker.
        """
        try:
            self._route(line)
        except ParserError:
            self._fail()
            raise

    def finish(self) -> None:
        """End of input: close the open sample as if a new one had started."""
        try:
            self.transition(ParserState.WAITING_FOR_SAMPLE)
        except ParserError:
            self._fail()
            raise

    def _route(self, line: str) -> None:
        if matchers.is_new_sample(line):
            # Pre-empts everything, upstream buffering can interleave markers
            self.transition(ParserState.WAITING_FOR_SAMPLE)
            self._dispatch(line)
            return

        if self.state in (ParserState.WAITING_FOR_SAMPLE, ParserState.ERROR):
            self._dispatch(line)
            return

        name = matchers.section_name(line)
        if name is not None:
            self.transition(route_section(name))
            return

        self._dispatch(line)

    def _dispatch(self, line: str) -> None:
        for _ in range(MAX_HOPS):
            handler = self.handlers.get(self.state)
            if handler is None:
                raise UnroutableStateError(self.state)
            outcome = handler.process_line(self.ctx, line)
            self.transition(outcome.next_state)
            if outcome.consumed:
                return
        raise RoutingLoopError(f"Line not consumed after {MAX_HOPS} hand-offs: {line!r}")

    def _fail(self) -> None:
        log.warning("parser_error_state", state=self.state.value)
        self.state = ParserState.ERROR
        self.ctx.discard_sample()
        handler = self.handlers.get(ParserState.ERROR)
        if handler is not None:
            handler.enter(self.ctx)
