"""Shared test fixtures for power-scope."""

import pytest

from power_scope.models import MetricsState
from power_scope.parser import MetricsParser
from power_scope.state_machine import ParserContext
from power_scope.tracker import LivenessTracker


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_probe(alive: set[int] | None = None):
    """Create an async probe reporting PIDs in ``alive`` as running."""
    alive = alive or set()
    calls: list[int] = []

    async def probe(pid: int) -> bool:
        calls.append(pid)
        return pid in alive

    probe.calls = calls  # type: ignore[attr-defined]
    return probe


# ─────────────────────────────────────────────────────────────────────────────
# powermetrics text builders
# ─────────────────────────────────────────────────────────────────────────────


def sample_marker(elapsed: float = 1004.12) -> str:
    return (
        "*** Sampled system activity (Wed Jan 10 10:00:00 2024 -0800) "
        f"({elapsed:.2f}ms elapsed) ***"
    )


def coalition_row(name: str, coalition_id: int, cpu_ms: float = 10.0, user: float = 50.0) -> str:
    return f"{name:<35}{coalition_id:<7}{cpu_ms:<10.2f}{user:<7.2f}0.00    0.00"


def process_row(name: str, pid: int, cpu_ms: float = 5.0, user: float = 25.0) -> str:
    return f"  {name:<33}{pid:<7}{cpu_ms:<10.2f}{user:<7.2f}0.00    0.00"


def tasks_section(*rows: str) -> list[str]:
    return [
        "*** Running tasks ***",
        "",
        "Name                               ID     CPU ms/s  User%  Deadlines (<2 ms, 2-5 ms)",
        *rows,
        "ALL_TASKS                          -2     100.00    50.00  0.00    0.00",
        "",
    ]


def interrupts_section(rates: dict[int, tuple[float, float, float]]) -> list[str]:
    """Per-CPU (ipi, timer, total) interrupt rates."""
    lines = ["**** Interrupt distribution ****", ""]
    for cpu, (ipi, timer, total) in sorted(rates.items()):
        lines += [
            f"CPU {cpu}:",
            f"\t|-> IPI: {ipi:.2f} interrupts/sec",
            f"\t|-> TIMER: {timer:.2f} interrupts/sec",
            f"\tTotal IRQ: {total:.2f} interrupts/sec",
        ]
    return lines + [""]


def processor_section(
    clusters: dict[str, dict[int, int]] | None = None,
    flat: dict[int, int] | None = None,
) -> list[str]:
    """Cluster headers with their per-CPU frequencies, or a flat core list."""
    lines = ["**** Processor usage ****", ""]
    for cluster, cpus in (clusters or {}).items():
        lines.append(f"{cluster} HW active frequency: {max(cpus.values(), default=0)} MHz")
        lines.append(f"{cluster} HW active residency:  30.00%")
        for cpu, mhz in sorted(cpus.items()):
            lines.append(f"CPU {cpu} frequency: {mhz} MHz")
    for cpu, mhz in sorted((flat or {}).items()):
        lines.append(f"CPU {cpu} frequency: {mhz} MHz")
    lines += [
        "",
        "CPU Power: 523 mW",
        "GPU Power: 10 mW",
        "ANE Power: 0 mW",
        "Combined Power (CPU + GPU + ANE): 1.25 W",
        "",
    ]
    return lines


def make_sample(*sections: list[str], elapsed: float = 1004.12) -> str:
    lines = [sample_marker(elapsed), ""]
    for section in sections:
        lines += section
    return "\n".join(lines) + "\n"


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state() -> MetricsState:
    return MetricsState()


@pytest.fixture
def tracker(state: MetricsState) -> LivenessTracker:
    return LivenessTracker(state)


@pytest.fixture
def ctx(state: MetricsState, tracker: LivenessTracker, clock: FakeClock) -> ParserContext:
    return ParserContext(state=state, tracker=tracker, clock=clock)


@pytest.fixture
def parser(clock: FakeClock) -> MetricsParser:
    """Parser whose probe reports every PID dead."""
    return MetricsParser(probe=make_probe(), clock=clock)
