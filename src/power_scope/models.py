# src/power_scope/models.py
"""Metrics state shared between the parser and its readers.

MetricsState is the single long-lived object the parser writes into. It is
only mutated while the write lock is held; readers take the read lock and
must tolerate the whole roster being swapped between two reads.

Process IDs and coalition IDs are distinct NewTypes. They share the
kernel's integer space, so they are kept in separate registries and never
looked up in each other's maps.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, NewType, TypeVar

from power_scope.ringbuffer import RingBuffer

Pid = NewType("Pid", int)
CoalitionId = NewType("CoalitionId", int)

K = TypeVar("K")

# Coalition name given to subprocesses whose coalition could not be resolved
ORPHANED = "<orphaned>"

SCALAR_HISTORY_SAMPLES = 120
PROCESS_HISTORY_SAMPLES = 10
PER_CPU_HISTORY_SAMPLES = 30

SCALAR_SERIES = (
    "ipi",
    "timer",
    "total_interrupts",
    "cpu_power",
    "gpu_power",
    "system_power",
    "network_in",
    "network_out",
    "disk_read",
    "disk_write",
    "battery",
    "temperature",
    "memory_used",
)


# ─────────────────────────────────────────────────────────────────────────────
# Locking
# ─────────────────────────────────────────────────────────────────────────────


class ReadWriteLock:
    """Writer-preferring reader/writer lock. Not reentrant."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


# ─────────────────────────────────────────────────────────────────────────────
# Roster types
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class ProcessInfo:
    """One process row from the running-tasks section."""

    pid: Pid
    name: str
    coalition_name: str = ""
    cpu_percent: float = 0.0  # CPU ms/s divided by 10
    memory: float = 0.0  # User% column, used as the memory proxy
    cpu_history: list[float] = field(default_factory=list)
    memory_history: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "coalition_name": self.coalition_name,
            "cpu_percent": self.cpu_percent,
            "memory": self.memory,
            "cpu_history": list(self.cpu_history),
            "memory_history": list(self.memory_history),
        }


@dataclass
class ProcessCoalition:
    """A coalition row and the subprocesses nested under it in one sample."""

    coalition_id: CoalitionId
    name: str
    cpu_percent: float = 0.0
    memory: float = 0.0
    subprocesses: list[ProcessInfo] = field(default_factory=list)
    cpu_history: list[float] = field(default_factory=list)
    memory_history: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "coalition_id": self.coalition_id,
            "name": self.name,
            "cpu_percent": self.cpu_percent,
            "memory": self.memory,
            "subprocesses": [p.to_dict() for p in self.subprocesses],
            "cpu_history": list(self.cpu_history),
            "memory_history": list(self.memory_history),
        }


@dataclass
class ExitedProcessInfo:
    """Ledger entry for processes that exited, keyed by process name.

    Worker pools reuse a name across many PIDs, so one entry collects every
    PID seen exiting under that name.
    """

    name: str
    pids: list[Pid] = field(default_factory=list)
    first_seen: float = 0.0
    last_exit: float = 0.0

    @property
    def occurrences(self) -> int:
        return len(self.pids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "pids": list(self.pids),
            "occurrences": self.occurrences,
            "first_seen": self.first_seen,
            "last_exit": self.last_exit,
        }


# ─────────────────────────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────────────────────────


class History:
    """Scalar time series, one bounded buffer per series name."""

    def __init__(self, max_samples: int = SCALAR_HISTORY_SAMPLES) -> None:
        self.max_samples = max_samples
        self._series: dict[str, RingBuffer[float]] = {
            name: RingBuffer(max_samples) for name in SCALAR_SERIES
        }

    def __getitem__(self, name: str) -> list[float]:
        return self._series[name].samples

    def __contains__(self, name: str) -> bool:
        return name in self._series

    def push(self, name: str, value: float) -> None:
        self._series[name].push(value)

    def to_dict(self) -> dict[str, list[float]]:
        return {name: buf.samples for name, buf in self._series.items()}


def history_for(
    histories: dict[K, RingBuffer[float]], key: K, max_samples: int
) -> RingBuffer[float]:
    """Return the buffer for ``key``, creating an empty one on first use."""
    buf = histories.get(key)
    if buf is None:
        buf = histories[key] = RingBuffer(max_samples)
    return buf


# ─────────────────────────────────────────────────────────────────────────────
# MetricsState
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class MetricsState:
    """Everything the parser knows about the machine."""

    scalar_samples: int = SCALAR_HISTORY_SAMPLES
    process_samples: int = PROCESS_HISTORY_SAMPLES
    per_cpu_samples: int = PER_CPU_HISTORY_SAMPLES

    # Interrupts (interrupts/sec)
    ipi_count: float = 0.0
    timer_count: float = 0.0
    total_interrupts: float = 0.0
    per_cpu_interrupts: dict[str, float] = field(default_factory=dict)
    per_cpu_ipis: dict[str, float] = field(default_factory=dict)
    per_cpu_timers: dict[str, float] = field(default_factory=dict)
    all_seen_cpus: set[str] = field(default_factory=set)
    per_cpu_interrupt_history: dict[str, RingBuffer[float]] = field(default_factory=dict)

    # Power (mW)
    cpu_power: float = 0.0
    gpu_power: float = 0.0
    ane_power: float = 0.0
    dram_power: float = 0.0
    system_power: float = 0.0

    # Frequencies (MHz)
    e_core_freq: list[int] = field(default_factory=list)
    p_core_freq: list[int] = field(default_factory=list)
    core_freq: list[int] = field(default_factory=list)  # non-hybrid machines
    cluster_freq: dict[str, int] = field(default_factory=dict)
    gpu_freq: int = 0
    max_e_cores: int = 0
    max_p_cores: int = 0
    e_core_freq_history: dict[int, RingBuffer[float]] = field(default_factory=dict)
    p_core_freq_history: dict[int, RingBuffer[float]] = field(default_factory=dict)
    core_freq_history: dict[int, RingBuffer[float]] = field(default_factory=dict)
    # (cluster, cpu) pairs seen under a cluster header, across all samples
    cluster_markers: set[tuple[str, int]] = field(default_factory=set)

    # Throughput
    network_in: float = 0.0  # KB/s
    network_out: float = 0.0  # KB/s
    disk_read: float = 0.0  # MB/s
    disk_write: float = 0.0  # MB/s

    # Battery, thermal, GPU
    battery_charge: float = 0.0
    battery_state: str = ""
    backlight_level: int = 0
    thermal_pressure: str = ""
    temperature: dict[str, float] = field(default_factory=dict)
    gpu_active: float = 0.0  # residency %

    # Memory (MB)
    memory_used: float = 0.0
    memory_available: float = 0.0
    swap_used: float = 0.0

    # Roster
    processes: list[ProcessInfo] = field(default_factory=list)
    coalitions: list[ProcessCoalition] = field(default_factory=list)
    process_cpu_history: dict[Pid, RingBuffer[float]] = field(default_factory=dict)
    process_mem_history: dict[Pid, RingBuffer[float]] = field(default_factory=dict)
    coalition_cpu_history: dict[CoalitionId, RingBuffer[float]] = field(default_factory=dict)
    coalition_mem_history: dict[CoalitionId, RingBuffer[float]] = field(default_factory=dict)

    # Exit tracking
    recently_exited: dict[str, ExitedProcessInfo] = field(default_factory=dict)
    last_seen: dict[Pid, float] = field(default_factory=dict)
    process_names: dict[Pid, str] = field(default_factory=dict)
    coalition_names: dict[CoalitionId, str] = field(default_factory=dict)

    # Bookkeeping
    elapsed_ms: float = 0.0
    sample_count: int = 0
    last_update: float = 0.0
    update_errors: int = 0

    history: History = field(init=False, repr=False)
    lock: ReadWriteLock = field(default_factory=ReadWriteLock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.history = History(self.scalar_samples)

    def read_lock(self):
        """Context manager for readers."""
        return self.lock.read()

    def write_lock(self):
        """Context manager for the parser."""
        return self.lock.write()

    def live_pids(self) -> set[Pid]:
        return {p.pid for p in self.processes}

    def is_exited(self, pid: Pid) -> bool:
        return any(pid in entry.pids for entry in self.recently_exited.values())

    def purge_process(self, pid: Pid) -> None:
        """Forget per-PID histories and the last-seen stamp."""
        self.process_cpu_history.pop(pid, None)
        self.process_mem_history.pop(pid, None)
        self.last_seen.pop(pid, None)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly snapshot. Take the read lock around this call."""
        return {
            "sample_count": self.sample_count,
            "last_update": self.last_update,
            "elapsed_ms": self.elapsed_ms,
            "update_errors": self.update_errors,
            "interrupts": {
                "ipi": self.ipi_count,
                "timer": self.timer_count,
                "total": self.total_interrupts,
                "per_cpu": dict(sorted(self.per_cpu_interrupts.items())),
                "per_cpu_ipi": dict(sorted(self.per_cpu_ipis.items())),
                "per_cpu_timer": dict(sorted(self.per_cpu_timers.items())),
                "history": {
                    cpu: buf.samples
                    for cpu, buf in sorted(self.per_cpu_interrupt_history.items())
                },
            },
            "power": {
                "cpu": self.cpu_power,
                "gpu": self.gpu_power,
                "ane": self.ane_power,
                "dram": self.dram_power,
                "system": self.system_power,
            },
            "frequency": {
                "e_cores": list(self.e_core_freq),
                "p_cores": list(self.p_core_freq),
                "cores": list(self.core_freq),
                "clusters": dict(self.cluster_freq),
                "gpu": self.gpu_freq,
                "max_e_cores": self.max_e_cores,
                "max_p_cores": self.max_p_cores,
            },
            "network": {"in_kbps": self.network_in, "out_kbps": self.network_out},
            "disk": {"read_mbps": self.disk_read, "write_mbps": self.disk_write},
            "battery": {
                "charge": self.battery_charge,
                "state": self.battery_state,
                "backlight": self.backlight_level,
            },
            "thermal": {
                "pressure": self.thermal_pressure,
                "temperature": dict(self.temperature),
            },
            "gpu": {"active": self.gpu_active, "frequency": self.gpu_freq},
            "memory": {
                "used_mb": self.memory_used,
                "available_mb": self.memory_available,
                "swap_used_mb": self.swap_used,
            },
            "coalitions": [c.to_dict() for c in self.coalitions],
            "processes": [p.to_dict() for p in self.processes],
            "recently_exited": [e.to_dict() for e in self.recently_exited.values()],
            "history": self.history.to_dict(),
        }
