# src/power_scope/matchers.py
"""Field patterns for powermetrics text output.

Each metric has one compiled pattern that accepts the label variants seen
across powermetrics releases. Converters return None instead of raising
when a captured number does not parse; callers then leave the field at its
previous value.
"""

import re
from typing import NamedTuple

# ─────────────────────────────────────────────────────────────────────────────
# Structure
# ─────────────────────────────────────────────────────────────────────────────

NEW_SAMPLE = re.compile(r"\*\*\*\s*Sampled system activity")
ELAPSED = re.compile(r"\(([0-9.]+)\s*ms elapsed\)")
SECTION = re.compile(r"^\s*\*{3,}\s*(?P<name>.*?)\s*\*{3,}\s*$")
END_OF_TASKS = re.compile(r"^\s*ALL_TASKS\b")
DEAD_TASKS = re.compile(r"DEAD_TASKS")
SEPARATOR = re.compile(r"----")

# ─────────────────────────────────────────────────────────────────────────────
# Interrupts
# ─────────────────────────────────────────────────────────────────────────────

CPU_HEADER = re.compile(r"^\s*CPU (\d+):\s*$")
IPI_RATE = re.compile(r"\|-> IPI:\s+([0-9.]+)\s+interrupts/sec")
TIMER_RATE = re.compile(r"\|-> TIMER:\s+([0-9.]+)\s+interrupts/sec")
TOTAL_RATE = re.compile(r"Total IRQ:\s+([0-9.]+)\s+interrupts/sec")
# Older releases print absolute counts per CPU instead of rates
IPI_COUNT = re.compile(r"CPU (\d+) IPI:\s+(\d+)")
TIMER_COUNT = re.compile(r"CPU (\d+) Timer:\s+(\d+)")
TOTAL_COUNT = re.compile(r"CPU (\d+) Total:\s+(\d+)")

# ─────────────────────────────────────────────────────────────────────────────
# Power
# ─────────────────────────────────────────────────────────────────────────────

_POWER_VALUE = r"\s*:\s+([0-9.]+)\s*(mW|W|Watts)\b"

CPU_POWER = re.compile(r"(?:CPU Power|CPU Energy|Combined Power \(CPU\))" + _POWER_VALUE)
GPU_POWER = re.compile(r"(?:GPU Power|GPU Energy|Combined Power \(GPU\))" + _POWER_VALUE)
ANE_POWER = re.compile(r"(?:ANE Power|ANE Energy|Combined Power \(ANE\))" + _POWER_VALUE)
DRAM_POWER = re.compile(r"(?:DRAM Power|DRAM Energy|Combined Power \(DRAM\))" + _POWER_VALUE)
SYSTEM_POWER = re.compile(
    r"(?:Combined Power(?! \((?:CPU|GPU|ANE|DRAM)\))|System Power|System Average)[^:\n]*"
    + _POWER_VALUE
)

# ─────────────────────────────────────────────────────────────────────────────
# Frequency
# ─────────────────────────────────────────────────────────────────────────────

CPU_FREQ = re.compile(r"CPU (\d+) frequency:\s+([0-9]+)\s*MHz")
CLUSTER_HEADER = re.compile(
    r"^\s*(?P<cluster>(?P<kind>E|P)\d*-Cluster)\s+(?:Online:|HW active frequency:)"
)
CLUSTER_FREQ = re.compile(
    r"^\s*(?P<cluster>(?:E|P)\d*-Cluster)\s+HW active frequency:\s+([0-9]+)\s*MHz"
)
GPU_FREQ = re.compile(
    r"(?:GPU HW active frequency|GPU active frequency|GPU frequency):\s+([0-9]+)\s*MHz"
)

# ─────────────────────────────────────────────────────────────────────────────
# Throughput, memory, thermal, battery, GPU
# ─────────────────────────────────────────────────────────────────────────────

NETWORK_IN = re.compile(r"\bin:\s+[0-9.]+\s+packets/s,\s+([0-9.]+)\s+bytes/s")
NETWORK_OUT = re.compile(r"\bout:\s+[0-9.]+\s+packets/s,\s+([0-9.]+)\s+bytes/s")
DISK_READ = re.compile(r"\bread:\s+[0-9.]+\s+ops/s\s+([0-9.]+)\s+KBytes/s")
DISK_WRITE = re.compile(r"\bwrite:\s+[0-9.]+\s+ops/s\s+([0-9.]+)\s+KBytes/s")

_SIZE_VALUE = r":\s+([0-9.]+)\s*(bytes|KB|MB|GB)\b"

MEMORY_USED = re.compile(r"(?:Physical Memory Used|Memory Used)" + _SIZE_VALUE)
MEMORY_AVAILABLE = re.compile(r"(?:Physical Memory Available|Memory Available)" + _SIZE_VALUE)
SWAP_USED = re.compile(r"(?:VM Swap Used|Swap Used)" + _SIZE_VALUE)

THERMAL_PRESSURE = re.compile(r"Current pressure level:\s+(\w+)")
TEMPERATURE = re.compile(r"^\s*([^:]+?):\s+([0-9.]+)\s*°?C\b")

BATTERY_CHARGE = re.compile(r"(?:Battery charge|State of Charge|percent_charge):\s+([0-9.]+)%?")
BATTERY_STATE = re.compile(r"Battery state:\s+(\w+)")
BACKLIGHT = re.compile(r"Backlight level:\s+(\d+)")

GPU_ACTIVE = re.compile(r"(?:GPU HW active residency|GPU Active residency):\s+([0-9.]+)%")

# ─────────────────────────────────────────────────────────────────────────────
# Running tasks
# ─────────────────────────────────────────────────────────────────────────────

# Name may be empty (task died during the sampling window)
TASK_ROW = re.compile(
    r"^(?P<name>.*?)(?:^|\s+)(?P<id>-?\d+)\s+(?P<cpu>\d+\.\d+)\s+(?P<user>\d+\.\d+)(?=\s|$)"
)


class TaskRow(NamedTuple):
    """One parsed running-tasks row."""

    name: str
    task_id: int
    cpu_ms: float
    user_percent: float
    indented: bool

    @property
    def cpu_percent(self) -> float:
        return self.cpu_ms / 10.0


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def parse_float(text: str) -> float | None:
    try:
        return float(text)
    except ValueError:
        return None


def parse_int(text: str) -> int | None:
    try:
        return int(text)
    except ValueError:
        return None


def match_float(pattern: re.Pattern[str], line: str, group: int = 1) -> float | None:
    """Return the captured number if ``pattern`` matches ``line``."""
    m = pattern.search(line)
    return parse_float(m.group(group)) if m else None


def match_int(pattern: re.Pattern[str], line: str, group: int = 1) -> int | None:
    m = pattern.search(line)
    return parse_int(m.group(group)) if m else None


def to_milliwatts(value: float, unit: str) -> float:
    return value * 1000 if unit in ("W", "Watts") else value


def to_megabytes(value: float, unit: str) -> float:
    if unit == "KB":
        return value / 1024
    if unit == "GB":
        return value * 1024
    if unit == "bytes":
        return value / (1024 * 1024)
    return value


def match_power(pattern: re.Pattern[str], line: str) -> float | None:
    """Match a power rail and return milliwatts."""
    m = pattern.search(line)
    if not m:
        return None
    value = parse_float(m.group(1))
    return to_milliwatts(value, m.group(2)) if value is not None else None


def match_size(pattern: re.Pattern[str], line: str) -> float | None:
    """Match a memory size and return megabytes."""
    m = pattern.search(line)
    if not m:
        return None
    value = parse_float(m.group(1))
    return to_megabytes(value, m.group(2)) if value is not None else None


def is_new_sample(line: str) -> bool:
    return NEW_SAMPLE.search(line) is not None


def elapsed_ms(line: str) -> float | None:
    return match_float(ELAPSED, line)


def section_name(line: str) -> str | None:
    """Name between the asterisks of a boundary line, or None."""
    m = SECTION.match(line)
    return m.group("name") if m else None


def is_indented(line: str) -> bool:
    return line.startswith((" ", "\t"))


def is_tasks_header(line: str) -> bool:
    return "Name" in line and "ID" in line


def parse_task_row(line: str) -> TaskRow | None:
    m = TASK_ROW.match(line)
    if not m:
        return None
    task_id = parse_int(m.group("id"))
    cpu_ms = parse_float(m.group("cpu"))
    user = parse_float(m.group("user"))
    if task_id is None or cpu_ms is None or user is None:
        return None
    return TaskRow(
        name=m.group("name").strip(),
        task_id=task_id,
        cpu_ms=cpu_ms,
        user_percent=user,
        indented=is_indented(line),
    )
