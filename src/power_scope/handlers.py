# src/power_scope/handlers.py
"""Per-section handlers.

Each handler parses the field lines of one powermetrics section into the
parser context; ``commit_sample`` folds a finished sample into the metrics
state, so a sample dropped on error leaves the state untouched. Lines a
handler does not recognise are consumed and ignored; section changes are
routed by the state machine before a line reaches a handler.
"""

from __future__ import annotations

import structlog

from power_scope import matchers
from power_scope.frequency import apply_frequencies, classify_frequencies
from power_scope.models import history_for
from power_scope.state_machine import (
    Outcome,
    ParserContext,
    ParserState,
    StateHandler,
    route,
    stay,
)
from power_scope.tasks import RunningTasksHandler

log = structlog.get_logger()


# ─────────────────────────────────────────────────────────────────────────────
# Field parsers (shared by section handlers and the in-sample handler)
# ─────────────────────────────────────────────────────────────────────────────


def parse_interrupts(ctx: ParserContext, line: str) -> bool:
    """Per-CPU header, per-CPU rates and legacy absolute counts."""
    m = matchers.CPU_HEADER.match(line)
    if m:
        ctx.current_cpu = f"CPU{m.group(1)}"
        ctx.cpus.add(ctx.current_cpu)
        return True

    matched = False
    for pattern, total_attr, per_cpu in (
        (matchers.IPI_RATE, "ipi_total", ctx.per_cpu_ipis),
        (matchers.TIMER_RATE, "timer_total", ctx.per_cpu_timers),
        (matchers.TOTAL_RATE, "interrupts_total", ctx.per_cpu_interrupts),
    ):
        if not pattern.search(line):
            continue
        matched = True
        value = matchers.match_float(pattern, line)
        if value is None:
            continue
        setattr(ctx, total_attr, getattr(ctx, total_attr) + value)
        if ctx.current_cpu is not None:
            per_cpu[ctx.current_cpu] = value

    for pattern, total_attr in (
        (matchers.IPI_COUNT, "ipi_total"),
        (matchers.TIMER_COUNT, "timer_total"),
        (matchers.TOTAL_COUNT, "interrupts_total"),
    ):
        if not pattern.search(line):
            continue
        matched = True
        value = matchers.match_int(pattern, line, group=2)
        if value is not None:
            setattr(ctx, total_attr, getattr(ctx, total_attr) + value)

    return matched


def parse_power(ctx: ParserContext, line: str) -> bool:
    matched = False
    for pattern, attr in (
        (matchers.CPU_POWER, "cpu_power"),
        (matchers.GPU_POWER, "gpu_power"),
        (matchers.ANE_POWER, "ane_power"),
        (matchers.DRAM_POWER, "dram_power"),
        (matchers.SYSTEM_POWER, "system_power"),
    ):
        if not pattern.search(line):
            continue
        matched = True
        value = matchers.match_power(pattern, line)
        if value is not None:
            ctx.readings[attr] = value
    return matched


def parse_frequency(ctx: ParserContext, line: str) -> bool:
    """Cluster headers, per-CPU and GPU frequencies.

    A per-CPU line read while a cluster header is in scope records a
    cluster marker for that CPU.
    """
    m = matchers.CLUSTER_HEADER.match(line)
    if m:
        ctx.current_cluster = m.group("kind")
        freq = matchers.match_int(matchers.CLUSTER_FREQ, line, group=2)
        if freq is not None:
            ctx.cluster_freq[m.group("cluster")] = freq
        return True

    m = matchers.CPU_FREQ.search(line)
    if m:
        cpu = matchers.parse_int(m.group(1))
        mhz = matchers.parse_int(m.group(2))
        if cpu is not None and mhz is not None:
            ctx.frequencies[cpu] = mhz
            if ctx.current_cluster is not None:
                ctx.cluster_markers.add((ctx.current_cluster, cpu))
        return True

    if matchers.GPU_FREQ.search(line):
        mhz = matchers.match_int(matchers.GPU_FREQ, line)
        if mhz is not None:
            ctx.readings["gpu_freq"] = mhz
        return True

    return False


def parse_network(ctx: ParserContext, line: str) -> bool:
    matched = False
    for pattern, attr in (
        (matchers.NETWORK_IN, "network_in"),
        (matchers.NETWORK_OUT, "network_out"),
    ):
        if not pattern.search(line):
            continue
        matched = True
        value = matchers.match_float(pattern, line)
        if value is not None:
            ctx.readings[attr] = value / 1024  # bytes/s -> KB/s
    return matched


def parse_disk(ctx: ParserContext, line: str) -> bool:
    matched = False
    for pattern, attr in ((matchers.DISK_READ, "disk_read"), (matchers.DISK_WRITE, "disk_write")):
        if not pattern.search(line):
            continue
        matched = True
        value = matchers.match_float(pattern, line)
        if value is not None:
            ctx.readings[attr] = value / 1024  # KB/s -> MB/s
    return matched


def parse_memory(ctx: ParserContext, line: str) -> bool:
    matched = False
    for pattern, attr in (
        (matchers.MEMORY_USED, "memory_used"),
        (matchers.MEMORY_AVAILABLE, "memory_available"),
        (matchers.SWAP_USED, "swap_used"),
    ):
        if not pattern.search(line):
            continue
        matched = True
        value = matchers.match_size(pattern, line)
        if value is not None:
            ctx.readings[attr] = value
    return matched


def parse_thermal(ctx: ParserContext, line: str) -> bool:
    m = matchers.THERMAL_PRESSURE.search(line)
    if m:
        ctx.readings["thermal_pressure"] = m.group(1)
        return True
    m = matchers.TEMPERATURE.match(line)
    if m:
        value = matchers.parse_float(m.group(2))
        if value is not None:
            ctx.temperature[m.group(1).strip()] = value
        return True
    return False


def parse_battery(ctx: ParserContext, line: str) -> bool:
    if matchers.BATTERY_CHARGE.search(line):
        value = matchers.match_float(matchers.BATTERY_CHARGE, line)
        if value is not None:
            ctx.readings["battery_charge"] = value
        return True
    m = matchers.BATTERY_STATE.search(line)
    if m:
        ctx.readings["battery_state"] = m.group(1)
        return True
    if matchers.BACKLIGHT.search(line):
        level = matchers.match_int(matchers.BACKLIGHT, line)
        if level is not None:
            ctx.readings["backlight_level"] = level
        return True
    return False


def parse_gpu(ctx: ParserContext, line: str) -> bool:
    if matchers.GPU_ACTIVE.search(line):
        value = matchers.match_float(matchers.GPU_ACTIVE, line)
        if value is not None:
            ctx.readings["gpu_active"] = value
        return True
    if matchers.GPU_FREQ.search(line):
        return parse_frequency(ctx, line)
    if matchers.GPU_POWER.search(line):
        return parse_power(ctx, line)
    return False


# ─────────────────────────────────────────────────────────────────────────────
# Sample commit
# ─────────────────────────────────────────────────────────────────────────────


def commit_sample(ctx: ParserContext) -> None:
    """Fold a finished sample into the long-lived state and histories."""
    state = ctx.state

    for attr, value in ctx.readings.items():
        setattr(state, attr, value)
    if ctx.elapsed_ms is not None:
        state.elapsed_ms = ctx.elapsed_ms
    state.cluster_freq.update(ctx.cluster_freq)
    state.cluster_markers |= ctx.cluster_markers
    state.temperature.update(ctx.temperature)
    state.all_seen_cpus |= ctx.cpus

    if ctx.frequencies:
        apply_frequencies(state, classify_frequencies(ctx.frequencies, state.cluster_markers))

    if ctx.ipi_total > 0:
        state.ipi_count = ctx.ipi_total
    if ctx.timer_total > 0:
        state.timer_count = ctx.timer_total
    if ctx.interrupts_total > 0:
        state.total_interrupts = ctx.interrupts_total

    # CPUs silent in this sample read zero; CPUs first seen now are
    # back-filled so every series covers every sample
    committed = state.sample_count
    for cpu in sorted(state.all_seen_cpus):
        state.per_cpu_interrupts[cpu] = ctx.per_cpu_interrupts.get(cpu, 0.0)
        state.per_cpu_ipis[cpu] = ctx.per_cpu_ipis.get(cpu, 0.0)
        state.per_cpu_timers[cpu] = ctx.per_cpu_timers.get(cpu, 0.0)
        buf = state.per_cpu_interrupt_history.get(cpu)
        if buf is None:
            buf = history_for(state.per_cpu_interrupt_history, cpu, state.per_cpu_samples)
            buf.pad(0.0, committed)
        buf.push(state.per_cpu_interrupts[cpu])

    history = state.history
    history.push("ipi", state.ipi_count)
    history.push("timer", state.timer_count)
    history.push("total_interrupts", state.total_interrupts)
    history.push("cpu_power", state.cpu_power)
    history.push("gpu_power", state.gpu_power)
    history.push("system_power", state.system_power)
    history.push("network_in", state.network_in)
    history.push("network_out", state.network_out)
    history.push("disk_read", state.disk_read)
    history.push("disk_write", state.disk_write)
    history.push("battery", state.battery_charge)
    history.push("memory_used", state.memory_used)
    if ctx.temperature:
        history.push("temperature", sum(ctx.temperature.values()) / len(ctx.temperature))

    state.sample_count += 1
    state.last_update = ctx.clock()
    ctx.sample_open = False

    log.debug(
        "sample_committed",
        sample=state.sample_count,
        processes=len(state.processes),
        coalitions=len(state.coalitions),
        cpus=len(state.all_seen_cpus),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Control handlers
# ─────────────────────────────────────────────────────────────────────────────


class WaitingForSampleHandler(StateHandler):
    """Discards everything until a sample marker arrives.

    Entering this state closes the open sample, if any.
    """

    state = ParserState.WAITING_FOR_SAMPLE

    def enter(self, ctx: ParserContext) -> None:
        if ctx.sample_open:
            commit_sample(ctx)

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        if matchers.is_new_sample(line):
            ctx.begin_sample(matchers.elapsed_ms(line))
            return stay(ParserState.IN_SAMPLE)
        return stay(ParserState.WAITING_FOR_SAMPLE)


class InSampleHandler(StateHandler):
    """Lines outside a known section.

    Recognised fields are handed to the matching section handler, which
    parses the line and keeps the state for the lines that follow.
    """

    state = ParserState.IN_SAMPLE

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        if not line.strip():
            return stay(self.state)
        if (
            matchers.CPU_HEADER.match(line)
            or matchers.IPI_RATE.search(line)
            or matchers.TIMER_RATE.search(line)
            or matchers.TOTAL_RATE.search(line)
            or matchers.IPI_COUNT.search(line)
            or matchers.TIMER_COUNT.search(line)
            or matchers.TOTAL_COUNT.search(line)
        ):
            return route(ParserState.CPU_INTERRUPTS)
        if any(
            p.search(line)
            for p in (
                matchers.CPU_POWER,
                matchers.GPU_POWER,
                matchers.ANE_POWER,
                matchers.DRAM_POWER,
                matchers.SYSTEM_POWER,
            )
        ):
            return route(ParserState.POWER_METRICS)
        if (
            matchers.CLUSTER_HEADER.match(line)
            or matchers.CPU_FREQ.search(line)
            or matchers.GPU_FREQ.search(line)
        ):
            return route(ParserState.FREQUENCIES)
        if matchers.NETWORK_IN.search(line) or matchers.NETWORK_OUT.search(line):
            return route(ParserState.NETWORK_IO)
        if matchers.DISK_READ.search(line) or matchers.DISK_WRITE.search(line):
            return route(ParserState.DISK_IO)
        if (
            matchers.MEMORY_USED.search(line)
            or matchers.MEMORY_AVAILABLE.search(line)
            or matchers.SWAP_USED.search(line)
        ):
            return route(ParserState.MEMORY_STATS)
        if matchers.THERMAL_PRESSURE.search(line) or matchers.TEMPERATURE.match(line):
            return route(ParserState.THERMAL_DATA)
        if (
            matchers.BATTERY_CHARGE.search(line)
            or matchers.BATTERY_STATE.search(line)
            or matchers.BACKLIGHT.search(line)
        ):
            return route(ParserState.BATTERY)
        if matchers.GPU_ACTIVE.search(line):
            return route(ParserState.GPU_USAGE)
        return stay(self.state)


class ErrorHandler(StateHandler):
    """Swallows lines until the next sample marker."""

    state = ParserState.ERROR

    def enter(self, ctx: ParserContext) -> None:
        ctx.discard_sample()

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        return stay(self.state)


# ─────────────────────────────────────────────────────────────────────────────
# Section handlers
# ─────────────────────────────────────────────────────────────────────────────


class CPUInterruptsHandler(StateHandler):
    state = ParserState.CPU_INTERRUPTS

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_interrupts(ctx, line)
        return stay(self.state)

    def exit(self, ctx: ParserContext) -> None:
        ctx.current_cpu = None


class ProcessorUsageHandler(StateHandler):
    """Cluster and per-CPU frequencies, plus the power rails printed below them."""

    state = ParserState.PROCESSOR_USAGE

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        if not parse_frequency(ctx, line):
            parse_power(ctx, line)
        return stay(self.state)

    def exit(self, ctx: ParserContext) -> None:
        ctx.current_cluster = None


class FrequenciesHandler(StateHandler):
    state = ParserState.FREQUENCIES

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_frequency(ctx, line)
        return stay(self.state)

    def exit(self, ctx: ParserContext) -> None:
        ctx.current_cluster = None


class PowerMetricsHandler(StateHandler):
    state = ParserState.POWER_METRICS

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_power(ctx, line)
        return stay(self.state)


class NetworkIOHandler(StateHandler):
    state = ParserState.NETWORK_IO

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_network(ctx, line)
        return stay(self.state)


class DiskIOHandler(StateHandler):
    state = ParserState.DISK_IO

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_disk(ctx, line)
        return stay(self.state)


class MemoryStatsHandler(StateHandler):
    state = ParserState.MEMORY_STATS

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_memory(ctx, line)
        return stay(self.state)


class ThermalDataHandler(StateHandler):
    state = ParserState.THERMAL_DATA

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_thermal(ctx, line)
        return stay(self.state)


class BatteryHandler(StateHandler):
    """Battery and backlight usage."""

    state = ParserState.BATTERY

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_battery(ctx, line)
        return stay(self.state)


class GPUUsageHandler(StateHandler):
    state = ParserState.GPU_USAGE

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        parse_gpu(ctx, line)
        return stay(self.state)


class SFIHandler(StateHandler):
    """Selective Forced Idle. Nothing in it is tracked."""

    state = ParserState.SFI

    def process_line(self, ctx: ParserContext, line: str) -> Outcome:
        return stay(self.state)


def default_handlers() -> list[StateHandler]:
    """One handler per state, running tasks included."""
    return [
        WaitingForSampleHandler(),
        InSampleHandler(),
        ErrorHandler(),
        CPUInterruptsHandler(),
        ProcessorUsageHandler(),
        FrequenciesHandler(),
        PowerMetricsHandler(),
        NetworkIOHandler(),
        DiskIOHandler(),
        MemoryStatsHandler(),
        ThermalDataHandler(),
        BatteryHandler(),
        GPUUsageHandler(),
        SFIHandler(),
        RunningTasksHandler(),
    ]
