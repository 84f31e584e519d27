"""CLI commands for power-scope."""

import click


@click.group()
@click.version_option(package_name="power-scope")
def main() -> None:
    """Parse macOS powermetrics text output into a machine snapshot."""
    pass


@main.command()
@click.argument("source", type=click.File("r"), default="-")
@click.option("--json", "as_json", is_flag=True, help="Print the full state as JSON")
@click.option(
    "--probe",
    type=click.Choice(["psutil", "ps", "none"]),
    default=None,
    help="Liveness check for vanished PIDs (default: from config)",
)
@click.option("--top", "-n", default=10, help="Coalitions to show")
@click.option("--log", "log_file", is_flag=True, help="Write structured events to the log file")
def parse(source, as_json: bool, probe: str | None, top: int, log_file: bool) -> None:
    """Parse captured powermetrics output from SOURCE (default: stdin).

    Capture with e.g. `sudo powermetrics -i 1000 -n 5 > capture.txt`.
    """
    import json

    from power_scope import logging as console
    from power_scope.config import Config
    from power_scope.parser import MetricsParser

    try:
        cfg = Config.load()
    except ValueError as e:
        console.config_invalid(str(e))
        raise SystemExit(1) from e

    if log_file:
        console.configure(cfg)
    else:
        console.configure_stderr()

    parser = MetricsParser.from_config(cfg, probe_method=probe)
    state = parser.parse(source.read())
    name = getattr(source, "name", "-")

    with state.read_lock():
        if as_json:
            click.echo(json.dumps(state.to_dict(), indent=2))
            return

        if state.sample_count == 0:
            console.no_samples(name)
            return

        _print_summary(state, top)
        console.parse_complete(name, state.sample_count, state.update_errors)


def _print_summary(state, top: int) -> None:
    """Print the latest snapshot. Caller holds the read lock."""
    from power_scope.formatting import (
        format_age,
        format_frequencies,
        format_megabytes,
        format_power,
        truncate,
    )

    click.echo(
        f"Power:       CPU {format_power(state.cpu_power)}  GPU {format_power(state.gpu_power)}  "
        f"ANE {format_power(state.ane_power)}  DRAM {format_power(state.dram_power)}  "
        f"System {format_power(state.system_power)}"
    )
    click.echo(
        f"Interrupts:  IPI {state.ipi_count:.0f}/s  Timer {state.timer_count:.0f}/s  "
        f"Total {state.total_interrupts:.0f}/s  ({len(state.all_seen_cpus)} CPUs)"
    )
    if state.core_freq:
        click.echo(f"Frequency:   cores {format_frequencies(state.core_freq)}")
    else:
        click.echo(
            f"Frequency:   E {format_frequencies(state.e_core_freq)}  "
            f"P {format_frequencies(state.p_core_freq)}"
        )
    click.echo(f"GPU:         {state.gpu_freq} MHz, {state.gpu_active:.1f}% active")
    click.echo(
        f"Network:     in {state.network_in:.1f} KB/s  out {state.network_out:.1f} KB/s"
    )
    click.echo(f"Disk:        read {state.disk_read:.2f} MB/s  write {state.disk_write:.2f} MB/s")
    click.echo(
        f"Memory:      used {format_megabytes(state.memory_used)}  "
        f"available {format_megabytes(state.memory_available)}  "
        f"swap {format_megabytes(state.swap_used)}"
    )
    thermal = state.thermal_pressure or "-"
    battery = f"{state.battery_charge:.0f}%"
    if state.battery_state:
        battery += f" {state.battery_state}"
    click.echo(f"Thermal:     {thermal}  Battery: {battery}")

    if state.coalitions:
        click.echo()
        click.echo(f"{'ID':>7}  {'Coalition':30}  {'CPU%':>6}  {'User%':>6}  {'Procs':>5}")
        click.echo("-" * 62)
        ranked = sorted(state.coalitions, key=lambda c: c.cpu_percent, reverse=True)
        for coalition in ranked[:top]:
            click.echo(
                f"{coalition.coalition_id:>7}  {truncate(coalition.name, 30):30}  "
                f"{coalition.cpu_percent:>6.1f}  {coalition.memory:>6.1f}  "
                f"{len(coalition.subprocesses):>5}"
            )

    if state.recently_exited:
        click.echo()
        click.echo("Recently exited:")
        for entry in state.recently_exited.values():
            pids = ", ".join(str(pid) for pid in entry.pids)
            click.echo(
                f"  {truncate(entry.name, 30):30}  x{entry.occurrences}  "
                f"[{pids}]  {format_age(entry.last_exit)}"
            )


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from power_scope.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[history]")
    click.echo(f"  scalar_samples = {cfg.history.scalar_samples}")
    click.echo(f"  process_samples = {cfg.history.process_samples}")
    click.echo(f"  per_cpu_samples = {cfg.history.per_cpu_samples}")
    click.echo()
    click.echo("[exits]")
    click.echo(f"  retention_seconds = {cfg.exits.retention_seconds}")
    click.echo()
    click.echo("[liveness]")
    click.echo(f"  method = {cfg.liveness.method}")
    click.echo(f"  timeout = {cfg.liveness.timeout}")
    click.echo(f"  max_workers = {cfg.liveness.max_workers}")
    click.echo()
    click.echo("[logging]")
    click.echo(f"  level = {cfg.logging.level}")
    click.echo(f"  log_path = {cfg.log_path}")


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from power_scope.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
