# src/power_scope/liveness.py
"""Liveness probes for PIDs that vanished from a sample.

powermetrics sometimes leaves a live process out of one sample (busy
multi-process browsers do this a lot). Before a missing PID is written to
the exited ledger it is checked here. Probes run concurrently with a
per-probe timeout, and any probe that errors or does not answer in time
reports the PID as dead.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from functools import partial

import psutil
import structlog

log = structlog.get_logger()

Probe = Callable[[int], Awaitable[bool]]


def _psutil_alive(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Can't inspect process - assume it's running
        return True


async def psutil_probe(pid: int) -> bool:
    """Check a PID with psutil. AccessDenied counts as alive, zombies as dead."""
    return await asyncio.to_thread(_psutil_alive, pid)


async def ps_probe(pid: int, timeout: float = 1.0) -> bool:
    """Check a PID with ``ps -p <pid>``. Exit status 0 means alive."""
    try:
        process = await asyncio.create_subprocess_exec(
            "ps",
            "-p",
            str(pid),
            "-o",
            "pid=",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (FileNotFoundError, PermissionError) as e:
        log.warning("ps_probe_failed", pid=pid, error=str(e))
        return False

    try:
        returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        log.warning("liveness_probe_timeout", pid=pid, timeout=timeout, method="ps")
        return False
    return returncode == 0


def make_probe(method: str, timeout: float = 1.0) -> Probe | None:
    """Build the probe named in config. ``none`` disables probing."""
    if method == "psutil":
        return psutil_probe
    if method == "ps":
        return partial(ps_probe, timeout=timeout)
    if method == "none":
        return None
    raise ValueError(f"Unknown liveness method: {method!r}")


async def probe_pids(
    pids: Iterable[int],
    probe: Probe,
    timeout: float = 1.0,
    max_workers: int = 8,
) -> dict[int, bool]:
    """Run ``probe`` for every PID, at most ``max_workers`` at a time.

    Returns:
        Mapping of PID to True (alive) or False (dead, failed, or timed out)
    """
    semaphore = asyncio.Semaphore(max_workers)

    async def check(pid: int) -> bool:
        async with semaphore:
            try:
                return bool(await asyncio.wait_for(probe(pid), timeout=timeout))
            except asyncio.TimeoutError:
                log.warning("liveness_probe_timeout", pid=pid, timeout=timeout)
                return False
            except Exception as e:
                log.warning("liveness_probe_failed", pid=pid, error=str(e))
                return False

    pid_list = list(dict.fromkeys(pids))
    results = await asyncio.gather(*(check(pid) for pid in pid_list))
    return dict(zip(pid_list, results))
