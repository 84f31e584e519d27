# src/power_scope/parser.py
"""Driver: feeds powermetrics text through the state machine.

Each batch of lines is parsed and committed under the state's write lock.
PIDs that vanished from a committed roster are probed after the lock is
released, and the verdicts are applied under a second, short write lock.

Example:
    parser = MetricsParser.from_config(Config.load())
    state = parser.parse(Path("capture.txt").read_text())
    with state.read_lock():
        print(state.cpu_power, [p.name for p in state.processes])
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable

import structlog

from power_scope.config import Config
from power_scope.handlers import default_handlers
from power_scope.liveness import Probe, make_probe, probe_pids
from power_scope.models import MetricsState, Pid
from power_scope.state_machine import (
    ParserContext,
    ParserError,
    ParserState,
    StateHandler,
    StateMachine,
)
from power_scope.tracker import EXIT_RETENTION_SECONDS, LivenessTracker

log = structlog.get_logger()


class MetricsParser:
    """Stateful parser for a stream of powermetrics samples."""

    def __init__(
        self,
        state: MetricsState | None = None,
        *,
        probe: Probe | None = None,
        retention_seconds: float = EXIT_RETENTION_SECONDS,
        probe_timeout: float = 1.0,
        max_workers: int = 8,
        clock: Callable[[], float] = time.time,
        handlers: Iterable[StateHandler] | None = None,
    ) -> None:
        """Initialize the parser.

        Args:
            state: State to write into (a fresh one if omitted)
            probe: Async liveness check for vanished PIDs. None skips the
                check and treats every vanished PID as exited.
            retention_seconds: Age after which exited-ledger entries are pruned
            probe_timeout: Seconds before an unanswered probe counts as dead
            max_workers: Probes in flight at once
            clock: Time source (epoch seconds)
            handlers: Handler set, one per state (defaults to all of them)
        """
        self.state = state if state is not None else MetricsState()
        self.probe = probe
        self.probe_timeout = probe_timeout
        self.max_workers = max_workers
        self.clock = clock
        self.tracker = LivenessTracker(self.state, retention_seconds)
        self.ctx = ParserContext(state=self.state, tracker=self.tracker, clock=clock)
        self.machine = StateMachine(
            self.ctx, handlers if handlers is not None else default_handlers()
        )

    @classmethod
    def from_config(cls, config: Config, probe_method: str | None = None) -> MetricsParser:
        """Build a parser with history depths and probing taken from config."""
        liveness = config.liveness
        state = MetricsState(
            scalar_samples=config.history.scalar_samples,
            process_samples=config.history.process_samples,
            per_cpu_samples=config.history.per_cpu_samples,
        )
        return cls(
            state,
            probe=make_probe(probe_method or liveness.method, liveness.timeout),
            retention_seconds=config.exits.retention_seconds,
            probe_timeout=liveness.timeout,
            max_workers=liveness.max_workers,
        )

    @property
    def parser_state(self) -> ParserState:
        return self.machine.state

    # ─────────────────────────────────────────────────────────────────────
    # Feeding
    # ─────────────────────────────────────────────────────────────────────

    def feed(self, text: str) -> list[Pid]:
        """Parse a chunk of text. Returns PIDs recorded as exited."""
        return self.feed_lines(text.splitlines())

    def feed_lines(self, lines: Iterable[str]) -> list[Pid]:
        """Parse a batch of lines, then settle vanished PIDs.

        Not usable from inside a running event loop; use ``afeed_lines``.
        """
        self._parse_batch(lines)
        return self.resolve_exits()

    async def afeed_lines(self, lines: Iterable[str]) -> list[Pid]:
        self._parse_batch(lines)
        return await self.aresolve_exits()

    def finish(self) -> list[Pid]:
        """Close the open sample at end of input."""
        self._finish()
        return self.resolve_exits()

    async def afinish(self) -> list[Pid]:
        self._finish()
        return await self.aresolve_exits()

    def parse(self, text: str) -> MetricsState:
        """Parse a complete capture and return the state."""
        self.feed(text)
        self.finish()
        return self.state

    async def aparse(self, text: str) -> MetricsState:
        await self.afeed_lines(text.splitlines())
        await self.afinish()
        return self.state

    def _parse_batch(self, lines: Iterable[str]) -> None:
        with self.state.write_lock():
            for line in lines:
                try:
                    self.machine.process_line(line.rstrip("\r\n"))
                except ParserError as e:
                    self._structural_error(e)

    def _finish(self) -> None:
        with self.state.write_lock():
            try:
                self.machine.finish()
            except ParserError as e:
                self._structural_error(e)

    def _structural_error(self, error: ParserError) -> None:
        self.state.update_errors += 1
        log.warning(
            "parser_structural_error",
            error=str(error),
            update_errors=self.state.update_errors,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Exit resolution
    # ─────────────────────────────────────────────────────────────────────

    def resolve_exits(self) -> list[Pid]:
        """Probe pending PIDs and record the dead ones."""
        with self.state.write_lock():
            pending = self.tracker.take_pending()
        if not pending:
            return []
        if self.probe is None:
            verdicts = {pid: False for pid in pending}
        else:
            verdicts = asyncio.run(self._probe(pending))
        return self._settle(verdicts)

    async def aresolve_exits(self) -> list[Pid]:
        with self.state.write_lock():
            pending = self.tracker.take_pending()
        if not pending:
            return []
        if self.probe is None:
            verdicts = {pid: False for pid in pending}
        else:
            verdicts = await self._probe(pending)
        return self._settle(verdicts)

    async def _probe(self, pending: dict[Pid, str]) -> dict[Pid, bool]:
        results = await probe_pids(
            pending, self.probe, timeout=self.probe_timeout, max_workers=self.max_workers
        )
        return {Pid(pid): alive for pid, alive in results.items()}

    def _settle(self, verdicts: dict[Pid, bool]) -> list[Pid]:
        with self.state.write_lock():
            exited = self.tracker.settle(verdicts, self.clock())
        if exited:
            log.info("exits_confirmed", count=len(exited), pids=exited)
        return exited
