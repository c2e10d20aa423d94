"""
Data model for supervised services.

ServiceSpec describes what to run and is frozen once built. ManagedProcess
tracks one spawned instance of a spec through its lifecycle; a restart would
create a new ManagedProcess rather than reviving an old one.
"""

import asyncio
import signal
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, Mapping, Optional


class ProcessState(Enum):
    SPAWNED = "spawned"
    RUNNING = "running"
    EXITED = "exited"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


_TRANSITIONS = {
    ProcessState.SPAWNED: {ProcessState.RUNNING, ProcessState.EXITED, ProcessState.TERMINATING},
    ProcessState.RUNNING: {ProcessState.EXITED, ProcessState.TERMINATING},
    ProcessState.TERMINATING: {ProcessState.TERMINATED},
    ProcessState.EXITED: set(),
    ProcessState.TERMINATED: set(),
}


@dataclass(frozen=True)
class ServiceSpec:
    """A service the supervisor knows how to run."""

    name: str
    command: str
    args: tuple[str, ...] = ()
    working_dir: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict, hash=False)
    port: Optional[int] = None
    health_url: Optional[str] = None
    label: Optional[str] = None  # console prefix, defaults to name
    links: tuple[tuple[str, str], ...] = ()

    @property
    def prefix(self) -> str:
        return self.label or self.name

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass
class ManagedProcess:
    """A spawned service process and its lifecycle state."""

    spec: ServiceSpec
    process: asyncio.subprocess.Process
    state: ProcessState = ProcessState.SPAWNED
    started_at: datetime = field(default_factory=datetime.now)
    exit_code: Optional[int] = None
    shutdown_requested: bool = False
    _exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.state in (ProcessState.SPAWNED, ProcessState.RUNNING, ProcessState.TERMINATING)

    @property
    def exit_signal(self) -> Optional[str]:
        """Name of the signal that ended the process, if any."""
        if self.exit_code is None or self.exit_code >= 0:
            return None
        try:
            return signal.Signals(-self.exit_code).name
        except ValueError:
            return f"signal {-self.exit_code}"

    def transition(self, new_state: ProcessState):
        """Move to a new lifecycle state, rejecting illegal moves."""
        if new_state == self.state:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"{self.name}: invalid transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def mark_exited(self, exit_code: Optional[int]):
        """Record the exit status. Only the first call has any effect."""
        if not self.running:
            return
        self.exit_code = exit_code
        if self.state == ProcessState.TERMINATING:
            self.transition(ProcessState.TERMINATED)
        else:
            self.transition(ProcessState.EXITED)
        self._exited.set()

    async def wait_exited(self):
        await self._exited.wait()


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded polling schedule: attempt count, per-attempt timeout and waits."""

    max_attempts: int = 20
    attempt_timeout: float = 0.5
    interval: float = 0.5
    backoff: float = 1.0
    max_interval: Optional[float] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")
        if self.interval < 0 or self.backoff < 1.0:
            raise ValueError("interval must be >= 0 and backoff >= 1.0")

    def delays(self) -> Iterator[float]:
        """Yield the waits between attempts (one fewer than max_attempts)."""
        delay = self.interval
        for _ in range(self.max_attempts - 1):
            yield delay
            delay *= self.backoff
            if self.max_interval is not None:
                delay = min(delay, self.max_interval)


@dataclass
class ReadinessResult:
    """Outcome of probing one service."""

    service: str
    ready: bool
    attempts: int
    elapsed: float = 0.0


@dataclass
class ShutdownOutcome:
    """Port state for one service after shutdown."""

    service: str
    port: Optional[int]
    port_freed: bool
