"""
Shutdown coordination.

Runs the teardown procedure exactly once no matter how many signals arrive:
stop log streaming, SIGTERM every running service, wait out the grace period,
SIGKILL whatever is left, wait (bounded) for the exits, then reclaim and
verify the service ports.
"""

import asyncio
import logging
import signal
from typing import Iterable, Optional

from .exceptions import PortStillBoundFailure, TerminationFailure
from .logs import LogAggregator
from .models import ShutdownOutcome
from .ports import PortReclaimer
from .process import ProcessSupervisor

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Single-flight graceful-then-forced teardown of the managed services."""

    def __init__(
        self,
        processes: ProcessSupervisor,
        reclaimer: PortReclaimer,
        aggregator: LogAggregator,
        grace_period: float = 2.0,
        exit_timeout: float = 3.0,
        ports: Iterable[int] = None,
    ):
        self.processes = processes
        self.reclaimer = reclaimer
        self.aggregator = aggregator
        self.grace_period = grace_period
        self.exit_timeout = exit_timeout
        self.ports = set(ports) if ports else set()
        self.runs = 0
        self._task: Optional[asyncio.Task] = None
        self._requested = asyncio.Event()

    @property
    def requested(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def request(self, signame: str = None) -> asyncio.Task:
        """Signal handler entry point. Later calls return the same task."""
        if self._task is None:
            if signame:
                logger.info(f"Received {signame}")
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name="shutdown"
            )
            self._requested.set()
        elif signame:
            logger.info(f"Received {signame}, shutdown already in progress")
        return self._task

    async def shutdown(self) -> list[ShutdownOutcome]:
        return await asyncio.shield(self.request())

    async def wait(self) -> list[ShutdownOutcome]:
        """Block until a shutdown has been requested and has finished."""
        await self._requested.wait()
        return await asyncio.shield(self._task)

    async def _run(self) -> list[ShutdownOutcome]:
        self.runs += 1
        logger.info("Shutting down servers...")
        managed = self.processes.processes

        try:
            await self.aggregator.stop()

            for process in managed:
                self.processes.begin_termination(process)

            running = [p for p in managed if p.running]
            for process in running:
                self.processes.send_signal(process, signal.SIGTERM)

            if running:
                await asyncio.sleep(self.grace_period)

            for process in managed:
                if process.running:
                    logger.warning(str(TerminationFailure(process.name, process.pid)))
                    self.processes.send_signal(process, signal.SIGKILL)

            await self._confirm_exits()
            await self.processes.stop_monitors()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

        return await self._verify_ports()

    async def _confirm_exits(self):
        pending = [p for p in self.processes.processes if p.running]
        if not pending:
            return
        results = await asyncio.gather(
            *(self.processes.wait(p, self.exit_timeout) for p in pending)
        )
        for process, exited in zip(pending, results):
            if not exited:
                logger.error(f"{process.name} (PID {process.pid}) still running after kill")

    async def _verify_ports(self) -> list[ShutdownOutcome]:
        owners = {p.spec.port: p.name for p in self.processes.processes if p.spec.port is not None}
        ports = self.ports | set(owners)

        try:
            await self.reclaimer.reclaim(ports)
            bound = await self.reclaimer.bound_ports(ports)
        except Exception as e:
            logger.error(f"Error verifying ports: {e}")
            bound = {}

        outcomes = []
        for port in sorted(ports):
            freed = port not in bound
            if not freed:
                logger.warning(str(PortStillBoundFailure(port, bound[port])))
            outcomes.append(
                ShutdownOutcome(service=owners.get(port, f"port {port}"), port=port, port_freed=freed)
            )

        if all(o.port_freed for o in outcomes):
            logger.info("All servers stopped")
        else:
            logger.warning("Servers stopped, but some ports may still be in use")
        return outcomes
