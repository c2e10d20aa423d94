"""
Process supervisor for the development services.

Handles spawning, monitoring and stopping service processes. Each service runs
in its own process group so a hot-reload wrapper and the server it launches
are signalled together. Output streams stay piped for the log aggregator.
"""

import asyncio
import logging
import os
import signal
from typing import Optional

from .exceptions import SpawnFailure, TerminationFailure
from .models import ManagedProcess, ProcessState, ServiceSpec

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """Owns the set of managed service processes."""

    def __init__(self):
        self._processes: dict[str, ManagedProcess] = {}
        self._monitors: dict[str, asyncio.Task] = {}

    @property
    def processes(self) -> list[ManagedProcess]:
        return list(self._processes.values())

    def get(self, name: str) -> Optional[ManagedProcess]:
        return self._processes.get(name)

    def _port_owner(self, port: int) -> Optional[ManagedProcess]:
        for managed in self._processes.values():
            if managed.running and managed.spec.port == port:
                return managed
        return None

    async def spawn(self, spec: ServiceSpec) -> ManagedProcess:
        """Start a service process.

        Raises SpawnFailure if the executable cannot be started or the
        service's port already belongs to another running process.
        """
        if spec.port is not None:
            owner = self._port_owner(spec.port)
            if owner:
                raise SpawnFailure(spec.name, f"port {spec.port} is held by {owner.name}")

        env = os.environ.copy()
        env.update(spec.env)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.working_dir,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,  # Create new process group
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise SpawnFailure(spec.name, str(e)) from e

        managed = ManagedProcess(spec=spec, process=process)
        managed.transition(ProcessState.RUNNING)
        self._processes[spec.name] = managed
        self._monitors[spec.name] = asyncio.create_task(
            self.monitor(managed), name=f"monitor-{spec.name}"
        )

        logger.info(f"Started {spec.name} with PID {process.pid}")
        return managed

    async def monitor(self, managed: ManagedProcess):
        """Wait for a process to exit and record its status.

        An unexpected exit is reported but the sibling services are left alone.
        """
        code = await managed.process.wait()
        was_requested = managed.shutdown_requested
        managed.mark_exited(code)

        if was_requested:
            logger.info(f"{managed.name} process ended")
            return

        others = [
            p.name for p in self._processes.values() if p is not managed and p.running
        ]
        detail = f"signal {managed.exit_signal}" if managed.exit_signal else f"code {code}"
        if others:
            logger.warning(
                f"{managed.name} process ended unexpectedly ({detail}); "
                f"{', '.join(others)} still running"
            )
        else:
            logger.warning(f"{managed.name} process ended ({detail})")

    def send_signal(self, managed: ManagedProcess, sig: int) -> bool:
        """Signal the process group. Returns False if the process is already gone."""
        if not managed.running:
            return False
        try:
            os.killpg(os.getpgid(managed.pid), sig)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Fall back to signalling the group leader alone
            try:
                managed.process.send_signal(sig)
                return True
            except ProcessLookupError:
                return False

    async def wait(self, managed: ManagedProcess, timeout: float) -> bool:
        """Wait up to timeout for a process to exit. Returns True if it exited."""
        if not managed.running:
            return True
        try:
            await asyncio.wait_for(asyncio.shield(self._reap(managed)), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _reap(self, managed: ManagedProcess):
        code = await managed.process.wait()
        managed.mark_exited(code)

    def begin_termination(self, managed: ManagedProcess):
        managed.shutdown_requested = True
        if managed.running:
            managed.transition(ProcessState.TERMINATING)

    async def terminate(self, managed: ManagedProcess, deadline: float, kill_timeout: float = 5.0):
        """Stop a process: SIGTERM, wait up to deadline, then SIGKILL.

        A process that is already gone at either step counts as stopped.
        """
        self.begin_termination(managed)
        if not managed.running:
            return

        self.send_signal(managed, signal.SIGTERM)
        if await self.wait(managed, deadline):
            logger.info(f"Stopped {managed.name}")
            return

        logger.warning(str(TerminationFailure(managed.name, managed.pid)))
        self.send_signal(managed, signal.SIGKILL)
        if not await self.wait(managed, kill_timeout):
            # SIGKILL cannot be ignored; only an uninterruptible sleep gets here
            logger.error(f"{managed.name} (PID {managed.pid}) did not exit after SIGKILL")
            managed.mark_exited(None)

    async def terminate_all(self, deadline: float):
        await asyncio.gather(*(self.terminate(p, deadline) for p in self.processes))

    async def stop_monitors(self):
        """Wait for the per-process monitor tasks to finish."""
        tasks = list(self._monitors.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._monitors.clear()
