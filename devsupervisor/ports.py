"""
Port reclamation for supervised services.

Finds processes listening on the configured TCP ports and kills them so the
services can bind. Uses psutil's connection table, falling back to lsof when
the table is not readable for the current user (e.g. on macOS).
"""

import asyncio
import logging
import os
import signal
from typing import Iterable

import psutil

logger = logging.getLogger(__name__)


def _psutil_listeners(port: int) -> set[int]:
    pids = set()
    for conn in psutil.net_connections(kind="tcp"):
        if not conn.laddr or conn.laddr.port != port:
            continue
        if conn.status != psutil.CONN_LISTEN or conn.pid is None:
            continue
        pids.add(conn.pid)
    return pids


async def _lsof_listeners(port: int) -> set[int]:
    try:
        proc = await asyncio.create_subprocess_exec(
            "lsof", "-ti", f"tcp:{port}", "-sTCP:LISTEN",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await proc.communicate()
    except FileNotFoundError:
        logger.debug("lsof not available, assuming port is free")
        return set()

    # lsof exits nonzero when nothing matches
    pids = set()
    for line in stdout.decode(errors="replace").split():
        if line.isdigit():
            pids.add(int(line))
    return pids


class PortReclaimer:
    """Frees TCP ports by killing whatever is listening on them."""

    def __init__(self):
        self._own_pid = os.getpid()

    async def listeners(self, port: int) -> set[int]:
        """Return the pids currently listening on a port."""
        try:
            pids = await asyncio.to_thread(_psutil_listeners, port)
        except psutil.AccessDenied:
            pids = await _lsof_listeners(port)
        pids.discard(self._own_pid)
        return pids

    async def is_port_free(self, port: int) -> bool:
        return not await self.listeners(port)

    async def reclaim_port(self, port: int) -> set[int]:
        """Kill every listener on a port. Returns the pids that were signalled."""
        try:
            pids = await self.listeners(port)
        except Exception as e:
            logger.warning(f"Could not query listeners on port {port}: {e}")
            return set()

        if not pids:
            logger.debug(f"Port {port} is already free")
            return set()

        killed = set()
        for pid in pids:
            try:
                os.kill(pid, signal.SIGKILL)
                killed.add(pid)
                logger.info(f"Killed process {pid} holding port {port}")
            except ProcessLookupError:
                pass
            except PermissionError:
                logger.warning(f"Permission denied killing process {pid} on port {port}")

        # Wait for the killed processes to go away before the port is reused
        for pid in killed:
            try:
                await asyncio.to_thread(psutil.Process(pid).wait, 1)
            except (psutil.NoSuchProcess, psutil.TimeoutExpired, psutil.AccessDenied):
                pass
        return killed

    async def reclaim(self, ports: Iterable[int]):
        """Free all of the given ports concurrently."""
        ports = sorted(set(ports))
        await asyncio.gather(*(self.reclaim_port(port) for port in ports))

    async def bound_ports(self, ports: Iterable[int]) -> dict[int, set[int]]:
        """Return the subset of ports that still have listeners, with their pids."""
        ports = sorted(set(ports))
        results = await asyncio.gather(*(self.listeners(port) for port in ports))
        return {port: pids for port, pids in zip(ports, results) if pids}
