"""
Log aggregation for supervised services.

Streams each service's stdout/stderr to a shared console, prefixed with the
service label. Chunks are forwarded as they are read: order within one stream
is preserved, streams of different services interleave freely. Optionally
each chunk is also appended to a per-service log file.
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

from .models import ManagedProcess

logger = logging.getLogger(__name__)


class ConsoleSink:
    """Shared output for service logs. Each chunk is written in one call."""

    def __init__(self, stream: TextIO = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def write(self, prefix: str, text: str):
        self.stream.write(f"{prefix}: {text}\n")
        self.stream.flush()


class LogAggregator:
    """Forwards child process output to the console sink."""

    def __init__(
        self,
        sink: ConsoleSink = None,
        chunk_size: int = 4096,
        logs_dir: Optional[Path] = None,
    ):
        self.sink = sink or ConsoleSink()
        self.chunk_size = chunk_size
        self.logs_dir = logs_dir
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def attach(self, managed: ManagedProcess, prefix: str = None) -> list[asyncio.Task]:
        """Start streaming a process's stdout and stderr."""
        prefix = prefix or managed.spec.prefix
        tasks = []
        for stream_name in ("stdout", "stderr"):
            stream = getattr(managed.process, stream_name)
            if stream is None:
                continue
            task = asyncio.create_task(
                self._pump(managed.name, stream_name, stream, prefix),
                name=f"logs-{managed.name}-{stream_name}",
            )
            self._tasks.add(task)
            tasks.append(task)
        return tasks

    def _open_log_file(self, service_name: str, stream_name: str):
        if not self.logs_dir:
            return None
        try:
            log_dir = self.logs_dir / service_name
            log_dir.mkdir(parents=True, exist_ok=True)
            return open(log_dir / f"{stream_name}.log", "a")
        except OSError as e:
            logger.warning(f"Cannot open log file for {service_name}: {e}")
            return None

    async def _pump(
        self, service_name: str, stream_name: str, stream: asyncio.StreamReader, prefix: str
    ):
        """Copy one stream to the sink until end of stream."""
        log_file = self._open_log_file(service_name, stream_name)
        try:
            while True:
                chunk = await stream.read(self.chunk_size)
                if not chunk:
                    break

                text = chunk.decode("utf-8", errors="replace").strip()
                if not text:
                    continue

                self.sink.write(prefix, text)
                if log_file:
                    timestamp = datetime.now().isoformat()
                    log_file.write(f"[{timestamp}] {text}\n")
                    log_file.flush()

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{prefix} log error: {e}")
        finally:
            if log_file:
                log_file.close()

    async def join(self):
        """Wait for all streams to reach end of stream."""
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self):
        """Cancel streaming and wait until every stream task has finished."""
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
