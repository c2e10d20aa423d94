"""
Development supervisor.

Starts the Go backend (with air hot reload when available) and the Deno
frontend side by side, waits for both health checks, streams their output to
the console and tears everything down on SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys
import time
from logging.handlers import RotatingFileHandler
from typing import Callable, Optional

from .config import Config, config as default_config
from .exceptions import SpawnFailure
from .logs import LogAggregator
from .models import ReadinessResult, RetryPolicy, ServiceSpec
from .ports import PortReclaimer
from .process import ProcessSupervisor
from .readiness import ReadinessProber
from .shutdown import ShutdownCoordinator
from .tools import ToolResolver

logger = logging.getLogger(__name__)


def configure_logging(cfg: Config):
    """Log to the console and to a rotating file in the data directory."""
    log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    handlers = [console_handler]

    try:
        cfg.ensure_dirs()
        file_handler = RotatingFileHandler(
            cfg.supervisor_log,
            maxBytes=cfg.log_max_bytes,
            backupCount=cfg.log_backup_count,
        )
        file_handler.setFormatter(log_formatter)
        handlers.append(file_handler)
    except OSError as e:
        print(f"Cannot write {cfg.supervisor_log}: {e}", file=sys.stderr)

    logging.basicConfig(level=cfg.log_level, handlers=handlers, force=True)


def build_specs(cfg: Config, tool: Optional[str]) -> list[ServiceSpec]:
    """Describe the backend and frontend services."""
    if tool:
        backend_command, backend_args = tool, ("-c", cfg.hot_reload_config)
        backend_label = "Air"
    else:
        backend_command, backend_args = "go", ("run", "cmd/server/main.go")
        backend_label = "Backend"

    backend = ServiceSpec(
        name="backend",
        command=backend_command,
        args=backend_args,
        working_dir=str(cfg.backend_dir),
        env={"PORT": str(cfg.backend_port)},
        port=cfg.backend_port,
        health_url=f"{cfg.backend_url}/health",
        label=backend_label,
        links=(
            ("Backend health", f"{cfg.backend_url}/health"),
            ("Backend RPC", f"{cfg.backend_url}/hello.v1.GreeterService/SayHello"),
        ),
    )
    frontend = ServiceSpec(
        name="frontend",
        command="deno",
        args=("run", "-A", "main.ts"),
        working_dir=str(cfg.frontend_dir),
        env={"PORT": str(cfg.frontend_port), "BACKEND_URL": cfg.backend_url},
        port=cfg.frontend_port,
        health_url=f"{cfg.frontend_url}/",
        label="Frontend",
        links=(("Frontend", f"{cfg.frontend_url}/"),),
    )
    return [backend, frontend]


class Supervisor:
    """Runs the two development services until a termination signal arrives."""

    def __init__(
        self,
        cfg: Config = None,
        reclaimer: PortReclaimer = None,
        tools: ToolResolver = None,
        processes: ProcessSupervisor = None,
        prober: ReadinessProber = None,
        aggregator: LogAggregator = None,
        spec_builder: Callable[[Config, Optional[str]], list[ServiceSpec]] = build_specs,
    ):
        self.config = cfg or default_config
        self.reclaimer = reclaimer or PortReclaimer()
        self.tools = tools or ToolResolver(self.config)
        self.processes = processes or ProcessSupervisor()
        self.prober = prober or ReadinessProber(
            RetryPolicy(
                max_attempts=self.config.ready_attempts,
                attempt_timeout=self.config.ready_timeout,
                interval=self.config.ready_interval,
            )
        )
        self.aggregator = aggregator or LogAggregator(
            chunk_size=self.config.log_chunk_size,
            logs_dir=self.config.logs_dir if self.config.log_to_files else None,
        )
        self.shutdown = ShutdownCoordinator(
            self.processes,
            self.reclaimer,
            self.aggregator,
            grace_period=self.config.grace_period,
            exit_timeout=self.config.exit_timeout,
            ports=self.config.ports,
        )
        self.specs: list[ServiceSpec] = []
        self.tool: Optional[str] = None
        self.spec_builder = spec_builder
        self.ready_results: Optional[list[ReadinessResult]] = None

    def install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.shutdown.request, sig.name)

    def remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    async def prepare(self):
        """Free the service ports and look for the hot-reload tool together."""
        logger.info("Cleaning up any existing processes...")
        _, self.tool = await asyncio.gather(
            self.reclaimer.reclaim(self.config.ports),
            self.tools.resolve(),
        )
        if not self.tool:
            logger.warning("Hot reload unavailable, using go run instead")
        self.specs = self.spec_builder(self.config, self.tool)

    async def start_services(self):
        """Spawn every service in order. Raises SpawnFailure on the first one that
        fails; the services after it are not started.

        Stops early once shutdown has been requested. A process whose spawn
        completes after the request is terminated here, since the shutdown
        sequence has already taken its list of processes.
        """
        for spec in self.specs:
            if self.shutdown.requested:
                logger.info(f"Shutdown requested, not starting {spec.name}")
                return
            logger.info(f"Starting {spec.name} on port {spec.port}...")
            managed = await self.processes.spawn(spec)
            if self.shutdown.requested:
                await self.processes.terminate(managed, self.config.grace_period)
                return
            self.aggregator.attach(managed)

    def report(self, results: list[ReadinessResult], started: float):
        by_name = {spec.name: spec for spec in self.specs}
        for result in results:
            spec = by_name[result.service]
            if not result.ready:
                continue
            extra = ""
            if spec.name == "backend":
                extra = " (with hot reload)" if self.tool else " (no hot reload)"
            logger.info(f"{spec.prefix} started{extra}")
            for title, url in spec.links:
                logger.info(f"  {title}: {url}")

        logger.info(f"Servers ready in {time.monotonic() - started:.2f}s")
        logger.info("Press Ctrl+C to stop all servers")

    async def run(self) -> int:
        """Start everything, block until shutdown, return the exit status."""
        started = time.monotonic()
        logger.info("Starting development servers...")
        self.install_signal_handlers()
        try:
            await self.prepare()
            if self.shutdown.requested:
                await self.shutdown.wait()
                return 0

            try:
                await self.start_services()
            except SpawnFailure as e:
                logger.error(str(e))
                await self.processes.terminate_all(self.config.grace_period)
                await self.aggregator.stop()
                if self.shutdown.requested:
                    await self.shutdown.wait()
                await self.processes.stop_monitors()
                return 1

            if self.shutdown.requested:
                await self.shutdown.wait()
                await self.processes.stop_monitors()
                return 0

            results = await self.prober.probe_all(self.specs)
            self.ready_results = results
            self.report(results, started)

            await self.shutdown.wait()
            return 0
        finally:
            self.remove_signal_handlers()


async def run(cfg: Config = None) -> int:
    return await Supervisor(cfg).run()


def main():
    """Console entry point."""
    cfg = default_config
    configure_logging(cfg)
    sys.exit(asyncio.run(run(cfg)))


if __name__ == "__main__":
    main()
