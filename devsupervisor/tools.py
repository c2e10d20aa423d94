"""
Hot-reload tool discovery.

Locates the backend hot-reload helper (air by default): first on PATH, then
in the Go install directories. If it is nowhere to be found, runs `go install`
once and searches again. Returns None when the tool is unavailable so the
caller can fall back to a plain `go run`.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from .config import Config, config as default_config
from .exceptions import ToolResolutionFailure

logger = logging.getLogger(__name__)


async def run_command(
    args: list[str], timeout: float, cwd: Optional[Path] = None
) -> tuple[int, str, str]:
    """Run a short command. Returns (returncode, stdout, stderr).

    Raises FileNotFoundError / PermissionError when the executable cannot be
    started and asyncio.TimeoutError when it overruns.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd) if cwd else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        raise
    return (
        proc.returncode,
        stdout.decode(errors="replace").strip(),
        stderr.decode(errors="replace").strip(),
    )


class ToolResolver:
    """Finds (and if needed installs) the hot-reload helper binary."""

    def __init__(self, cfg: Config = None):
        self.config = cfg or default_config

    @property
    def tool(self) -> str:
        return self.config.hot_reload_tool

    async def probe(self, candidate: str) -> bool:
        """Check a candidate by running it with a version flag."""
        try:
            code, _, _ = await run_command([candidate, "-v"], self.config.probe_timeout)
            return code == 0
        except asyncio.TimeoutError:
            logger.debug(f"Probe of {candidate} timed out")
            return False
        except OSError:
            return False

    async def _go_env(self, name: str) -> Optional[str]:
        try:
            code, out, _ = await run_command(["go", "env", name], self.config.probe_timeout)
        except (OSError, asyncio.TimeoutError):
            return None
        return out if code == 0 and out else None

    async def _gopath_candidate(self) -> Optional[str]:
        gopath = await self._go_env("GOPATH")
        if not gopath:
            return None
        # GOPATH may hold several entries; the first one receives installs
        first = gopath.split(os.pathsep)[0]
        return str(Path(first) / "bin" / self.tool)

    async def _gobin_candidate(self) -> Optional[str]:
        gobin = await self._go_env("GOBIN")
        return str(Path(gobin) / self.tool) if gobin else None

    async def _home_candidate(self) -> Optional[str]:
        home = os.environ.get("HOME")
        return str(Path(home) / "go" / "bin" / self.tool) if home else None

    async def _check(self, candidate_coro) -> Optional[str]:
        candidate = await candidate_coro
        if candidate and await self.probe(candidate):
            return candidate
        return None

    async def search(self, include_gobin: bool = False) -> Optional[str]:
        """Search PATH, then the Go install directories concurrently."""
        on_path = shutil.which(self.tool)
        if on_path and await self.probe(self.tool):
            return self.tool

        sources = []
        if include_gobin:
            sources.append(self._gobin_candidate())
        sources.append(self._gopath_candidate())
        sources.append(self._home_candidate())

        results = await asyncio.gather(
            *(self._check(source) for source in sources), return_exceptions=True
        )
        # Declaration order breaks ties between concurrent hits
        for result in results:
            if isinstance(result, str):
                return result
            if isinstance(result, Exception):
                logger.debug(f"Tool probe failed: {result}")
        return None

    async def install(self) -> bool:
        """Install the tool with `go install`. Returns True on success."""
        logger.warning(f"{self.tool} not found. Installing {self.config.hot_reload_package}...")
        cwd = self.config.backend_dir if self.config.backend_dir.is_dir() else None
        try:
            code, _, stderr = await run_command(
                ["go", "install", self.config.hot_reload_package],
                self.config.install_timeout,
                cwd=cwd,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Installing {self.tool} timed out")
            return False
        except OSError as e:
            logger.warning(f"Could not run go install: {e}")
            return False

        if code != 0:
            logger.warning(f"Failed to install {self.tool}: {stderr}")
            return False

        logger.info(f"{self.tool} installed successfully")
        return True

    async def resolve(self) -> Optional[str]:
        """Return the command to invoke the tool, or None if unavailable."""
        found = await self.search()
        if found:
            logger.info(f"Using {self.tool} at {found}")
            return found

        if await self.install():
            found = await self.search(include_gobin=True)
            if found:
                logger.info(f"Found working {self.tool} at {found}")
                return found

        logger.warning(str(ToolResolutionFailure(self.tool)))
        return None
