"""Error taxonomy for the development supervisor.

Only SpawnFailure ends a run. The others describe conditions that are
absorbed where they occur and surfaced as warnings.
"""


class SupervisorError(Exception):
    """Base class for supervisor errors."""


class SpawnFailure(SupervisorError):
    """A service executable is missing or cannot be started."""

    def __init__(self, service: str, reason: str):
        self.service = service
        self.reason = reason
        super().__init__(f"Failed to start {service}: {reason}")


class ProbeFailure(SupervisorError):
    """A service did not answer its health check within the retry budget."""

    def __init__(self, service: str, url: str, attempts: int):
        self.service = service
        self.url = url
        self.attempts = attempts
        super().__init__(
            f"{service} may not be ready yet (health check timeout) "
            f"at {url} after {attempts} attempts"
        )


class ToolResolutionFailure(SupervisorError):
    """The hot-reload helper could not be found or installed."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Could not find a working {tool} binary, hot reload disabled")


class TerminationFailure(SupervisorError):
    """A process ignored the graceful terminate signal."""

    def __init__(self, service: str, pid: int):
        self.service = service
        self.pid = pid
        super().__init__(f"{service} did not stop gracefully, forcing kill (PID {pid})")


class PortStillBoundFailure(SupervisorError):
    """A configured port is still bound after shutdown."""

    def __init__(self, port: int, pids: set[int]):
        self.port = port
        self.pids = pids
        super().__init__(f"Port {port} still in use (pids: {sorted(pids)})")
