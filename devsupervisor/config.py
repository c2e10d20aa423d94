"""
Configuration for the development supervisor.

Loads settings from environment variables with sensible defaults.
Supervisor logs (and optional per-service output logs) live in ~/.devsupervisor/
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Development supervisor configuration."""

    # Project layout
    project_root: Path = None
    backend_dir: Path = None
    frontend_dir: Path = None

    # Paths
    data_dir: Path = None
    logs_dir: Path = None
    supervisor_log: Path = None

    # Logging
    log_level: str = "INFO"
    log_max_bytes: int = 10 * 1024 * 1024  # 10MB
    log_backup_count: int = 5
    log_to_files: bool = False
    log_chunk_size: int = 4096

    # Services
    backend_port: int = 3007
    frontend_port: int = 8007
    host: str = "localhost"

    # Hot reload tool
    hot_reload_tool: str = "air"
    hot_reload_package: str = "github.com/air-verse/air@latest"
    hot_reload_config: str = ".air.toml"
    probe_timeout: float = 5.0
    install_timeout: float = 300.0

    # Readiness
    ready_attempts: int = 20
    ready_timeout: float = 0.5
    ready_interval: float = 0.5

    # Shutdown
    grace_period: float = 2.0
    exit_timeout: float = 3.0

    def __post_init__(self):
        """Initialize derived paths."""
        if self.project_root is None:
            self.project_root = Path.cwd()
        self.project_root = Path(self.project_root)
        if self.backend_dir is None:
            self.backend_dir = self.project_root / "backend"
        if self.frontend_dir is None:
            self.frontend_dir = self.project_root / "frontend"

        if self.data_dir is None:
            self.data_dir = Path.home() / ".devsupervisor"
        self.logs_dir = self.data_dir / "logs"
        self.supervisor_log = self.data_dir / "supervisor.log"

    @property
    def backend_url(self) -> str:
        return f"http://{self.host}:{self.backend_port}"

    @property
    def frontend_url(self) -> str:
        return f"http://{self.host}:{self.frontend_port}"

    @property
    def ports(self) -> set[int]:
        return {self.backend_port, self.frontend_port}

    def ensure_dirs(self):
        """Create the data and log directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a configuration from the current environment."""
        env = os.environ
        data_dir = env.get("DEVSUP_DATA_DIR")
        return cls(
            project_root=Path(env.get("DEVSUP_PROJECT_ROOT", os.getcwd())),
            data_dir=Path(data_dir).expanduser() if data_dir else None,
            log_level=env.get("DEVSUP_LOG_LEVEL", "INFO").upper(),
            log_max_bytes=int(env.get("LOG_MAX_BYTES", str(10 * 1024 * 1024))),
            log_backup_count=int(env.get("LOG_BACKUP_COUNT", "5")),
            log_to_files=env.get("DEVSUP_LOG_TO_FILES", "false").lower() == "true",
            log_chunk_size=int(env.get("DEVSUP_LOG_CHUNK_SIZE", "4096")),
            backend_port=int(env.get("BACKEND_PORT", "3007")),
            frontend_port=int(env.get("FRONTEND_PORT", "8007")),
            host=env.get("DEVSUP_HOST", "localhost"),
            hot_reload_tool=env.get("HOT_RELOAD_TOOL", "air"),
            hot_reload_package=env.get(
                "HOT_RELOAD_PACKAGE", "github.com/air-verse/air@latest"
            ),
            hot_reload_config=env.get("HOT_RELOAD_CONFIG", ".air.toml"),
            probe_timeout=float(env.get("TOOL_PROBE_TIMEOUT", "5")),
            install_timeout=float(env.get("TOOL_INSTALL_TIMEOUT", "300")),
            ready_attempts=int(env.get("READY_ATTEMPTS", "20")),
            ready_timeout=float(env.get("READY_TIMEOUT", "0.5")),
            ready_interval=float(env.get("READY_INTERVAL", "0.5")),
            grace_period=float(env.get("SHUTDOWN_GRACE_PERIOD", "2")),
            exit_timeout=float(env.get("SHUTDOWN_EXIT_TIMEOUT", "3")),
        )


config = Config.from_env()
