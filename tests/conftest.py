"""Shared fixtures: python child processes standing in for real services."""

from __future__ import annotations

import socket
import sys
import textwrap

import pytest

from devsupervisor.config import Config
from devsupervisor.models import ServiceSpec


# Serves 200 on every path once listening; prints "listening" to stdout.
HTTP_SERVICE = textwrap.dedent(
    """
    import os, sys
    from http.server import BaseHTTPRequestHandler, HTTPServer

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(200)
            self.end_headers()
            self.wfile.write(b"ok")

        def log_message(self, *args):
            pass

    server = HTTPServer(("127.0.0.1", int(os.environ["PORT"])), Handler)
    print("listening", flush=True)
    server.serve_forever()
    """
)

# Binds the port but never answers.
SILENT_SERVICE = textwrap.dedent(
    """
    import os, socket, time
    s = socket.socket()
    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    s.bind(("127.0.0.1", int(os.environ["PORT"])))
    s.listen(1)
    print("bound", flush=True)
    time.sleep(600)
    """
)

# Ignores SIGTERM, so only SIGKILL stops it.
STUBBORN_SERVICE = textwrap.dedent(
    """
    import signal, time
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
    print("ready", flush=True)
    time.sleep(600)
    """
)

SLEEPER = "import time; print('ready', flush=True); time.sleep(600)"


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def python_spec(name: str, code: str, **kwargs) -> ServiceSpec:
    return ServiceSpec(name=name, command=sys.executable, args=("-c", code), **kwargs)


@pytest.fixture
def config(tmp_path):
    return Config(
        project_root=tmp_path,
        data_dir=tmp_path / "data",
        backend_port=free_port(),
        frontend_port=free_port(),
        probe_timeout=2.0,
        install_timeout=5.0,
        ready_attempts=40,
        ready_timeout=0.5,
        ready_interval=0.1,
        grace_period=0.3,
        exit_timeout=2.0,
    )


class FakeReclaimer:
    """PortReclaimer stand-in that records calls and reports chosen ports as bound."""

    def __init__(self, still_bound: dict[int, set[int]] | None = None):
        self.still_bound = still_bound or {}
        self.reclaimed: list[set[int]] = []

    async def reclaim(self, ports):
        self.reclaimed.append(set(ports))

    async def bound_ports(self, ports):
        return {p: pids for p, pids in self.still_bound.items() if p in set(ports)}


class FakeTools:
    def __init__(self, tool: str | None = None):
        self.tool = tool
        self.calls = 0

    async def resolve(self):
        self.calls += 1
        return self.tool


@pytest.fixture
def fake_reclaimer():
    return FakeReclaimer()
