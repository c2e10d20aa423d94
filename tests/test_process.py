"""Tests for spawning, monitoring and terminating service processes."""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import SLEEPER, STUBBORN_SERVICE, python_spec
from devsupervisor.exceptions import SpawnFailure
from devsupervisor.models import ProcessState, ServiceSpec
from devsupervisor.process import ProcessSupervisor


async def _wait_ready(managed):
    line = await asyncio.wait_for(managed.process.stdout.readline(), timeout=10)
    assert line.strip() == b"ready"


@pytest.mark.asyncio
async def test_spawn_merges_environment(monkeypatch):
    monkeypatch.setenv("DEVSUP_INHERITED", "parent")
    monkeypatch.setenv("PORT", "1")
    spec = python_spec(
        "env",
        "import os; print(os.environ['DEVSUP_INHERITED'], os.environ['PORT'])",
        env={"PORT": "3007"},
    )
    supervisor = ProcessSupervisor()
    managed = await supervisor.spawn(spec)

    out = await managed.process.stdout.read()
    assert out.decode().split() == ["parent", "3007"]
    assert await supervisor.wait(managed, 10)
    assert managed.exit_code == 0
    assert managed.state == ProcessState.EXITED
    await supervisor.stop_monitors()


@pytest.mark.asyncio
async def test_spawn_missing_executable_fails():
    supervisor = ProcessSupervisor()
    spec = ServiceSpec(name="backend", command="/nonexistent/devsup-air")
    with pytest.raises(SpawnFailure) as exc:
        await supervisor.spawn(spec)
    assert exc.value.service == "backend"
    assert supervisor.processes == []


@pytest.mark.asyncio
async def test_port_held_by_one_process_at_a_time():
    supervisor = ProcessSupervisor()
    first = await supervisor.spawn(python_spec("first", SLEEPER, port=4242))
    with pytest.raises(SpawnFailure):
        await supervisor.spawn(python_spec("second", SLEEPER, port=4242))

    await supervisor.terminate(first, deadline=2)
    second = await supervisor.spawn(python_spec("second", SLEEPER, port=4242))
    await supervisor.terminate(second, deadline=2)
    await supervisor.stop_monitors()


@pytest.mark.asyncio
async def test_terminate_graceful():
    supervisor = ProcessSupervisor()
    managed = await supervisor.spawn(python_spec("sleeper", SLEEPER))
    await _wait_ready(managed)

    await supervisor.terminate(managed, deadline=5)

    assert not managed.running
    assert managed.state == ProcessState.TERMINATED
    assert managed.exit_signal == "SIGTERM"
    await supervisor.stop_monitors()


@pytest.mark.asyncio
async def test_terminate_escalates_to_kill(caplog):
    supervisor = ProcessSupervisor()
    managed = await supervisor.spawn(python_spec("stubborn", STUBBORN_SERVICE))
    await _wait_ready(managed)

    await supervisor.terminate(managed, deadline=0.3)

    assert not managed.running
    assert managed.exit_signal == "SIGKILL"
    assert "did not stop gracefully" in caplog.text
    await supervisor.stop_monitors()


@pytest.mark.asyncio
async def test_terminate_already_exited_is_success():
    supervisor = ProcessSupervisor()
    managed = await supervisor.spawn(python_spec("quick", "pass"))
    await supervisor.wait(managed, 10)

    await supervisor.terminate(managed, deadline=1)

    assert not managed.running
    assert managed.exit_code == 0
    assert not supervisor.send_signal(managed, 15)
    await supervisor.stop_monitors()


@pytest.mark.asyncio
async def test_unexpected_exit_leaves_sibling_running(caplog):
    caplog.set_level(logging.INFO)
    supervisor = ProcessSupervisor()
    survivor = await supervisor.spawn(python_spec("frontend", SLEEPER))
    crasher = await supervisor.spawn(python_spec("backend", "import sys; sys.exit(3)"))

    await crasher.wait_exited()
    await asyncio.sleep(0.2)

    assert crasher.exit_code == 3
    assert survivor.running
    assert "backend process ended unexpectedly (code 3); frontend still running" in caplog.text

    await supervisor.terminate(survivor, deadline=5)
    await supervisor.stop_monitors()
