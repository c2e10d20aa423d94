"""Tests for the shutdown procedure."""

from __future__ import annotations

import asyncio
import logging
import signal

import pytest

from conftest import SLEEPER, STUBBORN_SERVICE, FakeReclaimer, python_spec
from devsupervisor.logs import LogAggregator
from devsupervisor.process import ProcessSupervisor
from devsupervisor.shutdown import ShutdownCoordinator


async def _spawn_ready(supervisor, spec):
    managed = await supervisor.spawn(spec)
    line = await asyncio.wait_for(managed.process.stdout.readline(), timeout=10)
    assert line.strip() == b"ready"
    return managed


@pytest.fixture
def supervisor():
    return ProcessSupervisor()


def _coordinator(supervisor, reclaimer, **kwargs):
    return ShutdownCoordinator(
        supervisor,
        reclaimer,
        LogAggregator(),
        grace_period=kwargs.pop("grace_period", 0.3),
        exit_timeout=kwargs.pop("exit_timeout", 2.0),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_graceful_then_forced(supervisor, fake_reclaimer, caplog):
    caplog.set_level(logging.INFO)
    polite = await _spawn_ready(supervisor, python_spec("frontend", SLEEPER, port=8007))
    stubborn = await _spawn_ready(supervisor, python_spec("backend", STUBBORN_SERVICE, port=3007))
    coordinator = _coordinator(supervisor, fake_reclaimer)

    outcomes = await coordinator.shutdown()

    assert not polite.running and not stubborn.running
    assert polite.exit_signal == "SIGTERM"
    assert stubborn.exit_signal == "SIGKILL"
    assert "backend did not stop gracefully, forcing kill" in caplog.text
    assert fake_reclaimer.reclaimed == [{3007, 8007}]
    assert [(o.service, o.port, o.port_freed) for o in outcomes] == [
        ("backend", 3007, True),
        ("frontend", 8007, True),
    ]
    assert "All servers stopped" in caplog.text


@pytest.mark.asyncio
async def test_duplicate_triggers_run_once(supervisor, fake_reclaimer):
    managed = await _spawn_ready(supervisor, python_spec("backend", SLEEPER, port=3007))
    coordinator = _coordinator(supervisor, fake_reclaimer)

    first = coordinator.request("SIGINT")
    second = coordinator.request("SIGTERM")
    results = await asyncio.gather(coordinator.shutdown(), coordinator.shutdown(), first)

    assert first is second
    assert coordinator.runs == 1
    assert len(fake_reclaimer.reclaimed) == 1
    assert results[0] is results[1] is results[2]
    assert not managed.running


@pytest.mark.asyncio
async def test_port_still_bound_is_a_warning(supervisor, caplog):
    reclaimer = FakeReclaimer(still_bound={3007: {4321}})
    coordinator = _coordinator(supervisor, reclaimer, ports={3007, 8007})

    outcomes = await coordinator.shutdown()

    assert {o.port: o.port_freed for o in outcomes} == {3007: False, 8007: True}
    assert "Port 3007 still in use (pids: [4321])" in caplog.text
    assert "some ports may still be in use" in caplog.text


@pytest.mark.asyncio
async def test_exited_processes_are_not_signalled(supervisor, fake_reclaimer, monkeypatch):
    managed = await supervisor.spawn(python_spec("backend", "pass", port=3007))
    await supervisor.wait(managed, 10)

    sent = []
    original = supervisor.send_signal

    def record(process, sig):
        sent.append(sig)
        return original(process, sig)

    monkeypatch.setattr(supervisor, "send_signal", record)
    await _coordinator(supervisor, fake_reclaimer).shutdown()

    assert sent == []
    assert managed.shutdown_requested


@pytest.mark.asyncio
async def test_log_streams_stopped_before_exit(supervisor, fake_reclaimer):
    managed = await _spawn_ready(supervisor, python_spec("backend", SLEEPER))
    coordinator = _coordinator(supervisor, fake_reclaimer)
    coordinator.aggregator.attach(managed)
    assert coordinator.aggregator.active == 2

    await coordinator.shutdown()

    assert coordinator.aggregator.active == 0
    assert managed.exit_signal == signal.Signals.SIGTERM.name
