"""
Readiness probing for supervised services.

Polls a service's health URL until it answers with a 2xx status or the retry
policy is exhausted. A service that never becomes ready is reported, not
treated as fatal: it keeps running and its logs stay visible.
"""

import asyncio
import logging
import time
from typing import Iterable, Optional

import httpx

from .exceptions import ProbeFailure
from .models import ReadinessResult, RetryPolicy, ServiceSpec

logger = logging.getLogger(__name__)


class ReadinessProber:
    """Bounded HTTP health polling."""

    def __init__(self, policy: RetryPolicy = None, transport: httpx.AsyncBaseTransport = None):
        self.policy = policy or RetryPolicy()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, follow_redirects=True)

    async def _attempt(self, client: httpx.AsyncClient, url: str, timeout: float) -> bool:
        try:
            response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout=timeout)
            return response.is_success
        except (httpx.HTTPError, asyncio.TimeoutError, OSError):
            return False

    async def poll(self, url: str, policy: RetryPolicy = None) -> tuple[bool, int]:
        """Poll url under policy. Returns (ready, attempts used)."""
        policy = policy or self.policy
        delays = policy.delays()
        attempts = 0
        async with self._client() as client:
            while True:
                attempts += 1
                if await self._attempt(client, url, policy.attempt_timeout):
                    return True, attempts
                delay: Optional[float] = next(delays, None)
                if delay is None:
                    return False, attempts
                await asyncio.sleep(delay)

    async def await_ready(
        self, url: str, max_attempts: int, attempt_timeout: float, interval: float
    ) -> bool:
        """Return True once url answers with a success status, False after max_attempts."""
        policy = RetryPolicy(
            max_attempts=max_attempts, attempt_timeout=attempt_timeout, interval=interval
        )
        ready, _ = await self.poll(url, policy)
        return ready

    async def probe(self, spec: ServiceSpec) -> ReadinessResult:
        """Probe one service's health URL and log the outcome."""
        if not spec.health_url:
            return ReadinessResult(service=spec.name, ready=True, attempts=0)

        started = time.monotonic()
        ready, attempts = await self.poll(spec.health_url)
        elapsed = time.monotonic() - started

        if ready:
            logger.debug(f"{spec.name} ready after {attempts} attempts ({elapsed:.2f}s)")
        else:
            logger.warning(str(ProbeFailure(spec.name, spec.health_url, attempts)))
        return ReadinessResult(service=spec.name, ready=ready, attempts=attempts, elapsed=elapsed)

    async def probe_all(self, specs: Iterable[ServiceSpec]) -> list[ReadinessResult]:
        """Probe several services concurrently and wait for all of them."""
        return list(await asyncio.gather(*(self.probe(spec) for spec in specs)))
