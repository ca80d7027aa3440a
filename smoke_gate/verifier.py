"""Smoke verifier: bounded-retry checks against a running instance."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from smoke_gate.config import VerifierConfig
from smoke_gate.models.result import PollResult
from smoke_gate.models.summary import SmokeSummary

log = logging.getLogger(__name__)


class ProbeResponseError(Exception):
    """Raised when a probe answers with an unexpected status or body."""


TRANSPORT_ERRORS = (aiohttp.ClientError, TimeoutError)
RETRYABLE_ERRORS = (*TRANSPORT_ERRORS, ProbeResponseError)


def describe_error(error: BaseException) -> str:
    """Return a short message for an error, falling back to its type name."""
    return str(error) or type(error).__name__


async def poll_until[T](
    attempt: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    interval: float,
) -> PollResult[T]:
    """Repeat an attempt until it succeeds or the deadline elapses.

    Transport and structural faults raised by the attempt are swallowed and
    remembered; any other exception propagates. Each attempt is bounded by the
    remaining budget, so the call returns within ``timeout`` plus one
    ``interval``.

    Args:
        attempt: Coroutine factory returning a value on success
        timeout: Maximum wait time in seconds
        interval: Seconds to sleep between attempts

    Returns:
        Poll result with the successful value, or the last observed error

    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + timeout
    attempts = 0
    last_error: str | None = None

    while loop.time() < deadline:
        attempts += 1
        try:
            async with asyncio.timeout_at(deadline):
                value = await attempt()
        except RETRYABLE_ERRORS as e:
            last_error = describe_error(e)
            log.debug("Attempt %d failed: %s", attempts, last_error)
        else:
            return PollResult(
                ok=True,
                value=value,
                attempts=attempts,
                elapsed=loop.time() - started,
            )

        await asyncio.sleep(interval)

    return PollResult(
        ok=False,
        error=last_error or "timeout",
        attempts=attempts,
        elapsed=loop.time() - started,
    )


async def fetch_json(session: aiohttp.ClientSession, url: str) -> tuple[int, Any]:
    """GET a URL and decode its JSON body regardless of content type."""
    async with session.get(url) as response:
        try:
            data = await response.json(content_type=None)
        except ValueError as e:
            raise ProbeResponseError(f"Invalid JSON from {url}: {e}") from e
        return response.status, data


async def fetch_text(session: aiohttp.ClientSession, url: str) -> tuple[int, str]:
    """GET a URL and return its status and text body.

    Undecodable bytes are replaced so a mis-encoded page still yields text.
    """
    async with session.get(url) as response:
        return response.status, await response.text(errors="replace")


async def check_ok(session: aiohttp.ClientSession, url: str) -> Mapping[str, Any]:
    """Fetch a probe endpoint and require status 200 with ``ok: true``.

    Raises:
        ProbeResponseError: If the probe is reachable but not passing

    """
    status, data = await fetch_json(session, url)
    if status != 200 or not isinstance(data, dict) or data.get("ok") is not True:
        raise ProbeResponseError(f"status={status}")
    return data


@dataclass(frozen=True, kw_only=True)
class SmokeVerifier:
    """Runs the liveness, readiness and home page checks in sequence."""

    config: VerifierConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: VerifierConfig
    ) -> AsyncGenerator["SmokeVerifier", None]:
        """Create verifier with managed session lifecycle."""
        timeout = aiohttp.ClientTimeout(total=config.request_timeout_ms / 1000)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            yield cls(config=config, session=session)

    def url(self, path: str) -> str:
        return self.config.base.rstrip("/") + path

    async def poll_endpoint(
        self,
        path: str,
        *,
        timeout_ms: int | None = None,
        interval_ms: int | None = None,
    ) -> PollResult[Mapping[str, Any]]:
        """Poll a probe endpoint until it reports ``ok`` or the deadline elapses."""
        url = self.url(path)
        timeout_ms = timeout_ms or self.config.timeout_ms
        interval_ms = interval_ms or self.config.interval_ms
        log.info("Polling %s (timeout=%dms, interval=%dms)", url, timeout_ms, interval_ms)

        result = await poll_until(
            lambda: check_ok(self.session, url),
            timeout=timeout_ms / 1000,
            interval=interval_ms / 1000,
        )
        if result.ok:
            log.info("%s passed after %d attempt(s)", url, result.attempts)
        else:
            log.warning("%s did not pass: %s", url, result.error)
        return result

    async def check_home(self) -> str | None:
        """Fetch the home page once; return a failure label or None."""
        url = self.url(self.config.home_path)
        try:
            status, body = await fetch_text(self.session, url)
        except TRANSPORT_ERRORS as e:
            return f"home ({describe_error(e)})"

        lowered = body.lower()
        if status != 200 or not any(
            marker.lower() in lowered for marker in self.config.home_markers
        ):
            log.warning("Home page check failed: status=%s", status)
            return "home"
        return None

    async def verify(self) -> SmokeSummary:
        """Run every check and aggregate the failures.

        Liveness is fully resolved before readiness polling begins; the home
        page is fetched once regardless of the earlier outcomes.
        """
        failures: list[str] = []

        health = await self.poll_endpoint(self.config.health_path)
        if not health.ok:
            failures.append(f"health ({health.error})")

        ready = await self.poll_endpoint(self.config.ready_path)
        if not ready.ok:
            failures.append(f"ready ({ready.error})")

        if (home_failure := await self.check_home()) is not None:
            failures.append(home_failure)

        return SmokeSummary(
            base=self.config.base,
            timeout_ms=self.config.timeout_ms,
            interval_ms=self.config.interval_ms,
            failures=failures,
        )
