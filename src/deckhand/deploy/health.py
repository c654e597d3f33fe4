"""Health gate: poll a deployed service until it reports healthy.

The gate probes at a fixed interval and stops at the first healthy probe.
If none is seen, it raises :class:`HealthTimeout` no earlier than the
timeout and no later than one probe after it. Unhealthy and unreachable
probes gate the same way; the distinction is kept for diagnostics.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import httpx

from deckhand.lib.errors import HealthTimeout
from deckhand.models.health import HealthCheckResult, HealthOutcome, HealthReport

logger = logging.getLogger(__name__)


def health_url(public_url: str, path: str) -> str:
    """Join a service base URL and a health path."""
    return f"{public_url.rstrip('/')}/{path.lstrip('/')}"


class HealthGate:
    """Readiness poller that gates traffic cutover.

    Args:
        client: HTTP client used for probes (a private one is created if omitted)
        probe_timeout: Upper bound on a single probe, in seconds
        clock: Monotonic clock (injectable for tests)
        sleep: Sleep function (injectable for tests)

    Example:
        >>> gate = HealthGate(probe_timeout=2.0)
        >>> report = gate.wait_healthy(
        ...     "https://app.example.com/health", timeout=60, interval=2
        ... )
        >>> report.count(HealthOutcome.HEALTHY)
        1
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        probe_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client or httpx.Client(follow_redirects=True)
        self._probe_timeout = probe_timeout
        self._clock = clock
        self._sleep = sleep

    def probe(self, target: str) -> HealthCheckResult:
        """Run a single bounded-latency probe against ``target``."""
        started = self._clock()
        try:
            response = self._client.get(target, timeout=self._probe_timeout)
        except httpx.TransportError as exc:
            return HealthCheckResult(
                outcome=HealthOutcome.UNREACHABLE,
                latency_ms=(self._clock() - started) * 1000,
                detail=f"{type(exc).__name__}: {exc}",
            )

        latency_ms = (self._clock() - started) * 1000
        if response.is_success:
            return HealthCheckResult(
                outcome=HealthOutcome.HEALTHY,
                latency_ms=latency_ms,
                status_code=response.status_code,
            )
        return HealthCheckResult(
            outcome=HealthOutcome.UNHEALTHY,
            latency_ms=latency_ms,
            status_code=response.status_code,
            detail=response.reason_phrase or None,
        )

    def wait_healthy(
        self, target: str, timeout: float, interval: float
    ) -> HealthReport:
        """Poll ``target`` until healthy or until ``timeout`` elapses.

        Args:
            target: Health URL to probe
            timeout: Seconds to wait for a healthy probe
            interval: Seconds between probes

        Returns:
            HealthReport with every probe made

        Raises:
            ValueError: If timeout or interval is not positive
            HealthTimeout: If no healthy probe was observed in time
        """
        if timeout <= 0 or interval <= 0:
            raise ValueError("timeout and interval must be positive")

        results: list[HealthCheckResult] = []
        started = self._clock()

        while True:
            result = self.probe(target)
            results.append(result)
            elapsed = self._clock() - started

            if result.outcome == HealthOutcome.HEALTHY:
                logger.info(
                    f"{target} healthy after {len(results)} probes ({elapsed:.1f}s)"
                )
                return HealthReport(target=target, results=results, elapsed=elapsed)

            logger.debug(
                f"Probe {len(results)} of {target}: {result.outcome.value}"
                f"{f' ({result.detail})' if result.detail else ''}"
            )

            remaining = timeout - elapsed
            if remaining <= 0:
                logger.warning(
                    f"{target} not healthy after {elapsed:.1f}s: "
                    f"{sum(r.outcome == HealthOutcome.UNHEALTHY for r in results)} "
                    f"unhealthy, "
                    f"{sum(r.outcome == HealthOutcome.UNREACHABLE for r in results)} "
                    f"unreachable"
                )
                raise HealthTimeout(target, timeout, results)

            self._sleep(min(interval, remaining))

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()
