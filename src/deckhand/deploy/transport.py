"""Release transport: push images to the registry and pull them onto hosts.

Transient failures (dropped connections, timeouts, registry 5xx) are retried
with bounded exponential backoff. Permanent failures (authentication,
missing repository or manifest) fail on the first attempt.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import RequestException

from deckhand.deploy.hosts import HostClients
from deckhand.lib.errors import TransportFailure
from deckhand.models.release import ArtifactRef, RegistryRef

if TYPE_CHECKING:
    from docker import DockerClient

    from deckhand.models.config import TransportConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Registry error texts that retrying cannot fix
PERMANENT_MARKERS = (
    "unauthorized",
    "authentication required",
    "denied",
    "forbidden",
    "not found",
    "manifest unknown",
    "name unknown",
    "repository does not exist",
)

PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404, 405})


@dataclass
class RetryConfig:
    """Configuration for exponential backoff retry logic.

    Attributes:
        max_attempts: Total attempts including the first (default: 3).
        base_delay: Delay in seconds before the first retry (default: 1.0).
        exponential_base: Multiplier for exponential backoff (default: 2.0).
        max_delay: Maximum delay cap in seconds (default: 10.0).

    Example:
        With defaults, delays between attempts are 1s then 2s.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    exponential_base: float = 2.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config: TransportConfig) -> RetryConfig:
        """Build from the transport section of the project file."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            exponential_base=config.exponential_base,
            max_delay=config.max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-indexed)."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        return min(delay, self.max_delay)


class RegistryStreamError(Exception):
    """An error entry reported inside a push/pull progress stream."""


_TRANSPORT_ERRORS = (DockerException, RequestException, RegistryStreamError, OSError)


def is_transient(error: BaseException) -> bool:
    """Classify a transport error as transient (retryable) or permanent."""
    if isinstance(error, NotFound):
        return False
    if isinstance(error, APIError):
        status = error.status_code
        if status is None:
            return not _has_permanent_marker(str(error))
        if status in PERMANENT_STATUS_CODES:
            return False
        return status >= 500 or status == 429
    if isinstance(error, RegistryStreamError):
        return not _has_permanent_marker(str(error))
    # Connection resets, timeouts and engine connection errors
    return isinstance(error, (RequestException, DockerException, OSError))


def _has_permanent_marker(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in PERMANENT_MARKERS)


def _consume_stream(stream: Any) -> dict[str, Any]:
    """Drain a decoded progress stream, returning the last ``aux`` payload."""
    aux: dict[str, Any] = {}
    for entry in stream:
        if not isinstance(entry, dict):
            continue
        if "error" in entry:
            detail = entry.get("errorDetail") or {}
            raise RegistryStreamError(detail.get("message") or entry["error"])
        if isinstance(entry.get("aux"), dict):
            aux = entry["aux"]
    return aux


class ReleaseTransport:
    """Moves built artifacts through the registry onto target hosts.

    Args:
        hosts: Docker clients for target hosts
        local_client: Docker client that holds freshly built images
        retry: Retry bounds for transient failures
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        hosts: HostClients,
        local_client: DockerClient,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._hosts = hosts
        self._local = local_client
        self._retry = retry or RetryConfig()
        self._sleep = sleep

    def push(
        self, artifact: ArtifactRef, auth_config: dict[str, str] | None = None
    ) -> RegistryRef:
        """Push a built image and return its registry reference.

        Raises:
            TransportFailure: On a permanent error or once retries are exhausted
        """

        def _push() -> RegistryRef:
            stream = self._local.images.push(
                artifact.image_name,
                tag=artifact.tag,
                auth_config=auth_config,
                stream=True,
                decode=True,
            )
            aux = _consume_stream(stream)
            return RegistryRef(
                repository=artifact.image_name,
                tag=artifact.tag,
                digest=aux.get("Digest"),
            )

        ref = self._with_retry("push", artifact.full_name, _push)
        logger.info(f"Pushed {ref.reference}")
        return ref

    def pull(
        self,
        registry_ref: RegistryRef,
        host: str,
        auth_config: dict[str, str] | None = None,
    ) -> None:
        """Pull ``registry_ref`` onto the host reached at ``host``.

        Raises:
            TransportFailure: On a permanent error or once retries are exhausted
        """

        def _pull() -> None:
            client = self._hosts.get(host)
            client.images.pull(
                registry_ref.repository,
                tag=registry_ref.digest or registry_ref.tag,
                auth_config=auth_config,
            )

        self._with_retry("pull", f"{registry_ref.reference} -> {host}", _pull)
        logger.info(f"Pulled {registry_ref.reference} onto {host}")

    def _with_retry(self, operation: str, subject: str, fn: Callable[[], T]) -> T:
        max_attempts = self._retry.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return fn()
            except _TRANSPORT_ERRORS as exc:
                if not is_transient(exc):
                    logger.error(f"{operation} of {subject} failed permanently: {exc}")
                    raise TransportFailure(
                        operation,
                        f"{subject}: {exc}",
                        transient=False,
                        attempts=attempt,
                    ) from exc
                if attempt == max_attempts:
                    raise TransportFailure(
                        operation,
                        f"{subject}: giving up after {attempt} attempts: {exc}",
                        transient=True,
                        attempts=attempt,
                    ) from exc
                delay = self._retry.delay_for(attempt)
                logger.warning(
                    f"{operation} of {subject} failed (attempt {attempt}/"
                    f"{max_attempts}), retrying in {delay:.2f}s: {exc}"
                )
                self._sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover
