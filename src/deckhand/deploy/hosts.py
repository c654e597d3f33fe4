"""Docker clients for target hosts, cached per engine URL."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING, Any

import docker

if TYPE_CHECKING:
    from docker import DockerClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], "DockerClient"]


def default_client_factory(
    docker_url: str, timeout: float | None = None
) -> DockerClient:
    """Open a Docker client for ``docker_url`` (ssh://, tcp://, unix://).

    ``timeout`` bounds each API call on the socket; the SDK default applies
    when omitted.
    """
    kwargs: dict[str, Any] = {} if timeout is None else {"timeout": timeout}
    return docker.DockerClient(
        base_url=docker_url,
        use_ssh_client=docker_url.startswith("ssh://"),
        **kwargs,
    )


class HostClients:
    """Lazily opened Docker clients shared by transport, activation and migrations.

    Construction errors are not cached, so a host that was briefly unreachable
    is retried on the next call.
    """

    def __init__(
        self, factory: ClientFactory | None = None, timeout: float | None = None
    ) -> None:
        self._factory = factory or partial(default_client_factory, timeout=timeout)
        self._clients: dict[str, DockerClient] = {}
        self._lock = threading.Lock()

    def get(self, docker_url: str) -> DockerClient:
        """Return the client for ``docker_url``, connecting on first use."""
        with self._lock:
            client = self._clients.get(docker_url)
            if client is None:
                logger.debug(f"Connecting to Docker engine at {docker_url}")
                client = self._factory(docker_url)
                self._clients[docker_url] = client
            return client

    def close(self) -> None:
        """Close every open client."""
        with self._lock:
            for url, client in self._clients.items():
                try:
                    client.close()
                except Exception as exc:  # noqa: BLE001
                    logger.debug(f"Error closing Docker client for {url}: {exc}")
            self._clients.clear()
