"""Deployer that runs the service container on a Docker host."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from docker.errors import DockerException, NotFound
from requests.exceptions import RequestException

from deckhand.config.defaults import MANAGED_LABEL, RELEASE_LABEL
from deckhand.deploy.deployers.base import BaseDeployer
from deckhand.deploy.hosts import HostClients
from deckhand.lib.errors import ActivationFailure, DeploymentError
from deckhand.models.release import DeployResult, StatusResult

if TYPE_CHECKING:
    from docker import DockerClient
    from docker.models.containers import Container

logger = logging.getLogger(__name__)


class DockerHostDeployer(BaseDeployer):
    """Swap the service container on a host to a new image.

    The container publishes its port on ``bind_address`` only; the reverse
    proxy on the same host terminates TLS and forwards to it.

    Args:
        hosts: Docker clients for target hosts
        bind_address: Host interface the container port is published on
        stop_timeout: Seconds to wait for the old container to stop
    """

    def __init__(
        self,
        hosts: HostClients,
        bind_address: str = "127.0.0.1",
        stop_timeout: int = 10,
    ) -> None:
        self._hosts = hosts
        self._bind_address = bind_address
        self._stop_timeout = stop_timeout

    def deploy(
        self,
        *,
        host: str,
        service_name: str,
        image_uri: str,
        port: int,
        env_vars: dict[str, str],
        labels: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> DeployResult:
        """Stop the current service container and start ``image_uri``."""
        container_labels = {MANAGED_LABEL: "true", **(labels or {})}
        try:
            client = self._hosts.get(host)
            old = self._find(client, service_name)
            if old is not None:
                logger.info(f"Stopping {service_name} ({old.short_id}) on {host}")
                old.stop(timeout=self._stop_timeout)
                old.remove()

            container = client.containers.run(
                image_uri,
                name=service_name,
                detach=True,
                ports={f"{port}/tcp": (self._bind_address, port)},
                environment=env_vars,
                labels=container_labels,
                restart_policy={"name": "unless-stopped"},
                **kwargs,
            )
            container.reload()
        except (DockerException, RequestException) as exc:
            raise ActivationFailure(
                f"Could not start {image_uri} as {service_name} on {host}: {exc}"
            ) from exc

        logger.info(f"Started {service_name} ({container.short_id}) from {image_uri}")
        return DeployResult(
            service_id=container.id or "",
            service_name=service_name,
            image_uri=image_uri,
            status=container.status or "unknown",
        )

    def get_status(self, host: str, service_name: str) -> StatusResult:
        """Return the status of the service container."""
        try:
            container = self._find(self._hosts.get(host), service_name)
        except (DockerException, RequestException) as exc:
            raise DeploymentError(
                operation="status",
                message=f"Failed to inspect {service_name} on {host}: {exc}",
            ) from exc

        if container is None:
            return StatusResult(status="absent")
        config = container.attrs.get("Config", {})
        container_labels = config.get("Labels") or {}
        return StatusResult(
            status=container.status or "unknown",
            image_uri=config.get("Image"),
            release_id=container_labels.get(RELEASE_LABEL),
        )

    @staticmethod
    def _find(client: DockerClient, service_name: str) -> Container | None:
        try:
            return client.containers.get(service_name)
        except NotFound:
            return None
