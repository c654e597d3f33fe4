"""Base interface for host deployers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from deckhand.models.release import DeployResult, StatusResult


class BaseDeployer(ABC):
    """Starts a pulled image as the service on a target host."""

    @abstractmethod
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
        """Replace the running service with a container of ``image_uri``.

        Args:
            host: Docker URL of the target host.
            service_name: Container name of the service.
            image_uri: Image reference already present on the host.
            port: Container port published for the reverse proxy.
            env_vars: Environment (including resolved secrets); never persisted.
            labels: Container labels.
            **kwargs: Deployer-specific options.

        Raises:
            ActivationFailure: If the container cannot be started.
        """

    @abstractmethod
    def get_status(self, host: str, service_name: str) -> StatusResult:
        """Return the status of the service container.

        Raises:
            DeploymentError: If the status cannot be read.
        """
