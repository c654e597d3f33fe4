"""Deployers that start released images on target hosts."""

from deckhand.deploy.deployers.base import BaseDeployer
from deckhand.deploy.deployers.docker_host import DockerHostDeployer

__all__ = ["BaseDeployer", "DockerHostDeployer"]
