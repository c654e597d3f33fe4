"""deckhand release engine.

This package builds images, moves them through the registry onto target
hosts, applies migrations, gates on health, and rolls back on failure.
"""

from deckhand.deploy.builder import (
    BuildResult,
    ContainerBuilder,
    generate_tag,
    get_oci_labels,
)
from deckhand.deploy.health import HealthGate
from deckhand.deploy.migrations import Migration, MigrationRunner, load_migrations
from deckhand.deploy.orchestrator import CancellationToken, DeploymentOrchestrator
from deckhand.deploy.pipeline import generate_pipeline
from deckhand.deploy.state import StateStore
from deckhand.deploy.transport import ReleaseTransport, RetryConfig

__all__ = [
    "BuildResult",
    "CancellationToken",
    "ContainerBuilder",
    "DeploymentOrchestrator",
    "HealthGate",
    "Migration",
    "MigrationRunner",
    "ReleaseTransport",
    "RetryConfig",
    "StateStore",
    "generate_pipeline",
    "generate_tag",
    "get_oci_labels",
    "load_migrations",
]
