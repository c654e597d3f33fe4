"""deckhand - release a containerized web application to a virtual machine.

deckhand turns the manual build, push, pull, migrate and health-check routine
of a single-VM deployment into one release transaction with automatic
rollback.

Main features:
- Project configuration in a single deckhand.yaml
- Docker image builds and registry push/pull with bounded retries
- Exactly-once, checksummed schema migrations per environment
- Health-gated cutover with rollback to the previous live release
- Generated CI workflow that triggers releases
"""

from deckhand.config.loader import ConfigLoader
from deckhand.lib.errors import ConfigError, DeckhandError, DeploymentError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigLoader",
    "ConfigError",
    "DeckhandError",
    "DeploymentError",
]
