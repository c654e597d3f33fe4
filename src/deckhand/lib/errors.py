"""Custom exception hierarchy for deckhand configuration and release operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deckhand.models.health import HealthCheckResult


class DeckhandError(Exception):
    """Base exception for all deckhand errors.

    All deckhand-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI.
    """

    pass


class ConfigError(DeckhandError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class FileNotFoundError(DeckhandError):
    """Exception raised when a configuration file is not found.

    Attributes:
        path: Path to the file that was not found
        message: Human-readable error message
    """

    def __init__(self, path: str, message: str) -> None:
        """Initialize FileNotFoundError with path and message.

        Args:
            path: Path to the file that was not found
            message: Descriptive error message, optionally with suggestions
        """
        self.path = path
        self.message = message
        super().__init__(f"File not found: {path}\n{message}")


class DeploymentError(DeckhandError):
    """Exception raised when a release operation fails.

    Attributes:
        operation: The operation that failed (build, push, migrate, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for a specific operation."""
        self.operation = operation
        self.message = message
        super().__init__(f"Deployment {operation} failed: {message}")


class DockerNotAvailableError(DeploymentError):
    """Exception raised when a Docker engine cannot be reached."""

    def __init__(self, operation: str, endpoint: str | None = None) -> None:
        """Create an error for an unreachable Docker engine.

        Args:
            operation: Operation that required Docker
            endpoint: Docker URL that was tried, if not the local default
        """
        target = endpoint or "the local Docker daemon"
        super().__init__(
            operation=operation,
            message=(
                f"Cannot connect to {target}. "
                "Ensure Docker is running and DOCKER_HOST is correct."
            ),
        )
        self.endpoint = endpoint


class BuildFailure(DeploymentError):
    """Raised when the artifact build fails. Build failures are never retried."""

    def __init__(self, message: str) -> None:
        """Create a build failure."""
        super().__init__(operation="build", message=message)


class TransportFailure(DeploymentError):
    """Raised when pushing or pulling an artifact fails.

    Attributes:
        transient: True for network-level failures that were retried
        attempts: Number of attempts made before giving up
    """

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        transient: bool,
        attempts: int = 1,
    ) -> None:
        """Create a transport failure.

        Args:
            operation: "push" or "pull"
            message: Description of the failure
            transient: Whether the failure was classified as transient
            attempts: How many attempts were made
        """
        super().__init__(operation=operation, message=message)
        self.transient = transient
        self.attempts = attempts


class ActivationFailure(DeploymentError):
    """Raised when the pulled image cannot be started on the target host."""

    def __init__(self, message: str) -> None:
        """Create an activation failure."""
        super().__init__(operation="activate", message=message)


class SecretResolutionError(DeploymentError):
    """Raised when a named secret cannot be resolved at deploy time."""

    def __init__(self, names: list[str]) -> None:
        """Create an error listing the unresolved secret names."""
        self.names = names
        super().__init__(
            operation="secrets",
            message=f"Unresolved secrets: {', '.join(sorted(names))}",
        )


class MigrationFailure(DeploymentError):
    """Raised when a schema migration fails to apply.

    Attributes:
        migration_id: Identifier of the failing migration
        applied_count: Migrations applied in this run before the failure
    """

    def __init__(
        self, migration_id: str, message: str, applied_count: int = 0
    ) -> None:
        """Create a migration failure."""
        super().__init__(
            operation="migrate",
            message=f"Migration '{migration_id}' failed: {message}",
        )
        self.migration_id = migration_id
        self.applied_count = applied_count


class DeploymentAlert:
    """Mixin marking a failure that requires operator intervention."""

    release_id: str | None = None


class MigrationChecksumConflict(DeploymentAlert, MigrationFailure):
    """Raised when an applied migration id is requested with different content."""

    def __init__(
        self, migration_id: str, stored_checksum: str, requested_checksum: str
    ) -> None:
        """Create a checksum conflict error.

        Args:
            migration_id: The reused migration identifier
            stored_checksum: Checksum recorded when it was first applied
            requested_checksum: Checksum of the migration now requested
        """
        super().__init__(
            migration_id,
            (
                f"already applied with checksum {stored_checksum}, "
                f"but requested content has checksum {requested_checksum}"
            ),
        )
        self.stored_checksum = stored_checksum
        self.requested_checksum = requested_checksum


class HealthTimeout(DeploymentError):
    """Raised when no healthy probe is observed before the gate timeout.

    Attributes:
        target: URL that was probed
        results: Every probe result recorded during the wait
    """

    def __init__(
        self, target: str, timeout: float, results: list[HealthCheckResult]
    ) -> None:
        """Create a health timeout carrying the recorded probe results."""
        self.target = target
        self.timeout = timeout
        self.results = results
        last = results[-1].outcome.value if results else "no probes"
        super().__init__(
            operation="health",
            message=(
                f"{target} not healthy after {timeout:g}s "
                f"({len(results)} probes, last: {last})"
            ),
        )


class RollbackFailure(DeploymentAlert, DeploymentError):
    """Raised when restoring the previous live release fails. Terminal."""

    def __init__(self, release_id: str, previous_release_id: str, message: str) -> None:
        """Create a rollback failure.

        Args:
            release_id: The release whose failure triggered the rollback
            previous_release_id: The release that could not be restored
            message: Description of the rollback error
        """
        super().__init__(
            operation="rollback",
            message=(
                f"Rollback of {release_id} to {previous_release_id} failed: {message}"
            ),
        )
        self.release_id = release_id
        self.previous_release_id = previous_release_id


class DeploymentCancelled(DeploymentError):
    """Raised when a release transaction is cancelled by the caller."""

    def __init__(self, message: str = "Release cancelled by caller") -> None:
        """Create a cancellation error."""
        super().__init__(operation="cancel", message=message)


class InvalidTransitionError(DeckhandError):
    """Raised when a release is moved along an edge the state machine forbids."""

    def __init__(self, release_id: str, current: str, requested: str) -> None:
        """Create an invalid transition error."""
        self.release_id = release_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Release {release_id} cannot move from '{current}' to '{requested}'"
        )
