"""Release and environment state models.

A :class:`Release` is one attempt to deploy a specific artifact to an
environment. Its status moves along a fixed state machine; every move is
timestamped in ``transitions``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID

from deckhand.lib.errors import InvalidTransitionError


class ReleaseStatus(str, Enum):
    """Lifecycle states of a release."""

    PENDING = "pending"
    BUILDING = "building"
    TRANSPORTING = "transporting"
    MIGRATING = "migrating"
    HEALTH_CHECKING = "health-checking"
    LIVE = "live"
    ROLLED_BACK = "rolled-back"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """True for states a release never leaves on its own."""
        return self in (ReleaseStatus.LIVE, ReleaseStatus.ROLLED_BACK)


_FORWARD_PATH = [
    ReleaseStatus.PENDING,
    ReleaseStatus.BUILDING,
    ReleaseStatus.TRANSPORTING,
    ReleaseStatus.MIGRATING,
    ReleaseStatus.HEALTH_CHECKING,
    ReleaseStatus.LIVE,
]

ALLOWED_TRANSITIONS: dict[ReleaseStatus, set[ReleaseStatus]] = {
    current: {following, ReleaseStatus.FAILED}
    for current, following in zip(_FORWARD_PATH, _FORWARD_PATH[1:], strict=False)
}
ALLOWED_TRANSITIONS[ReleaseStatus.FAILED] = {ReleaseStatus.ROLLED_BACK}
ALLOWED_TRANSITIONS[ReleaseStatus.LIVE] = set()
ALLOWED_TRANSITIONS[ReleaseStatus.ROLLED_BACK] = set()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_release_id() -> str:
    """Return a new sortable release identifier."""
    return str(ULID())


class ArtifactRef(BaseModel):
    """A locally built container image."""

    model_config = ConfigDict(extra="forbid")

    image_id: str = Field(..., description="Image ID (sha256:...)")
    image_name: str = Field(..., description="Repository/image name")
    tag: str = Field(..., description="Image tag")

    @property
    def full_name(self) -> str:
        """Image reference as name:tag."""
        return f"{self.image_name}:{self.tag}"


class RegistryRef(BaseModel):
    """An image stored in a container registry."""

    model_config = ConfigDict(extra="forbid")

    repository: str = Field(..., description="Fully qualified repository")
    tag: str = Field(..., description="Pushed tag")
    digest: str | None = Field(default=None, description="Manifest digest if known")

    @property
    def reference(self) -> str:
        """Pull reference, pinned to the digest when one was recorded."""
        if self.digest:
            return f"{self.repository}@{self.digest}"
        return f"{self.repository}:{self.tag}"


class StatusTransition(BaseModel):
    """A timestamped status change."""

    model_config = ConfigDict(extra="forbid")

    status: ReleaseStatus
    at: datetime = Field(default_factory=_utcnow)
    reason: str | None = None


class FailureInfo(BaseModel):
    """Why a release failed."""

    model_config = ConfigDict(extra="forbid")

    kind: str = Field(..., description="Exception class name, e.g. BuildFailure")
    operation: str = Field(..., description="Phase that failed")
    message: str = Field(..., description="Human-readable cause")


class Release(BaseModel):
    """One attempt to deploy an artifact to an environment."""

    model_config = ConfigDict(extra="forbid")

    release_id: str = Field(default_factory=new_release_id, frozen=True)
    environment: str = Field(..., description="Target environment name")
    source_revision: str = Field(..., description="Source revision being deployed")
    status: ReleaseStatus = Field(default=ReleaseStatus.PENDING)
    artifact: ArtifactRef | None = None
    registry_ref: RegistryRef | None = None
    transitions: list[StatusTransition] = Field(default_factory=list)
    failure: FailureInfo | None = None
    rolled_back_to: str | None = Field(
        default=None, description="Release restored after this one failed"
    )

    def model_post_init(self, __context: object) -> None:
        """Stamp the initial status."""
        if not self.transitions:
            self.transitions.append(StatusTransition(status=self.status))

    @property
    def created_at(self) -> datetime:
        """When the release was requested."""
        return self.transitions[0].at

    @property
    def updated_at(self) -> datetime:
        """Time of the latest transition."""
        return self.transitions[-1].at

    def transition(self, status: ReleaseStatus, reason: str | None = None) -> None:
        """Move to ``status``.

        Raises:
            InvalidTransitionError: If the state machine forbids the move
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                self.release_id, self.status.value, status.value
            )
        self.status = status
        self.transitions.append(StatusTransition(status=status, reason=reason))

    def entered_at(self, status: ReleaseStatus) -> datetime | None:
        """Timestamp at which the release entered ``status``."""
        for item in self.transitions:
            if item.status == status:
                return item.at
        return None


class EnvironmentState(BaseModel):
    """Mutable live/previous pointers of a deployment environment."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Environment name")
    host: str = Field(..., description="Docker URL of the target host")
    live_release_id: str | None = None
    previous_release_id: str | None = None
    secret_refs: list[str] = Field(
        default_factory=list, description="Secret names, never values"
    )


class MigrationRecord(BaseModel):
    """A migration applied to an environment."""

    model_config = ConfigDict(extra="forbid")

    environment: str
    migration_id: str
    checksum: str
    applied_at: datetime = Field(default_factory=_utcnow)


class DeploymentRequest(BaseModel):
    """A request from the CI event source to deploy a revision."""

    model_config = ConfigDict(extra="forbid")

    source_revision: str = Field(..., min_length=1)
    environment: str = Field(..., min_length=1)
    tag: str | None = Field(default=None, description="Overrides the tag strategy")


class DeploymentState(BaseModel):
    """Top-level state stored on disk."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="State file version")
    releases: dict[str, Release] = Field(
        default_factory=dict, description="Release log keyed by release id"
    )
    environments: dict[str, EnvironmentState] = Field(
        default_factory=dict, description="Environment table keyed by name"
    )
    migrations: dict[str, dict[str, MigrationRecord]] = Field(
        default_factory=dict,
        description="Migration records keyed by environment, then migration id",
    )


class DeployResult(BaseModel):
    """Result of activating an image on a host.

    Attributes:
        service_id: Container ID of the running service
        service_name: Container name
        image_uri: Image reference the container runs
        status: Container status reported by the engine (e.g. "running")
    """

    model_config = ConfigDict(extra="forbid")

    service_id: str = Field(..., description="Container ID")
    service_name: str = Field(..., description="Container name")
    image_uri: str = Field(..., description="Image the container runs")
    status: str = Field(..., description="Container status")


class StatusResult(BaseModel):
    """Current state of a service container."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(..., description="Container status")
    image_uri: str | None = Field(default=None, description="Image reference")
    release_id: str | None = Field(default=None, description="Release label")
