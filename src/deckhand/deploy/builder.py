"""Container image builder.

This module builds the application image for a source revision using the
Docker SDK and writes the build log next to the deployment state.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import BuildError, DockerException

from deckhand.config.defaults import MANAGED_LABEL, RELEASE_LABEL
from deckhand.lib.errors import BuildFailure, DeploymentError, DockerNotAvailableError
from deckhand.models.config import TagStrategy
from deckhand.models.release import ArtifactRef

if TYPE_CHECKING:
    from docker import DockerClient
    from docker.models.images import Image

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Result of a container image build operation.

    Attributes:
        image_id: The SHA256 ID of the built image
        image_name: The repository/image name
        tag: The image tag
        full_name: Full image reference (name:tag)
        log_lines: Build log output lines
    """

    image_id: str
    image_name: str
    tag: str
    full_name: str
    log_lines: list[str] = field(default_factory=list)

    @classmethod
    def from_image(
        cls,
        image: Image,
        image_name: str,
        tag: str,
        log_lines: list[str] | None = None,
    ) -> BuildResult:
        """Create BuildResult from a Docker image object."""
        return cls(
            image_id=image.id or "",
            image_name=image_name,
            tag=tag,
            full_name=f"{image_name}:{tag}",
            log_lines=log_lines or [],
        )

    def to_artifact(self) -> ArtifactRef:
        """Return the artifact reference recorded on a release."""
        return ArtifactRef(image_id=self.image_id, image_name=self.image_name, tag=self.tag)


def _git(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603  # nosec B603 B607
        ["git", *args],  # noqa: S607
        capture_output=True,
        text=True,
    )


def resolve_revision(ref: str = "HEAD") -> str:
    """Resolve a git ref to a full commit SHA.

    Raises:
        DeploymentError: If git cannot resolve the ref
    """
    result = _git("rev-parse", ref)
    if result.returncode != 0:
        raise DeploymentError(
            operation="revision",
            message=f"Cannot resolve git revision '{ref}': {result.stderr.strip()}",
        )
    return result.stdout.strip()


def generate_tag(
    strategy: TagStrategy,
    custom_tag: str | None = None,
    source_revision: str | None = None,
) -> str:
    """Generate an image tag based on the specified strategy.

    Args:
        strategy: Tag generation strategy (git_sha, git_tag, latest, custom)
        custom_tag: Custom tag value when strategy is CUSTOM
        source_revision: Revision being released; used by GIT_SHA instead of
            asking git for HEAD

    Raises:
        ValueError: If custom strategy is used without providing custom_tag
        DeploymentError: If git commands fail (not in repo, no tags, etc.)

    Example:
        >>> generate_tag(TagStrategy.GIT_SHA, source_revision="0a1b2c3d4e5f")
        '0a1b2c3'
    """
    if strategy == TagStrategy.LATEST:
        return "latest"

    if strategy == TagStrategy.CUSTOM:
        if not custom_tag:
            raise ValueError("custom_tag is required when using CUSTOM strategy")
        return custom_tag

    if strategy == TagStrategy.GIT_SHA:
        if source_revision:
            return source_revision[:7]
        result = _git("rev-parse", "HEAD")
        if result.returncode != 0:
            raise DeploymentError(
                operation="tag_generation",
                message="Failed to get git SHA: not a git repository",
            )
        return result.stdout.strip()[:7]

    if strategy == TagStrategy.GIT_TAG:
        args = ["describe", "--tags", "--abbrev=0"]
        if source_revision:
            args.append(source_revision)
        result = _git(*args)
        if result.returncode != 0:
            raise DeploymentError(
                operation="tag_generation",
                message="No git tags found. Create a tag first: git tag v1.0.0",
            )
        return result.stdout.strip()

    raise ValueError(f"Unknown tag strategy: {strategy}")


def get_oci_labels(
    project: str,
    version: str,
    source_sha: str | None = None,
    release_id: str | None = None,
) -> dict[str, str]:
    """Generate OCI-compliant container image labels.

    Example:
        >>> labels = get_oci_labels("webapp", "v1.0.0")
        >>> labels["org.opencontainers.image.title"]
        'webapp'
    """
    labels = {
        "org.opencontainers.image.title": project,
        "org.opencontainers.image.version": version,
        "org.opencontainers.image.created": datetime.now(timezone.utc).isoformat(),
        MANAGED_LABEL: "true",
    }
    if source_sha:
        labels["org.opencontainers.image.revision"] = source_sha
    if release_id:
        labels[RELEASE_LABEL] = release_id
    return labels


def _extract_log_lines(build_logs: Any) -> list[str]:
    log_lines: list[str] = []
    for log_entry in build_logs:
        # Docker SDK yields dict entries with either "stream" or "error"
        if not isinstance(log_entry, dict):
            continue
        if "stream" in log_entry:
            stream_val = log_entry["stream"]
            if isinstance(stream_val, str):
                log_lines.append(stream_val.rstrip("\n"))
        elif "error" in log_entry:
            log_lines.append(f"ERROR: {log_entry['error']}")
    return log_lines


def _write_log(log_path: Path | None, lines: list[str]) -> None:
    if log_path is None:
        return
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.warning(f"Could not write build log to {log_path}: {exc}")


class ContainerBuilder:
    """Builds application images with the Docker SDK.

    Build failures are deterministic and are surfaced immediately as
    :class:`BuildFailure`; the builder never retries.

    Example:
        >>> builder = ContainerBuilder()
        >>> result = builder.build(
        ...     build_context=".",
        ...     image_name="ghcr.io/acme/webapp",
        ...     tag="0a1b2c3",
        ... )
        >>> result.full_name
        'ghcr.io/acme/webapp:0a1b2c3'
    """

    def __init__(
        self, client: DockerClient | None = None, timeout: float | None = None
    ) -> None:
        """Initialize the container builder.

        Args:
            client: Docker client to use; connects from the environment if omitted
            timeout: Socket timeout in seconds for a client opened here

        Raises:
            DockerNotAvailableError: If the Docker daemon is not available
        """
        if client is not None:
            self.client = client
            return
        kwargs: dict[str, Any] = {} if timeout is None else {"timeout": timeout}
        try:
            self.client = docker.from_env(**kwargs)  # type: ignore[attr-defined]
        except DockerException as e:
            raise DockerNotAvailableError(operation="build") from e

    def build(
        self,
        build_context: str,
        image_name: str,
        tag: str,
        labels: dict[str, str] | None = None,
        dockerfile: str = "Dockerfile",
        platform: str = "linux/amd64",
        log_path: Path | None = None,
        **build_kwargs: Any,
    ) -> BuildResult:
        """Build a container image from the specified context.

        Args:
            build_context: Path to the build context directory
            image_name: Repository/image name for the built image
            tag: Tag for the built image
            labels: Optional OCI labels to apply
            dockerfile: Path to Dockerfile relative to context
            platform: Target platform for the image
            log_path: File to write the build log to
            **build_kwargs: Additional arguments passed to Docker build

        Returns:
            BuildResult with image details and build logs

        Raises:
            BuildFailure: If the context is missing or the build fails
        """
        context_path = Path(build_context)
        if not context_path.exists():
            raise BuildFailure(f"Build context not found: {build_context}")
        if not (context_path / dockerfile).exists():
            raise BuildFailure(f"Dockerfile not found: {context_path / dockerfile}")

        full_tag = f"{image_name}:{tag}"
        logger.info(f"Building {full_tag} from {context_path}")

        try:
            image, build_logs = self.client.images.build(
                path=str(context_path),
                tag=full_tag,
                dockerfile=dockerfile,
                labels=labels or {},
                rm=True,
                platform=platform,
                pull=True,
                **build_kwargs,
            )
        except BuildError as e:
            lines = _extract_log_lines(e.build_log)
            _write_log(log_path, lines)
            raise BuildFailure(f"Docker build failed: {e.msg}") from e
        except DockerException as e:
            raise BuildFailure(f"Docker error during build: {e}") from e

        log_lines = _extract_log_lines(build_logs)
        _write_log(log_path, log_lines)

        result = BuildResult.from_image(
            image=image, image_name=image_name, tag=tag, log_lines=log_lines
        )
        logger.info(f"Built {result.full_name} ({result.image_id[:19]})")
        return result

    def close(self) -> None:
        """Close the Docker client."""
        self.client.close()
