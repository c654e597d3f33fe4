"""Unit tests for the artifact builder."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import pytest
from docker.errors import BuildError, DockerException

from deckhand.deploy.builder import (
    BuildResult,
    ContainerBuilder,
    generate_tag,
    get_oci_labels,
    resolve_revision,
)
from deckhand.lib.errors import BuildFailure, DeploymentError, DockerNotAvailableError
from deckhand.models.config import TagStrategy


@pytest.fixture
def mock_docker_client() -> MagicMock:
    """Create a mock Docker client."""
    return MagicMock()


@pytest.fixture
def builder(mock_docker_client: MagicMock) -> ContainerBuilder:
    """ContainerBuilder with a mocked client."""
    return ContainerBuilder(client=mock_docker_client)


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    """A build context holding a Dockerfile."""
    path = tmp_path / "app"
    path.mkdir()
    (path / "Dockerfile").write_text("FROM python:3.12-slim\n")
    return path


class TestGenerateTag:
    """Tests for tag generation based on strategy."""

    def test_git_sha_uses_source_revision(self) -> None:
        """The revision being released wins over git HEAD."""
        with patch("subprocess.run") as mock_run:
            tag = generate_tag(
                TagStrategy.GIT_SHA, source_revision="0a1b2c3d4e5f67890"
            )

        assert tag == "0a1b2c3"
        mock_run.assert_not_called()

    def test_git_sha_falls_back_to_head(self) -> None:
        """Without a revision the HEAD SHA is used."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(
                returncode=0, stdout="abc1234def5678901234567890123456789abcde\n"
            )

            tag = generate_tag(TagStrategy.GIT_SHA)

        assert tag == "abc1234"
        assert "rev-parse" in mock_run.call_args[0][0]

    def test_git_sha_not_in_repo(self) -> None:
        """Git failure raises DeploymentError."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=128, stdout="", stderr="fatal")

            with pytest.raises(DeploymentError, match="not a git repository"):
                generate_tag(TagStrategy.GIT_SHA)

    def test_git_tag_describes_revision(self) -> None:
        """GIT_TAG describes the released revision."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="v1.2.3\n")

            tag = generate_tag(TagStrategy.GIT_TAG, source_revision="abc")

        assert tag == "v1.2.3"
        args = mock_run.call_args[0][0]
        assert "describe" in args
        assert args[-1] == "abc"

    def test_git_tag_no_tags(self) -> None:
        """Missing tags raise DeploymentError."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=128, stdout="", stderr="")

            with pytest.raises(DeploymentError, match="No git tags found"):
                generate_tag(TagStrategy.GIT_TAG)

    def test_latest_and_custom(self) -> None:
        """LATEST and CUSTOM need no git."""
        assert generate_tag(TagStrategy.LATEST) == "latest"
        assert generate_tag(TagStrategy.CUSTOM, custom_tag="rc-1") == "rc-1"

    def test_custom_missing_raises(self) -> None:
        """CUSTOM without a value is rejected."""
        with pytest.raises(ValueError, match="custom_tag is required"):
            generate_tag(TagStrategy.CUSTOM)


class TestResolveRevision:
    """Tests for resolve_revision."""

    def test_resolves_head(self) -> None:
        """HEAD resolves to the full SHA."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="f" * 40 + "\n")

            assert resolve_revision() == "f" * 40

    def test_unknown_ref_raises(self) -> None:
        """Unknown refs raise DeploymentError."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(
                returncode=128, stdout="", stderr="unknown revision"
            )

            with pytest.raises(DeploymentError, match="Cannot resolve git revision"):
                resolve_revision("nope")


class TestGetOCILabels:
    """Tests for OCI label generation."""

    def test_basic_labels(self) -> None:
        """Title, version, timestamp and managed label are always set."""
        labels = get_oci_labels("webapp", "v1.0.0")

        assert labels["org.opencontainers.image.title"] == "webapp"
        assert labels["org.opencontainers.image.version"] == "v1.0.0"
        assert labels["io.deckhand.managed"] == "true"
        datetime.fromisoformat(labels["org.opencontainers.image.created"])

    def test_revision_and_release_labels(self) -> None:
        """Source SHA and release id are added when given."""
        labels = get_oci_labels("webapp", "v1", source_sha="abc", release_id="01R")

        assert labels["org.opencontainers.image.revision"] == "abc"
        assert labels["io.deckhand.release"] == "01R"


class TestContainerBuilderInit:
    """Tests for ContainerBuilder initialization."""

    def test_init_from_env(self) -> None:
        """Without a client the builder connects from the environment."""
        with patch("docker.from_env") as mock_from_env:
            mock_client = MagicMock()
            mock_from_env.return_value = mock_client

            builder = ContainerBuilder()

        assert builder.client is mock_client

    def test_init_docker_not_available(self) -> None:
        """An unreachable daemon raises DockerNotAvailableError."""
        with patch("docker.from_env") as mock_from_env:
            mock_from_env.side_effect = DockerException("Cannot connect to Docker")

            with pytest.raises(DockerNotAvailableError):
                ContainerBuilder()

    def test_init_with_timeout(self) -> None:
        """A timeout is passed to the client opened from the environment."""
        with patch("docker.from_env") as mock_from_env:
            ContainerBuilder(timeout=900.0)

        mock_from_env.assert_called_once_with(timeout=900.0)

    def test_close_closes_client(self) -> None:
        """close() closes the Docker client."""
        client = MagicMock()

        ContainerBuilder(client=client).close()

        client.close.assert_called_once()


class TestContainerBuilderBuild:
    """Tests for ContainerBuilder.build()."""

    def test_build_success_writes_log(
        self,
        builder: ContainerBuilder,
        mock_docker_client: MagicMock,
        build_dir: Path,
        tmp_path: Path,
    ) -> None:
        """A successful build returns the image and writes the log file."""
        mock_image = MagicMock()
        mock_image.id = "sha256:abc123"
        mock_docker_client.images.build.return_value = (
            mock_image,
            [{"stream": "Step 1/2 : FROM python:3.12-slim\n"}, {"aux": {}}],
        )
        log_path = tmp_path / "logs" / "r1-build.log"

        result = builder.build(
            build_context=str(build_dir),
            image_name="ghcr.io/acme/webapp",
            tag="abc1234",
            log_path=log_path,
        )

        assert result.image_id == "sha256:abc123"
        assert result.full_name == "ghcr.io/acme/webapp:abc1234"
        assert result.log_lines == ["Step 1/2 : FROM python:3.12-slim"]
        assert "Step 1/2" in log_path.read_text()
        call_kwargs = mock_docker_client.images.build.call_args[1]
        assert call_kwargs["tag"] == "ghcr.io/acme/webapp:abc1234"
        assert call_kwargs["platform"] == "linux/amd64"

    def test_build_passes_extra_kwargs(
        self, builder: ContainerBuilder, mock_docker_client: MagicMock, build_dir: Path
    ) -> None:
        """Extra keyword arguments reach the Docker SDK."""
        mock_docker_client.images.build.return_value = (MagicMock(id="sha256:1"), [])

        builder.build(
            build_context=str(build_dir),
            image_name="acme/webapp",
            tag="t",
            labels={"a": "b"},
            nocache=True,
        )

        call_kwargs = mock_docker_client.images.build.call_args[1]
        assert call_kwargs["nocache"] is True
        assert call_kwargs["labels"] == {"a": "b"}

    def test_build_error_raises_build_failure(
        self,
        builder: ContainerBuilder,
        mock_docker_client: MagicMock,
        build_dir: Path,
        tmp_path: Path,
    ) -> None:
        """A failed build raises BuildFailure and keeps the log."""
        mock_docker_client.images.build.side_effect = BuildError(
            reason="step 3 failed", build_log=[{"error": "pip install failed"}]
        )
        log_path = tmp_path / "build.log"

        with pytest.raises(BuildFailure, match="step 3 failed") as exc_info:
            builder.build(
                build_context=str(build_dir),
                image_name="acme/webapp",
                tag="t",
                log_path=log_path,
            )

        assert exc_info.value.operation == "build"
        assert "ERROR: pip install failed" in log_path.read_text()

    def test_docker_error_raises_build_failure(
        self, builder: ContainerBuilder, mock_docker_client: MagicMock, build_dir: Path
    ) -> None:
        """Engine errors during build are build failures."""
        mock_docker_client.images.build.side_effect = DockerException("daemon gone")

        with pytest.raises(BuildFailure, match="daemon gone"):
            builder.build(build_context=str(build_dir), image_name="a/b", tag="t")

    def test_missing_context(self, builder: ContainerBuilder) -> None:
        """Missing context raises BuildFailure before calling Docker."""
        with pytest.raises(BuildFailure, match="Build context not found"):
            builder.build(build_context="/nonexistent/path", image_name="a/b", tag="t")

    def test_missing_dockerfile(self, builder: ContainerBuilder, tmp_path: Path) -> None:
        """Missing Dockerfile raises BuildFailure."""
        with pytest.raises(BuildFailure, match="Dockerfile not found"):
            builder.build(build_context=str(tmp_path), image_name="a/b", tag="t")


class TestBuildResult:
    """Tests for BuildResult."""

    def test_from_image_and_artifact(self) -> None:
        """BuildResult converts to the artifact recorded on a release."""
        mock_image = MagicMock()
        mock_image.id = "sha256:xyz789"

        result = BuildResult.from_image(mock_image, "acme/webapp", "v1")
        artifact = result.to_artifact()

        assert result.full_name == "acme/webapp:v1"
        assert artifact.image_id == "sha256:xyz789"
        assert artifact.full_name == "acme/webapp:v1"
