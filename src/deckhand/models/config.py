"""Pydantic models for deckhand project configuration.

This module defines the schema of ``deckhand.yaml``: registry, build,
transport, health gate, migrations, and the deployment environments.
"""

import re
from enum import Enum
from typing import Annotated

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class TagStrategy(str, Enum):
    """Strategy for generating container image tags."""

    GIT_SHA = "git_sha"
    GIT_TAG = "git_tag"
    LATEST = "latest"
    CUSTOM = "custom"


class MigrationExecutorType(str, Enum):
    """Where migration scripts are executed."""

    SQLITE = "sqlite"
    COMMAND = "command"


# Regex patterns for validation
REPOSITORY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._/-]*[a-z0-9]$|^[a-z0-9]$")
DOCKER_URL_PATTERN = re.compile(r"^(ssh|tcp|unix|npipe)://.+$")
ENVIRONMENT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
SECRET_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")


class RegistryConfig(BaseModel):
    """Container registry configuration.

    Attributes:
        url: Registry URL (e.g., ghcr.io, docker.io)
        repository: Repository name (e.g., org/webapp)
        tag_strategy: Strategy for generating image tags
        custom_tag: Custom tag when tag_strategy is CUSTOM
        credentials_env_prefix: Prefix of the USERNAME/PASSWORD secrets
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(..., description="Registry URL (e.g., ghcr.io)")
    repository: str = Field(..., description="Repository name (e.g., org/webapp)")
    tag_strategy: TagStrategy = Field(
        default=TagStrategy.GIT_SHA, description="Strategy for generating image tags"
    )
    custom_tag: str | None = Field(
        default=None, description="Custom tag when tag_strategy is CUSTOM"
    )
    credentials_env_prefix: str | None = Field(
        default=None, description="Prefix for registry credential secrets"
    )

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        """Validate repository name pattern."""
        if not REPOSITORY_PATTERN.match(v):
            raise ValueError(
                f"Invalid repository name: {v}. "
                "Must contain only lowercase letters, numbers, '.', '_', '/', '-'"
            )
        return v

    @model_validator(mode="after")
    def validate_custom_tag(self) -> "RegistryConfig":
        """Validate that custom_tag is provided when tag_strategy is CUSTOM."""
        if self.tag_strategy == TagStrategy.CUSTOM and not self.custom_tag:
            raise ValueError("custom_tag is required when tag_strategy is 'custom'")
        return self

    @property
    def image_name(self) -> str:
        """Fully qualified image name without tag."""
        return f"{self.url.rstrip('/')}/{self.repository}"


class BuildConfig(BaseModel):
    """Artifact build settings."""

    model_config = ConfigDict(extra="forbid")

    context: str = Field(default=".", description="Build context directory")
    dockerfile: str = Field(
        default="Dockerfile", description="Dockerfile path relative to context"
    )
    platform: str = Field(
        default="linux/amd64",
        description="Target platform for the image (e.g., linux/amd64)",
    )
    timeout: float = Field(default=900.0, gt=0, description="Build timeout (seconds)")
    build_args: dict[str, str] = Field(
        default_factory=dict, description="Docker build arguments"
    )


class TransportConfig(BaseModel):
    """Registry push/pull settings and retry bounds."""

    model_config = ConfigDict(extra="forbid")

    timeout: float = Field(
        default=600.0, gt=0, description="Timeout for push plus pull (seconds)"
    )
    max_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts for transient failures"
    )
    base_delay: float = Field(default=1.0, ge=0, description="First retry delay")
    exponential_base: float = Field(default=2.0, ge=1.0, description="Backoff factor")
    max_delay: float = Field(default=10.0, ge=0, description="Retry delay cap")


class HealthConfig(BaseModel):
    """Health gate settings."""

    model_config = ConfigDict(extra="forbid")

    path: str = Field(default="/health", description="HTTP path probed by the gate")
    timeout: float = Field(default=60.0, gt=0, description="Gate timeout (seconds)")
    interval: float = Field(default=2.0, gt=0, description="Poll interval (seconds)")
    probe_timeout: float = Field(
        default=5.0, gt=0, description="Timeout of a single probe (seconds)"
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Health path must be absolute."""
        if not v.startswith("/"):
            raise ValueError(f"Health check path must start with '/': {v}")
        return v

    @model_validator(mode="after")
    def validate_probe_timeout(self) -> "HealthConfig":
        """A single probe may not outlast the whole gate."""
        if self.probe_timeout > self.timeout:
            raise ValueError(
                f"probe_timeout ({self.probe_timeout}) must be <= "
                f"timeout ({self.timeout})"
            )
        return self


class MigrationsConfig(BaseModel):
    """Migration scripts and how to execute them.

    Attributes:
        directory: Directory of ``*.sql`` scripts, applied in file-name order
        executor: ``sqlite`` runs against a database file, ``command`` runs a
            command inside the service container
        database: SQLite database path (sqlite executor)
        command: Command template (command executor); ``{id}`` and ``{sql}``
            are substituted per migration
    """

    model_config = ConfigDict(extra="forbid")

    directory: str = Field(default="migrations", description="Migration directory")
    executor: MigrationExecutorType = Field(
        default=MigrationExecutorType.COMMAND, description="Migration executor"
    )
    database: str | None = Field(default=None, description="SQLite database path")
    command: list[str] = Field(
        default_factory=lambda: ["psql", "-v", "ON_ERROR_STOP=1", "-c", "{sql}"],
        description="Command template run inside the service container",
    )

    @model_validator(mode="after")
    def validate_executor(self) -> "MigrationsConfig":
        """Validate executor-specific settings."""
        if self.executor == MigrationExecutorType.SQLITE and not self.database:
            raise ValueError("database is required when executor is 'sqlite'")
        if self.executor == MigrationExecutorType.COMMAND and not self.command:
            raise ValueError("command is required when executor is 'command'")
        return self


class HostConfig(BaseModel):
    """Target virtual machine reached through its Docker engine.

    Attributes:
        docker_url: Docker engine URL (e.g., ssh://deploy@203.0.113.10)
        public_url: Base URL served by the reverse proxy (used for health checks)
    """

    model_config = ConfigDict(extra="forbid")

    docker_url: str = Field(..., description="Docker engine URL of the host")
    public_url: str = Field(..., description="Public base URL of the service")

    @field_validator("docker_url")
    @classmethod
    def validate_docker_url(cls, v: str) -> str:
        """Validate the Docker URL scheme."""
        if not DOCKER_URL_PATTERN.match(v):
            raise ValueError(
                f"Invalid docker_url: {v}. "
                "Must start with ssh://, tcp://, unix:// or npipe://"
            )
        return v

    @field_validator("public_url")
    @classmethod
    def validate_public_url(cls, v: str) -> str:
        """Validate the public URL scheme."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid public_url: {v}. Must be http(s)://")
        return v.rstrip("/")


class EnvironmentConfig(BaseModel):
    """A named deployment target.

    Attributes:
        host: Target host configuration
        service_name: Container name of the service on the host
        port: Container port published to the reverse proxy
        environment: Plain environment variables for the container
        secrets: Names of secrets resolved at deploy time (values never stored)
        health_check_path: Overrides the project-wide health path
    """

    model_config = ConfigDict(extra="forbid")

    host: HostConfig = Field(..., description="Target host")
    service_name: str = Field(..., description="Container name on the host")
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=8000, description="Container port to publish"
    )
    environment: dict[str, str] = Field(
        default_factory=dict, description="Environment variables for the container"
    )
    secrets: list[str] = Field(
        default_factory=list, description="Secret names resolved at deploy time"
    )
    health_check_path: str | None = Field(
        default=None, description="Overrides health.path for this environment"
    )

    @field_validator("secrets")
    @classmethod
    def validate_secrets(cls, v: list[str]) -> list[str]:
        """Secret names must be valid environment variable names."""
        for name in v:
            if not SECRET_NAME_PATTERN.match(name):
                raise ValueError(
                    f"Invalid secret name: {name}. "
                    "Use upper-case letters, digits and underscores."
                )
        if len(set(v)) != len(v):
            raise ValueError("Secret names must be unique")
        return v


class ProjectConfig(BaseModel):
    """Top-level ``deckhand.yaml`` model."""

    model_config = ConfigDict(extra="forbid")

    project: str = Field(..., description="Project name used for labels")
    registry: RegistryConfig = Field(..., description="Container registry")
    build: BuildConfig = Field(default_factory=BuildConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    migrations: MigrationsConfig | None = Field(
        default=None, description="Migration settings; omit to skip migrations"
    )
    state_dir: str = Field(
        default=".deckhand", description="Directory for state and build logs"
    )
    environments: dict[str, EnvironmentConfig] = Field(
        ..., description="Deployment environments keyed by name"
    )

    @field_validator("environments")
    @classmethod
    def validate_environments(
        cls, v: dict[str, EnvironmentConfig]
    ) -> dict[str, EnvironmentConfig]:
        """At least one environment with a valid name is required."""
        if not v:
            raise ValueError("At least one environment must be defined")
        for name in v:
            if not ENVIRONMENT_NAME_PATTERN.match(name):
                raise ValueError(
                    f"Invalid environment name: {name}. "
                    "Use lower-case letters, digits, '-' and '_'."
                )
        return v

    def get_environment(self, name: str) -> EnvironmentConfig:
        """Return the named environment or raise KeyError."""
        return self.environments[name]

    def health_path_for(self, name: str) -> str:
        """Health path for an environment, honouring its override."""
        env = self.environments[name]
        return env.health_check_path or self.health.path
