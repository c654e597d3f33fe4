"""Pytest configuration and shared fixtures for deckhand tests."""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from deckhand.deploy.state import StateStore
from deckhand.models.config import ProjectConfig

PROJECT_YAML = """\
project: webapp
registry:
  url: ghcr.io
  repository: acme/webapp
  tag_strategy: git_sha
build:
  context: .
health:
  path: /health
  timeout: 10
  interval: 1
  probe_timeout: 1
environments:
  production:
    host:
      docker_url: ssh://deploy@203.0.113.10
      public_url: https://app.example.com
    service_name: webapp
    port: 8000
    environment:
      LOG_LEVEL: info
    secrets:
      - DATABASE_URL
  staging:
    host:
      docker_url: ssh://deploy@203.0.113.20
      public_url: https://staging.example.com/
    service_name: webapp-staging
"""


def make_project_config(state_dir: Path, **overrides: Any) -> ProjectConfig:
    """Build a two-environment project configuration for tests."""
    data: dict[str, Any] = {
        "project": "webapp",
        "registry": {"url": "ghcr.io", "repository": "acme/webapp"},
        "health": {"timeout": 10, "interval": 1, "probe_timeout": 1},
        "state_dir": str(state_dir),
        "environments": {
            "production": {
                "host": {
                    "docker_url": "ssh://deploy@203.0.113.10",
                    "public_url": "https://app.example.com",
                },
                "service_name": "webapp",
                "secrets": ["DATABASE_URL"],
            },
            "staging": {
                "host": {
                    "docker_url": "ssh://deploy@203.0.113.20",
                    "public_url": "https://staging.example.com",
                },
                "service_name": "webapp-staging",
            },
        },
    }
    data.update(overrides)
    return ProjectConfig.model_validate(data)


@pytest.fixture
def make_config() -> Callable[..., ProjectConfig]:
    """Factory for project configurations with overrides."""
    return make_project_config


@pytest.fixture
def project_config(tmp_path: Path) -> ProjectConfig:
    """Validated project configuration with state under tmp_path."""
    return make_project_config(tmp_path / ".deckhand")


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    """State store backed by a file in tmp_path."""
    return StateStore.for_directory(tmp_path / ".deckhand")


@pytest.fixture
def project_file(tmp_path: Path) -> Path:
    """A deckhand.yaml on disk."""
    path = tmp_path / "deckhand.yaml"
    path.write_text(PROJECT_YAML, encoding="utf-8")
    return path


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Yields:
        Dictionary of original environment variables

    Cleanup:
        Restores original environment after test
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def subprocess_env() -> dict[str, str]:
    """Environment for child Python processes that import deckhand."""
    import deckhand

    env = os.environ.copy()
    src_dir = str(Path(deckhand.__file__).resolve().parents[1])
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (src_dir, env.get("PYTHONPATH", "")) if p
    )
    return env


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
