"""Configuration loader for deckhand projects.

This module provides the ConfigLoader class for loading, parsing, and
validating ``deckhand.yaml`` project files.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from deckhand.config.defaults import DEFAULT_CONFIG_FILENAME, ENV_VAR_MAP
from deckhand.config.env_loader import load_env_file, substitute_env_vars
from deckhand.config.validator import config_error_from
from deckhand.lib.errors import ConfigError, FileNotFoundError
from deckhand.models.config import ProjectConfig

logger = logging.getLogger(__name__)


def _read_yaml_with_env_substitution(path: Path) -> dict[str, Any] | None:
    """Read a YAML file with environment variable substitution.

    Substitution happens on the raw text so that values keep their YAML type.

    Raises:
        OSError: If file cannot be read
        yaml.YAMLError: If YAML parsing fails
        ConfigError: If a referenced variable is unset
    """
    raw_text = path.read_text(encoding="utf-8")
    substituted = substitute_env_vars(raw_text)
    content = yaml.safe_load(substituted)
    return content if content else None


def _resolve_relative(base_dir: Path, value: str) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return str(path.resolve())


class ConfigLoader:
    """Loads and validates deckhand project configuration.

    This class handles:
    - Loading ``.env`` next to the project file (without overriding CI values)
    - Environment variable substitution in the YAML text
    - Applying ``DECKHAND_*`` environment overrides
    - Resolving relative paths against the project file's directory
    - Converting validation errors into human-readable messages
    """

    def __init__(self, env: os._Environ[str] | dict[str, str] | None = None) -> None:
        """Create a loader.

        Args:
            env: Environment mapping used for overrides (defaults to os.environ)
        """
        self._env = env if env is not None else os.environ

    def load_project(self, config_path: str | Path | None = None) -> ProjectConfig:
        """Load and validate a project file.

        Args:
            config_path: Path to deckhand.yaml (defaults to ./deckhand.yaml)

        Returns:
            Validated ProjectConfig with absolute paths

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigError: If the file cannot be parsed or fails validation
        """
        path = Path(config_path or DEFAULT_CONFIG_FILENAME).expanduser()
        if not path.is_file():
            raise FileNotFoundError(
                str(path),
                f"Create a {DEFAULT_CONFIG_FILENAME} or pass --config.",
            )
        base_dir = path.resolve().parent

        if load_env_file(base_dir):
            logger.debug(f"Loaded environment from {base_dir / '.env'}")

        try:
            data = _read_yaml_with_env_substitution(path)
        except yaml.YAMLError as exc:
            raise ConfigError(
                field=str(path), message=f"Invalid YAML: {exc}"
            ) from exc
        except OSError as exc:
            raise ConfigError(
                field=str(path), message=f"Cannot read file: {exc}"
            ) from exc

        if data is None:
            raise ConfigError(field=str(path), message="Configuration file is empty")
        if not isinstance(data, dict):
            raise ConfigError(
                field=str(path), message="Top level of the file must be a mapping"
            )

        self._apply_env_overrides(data)

        try:
            config = ProjectConfig.model_validate(data)
        except PydanticValidationError as exc:
            raise config_error_from(exc, str(path)) from exc

        return self._resolve_paths(config, base_dir)

    def _apply_env_overrides(self, data: dict[str, Any]) -> None:
        state_dir = self._env.get(ENV_VAR_MAP["state_dir"])
        if state_dir:
            logger.debug(f"state_dir overridden by {ENV_VAR_MAP['state_dir']}")
            data["state_dir"] = state_dir

    @staticmethod
    def _resolve_paths(config: ProjectConfig, base_dir: Path) -> ProjectConfig:
        build = config.build.model_copy(
            update={"context": _resolve_relative(base_dir, config.build.context)}
        )
        updates: dict[str, Any] = {
            "build": build,
            "state_dir": _resolve_relative(base_dir, config.state_dir),
        }
        if config.migrations is not None:
            migration_updates: dict[str, Any] = {
                "directory": _resolve_relative(base_dir, config.migrations.directory)
            }
            if config.migrations.database:
                migration_updates["database"] = _resolve_relative(
                    base_dir, config.migrations.database
                )
            updates["migrations"] = config.migrations.model_copy(
                update=migration_updates
            )
        return config.model_copy(update=updates)


def load_project_config(config_path: str | Path | None = None) -> ProjectConfig:
    """One-call helper used by CLI commands."""
    return ConfigLoader().load_project(config_path)
