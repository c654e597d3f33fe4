"""Environment variable substitution and ``.env`` loading."""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from deckhand.lib.errors import ConfigError

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def get_env_var(name: str, default: str | None = None) -> str | None:
    """Return an environment variable, or ``default`` when unset or empty."""
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in ``text``.

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = get_env_var(name, default)
        if value is None:
            raise ConfigError(
                field=name,
                message=f"Environment variable '{name}' is not set",
            )
        return value

    return ENV_VAR_PATTERN.sub(_replace, text)


def load_env_file(directory: Path, filename: str = ".env") -> bool:
    """Load ``directory/filename`` into the process environment.

    Existing variables are never overridden, so CI-provided secrets win.

    Returns:
        True if a file was found and loaded
    """
    env_path = directory / filename
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)
