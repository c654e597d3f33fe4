"""Resolution of named secrets at deploy time.

Only secret *names* travel through configuration and state; values are
resolved right before they are handed to the registry or the container and
are never persisted.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping

from deckhand.lib.errors import SecretResolutionError


class SecretResolver(ABC):
    """Resolves secret names to values."""

    @abstractmethod
    def lookup(self, name: str) -> str | None:
        """Return the value of ``name`` or None when it is not defined."""

    def resolve(self, names: Iterable[str]) -> dict[str, str]:
        """Resolve every name.

        Raises:
            SecretResolutionError: Listing all names that could not be resolved
        """
        values: dict[str, str] = {}
        missing: list[str] = []
        for name in names:
            value = self.lookup(name)
            if value is None:
                missing.append(name)
            else:
                values[name] = value
        if missing:
            raise SecretResolutionError(missing)
        return values

    def registry_credentials(self, prefix: str | None) -> dict[str, str] | None:
        """Return a Docker ``auth_config`` from ``<PREFIX>_USERNAME/_PASSWORD``."""
        if not prefix:
            return None
        creds = self.resolve([f"{prefix}_USERNAME", f"{prefix}_PASSWORD"])
        return {
            "username": creds[f"{prefix}_USERNAME"],
            "password": creds[f"{prefix}_PASSWORD"],
        }


class EnvSecretResolver(SecretResolver):
    """Reads secrets from environment variables, as CI systems expose them.

    Args:
        prefix: Optional prefix prepended to every name (e.g. ``PROD_``)
        env: Mapping to read from (defaults to os.environ)
    """

    def __init__(self, prefix: str = "", env: Mapping[str, str] | None = None) -> None:
        self._prefix = prefix
        self._env = env if env is not None else os.environ

    def lookup(self, name: str) -> str | None:
        value = self._env.get(f"{self._prefix}{name}")
        if value is None or value == "":
            return None
        return value


class StaticSecretResolver(SecretResolver):
    """Resolver over a fixed mapping, for tests and local runs."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = dict(values)

    def lookup(self, name: str) -> str | None:
        return self._values.get(name)
