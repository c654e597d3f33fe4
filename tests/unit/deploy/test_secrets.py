"""Unit tests for secret resolution."""

from __future__ import annotations

import pytest

from deckhand.deploy.secrets import EnvSecretResolver, StaticSecretResolver
from deckhand.lib.errors import SecretResolutionError


class TestEnvSecretResolver:
    """Tests for EnvSecretResolver."""

    def test_resolves_names(self) -> None:
        """Names map to environment variable values."""
        resolver = EnvSecretResolver(env={"DATABASE_URL": "postgres://db"})

        assert resolver.resolve(["DATABASE_URL"]) == {"DATABASE_URL": "postgres://db"}

    def test_prefix(self) -> None:
        """A prefix is prepended to every lookup, not to the returned key."""
        resolver = EnvSecretResolver(prefix="PROD_", env={"PROD_TOKEN": "t"})

        assert resolver.resolve(["TOKEN"]) == {"TOKEN": "t"}

    def test_missing_and_empty_are_reported_together(self) -> None:
        """All unresolved names are listed in one error."""
        resolver = EnvSecretResolver(env={"EMPTY": "", "OK": "1"})

        with pytest.raises(SecretResolutionError) as exc_info:
            resolver.resolve(["OK", "MISSING", "EMPTY"])

        assert sorted(exc_info.value.names) == ["EMPTY", "MISSING"]
        assert exc_info.value.operation == "secrets"

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """By default os.environ is used."""
        monkeypatch.setenv("DECKHAND_TEST_SECRET", "value")

        assert EnvSecretResolver().lookup("DECKHAND_TEST_SECRET") == "value"


class TestRegistryCredentials:
    """Tests for registry_credentials."""

    def test_no_prefix_means_anonymous(self) -> None:
        """Without a prefix no auth config is produced."""
        assert StaticSecretResolver({}).registry_credentials(None) is None

    def test_builds_auth_config(self) -> None:
        """USERNAME/PASSWORD under the prefix become a Docker auth config."""
        resolver = StaticSecretResolver(
            {"REGISTRY_USERNAME": "bot", "REGISTRY_PASSWORD": "hunter2"}
        )

        assert resolver.registry_credentials("REGISTRY") == {
            "username": "bot",
            "password": "hunter2",
        }

    def test_missing_password_raises(self) -> None:
        """Incomplete credentials are a resolution error."""
        resolver = StaticSecretResolver({"REGISTRY_USERNAME": "bot"})

        with pytest.raises(SecretResolutionError, match="REGISTRY_PASSWORD"):
            resolver.registry_credentials("REGISTRY")
