"""Persisted release log, environment table and migration records."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError

from deckhand.config.defaults import BUILD_LOG_DIRNAME, STATE_FILENAME
from deckhand.deploy.locks import file_lock
from deckhand.lib.errors import DeploymentError
from deckhand.models.release import (
    DeploymentState,
    EnvironmentState,
    MigrationRecord,
    Release,
)

STATE_VERSION = "1.0"

T = TypeVar("T")


def get_state_path(state_dir: str | Path) -> Path:
    """Return the state file path inside a state directory."""
    return Path(state_dir) / STATE_FILENAME


def get_build_log_path(state_dir: str | Path, release_id: str) -> Path:
    """Return the build log path for a release."""
    return Path(state_dir) / BUILD_LOG_DIRNAME / f"{release_id}-build.log"


def load_state(state_path: Path) -> DeploymentState:
    """Load deployment state data from disk."""
    if not state_path.exists():
        return DeploymentState(version=STATE_VERSION)

    try:
        content = state_path.read_text(encoding="utf-8")
        if not content.strip():
            return DeploymentState(version=STATE_VERSION)
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to read deployment state at {state_path}: {exc}",
        ) from exc

    try:
        state = DeploymentState.model_validate_json(content)
    except ValidationError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid deployment state format in {state_path}: {exc}",
        ) from exc

    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    return state


def save_state(state_path: Path, state: DeploymentState) -> None:
    """Persist deployment state atomically (write to a temp file, then rename).

    The temp file name is unique per write, so concurrent writers never
    truncate each other's half-written file.
    """
    tmp_name: str | None = None
    try:
        state_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=state_path.parent,
            prefix=f".{state_path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, state_path)
    except OSError as exc:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
        raise DeploymentError(
            operation="state",
            message=f"Failed to write deployment state to {state_path}: {exc}",
        ) from exc


class StateStore:
    """Process- and thread-safe access to the on-disk deployment state.

    Every mutation is a read-modify-write of the whole file under a thread
    lock plus an exclusive ``flock`` on ``<state file>.lock``, so concurrent
    release transactions (in this process or in other ``deckhand``
    invocations sharing the state directory) never lose each other's writes.
    Releases are never removed from the log.
    """

    def __init__(self, state_path: Path) -> None:
        """Create a store backed by ``state_path``."""
        self.state_path = state_path
        self._lock_path = state_path.with_name(state_path.name + ".lock")
        self._lock = threading.Lock()

    @classmethod
    def for_directory(cls, state_dir: str | Path) -> StateStore:
        """Create a store for the state file inside ``state_dir``."""
        return cls(get_state_path(state_dir))

    def _mutate(self, fn: Callable[[DeploymentState], T]) -> T:
        with self._lock, file_lock(self._lock_path):
            state = load_state(self.state_path)
            result = fn(state)
            save_state(self.state_path, state)
            return result

    def load(self) -> DeploymentState:
        """Return a snapshot of the full state.

        Writers replace the file atomically, so readers need no lock.
        """
        return load_state(self.state_path)

    # Release log

    def append_release(self, release: Release) -> None:
        """Add a new release to the log.

        Raises:
            DeploymentError: If a release with the same id is already logged
        """

        def _append(state: DeploymentState) -> None:
            if release.release_id in state.releases:
                raise DeploymentError(
                    operation="state",
                    message=f"Release {release.release_id} already recorded",
                )
            state.releases[release.release_id] = release.model_copy(deep=True)

        self._mutate(_append)

    def save_release(self, release: Release) -> None:
        """Persist the current status of a logged release."""

        def _save(state: DeploymentState) -> None:
            if release.release_id not in state.releases:
                raise DeploymentError(
                    operation="state",
                    message=f"Release {release.release_id} is not in the log",
                )
            state.releases[release.release_id] = release.model_copy(deep=True)

        self._mutate(_save)

    def get_release(self, release_id: str) -> Release | None:
        """Return a release by id."""
        return self.load().releases.get(release_id)

    def list_releases(self, environment: str | None = None) -> list[Release]:
        """Return releases oldest first, optionally for one environment."""
        releases = [
            r
            for r in self.load().releases.values()
            if environment is None or r.environment == environment
        ]
        return sorted(releases, key=lambda r: (r.created_at, r.release_id))

    # Environment table

    def get_environment(self, name: str) -> EnvironmentState | None:
        """Return the stored state of an environment."""
        return self.load().environments.get(name)

    def ensure_environment(
        self, name: str, host: str, secret_refs: list[str]
    ) -> EnvironmentState:
        """Return the environment row, creating or refreshing its host/secrets."""

        def _ensure(state: DeploymentState) -> EnvironmentState:
            existing = state.environments.get(name)
            if existing is None:
                existing = EnvironmentState(
                    name=name, host=host, secret_refs=list(secret_refs)
                )
            else:
                existing = existing.model_copy(
                    update={"host": host, "secret_refs": list(secret_refs)}
                )
            state.environments[name] = existing
            return existing.model_copy(deep=True)

        return self._mutate(_ensure)

    def save_environment(self, environment: EnvironmentState) -> None:
        """Persist environment pointers."""

        def _save(state: DeploymentState) -> None:
            state.environments[environment.name] = environment.model_copy(deep=True)

        self._mutate(_save)

    # Migration records

    def get_migration_records(self, environment: str) -> dict[str, MigrationRecord]:
        """Return applied migrations for an environment keyed by id."""
        return dict(self.load().migrations.get(environment, {}))

    def add_migration_record(self, record: MigrationRecord) -> None:
        """Record an applied migration.

        Raises:
            DeploymentError: If the id is already recorded for the environment
        """

        def _add(state: DeploymentState) -> None:
            records = state.migrations.setdefault(record.environment, {})
            if record.migration_id in records:
                raise DeploymentError(
                    operation="state",
                    message=(
                        f"Migration {record.migration_id} already recorded "
                        f"for {record.environment}"
                    ),
                )
            records[record.migration_id] = record

        self._mutate(_add)
