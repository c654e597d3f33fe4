"""Forward-only schema migrations, applied at most once per environment.

Each migration is identified by its file stem and fingerprinted by the
SHA-256 of its content. Re-running an identical set is a no-op. Requesting
an already applied id with different content is a checksum conflict and
nothing is executed.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from docker.errors import DockerException
from pydantic import BaseModel, ConfigDict, Field
from requests.exceptions import RequestException

from deckhand.deploy.hosts import HostClients
from deckhand.deploy.state import StateStore
from deckhand.lib.errors import ConfigError, MigrationChecksumConflict, MigrationFailure
from deckhand.models.config import (
    EnvironmentConfig,
    MigrationExecutorType,
    MigrationsConfig,
)
from deckhand.models.release import MigrationRecord

logger = logging.getLogger(__name__)


def compute_checksum(content: str) -> str:
    """Return the ``sha256:<hex>`` fingerprint of migration content."""
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


class Migration(BaseModel):
    """A single migration script."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    migration_id: str = Field(..., min_length=1)
    content: str

    @property
    def checksum(self) -> str:
        """Fingerprint of the script content."""
        return compute_checksum(self.content)


def load_migrations(directory: str | Path) -> list[Migration]:
    """Load ``*.sql`` files from ``directory`` in file-name order.

    Raises:
        ConfigError: If the directory does not exist
    """
    path = Path(directory)
    if not path.is_dir():
        raise ConfigError(
            field="migrations.directory",
            message=f"Migration directory not found: {path}",
        )
    return [
        Migration(migration_id=file.stem, content=file.read_text(encoding="utf-8"))
        for file in sorted(path.glob("*.sql"))
    ]


class MigrationExecutor(ABC):
    """Runs one migration script against the environment's store."""

    @abstractmethod
    def execute(self, migration: Migration) -> None:
        """Apply ``migration``.

        Raises:
            MigrationFailure: If the script fails
        """


class SQLiteExecutor(MigrationExecutor):
    """Applies SQL scripts to a SQLite database, one transaction per script."""

    def __init__(self, database: str | Path) -> None:
        self.database = Path(database)

    def execute(self, migration: Migration) -> None:
        self.database.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.database)
        try:
            conn.executescript(f"BEGIN;\n{migration.content}\nCOMMIT;")
        except sqlite3.Error as exc:
            conn.rollback()
            raise MigrationFailure(migration.migration_id, str(exc)) from exc
        finally:
            conn.close()


class ContainerCommandExecutor(MigrationExecutor):
    """Runs a command inside the service container for each migration.

    ``{id}`` and ``{sql}`` in the command template are replaced by the
    migration id and content, e.g. ``["psql", "-v", "ON_ERROR_STOP=1",
    "-c", "{sql}"]``.
    """

    def __init__(
        self,
        hosts: HostClients,
        host: str,
        service_name: str,
        command: Sequence[str],
    ) -> None:
        self._hosts = hosts
        self._host = host
        self._service_name = service_name
        self._command = list(command)

    def render_command(self, migration: Migration) -> list[str]:
        """Substitute the placeholders of the command template."""
        return [
            part.replace("{id}", migration.migration_id).replace(
                "{sql}", migration.content
            )
            for part in self._command
        ]

    def execute(self, migration: Migration) -> None:
        try:
            container = self._hosts.get(self._host).containers.get(self._service_name)
            exit_code, output = container.exec_run(
                self.render_command(migration), demux=False
            )
        except (DockerException, RequestException) as exc:
            raise MigrationFailure(migration.migration_id, str(exc)) from exc

        if exit_code != 0:
            text = (output or b"").decode("utf-8", errors="replace").strip()
            raise MigrationFailure(
                migration.migration_id, f"exit code {exit_code}: {text[-500:]}"
            )


def create_executor(
    config: MigrationsConfig, environment: EnvironmentConfig, hosts: HostClients
) -> MigrationExecutor:
    """Create the executor configured for an environment."""
    if config.executor == MigrationExecutorType.SQLITE:
        assert config.database is not None  # guaranteed by MigrationsConfig
        return SQLiteExecutor(config.database)
    return ContainerCommandExecutor(
        hosts,
        host=environment.host.docker_url,
        service_name=environment.service_name,
        command=config.command,
    )


class MigrationRunner:
    """Applies migration sets in declared order, exactly once per environment.

    Runs for the same environment are serialized; different environments
    migrate independently.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, environment: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(environment, threading.Lock())

    def pending(
        self, environment: str, migrations: Sequence[Migration]
    ) -> list[Migration]:
        """Return migrations not yet applied to ``environment``."""
        applied = self._store.get_migration_records(environment)
        return [m for m in migrations if m.migration_id not in applied]

    def apply(
        self,
        environment: str,
        migrations: Sequence[Migration],
        executor: MigrationExecutor,
    ) -> int:
        """Apply every migration not yet recorded for ``environment``.

        Returns:
            Number of migrations applied by this call

        Raises:
            ConfigError: If the set contains duplicate ids
            MigrationChecksumConflict: If an applied id now has other content
            MigrationFailure: If a migration fails; earlier ones stay recorded
        """
        ids = [m.migration_id for m in migrations]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigError(
                field="migrations",
                message=f"Duplicate migration ids: {', '.join(duplicates)}",
            )

        with self._lock_for(environment):
            records = self._store.get_migration_records(environment)
            for migration in migrations:
                record = records.get(migration.migration_id)
                if record is not None and record.checksum != migration.checksum:
                    raise MigrationChecksumConflict(
                        migration.migration_id, record.checksum, migration.checksum
                    )

            applied = 0
            for migration in migrations:
                if migration.migration_id in records:
                    logger.debug(
                        f"{environment}: {migration.migration_id} already applied"
                    )
                    continue

                logger.info(f"{environment}: applying {migration.migration_id}")
                try:
                    executor.execute(migration)
                except MigrationFailure as exc:
                    exc.applied_count = applied
                    logger.error(f"{environment}: {exc.message}")
                    raise

                self._store.add_migration_record(
                    MigrationRecord(
                        environment=environment,
                        migration_id=migration.migration_id,
                        checksum=migration.checksum,
                    )
                )
                applied += 1

            logger.info(f"{environment}: {applied} migration(s) applied")
            return applied
