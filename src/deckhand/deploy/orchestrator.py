"""Deployment orchestrator: one release transaction per environment at a time.

A release moves ``pending -> building -> transporting -> migrating ->
health-checking -> live``. Any failure moves it to ``failed``. Once the
target host has been touched, a failure restores the previously live
release (pull, activate, health-check; migrations are never reversed) and
the failed release ends ``rolled-back``. If that restore fails,
:class:`RollbackFailure` is raised and an operator has to step in.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator, Sequence
from contextlib import contextmanager
from functools import partial
from typing import TypeVar

from deckhand.config.defaults import RELEASE_LABEL
from deckhand.deploy.builder import (
    BuildResult,
    ContainerBuilder,
    generate_tag,
    get_oci_labels,
)
from deckhand.deploy.deployers import BaseDeployer, DockerHostDeployer
from deckhand.deploy.health import HealthGate, health_url
from deckhand.deploy.hosts import HostClients
from deckhand.deploy.locks import environment_lock_path, file_lock
from deckhand.deploy.migrations import (
    Migration,
    MigrationExecutor,
    MigrationRunner,
    create_executor,
    load_migrations,
)
from deckhand.deploy.secrets import EnvSecretResolver, SecretResolver
from deckhand.deploy.state import StateStore, get_build_log_path
from deckhand.deploy.transport import ReleaseTransport, RetryConfig
from deckhand.lib.errors import (
    BuildFailure,
    ConfigError,
    DeckhandError,
    DeploymentAlert,
    DeploymentCancelled,
    DeploymentError,
    RollbackFailure,
    TransportFailure,
)
from deckhand.models.config import EnvironmentConfig, ProjectConfig
from deckhand.models.health import HealthReport
from deckhand.models.release import (
    DeploymentRequest,
    EnvironmentState,
    FailureInfo,
    RegistryRef,
    Release,
    ReleaseStatus,
    StatusResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ExecutorFactory = Callable[[EnvironmentConfig], MigrationExecutor]


class CancellationToken:
    """Lets a caller cancel an in-flight release between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Has no effect once the release is live."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()


def run_with_timeout(
    fn: Callable[[], T], timeout: float, on_timeout: Callable[[], Exception]
) -> T:
    """Run ``fn`` in a worker thread, raising ``on_timeout()`` if it overruns.

    The worker is a daemon thread: it is abandoned, not killed, when the
    timeout fires, and it never keeps the interpreter alive at exit. The
    Docker clients carry their own socket timeouts so an abandoned call
    still ends on its own.
    """
    outcome: dict[str, object] = {}

    def _target() -> None:
        try:
            outcome["value"] = fn()
        except Exception as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=_target, name="deckhand-phase", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise on_timeout()
    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["value"]  # type: ignore[return-value]


class DeploymentOrchestrator:
    """Sequences build, transport, migration and health gate into a release.

    Args:
        config: Validated project configuration
        store: Release log, environment table and migration records
        builder: Artifact builder
        transport: Registry push/pull
        deployer: Starts pulled images on hosts
        health_gate: Readiness poller
        migration_runner: Applies migrations once per environment
        secrets: Resolves secret names at deploy time
        executor_factory: Builds the migration executor for an environment
        migrations: Migration set; loaded from ``config.migrations.directory``
            when omitted
        hosts: Docker clients for target hosts, closed by :meth:`close`

    Use as a context manager (or call :meth:`close`) to release the Docker
    and HTTP connections it holds.
    """

    def __init__(
        self,
        config: ProjectConfig,
        store: StateStore,
        builder: ContainerBuilder,
        transport: ReleaseTransport,
        deployer: BaseDeployer,
        health_gate: HealthGate,
        migration_runner: MigrationRunner,
        secrets: SecretResolver,
        executor_factory: ExecutorFactory | None = None,
        migrations: Sequence[Migration] | None = None,
        hosts: HostClients | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._builder = builder
        self._transport = transport
        self._deployer = deployer
        self._health = health_gate
        self._runner = migration_runner
        self._secrets = secrets
        self._executor_factory = executor_factory
        self._migrations = list(migrations) if migrations is not None else None
        self._hosts = hosts
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(
        cls, config: ProjectConfig, secrets: SecretResolver | None = None
    ) -> DeploymentOrchestrator:
        """Wire the Docker, registry and HTTP backed components for ``config``.

        Raises:
            DockerNotAvailableError: If the local Docker daemon is unreachable
        """
        store = StateStore.for_directory(config.state_dir)
        builder = ContainerBuilder(timeout=config.build.timeout)
        hosts = HostClients(timeout=config.transport.timeout)

        executor_factory: ExecutorFactory | None = None
        if config.migrations is not None:
            executor_factory = partial(create_executor, config.migrations, hosts=hosts)

        return cls(
            config=config,
            store=store,
            builder=builder,
            transport=ReleaseTransport(
                hosts, builder.client, RetryConfig.from_config(config.transport)
            ),
            deployer=DockerHostDeployer(hosts),
            health_gate=HealthGate(probe_timeout=config.health.probe_timeout),
            migration_runner=MigrationRunner(store),
            secrets=secrets or EnvSecretResolver(),
            executor_factory=executor_factory,
            hosts=hosts,
        )

    @property
    def store(self) -> StateStore:
        """The state store backing this orchestrator."""
        return self._store

    def close(self) -> None:
        """Close the HTTP client and every Docker client this orchestrator opened."""
        self._health.close()
        if self._hosts is not None:
            self._hosts.close()
        self._builder.close()

    def __enter__(self) -> DeploymentOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _environment_lock(self, environment: str) -> Generator[None, None, None]:
        # Threads of this process queue on the thread lock, other processes
        # on the lock file.
        with self._lock_for(environment), file_lock(
            environment_lock_path(self._config.state_dir, environment)
        ):
            yield

    def _lock_for(self, environment: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(environment, threading.Lock())

    def _environment_config(self, name: str) -> EnvironmentConfig:
        try:
            return self._config.get_environment(name)
        except KeyError:
            known = ", ".join(sorted(self._config.environments))
            raise ConfigError(
                field="environment",
                message=f"Unknown environment '{name}'. Known: {known}",
            ) from None

    def _migration_set(self) -> list[Migration]:
        if self._config.migrations is None:
            return []
        if self._migrations is None:
            self._migrations = load_migrations(self._config.migrations.directory)
        return self._migrations

    # Public operations

    def deploy(
        self, request: DeploymentRequest, cancel: CancellationToken | None = None
    ) -> Release:
        """Run one release transaction.

        Returns:
            The release in its final state: ``live``, ``rolled-back`` or
            ``failed`` (with ``failure`` describing the cause)

        Raises:
            ConfigError: If the environment or migration set is invalid
            DeploymentCancelled: If cancelled before the release was recorded
            RollbackFailure: If restoring the previous release failed
            MigrationChecksumConflict: After the rollback attempt
        """
        env_config = self._environment_config(request.environment)
        migrations = self._migration_set()

        if cancel is not None and cancel.cancelled:
            raise DeploymentCancelled("Release cancelled before it started")

        with self._environment_lock(request.environment):
            if cancel is not None and cancel.cancelled:
                raise DeploymentCancelled("Release cancelled before it started")

            self._store.ensure_environment(
                request.environment, env_config.host.docker_url, env_config.secrets
            )
            release = Release(
                environment=request.environment,
                source_revision=request.source_revision,
            )
            self._store.append_release(release)
            logger.info(
                f"Release {release.release_id}: {request.source_revision[:12]} "
                f"-> {request.environment} (pending)"
            )
            return self._run(release, request, env_config, migrations, cancel)

    def get_status(self, environment: str) -> tuple[EnvironmentState, Release | None]:
        """Return the environment row and its live release.

        Raises:
            ConfigError: If the environment is unknown or was never deployed
        """
        self._environment_config(environment)
        env_state = self._store.get_environment(environment)
        if env_state is None:
            raise ConfigError(
                field="environment",
                message=f"No releases recorded for '{environment}' yet",
            )
        live = (
            self._store.get_release(env_state.live_release_id)
            if env_state.live_release_id
            else None
        )
        return env_state, live

    def service_status(self, environment: str) -> StatusResult:
        """Return the state of the service container on the environment's host."""
        env_config = self._environment_config(environment)
        return self._deployer.get_status(
            env_config.host.docker_url, env_config.service_name
        )

    def history(self, environment: str) -> list[Release]:
        """Return every release for ``environment``, oldest first."""
        self._environment_config(environment)
        return self._store.list_releases(environment)

    def check_health(self, environment: str) -> HealthReport:
        """Run the health gate once against an environment.

        Raises:
            HealthTimeout: If the service does not become healthy
        """
        return self._gate(environment, self._environment_config(environment))

    def run_migrations(self, environment: str) -> int:
        """Apply pending migrations outside of a release transaction."""
        env_config = self._environment_config(environment)
        with self._environment_lock(environment):
            return self._migrate(environment, env_config, self._migration_set())

    # Transaction steps

    def _run(
        self,
        release: Release,
        request: DeploymentRequest,
        env_config: EnvironmentConfig,
        migrations: Sequence[Migration],
        cancel: CancellationToken | None,
    ) -> Release:
        host_touched = False
        try:
            self._advance(release, ReleaseStatus.BUILDING, cancel)
            build = self._build(release, request)
            release.artifact = build.to_artifact()
            self._store.save_release(release)

            self._advance(release, ReleaseStatus.TRANSPORTING, cancel)
            env_vars = self._container_env(env_config)
            registry_ref = self._ship(release, env_config)
            release.registry_ref = registry_ref
            self._store.save_release(release)

            host_touched = True
            self._activate(release, env_config, registry_ref, env_vars)

            self._advance(release, ReleaseStatus.MIGRATING, cancel)
            self._migrate(release.environment, env_config, migrations)

            self._advance(release, ReleaseStatus.HEALTH_CHECKING, cancel)
            self._gate(release.environment, env_config)
        except DeckhandError as exc:
            return self._fail(release, env_config, exc, rollback=host_touched)
        except Exception as exc:
            self._record_failure(release, exc)
            raise

        return self._go_live(release)

    def _advance(
        self,
        release: Release,
        status: ReleaseStatus,
        cancel: CancellationToken | None,
    ) -> None:
        if cancel is not None and cancel.cancelled:
            raise DeploymentCancelled(
                f"Release cancelled before entering '{status.value}'"
            )
        release.transition(status)
        self._store.save_release(release)
        logger.info(f"Release {release.release_id}: {status.value}")

    def _build(self, release: Release, request: DeploymentRequest) -> BuildResult:
        registry = self._config.registry
        build_config = self._config.build
        tag = request.tag or generate_tag(
            registry.tag_strategy, registry.custom_tag, request.source_revision
        )
        labels = get_oci_labels(
            self._config.project,
            tag,
            source_sha=request.source_revision,
            release_id=release.release_id,
        )
        log_path = get_build_log_path(self._config.state_dir, release.release_id)

        return run_with_timeout(
            lambda: self._builder.build(
                build_context=build_config.context,
                image_name=registry.image_name,
                tag=tag,
                labels=labels,
                dockerfile=build_config.dockerfile,
                platform=build_config.platform,
                log_path=log_path,
                buildargs=build_config.build_args or None,
            ),
            build_config.timeout,
            lambda: BuildFailure(f"Build timed out after {build_config.timeout:g}s"),
        )

    def _container_env(self, env_config: EnvironmentConfig) -> dict[str, str]:
        return {**env_config.environment, **self._secrets.resolve(env_config.secrets)}

    def _registry_auth(self) -> dict[str, str] | None:
        return self._secrets.registry_credentials(
            self._config.registry.credentials_env_prefix
        )

    def _ship(self, release: Release, env_config: EnvironmentConfig) -> RegistryRef:
        assert release.artifact is not None
        artifact = release.artifact
        auth = self._registry_auth()
        timeout = self._config.transport.timeout

        def _push_and_pull() -> RegistryRef:
            ref = self._transport.push(artifact, auth_config=auth)
            self._transport.pull(ref, env_config.host.docker_url, auth_config=auth)
            return ref

        return run_with_timeout(
            _push_and_pull,
            timeout,
            lambda: TransportFailure(
                "transport", f"Timed out after {timeout:g}s", transient=True
            ),
        )

    def _activate(
        self,
        release: Release,
        env_config: EnvironmentConfig,
        registry_ref: RegistryRef,
        env_vars: dict[str, str],
    ) -> None:
        result = self._deployer.deploy(
            host=env_config.host.docker_url,
            service_name=env_config.service_name,
            image_uri=registry_ref.reference,
            port=env_config.port,
            env_vars=env_vars,
            labels={RELEASE_LABEL: release.release_id},
        )
        logger.info(
            f"Release {release.release_id}: {result.service_name} is {result.status}"
        )

    def _migrate(
        self,
        environment: str,
        env_config: EnvironmentConfig,
        migrations: Sequence[Migration],
    ) -> int:
        if self._executor_factory is None or not migrations:
            logger.debug(f"{environment}: no migrations configured")
            return 0
        executor = self._executor_factory(env_config)
        return self._runner.apply(environment, migrations, executor)

    def _gate(self, environment: str, env_config: EnvironmentConfig) -> HealthReport:
        health = self._config.health
        target = health_url(
            env_config.host.public_url, self._config.health_path_for(environment)
        )
        return self._health.wait_healthy(target, health.timeout, health.interval)

    # Outcomes

    def _go_live(self, release: Release) -> Release:
        env_state = self._store.get_environment(release.environment)
        assert env_state is not None
        env_state.previous_release_id = env_state.live_release_id
        env_state.live_release_id = release.release_id
        self._store.save_environment(env_state)

        release.transition(ReleaseStatus.LIVE)
        self._store.save_release(release)
        logger.info(
            f"Release {release.release_id} is live on {release.environment} "
            f"(previous: {env_state.previous_release_id or 'none'})"
        )
        return release

    def _record_failure(self, release: Release, exc: BaseException) -> None:
        release.failure = FailureInfo(
            kind=type(exc).__name__,
            operation=getattr(exc, "operation", release.status.value),
            message=getattr(exc, "message", None) or str(exc),
        )
        release.transition(ReleaseStatus.FAILED, reason=str(exc))
        self._store.save_release(release)
        logger.error(f"Release {release.release_id} failed: {exc}")

    def _fail(
        self,
        release: Release,
        env_config: EnvironmentConfig,
        exc: DeckhandError,
        rollback: bool,
    ) -> Release:
        self._record_failure(release, exc)

        if rollback:
            env_state = self._store.get_environment(release.environment)
            previous_id = env_state.live_release_id if env_state else None
            if previous_id is None:
                logger.error(
                    f"Release {release.release_id}: no previous live release on "
                    f"{release.environment}; operator intervention required"
                )
            else:
                self._rollback(release, env_config, previous_id)

        if isinstance(exc, DeploymentAlert):
            exc.release_id = release.release_id
            logger.critical(f"Release {release.release_id}: {exc}")
            raise exc
        return release

    def _rollback(
        self, release: Release, env_config: EnvironmentConfig, previous_id: str
    ) -> None:
        previous = self._store.get_release(previous_id)
        logger.warning(
            f"Release {release.release_id}: rolling back {release.environment} "
            f"to {previous_id}"
        )
        try:
            if previous is None or previous.registry_ref is None:
                raise DeploymentError(
                    operation="rollback",
                    message=f"Release {previous_id} has no registry reference",
                )
            registry_ref = previous.registry_ref
            env_vars = self._container_env(env_config)
            auth = self._registry_auth()
            timeout = self._config.transport.timeout
            run_with_timeout(
                lambda: self._transport.pull(
                    registry_ref, env_config.host.docker_url, auth_config=auth
                ),
                timeout,
                lambda: TransportFailure(
                    "pull", f"Timed out after {timeout:g}s", transient=True
                ),
            )
            self._activate(previous, env_config, registry_ref, env_vars)
            self._gate(release.environment, env_config)
        except DeckhandError as exc:
            failure = RollbackFailure(release.release_id, previous_id, str(exc))
            logger.critical(str(failure))
            raise failure from exc

        release.rolled_back_to = previous_id
        release.transition(ReleaseStatus.ROLLED_BACK, reason=f"restored {previous_id}")
        self._store.save_release(release)
        logger.warning(
            f"Release {release.release_id} rolled back; {previous_id} is live again"
        )
