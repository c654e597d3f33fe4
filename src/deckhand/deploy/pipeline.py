"""CI pipeline generation.

Renders a GitHub Actions workflow that hands each push to ``deckhand
release``, mapping the environment's secret names onto CI secrets.

deckhand keeps the release log and environment pointers in its state
directory, and rollback depends on them. GitHub-hosted runners start from
an empty disk, so the workflow either restores that directory from a
remote over rsync before the release and saves it back afterwards, or runs
on a self-hosted runner with a fixed absolute ``state_dir``.
"""

from datetime import datetime, timezone

from jinja2 import Template

HOSTED_RUNNER_PREFIXES = ("ubuntu-", "windows-", "macos-")

# Jinja2 template for the generated workflow; ${{ }} is GitHub expression syntax
DECKHAND_WORKFLOW_TEMPLATE = """\
# deckhand release pipeline for {{ project }}
# Generated at: {{ created }}

name: release-{{ environment }}

on:
  push:
    branches: [{{ branch }}]
  workflow_dispatch:

concurrency:
  group: release-{{ environment }}
  cancel-in-progress: false

jobs:
  release:
    runs-on: {{ runs_on }}
    environment: {{ environment }}
    env:
      DECKHAND_STATE_DIR: {{ state_dir }}
    steps:
      - uses: actions/checkout@v4

      - uses: actions/setup-python@v5
        with:
          python-version: "{{ python_version }}"

      - name: Install deckhand
        run: pip install {{ package_spec }}
{% if ssh_key_secret %}

      - name: Configure SSH access to the host
        run: |
          mkdir -p ~/.ssh
          echo "${{ '{{' }} secrets.{{ ssh_key_secret }} {{ '}}' }}" > ~/.ssh/id_ed25519
          chmod 600 ~/.ssh/id_ed25519
          ssh-keyscan -H "{{ ssh_host }}" >> ~/.ssh/known_hosts
{% endif %}
{% if state_remote %}

      - name: Restore deckhand state
        run: |
          mkdir -p ~/.ssh "$DECKHAND_STATE_DIR"
          ssh-keyscan -H "{{ remote_host }}" >> ~/.ssh/known_hosts
          ssh "{{ remote_login }}" 'mkdir -p "{{ remote_path }}"'
          rsync -az --delete "{{ state_remote }}/" "$DECKHAND_STATE_DIR/"
{% endif %}

      - name: Release
        env:
{% for name in secrets %}
          {{ name }}: ${{ '{{' }} secrets.{{ name }} {{ '}}' }}
{% endfor %}
        run: deckhand release {{ environment }} --revision "${{ '{{' }} github.sha {{ '}}' }}"
{% if state_remote %}

      - name: Save deckhand state
        if: always()
        run: rsync -az --exclude "*.tmp" "$DECKHAND_STATE_DIR/" "{{ state_remote }}/"
{% endif %}
"""


def is_hosted_runner(runs_on: str) -> bool:
    """Whether ``runs_on`` names a GitHub-hosted (ephemeral) runner image."""
    return runs_on.startswith(HOSTED_RUNNER_PREFIXES)


def _split_remote(state_remote: str) -> tuple[str, str]:
    login, sep, path = state_remote.partition(":")
    if not sep or not login or not path:
        raise ValueError(
            f"state_remote must look like user@host:path, got '{state_remote}'"
        )
    return login, path


def generate_pipeline(
    project: str,
    environment: str,
    *,
    branch: str = "main",
    python_version: str = "3.12",
    package_spec: str = "deckhand",
    secrets: list[str] | None = None,
    ssh_key_secret: str | None = None,
    ssh_host: str | None = None,
    runs_on: str = "ubuntu-latest",
    state_dir: str | None = None,
    state_remote: str | None = None,
) -> str:
    """Generate a CI workflow that releases ``environment`` on every push.

    Args:
        project: Project name for the header comment
        environment: Environment released by the workflow
        branch: Branch whose pushes trigger a release
        python_version: Python used on the runner
        package_spec: pip requirement used to install deckhand
        secrets: Secret names exposed to the release step
        ssh_key_secret: CI secret holding the SSH key for ssh:// hosts
        ssh_host: Host name added to known_hosts when ssh_key_secret is set
        runs_on: Runner label for the release job
        state_dir: Absolute state directory on the runner, exported as
            ``DECKHAND_STATE_DIR``; defaults to ``/tmp/deckhand-state`` when
            ``state_remote`` is set
        state_remote: rsync target (``user@host:path``) that keeps the state
            directory between runs

    Returns:
        Workflow YAML as a string

    Raises:
        ValueError: If the options cannot keep deckhand state between runs

    Example:
        >>> workflow = generate_pipeline(
        ...     "webapp", "production", state_remote="deploy@203.0.113.10:.deckhand"
        ... )
        >>> "deckhand release production" in workflow
        True
    """
    if ssh_key_secret and not ssh_host:
        raise ValueError("ssh_host is required when ssh_key_secret is set")

    remote_login = remote_path = remote_host = None
    if state_remote is not None:
        remote_login, remote_path = _split_remote(state_remote)
        remote_host = remote_login.rpartition("@")[2]
        state_dir = state_dir or "/tmp/deckhand-state"  # nosec B108
    elif is_hosted_runner(runs_on):
        raise ValueError(
            f"'{runs_on}' runners start with an empty disk; set state_remote "
            "so release history and rollback targets survive between runs"
        )
    elif state_dir is None:
        raise ValueError("state_dir is required on self-hosted runners")

    if not state_dir.startswith("/"):
        raise ValueError(f"state_dir must be an absolute path, got '{state_dir}'")

    template = Template(DECKHAND_WORKFLOW_TEMPLATE, trim_blocks=True)
    return template.render(
        project=project,
        environment=environment,
        branch=branch,
        python_version=python_version,
        package_spec=package_spec,
        secrets=sorted(set(secrets or [])),
        ssh_key_secret=ssh_key_secret,
        ssh_host=ssh_host,
        runs_on=runs_on,
        state_dir=state_dir,
        state_remote=state_remote,
        remote_login=remote_login,
        remote_host=remote_host,
        remote_path=remote_path,
        created=datetime.now(timezone.utc).isoformat(),
    )
