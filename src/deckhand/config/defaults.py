"""Default values for deckhand configuration."""

DEFAULT_CONFIG_FILENAME = "deckhand.yaml"

STATE_FILENAME = "state.json"
BUILD_LOG_DIRNAME = "logs"
LOCK_DIRNAME = "locks"

# Environment variable to field name mapping
ENV_VAR_MAP: dict[str, str] = {
    "state_dir": "DECKHAND_STATE_DIR",
    "verbose": "DECKHAND_VERBOSE",
    "quiet": "DECKHAND_QUIET",
}

TRUTHY_VALUES = ("true", "1", "yes", "on")

# Labels stamped on every image and container deckhand manages
MANAGED_LABEL = "io.deckhand.managed"
RELEASE_LABEL = "io.deckhand.release"


def env_flag(value: str | None) -> bool:
    """Interpret an environment variable as a boolean flag."""
    return value is not None and value.lower() in TRUTHY_VALUES
