"""Configuration loading, validation, and defaults for deckhand projects.

Main components:
- ConfigLoader: Load and validate deckhand.yaml files
- load_project_config: One-call helper for CLI commands
- Environment variable substitution (${VAR} and ${VAR:-default})
- .env loading that never overrides CI-provided variables
"""

from deckhand.config.env_loader import get_env_var, load_env_file, substitute_env_vars
from deckhand.config.loader import ConfigLoader, load_project_config

__all__ = [
    "ConfigLoader",
    "load_project_config",
    "substitute_env_vars",
    "get_env_var",
    "load_env_file",
]
