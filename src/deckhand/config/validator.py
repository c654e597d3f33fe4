"""Validation helpers that turn pydantic errors into deckhand config errors."""

from pydantic import ValidationError as PydanticValidationError

from deckhand.lib.errors import ConfigError


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into one readable line per field.

    Example:
        >>> from deckhand.models.config import HealthConfig
        >>> try:
        ...     HealthConfig(path="health")
        ... except PydanticValidationError as e:
        ...     flatten_pydantic_errors(e)
        ["Field 'path': Value error, Health check path must start with '/': health"]
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "unknown"
        msg = error.get("msg", "Unknown error")

        if error.get("type") == "extra_forbidden":
            errors.append(f"Field '{field_path}': unknown key")
        else:
            errors.append(f"Field '{field_path}': {msg}")

    return errors if errors else ["Validation failed with unknown error"]


def config_error_from(exc: PydanticValidationError, source: str) -> ConfigError:
    """Build a ConfigError summarising every validation failure in ``source``."""
    lines = flatten_pydantic_errors(exc)
    message = "Invalid configuration:\n" + "\n".join(f"  - {line}" for line in lines)
    return ConfigError(field=source, message=message)
