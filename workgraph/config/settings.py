"""Configuration utilities for workgraph."""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..exceptions import ConfigurationError
from .constants import (
    DEFAULT_DB_FILENAME,
    ENV_VAR_DEFINITIONS,
    MAX_TRAVERSAL_DEPTH,
    WORKGRAPH_CONFIG_DIR,
)
from .project_config import load_config


def get_db_path() -> Path:
    """Get the database path, respecting WORKGRAPH_TEST_DB and WORKGRAPH_DB.

    When running tests, set WORKGRAPH_TEST_DB to a temp file path to prevent
    tests from polluting the real database.
    """
    test_db = os.environ.get("WORKGRAPH_TEST_DB")
    if test_db:
        return Path(test_db)

    configured = os.environ.get("WORKGRAPH_DB")
    if configured:
        return Path(configured).expanduser()

    WORKGRAPH_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return WORKGRAPH_CONFIG_DIR / DEFAULT_DB_FILENAME


def get_max_traversal_depth() -> int:
    """Return the traversal depth ceiling.

    WORKGRAPH_MAX_DEPTH wins over the config file's ``max_depth``, which wins
    over MAX_TRAVERSAL_DEPTH.
    """
    raw = os.environ.get("WORKGRAPH_MAX_DEPTH", "").strip()
    if not raw:
        return load_config().max_depth or MAX_TRAVERSAL_DEPTH
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(
            "WORKGRAPH_MAX_DEPTH must be an integer", setting="WORKGRAPH_MAX_DEPTH", value=raw
        ) from e
    if value < 1:
        raise ConfigurationError(
            "WORKGRAPH_MAX_DEPTH must be positive", setting="WORKGRAPH_MAX_DEPTH", value=value
        )
    return value


def validate_env_var(name: str, value: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Validate a single environment variable value.

    Args:
        name: The environment variable name.
        value: The current value (or None if not set).

    Returns:
        Tuple of (is_valid, error_message).
    """
    if name not in ENV_VAR_DEFINITIONS:
        return True, None  # Unknown vars are always valid

    if value is None:
        return True, None

    valid_values = ENV_VAR_DEFINITIONS[name].get("valid_values")
    if valid_values is None:
        return True, None

    if value.lower() not in [v.lower() for v in valid_values]:
        return False, f"Invalid value '{value}' for {name}. Valid values: {valid_values}"

    return True, None


def validate_all_env_vars() -> List[str]:
    """Validate all workgraph environment variables.

    Returns:
        List of error messages (empty if all valid).
    """
    errors = []
    for name in ENV_VAR_DEFINITIONS:
        is_valid, error = validate_env_var(name, os.environ.get(name))
        if not is_valid:
            errors.append(error)
    return errors


def get_env_var(name: str, validate: bool = True) -> Optional[str]:
    """Get an environment variable with optional validation.

    Raises:
        ConfigurationError: If validate=True and the value is invalid.
    """
    value = os.environ.get(name)

    if validate and value is not None:
        is_valid, error = validate_env_var(name, value)
        if not is_valid:
            raise ConfigurationError(error, setting=name)

    if value is None and name in ENV_VAR_DEFINITIONS:
        return ENV_VAR_DEFINITIONS[name].get("default")

    return value


def get_env_info() -> Dict[str, Dict]:
    """Get information about all workgraph environment variables."""
    info = {}
    for name, definition in ENV_VAR_DEFINITIONS.items():
        value = os.environ.get(name)
        is_valid, _ = validate_env_var(name, value)
        info[name] = {
            "description": definition.get("description", ""),
            "value": value,
            "is_set": value is not None,
            "valid": is_valid,
            "default": definition.get("default"),
        }
    return info
