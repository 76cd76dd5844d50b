"""Settings document loading and validation.

Validation is all-or-nothing and never touches the network: either a
DeploymentConfig comes back or a ConfigurationError listing every violation.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from outpost_schemas import DeploymentConfig
from pydantic import ValidationError

from apps.deploy.config.rules import check_rules
from apps.deploy.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_document(path: str | Path) -> dict[str, Any]:
    """
    Read a YAML settings document.

    Raises:
        ConfigurationError: If the file is missing, unparsable, or not a mapping.
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError([f"settings file not found: {path}"]) from e
    except yaml.YAMLError as e:
        raise ConfigurationError([f"invalid YAML: {e}"], source=str(path)) from e

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigurationError(
            [f"top level must be a mapping, got {type(document).__name__}"],
            source=str(path),
        )
    return document


def _format_shape_errors(error: ValidationError) -> list[str]:
    violations = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<document>"
        violations.append(f"{location}: {err['msg']}")
    return violations


def validate(document: dict[str, Any], source: str | None = None) -> DeploymentConfig:
    """
    Validate a raw settings document.

    Shape errors (types, enum values, unknown strategies) are all reported
    together. Cross-field rules only run once the shape is valid, since they
    need a typed model to inspect.

    Args:
        document: Parsed settings tree.
        source: Optional label (usually the file path) for error messages.

    Returns:
        The validated, immutable config.

    Raises:
        ConfigurationError: With the full list of violations.
    """
    try:
        config = DeploymentConfig.model_validate(document)
    except ValidationError as e:
        raise ConfigurationError(_format_shape_errors(e), source=source) from e

    violations = check_rules(config)
    if violations:
        raise ConfigurationError(violations, source=source)

    logger.debug("Validated settings for %s", config.identifier)
    return config


def load_config(path: str | Path) -> DeploymentConfig:
    """Load and validate a settings file."""
    return validate(load_document(path), source=str(path))
