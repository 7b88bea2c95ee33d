"""
Validators for identifiers, model strings and registry documents.

All ``is_*`` functions are pure predicates. The ``require_*`` variants raise
:class:`ValidationError` with a message naming the rejected value, and are
what mutating operations call before touching any state.
"""
# [CTX:PBI-1:1-2:VALID]

import re
import uuid
from pathlib import Path
from typing import Any

from .errors import SecretDetectedError, ValidationError

# UUID v4, case-insensitive
RESOURCE_ID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# "provider,model"; model names may contain slashes (openrouter) and dots
MODEL_STRING_REGEX = re.compile(r"^[a-z0-9_-]+,[a-z0-9_./-]+$", re.IGNORECASE)

SECRET_MARKERS = (
    "key",
    "secret",
    "token",
    "password",
    "passwd",
    "bearer",
    "credential",
)

CREDENTIAL_PATTERNS = (
    re.compile(r"^sk-[-a-z0-9]+$", re.IGNORECASE),          # OpenAI
    re.compile(r"^sk-proj-[-a-z0-9]+$", re.IGNORECASE),     # OpenAI project
    re.compile(r"^sk-ant-[-a-z0-9]+$", re.IGNORECASE),      # Anthropic
    re.compile(r"^pk-[-a-z0-9]+$", re.IGNORECASE),          # Stripe
    re.compile(r"^xox[baprs]-[-a-z0-9]+$", re.IGNORECASE),  # Slack
    re.compile(r"^gh[pousr]_[a-z0-9]{36}$", re.IGNORECASE), # GitHub
    re.compile(r"^AKIA[0-9A-Z]{16}$", re.IGNORECASE),       # AWS
    re.compile(r"^AIza[-_a-z0-9]{35}$", re.IGNORECASE),     # Google
    re.compile(r"^glpat-[-_a-z0-9]{20,}$", re.IGNORECASE),  # GitLab
)

PROVIDER_MIN_LENGTH = 2
PROVIDER_MAX_LENGTH = 50
MODEL_MIN_LENGTH = 2
MODEL_MAX_LENGTH = 100

INHERIT = "inherit"
DEFAULT = "default"
INHERITANCE_MODES = (INHERIT, DEFAULT)


def is_valid_resource_id(value: Any) -> bool:
    """Check that ``value`` is a version-4 UUID string."""
    if not isinstance(value, str) or not RESOURCE_ID_REGEX.match(value):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


# Agents, workflows and projects all use the same identifier format
is_valid_agent_id = is_valid_resource_id
is_valid_workflow_id = is_valid_resource_id
is_valid_project_id = is_valid_resource_id


def contains_secret(model: str) -> bool:
    """
    Check whether a model string carries credential-looking material.

    Args:
        model: Candidate model string

    Returns:
        True if any secret marker substring is present or any comma-separated
        part matches a known vendor credential prefix
    """
    lowered = model.lower()
    if any(marker in lowered for marker in SECRET_MARKERS):
        return True
    for part in model.split(","):
        part = part.strip()
        if any(pattern.match(part) for pattern in CREDENTIAL_PATTERNS):
            return True
    return False


def is_valid_model_string(model: Any) -> bool:
    """Check ``provider,model`` shape and reject credential-like values."""
    try:
        require_model_string(model)
    except ValidationError:
        return False
    return True


def require_model_string(model: Any) -> str:
    """
    Validate a model string.

    Args:
        model: Value to validate (e.g. ``"openai,gpt-4o"``)

    Returns:
        The model string unchanged

    Raises:
        SecretDetectedError: If the value looks like an API key or token
        ValidationError: If the value is not a ``provider,model`` string
    """
    if not isinstance(model, str):
        raise ValidationError(f"Invalid model string format: {model!r}. Expected a string")

    if contains_secret(model):
        # Never echo the value back, it may be a live credential
        raise SecretDetectedError(
            "Model string rejected: value looks like an API key or secret. "
            'Expected format: "provider,modelname" (e.g., "openai,gpt-4o")'
        )

    expected = 'Expected format: "provider,modelname" (e.g., "openai,gpt-4o")'
    if not MODEL_STRING_REGEX.match(model):
        raise ValidationError(f"Invalid model string format: {model}. {expected}")

    provider, model_name = model.split(",")
    if not PROVIDER_MIN_LENGTH <= len(provider) <= PROVIDER_MAX_LENGTH:
        raise ValidationError(f"Invalid model string format: {model}. Provider length out of range")
    if not MODEL_MIN_LENGTH <= len(model_name) <= MODEL_MAX_LENGTH:
        raise ValidationError(f"Invalid model string format: {model}. Model name length out of range")
    return model


def is_valid_inheritance_mode(mode: Any) -> bool:
    """Absent (None) or exactly one of the known modes, case sensitive."""
    return mode is None or (isinstance(mode, str) and mode in INHERITANCE_MODES)


def require_inheritance_mode(mode: Any) -> str | None:
    """Validate an inheritance mode, raising ValidationError if unknown."""
    if not is_valid_inheritance_mode(mode):
        raise ValidationError(
            f"Invalid inheritance mode: {mode!r}. Expected one of: {', '.join(INHERITANCE_MODES)}"
        )
    return mode


def require_resource_id(value: Any, kind: str = "resource") -> str:
    """Validate a UUID v4 identifier, raising ValidationError otherwise."""
    if not is_valid_resource_id(value):
        raise ValidationError(f"Invalid {kind} ID format: {value}")
    return value


def is_valid_registry_data(data: Any) -> bool:
    """
    Check the top-level shape of a registry document.

    Requires a mapping with a ``projects`` mapping (not a list, not null).
    Unknown extra fields are accepted.
    """
    if not isinstance(data, dict):
        return False
    projects = data.get("projects")
    return isinstance(projects, dict)


def is_valid_workflow_config(data: Any) -> bool:
    """Check a single persisted workflow entry."""
    if not isinstance(data, dict):
        return False
    for key in ("id", "name", "relativePath", "absolutePath"):
        if not isinstance(data.get(key), str):
            return False
    if not isinstance(data.get("description", ""), str):
        return False
    model = data.get("model")
    if model is not None and not is_valid_model_string(model):
        return False
    mode = data.get("inheritanceMode", data.get("modelInheritance"))
    return is_valid_inheritance_mode(mode)


def is_valid_project_path(project_path: str | Path) -> bool:
    """Check that a path resolves to an existing directory."""
    try:
        resolved = Path(project_path).expanduser().resolve()
    except (OSError, RuntimeError):
        return False
    return resolved.is_absolute() and resolved.is_dir()
