"""Core types, errors, configuration and storage for the project registry."""

from ccr_registry.core.clock import FakeTimeProvider, SystemTimeProvider, TimeProvider
from ccr_registry.core.config import (
    ConfigValidationError,
    RegistryConfig,
    get_default_config,
    load_config,
    validate_config,
)
from ccr_registry.core.errors import (
    AgentNotFoundError,
    ConcurrentModificationError,
    CorruptionError,
    DuplicateProjectError,
    IdentifierCollisionError,
    NotFoundError,
    ProjectNotFoundError,
    RegistryError,
    RegistryWriteError,
    ResourceWriteError,
    SecretDetectedError,
    ValidationError,
    WorkflowNotFoundError,
)
from ccr_registry.core.models import (
    SCHEMA_VERSION,
    AgentResource,
    Project,
    Registry,
    RescanResult,
    ScanResult,
    WorkflowResource,
)
from ccr_registry.core.store import LoadResult, LoadStatus, RegistryStore, atomic_write_text

__all__ = [
    # clock
    "FakeTimeProvider",
    "SystemTimeProvider",
    "TimeProvider",
    # config
    "ConfigValidationError",
    "RegistryConfig",
    "get_default_config",
    "load_config",
    "validate_config",
    # errors
    "AgentNotFoundError",
    "ConcurrentModificationError",
    "CorruptionError",
    "DuplicateProjectError",
    "IdentifierCollisionError",
    "NotFoundError",
    "ProjectNotFoundError",
    "RegistryError",
    "RegistryWriteError",
    "ResourceWriteError",
    "SecretDetectedError",
    "ValidationError",
    "WorkflowNotFoundError",
    # models
    "SCHEMA_VERSION",
    "AgentResource",
    "Project",
    "Registry",
    "RescanResult",
    "ScanResult",
    "WorkflowResource",
    # store
    "LoadResult",
    "LoadStatus",
    "RegistryStore",
    "atomic_write_text",
]
