"""
Error hierarchy for the project registry.

Every error carries a human-readable message naming the offending identifier
or path. "Not configured" lookups are return values, never errors.
"""
# [CTX:PBI-1:1-1:ERRORS]


class RegistryError(Exception):
    """Base class for all registry errors."""


class NotFoundError(RegistryError, KeyError):
    """An unknown project, agent or workflow identifier was referenced."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class ProjectNotFoundError(NotFoundError):
    """Project identifier is malformed or not registered."""

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class AgentNotFoundError(NotFoundError):
    """Agent identifier is not present in the project."""

    def __init__(self, agent_id: str, project_id: str):
        super().__init__(f"Agent not found: {agent_id} in project: {project_id}")
        self.agent_id = agent_id
        self.project_id = project_id


class WorkflowNotFoundError(NotFoundError):
    """Workflow identifier is not present in the project."""

    def __init__(self, workflow_id: str, project_id: str):
        super().__init__(f"Workflow not found: {workflow_id} in project: {project_id}")
        self.workflow_id = workflow_id
        self.project_id = project_id


class ValidationError(RegistryError, ValueError):
    """Input rejected before any mutation took place."""


class SecretDetectedError(ValidationError):
    """A value looks like credential material and must not be persisted."""


class DuplicateProjectError(ValidationError):
    """A project with the same path is already registered."""

    def __init__(self, path: str, existing_id: str):
        super().__init__(f"Project already registered with ID: {existing_id} ({path})")
        self.path = path
        self.existing_id = existing_id


class IdentifierCollisionError(ValidationError):
    """Two resources in one project carry the same identifier."""

    def __init__(self, resource_id: str, project_path: str = ""):
        where = f" in {project_path}" if project_path else ""
        super().__init__(f"UUID collision detected: {resource_id}{where}")
        self.resource_id = resource_id


class ResourceWriteError(RegistryError, PermissionError):
    """A resource file could not be modified."""


class RegistryWriteError(RegistryError, PermissionError):
    """The registry file or its directory is not writable."""


class CorruptionError(RegistryError):
    """A registry document or workflow descriptor could not be parsed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Corrupt document {path}: {reason}")
        self.path = path
        self.reason = reason


class ConcurrentModificationError(RegistryError):
    """The project changed on disk since the caller last read it."""

    def __init__(self, project_id: str, expected: str, found: str):
        super().__init__(
            f"Concurrent modification detected for project {project_id}: "
            f"expected updatedAt {expected}, found {found}. Reload and retry."
        )
        self.project_id = project_id
        self.expected = expected
        self.found = found
