"""
Registry data model.

The registry document is persisted with camelCase keys; the dataclasses here
use snake_case attributes and convert at the ``from_dict``/``to_dict``
boundary. Unknown keys are kept in ``extra`` so documents written by newer
tooling survive a load/save round trip.
"""
# [CTX:PBI-1:1-4:MODEL]

from dataclasses import dataclass, field
from typing import Any, Optional

SCHEMA_VERSION = "1.0.0"


def _extra(data: dict[str, Any], known: tuple[str, ...]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


@dataclass
class AgentResource:
    """
    An agent markdown file tracked by the registry.

    Attributes:
        id: UUID v4 embedded in the agent file as a tag
        name: File name (e.g., "dev.md")
        relative_path: Path relative to the project root
        absolute_path: Absolute path to the agent file
        model: Optional "provider,model" routing target
    """

    id: str
    name: str
    relative_path: str
    absolute_path: str
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentResource":
        return cls(
            id=data["id"],
            name=data["name"],
            relative_path=data.get("relativePath", ""),
            absolute_path=data.get("absolutePath", ""),
            model=data.get("model") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "relativePath": self.relative_path,
            "absolutePath": self.absolute_path,
        }
        if self.model is not None:
            data["model"] = self.model
        return data


@dataclass
class WorkflowResource:
    """
    A workflow directory tracked by the registry.

    ``relative_path`` and ``absolute_path`` point at the workflow directory,
    not at its descriptor file. ``inheritance_mode`` None means "default".
    """

    id: str
    name: str
    relative_path: str
    absolute_path: str
    description: str = ""
    model: Optional[str] = None
    inheritance_mode: Optional[str] = None

    @property
    def effective_inheritance_mode(self) -> str:
        return self.inheritance_mode or "default"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowResource":
        return cls(
            id=data["id"],
            name=data["name"],
            relative_path=data.get("relativePath", ""),
            absolute_path=data.get("absolutePath", ""),
            description=data.get("description") or "",
            model=data.get("model") or None,
            # modelInheritance is the key used by earlier releases
            inheritance_mode=data.get("inheritanceMode", data.get("modelInheritance")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "relativePath": self.relative_path,
            "absolutePath": self.absolute_path,
        }
        if self.model is not None:
            data["model"] = self.model
        if self.inheritance_mode is not None:
            data["inheritanceMode"] = self.inheritance_mode
        return data


@dataclass
class Project:
    """A registered project and the resources discovered inside it."""

    id: str
    name: str
    path: str
    created_at: str
    updated_at: str
    agents: list[AgentResource] = field(default_factory=list)
    workflows: list[WorkflowResource] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    _KEYS = ("id", "name", "path", "agents", "workflows", "createdAt", "updatedAt")

    def find_agent(self, agent_id: str) -> Optional[AgentResource]:
        return next((a for a in self.agents if a.id == agent_id), None)

    def find_workflow(self, workflow_id: str) -> Optional[WorkflowResource]:
        return next((w for w in self.workflows if w.id == workflow_id), None)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            path=data["path"],
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            agents=[AgentResource.from_dict(a) for a in data.get("agents") or []],
            workflows=[WorkflowResource.from_dict(w) for w in data.get("workflows") or []],
            extra=_extra(data, cls._KEYS),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "agents": [a.to_dict() for a in self.agents],
            "workflows": [w.to_dict() for w in self.workflows],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        data.update(self.extra)
        return data


@dataclass
class Registry:
    """The whole registry document."""

    projects: dict[str, Project] = field(default_factory=dict)
    schema_version: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KEYS = ("schemaVersion", "projects")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Registry":
        """
        Build a Registry from a parsed document.

        Raises:
            KeyError, TypeError: If a project entry is missing required fields
        """
        projects = {
            project_id: Project.from_dict({**project_data, "id": project_id})
            for project_id, project_data in data.get("projects", {}).items()
        }
        return cls(
            projects=projects,
            schema_version=data.get("schemaVersion"),
            extra=_extra(data, cls._KEYS),
        )

    def to_dict(self, schema_version: str = SCHEMA_VERSION) -> dict[str, Any]:
        data: dict[str, Any] = {"schemaVersion": schema_version}
        data.update(self.extra)
        data["projects"] = {pid: p.to_dict() for pid, p in self.projects.items()}
        return data

    def find_project_by_path(self, path: str) -> Optional[Project]:
        return next((p for p in self.projects.values() if p.path == path), None)


@dataclass
class ScanResult:
    """Resources discovered in a project tree, with identifiers assigned."""

    agents: list[AgentResource] = field(default_factory=list)
    workflows: list[WorkflowResource] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class RescanResult:
    """
    Outcome of a reconciliation run.

    Attributes:
        new_agents: File names of agents added to the registry
        deleted_agents: Entries removed because their files disappeared
        failed_agents: File names that could not be processed
        total_agents: Agent count after the rescan
        new_workflows: Names of workflows added to the registry
        deleted_workflows: Workflow entries removed
        failed_workflows: Relative paths of workflows that could not be processed
        total_workflows: Workflow count after the rescan
    """

    new_agents: list[str] = field(default_factory=list)
    deleted_agents: list[AgentResource] = field(default_factory=list)
    failed_agents: list[str] = field(default_factory=list)
    total_agents: int = 0
    new_workflows: list[str] = field(default_factory=list)
    deleted_workflows: list[WorkflowResource] = field(default_factory=list)
    failed_workflows: list[str] = field(default_factory=list)
    total_workflows: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new_agents or self.deleted_agents
            or self.new_workflows or self.deleted_workflows
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "newAgents": list(self.new_agents),
            "deletedAgents": [a.to_dict() for a in self.deleted_agents],
            "failedAgents": list(self.failed_agents),
            "totalAgents": self.total_agents,
            "newWorkflows": list(self.new_workflows),
            "deletedWorkflows": [w.to_dict() for w in self.deleted_workflows],
            "failedWorkflows": list(self.failed_workflows),
            "totalWorkflows": self.total_workflows,
        }
