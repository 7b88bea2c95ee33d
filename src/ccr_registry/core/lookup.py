"""
Lookup index: read-only queries used by the routing layer.
[CTX:PBI-1:1-14:LOOKUP]

Lookups never raise for unknown or malformed identifiers. They distinguish
"not found" from "found but not configured" so the caller can fall back to
its default model only when appropriate.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ccr_registry.resources.agent import AGENT_TAG

from .models import Project, Registry
from .store import RegistryStore
from .validation import is_valid_resource_id

logger = logging.getLogger(__name__)


class LookupStatus(Enum):
    """Outcome of a model lookup."""
    FOUND = "found"                    # Resource exists and has a model
    NOT_CONFIGURED = "not_configured"  # Resource exists, no model: use the default
    NOT_FOUND = "not_found"            # No such resource (or malformed ID)


@dataclass
class ModelLookup:
    """
    Result of resolving a resource identifier to its model.

    Attributes:
        status: Lookup outcome
        model: Configured "provider,model", when status is FOUND
        project_id: Project the resource was found in
        inheritance_mode: Effective workflow inheritance mode (workflows only)
    """
    status: LookupStatus
    model: Optional[str] = None
    project_id: Optional[str] = None
    inheritance_mode: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status is not LookupStatus.NOT_FOUND


NOT_FOUND = ModelLookup(LookupStatus.NOT_FOUND)


class LookupIndex:
    """Resolves agent and workflow identifiers against the stored registry."""

    def __init__(self, store: RegistryStore, log: Optional[logging.Logger] = None):
        self.store = store
        self.log = log or logger

    async def get_model_by_agent_id(self, agent_id: str, project_id: Optional[str] = None) -> ModelLookup:
        """
        Resolve an agent identifier to its configured model.

        Args:
            agent_id: Agent UUID
            project_id: Restrict the search to this project. Two projects may
                contain the same agent ID; each resolves independently.

        Returns:
            ModelLookup; NOT_FOUND for malformed or unknown IDs
        """
        if not is_valid_resource_id(agent_id):
            self.log.debug(f"Invalid agent ID format: {agent_id}")
            return NOT_FOUND

        registry = await self.store.load()
        for project in self._candidates(registry, project_id):
            agent = project.find_agent(agent_id)
            if agent is None:
                continue
            if agent.model:
                self.log.debug(f"Found model for agent {agent_id} in project {project.id}: {agent.model}")
                return ModelLookup(LookupStatus.FOUND, agent.model, project.id)
            self.log.debug(f"Agent {agent_id} found in project {project.id} but no model configured")
            return ModelLookup(LookupStatus.NOT_CONFIGURED, None, project.id)

        self.log.debug(f"Agent not found: {agent_id}, using default model")
        return NOT_FOUND

    async def get_model_by_workflow_id(self, workflow_id: str, project_id: Optional[str] = None) -> ModelLookup:
        """Resolve a workflow identifier to its model and inheritance mode."""
        if not is_valid_resource_id(workflow_id):
            self.log.debug(f"Invalid workflow ID format: {workflow_id}")
            return NOT_FOUND

        registry = await self.store.load()
        for project in self._candidates(registry, project_id):
            workflow = project.find_workflow(workflow_id)
            if workflow is None:
                continue
            mode = workflow.effective_inheritance_mode
            if workflow.model:
                return ModelLookup(LookupStatus.FOUND, workflow.model, project.id, mode)
            self.log.debug(f"Workflow {workflow_id} found in project {project.id} but no model configured")
            return ModelLookup(LookupStatus.NOT_CONFIGURED, None, project.id, mode)

        self.log.debug(f"Workflow not found: {workflow_id}, using default model")
        return NOT_FOUND

    async def detect_project(self, agent_id: str) -> Optional[str]:
        """Return the ID of the first project containing ``agent_id``."""
        project = await self.find_project_by_agent_id(agent_id)
        return project.id if project else None

    async def detect_project_by_workflow_id(self, workflow_id: str) -> Optional[str]:
        """Return the ID of the first project containing ``workflow_id``."""
        if not is_valid_resource_id(workflow_id):
            self.log.debug(f"Invalid workflow ID format in detect_project_by_workflow_id: {workflow_id}")
            return None
        registry = await self.store.load()
        for project in registry.projects.values():
            if project.find_workflow(workflow_id):
                return project.id
        return None

    async def find_project_by_agent_id(self, agent_id: str) -> Optional[Project]:
        """Return the first project containing ``agent_id``, or None."""
        if not is_valid_resource_id(agent_id):
            self.log.debug(f"Invalid agent ID format in detect_project: {agent_id}")
            return None
        registry = await self.store.load()
        for project in registry.projects.values():
            if project.find_agent(agent_id):
                self.log.debug(f"Agent {agent_id} found in project {project.id}")
                return project
        self.log.debug(f"Agent {agent_id} not found in any project")
        return None

    @staticmethod
    def _candidates(registry: Registry, project_id: Optional[str]) -> list[Project]:
        if project_id is None:
            return list(registry.projects.values())
        project = registry.projects.get(project_id)
        return [project] if project else []


def extract_agent_id(body: Any, log: Optional[logging.Logger] = None) -> Optional[str]:
    """
    Pull the agent identifier out of a routing request body.

    System prompt text blocks are searched first, then string message
    contents. Only the first tag found is considered.

    Args:
        body: Request body mapping (``system`` list, ``messages`` list)
        log: Logger for debug output

    Returns:
        The agent UUID, or None if absent or malformed
    """
    log = log or logger
    if not isinstance(body, dict):
        log.debug("Malformed request: missing body")
        return None

    texts: list[str] = []
    system = body.get("system")
    if isinstance(system, list):
        texts.extend(
            block["text"] for block in system
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        )
    elif isinstance(system, str):
        texts.append(system)

    messages = body.get("messages")
    if isinstance(messages, list):
        texts.extend(
            m["content"] for m in messages
            if isinstance(m, dict) and isinstance(m.get("content"), str)
        )

    for text in texts:
        agent_id = AGENT_TAG.find(text)
        if agent_id is None:
            continue
        if not is_valid_resource_id(agent_id):
            log.warning(f"Invalid agent ID format in request: {agent_id}")
            return None
        log.debug(f"Agent ID extracted from request: {agent_id}")
        return agent_id

    log.debug("No agent ID found in request")
    return None
