"""
ProjectManager: the registry's public entry points.
[CTX:PBI-1:1-15:MANAGER]

The CLI, the interactive configuration flow and the routing layer talk to the
registry only through this class. Every mutation validates its input first,
then loads the full document, applies the change, advances the project's
``updatedAt`` and saves the full document.
"""
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

import json5

from ccr_registry.resources.agent import AGENT_TAG

from .clock import TimeProvider, next_timestamp
from .config import RegistryConfig, get_default_config, load_config
from .errors import (
    AgentNotFoundError,
    ConcurrentModificationError,
    DuplicateProjectError,
    ProjectNotFoundError,
    ValidationError,
    WorkflowNotFoundError,
)
from .injector import IdentifierInjector
from .lookup import LookupIndex, ModelLookup
from .models import Project, Registry, RescanResult, WorkflowResource
from .reconciler import Reconciler
from .scanner import ResourceScanner
from .store import RegistryStore
from .telemetry import EventKind, TelemetryRecorder, configure_logging, create_event, get_recorder
from .validation import (
    is_valid_model_string,
    is_valid_project_id,
    is_valid_project_path,
    is_valid_resource_id,
    is_valid_workflow_config,
    require_inheritance_mode,
    require_model_string,
    require_resource_id,
)

logger = logging.getLogger(__name__)

# Marks a workflow setting that set_workflow_config should leave as it is
UNCHANGED: Any = object()


class ProjectManager:
    """Manages project registration, reconciliation and model configuration."""

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        *,
        store: Optional[RegistryStore] = None,
        log: Optional[logging.Logger] = None,
        time_provider: Optional[TimeProvider] = None,
        recorder: Optional[TelemetryRecorder] = None,
    ):
        """
        Initialize the manager.

        Args:
            config: Registry configuration (defaults to built-in defaults)
            store: Registry store; built from ``config.registry_path`` if omitted
            log: Logger used by every component (defaults to module loggers)
            time_provider: Clock for timestamps (defaults to system time)
            recorder: Telemetry recorder (defaults to the global recorder)
        """
        self.config = config or get_default_config()
        self.log = log or logger
        self._recorder = recorder
        self.store = store or RegistryStore(
            self.config.registry_path, self.config.backup_suffix, log=log, recorder=recorder
        )
        self.scanner = ResourceScanner(self.config, log=log)
        self.injector = IdentifierInjector(self.config.backup_suffix, log=log, recorder=recorder)
        self.reconciler = Reconciler(
            self.store, self.scanner, self.injector,
            time_provider=time_provider, log=log, recorder=recorder,
        )
        self.lookup = LookupIndex(self.store, log=log)

    @classmethod
    def from_config_file(cls, config_path: str | Path | None = None, **kwargs: Any) -> "ProjectManager":
        """Build a manager from a YAML config file and apply its log level."""
        config = load_config(config_path)
        configure_logging(config.log_level)
        return cls(config, **kwargs)

    @property
    def recorder(self) -> TelemetryRecorder:
        return self._recorder or get_recorder()

    @property
    def time_provider(self) -> TimeProvider:
        return self.reconciler.time_provider

    # -- registration and scanning ---------------------------------------

    async def add_project(self, project_path: str | Path) -> Project:
        """
        Register a project directory and scan it for resources.

        Args:
            project_path: Path to the project root (resolved to absolute)

        Returns:
            The new Project with discovered agents and workflows

        Raises:
            ValidationError: If the path is not an existing directory
            DuplicateProjectError: If the path is already registered
            IdentifierCollisionError: If two resource files share an ID
        """
        resolved = Path(project_path).expanduser().resolve()
        if not is_valid_project_path(resolved):
            raise ValidationError(f"Invalid project path: {resolved}")

        registry = await self.store.load()
        existing = registry.find_project_by_path(str(resolved))
        if existing is not None:
            raise DuplicateProjectError(str(resolved), existing.id)

        project_id = require_resource_id(str(uuid.uuid4()), "project")
        scan = await self.reconciler.discover(resolved, project_id)
        now = next_timestamp(self.time_provider)

        project = Project(
            id=project_id,
            name=resolved.name,
            path=str(resolved),
            created_at=now,
            updated_at=now,
            agents=scan.agents,
            workflows=scan.workflows,
        )
        registry.projects[project_id] = project
        await self.reconciler.persist(registry)

        self.recorder.record(create_event(
            EventKind.PROJECT_REGISTERED, project_id, resource_name=project.name, path=project.path,
            detail=f"{len(project.agents)} agent(s), {len(project.workflows)} workflow(s)",
        ))
        return project

    async def scan_project(self, project_id: str) -> Project:
        """
        Re-discover every resource of a registered project.

        Unlike :meth:`rescan_project`, the resource lists are rebuilt from
        disk. Model and inheritance settings are kept for resources whose
        identifier is unchanged.

        Raises:
            ProjectNotFoundError: If the project is not registered
            IdentifierCollisionError: If two resource files share an ID
        """
        registry = await self.store.load()
        project = self._require_project(registry, project_id)

        scan = await self.reconciler.discover(project.path, project.id)

        previous_agents = {a.id: a for a in project.agents}
        for agent in scan.agents:
            if agent.id in previous_agents:
                agent.model = previous_agents[agent.id].model

        previous_workflows = {w.id: w for w in project.workflows}
        for workflow in scan.workflows:
            if workflow.id in previous_workflows:
                old = previous_workflows[workflow.id]
                workflow.model = old.model
                workflow.inheritance_mode = old.inheritance_mode or workflow.inheritance_mode

        project.agents = scan.agents
        project.workflows = scan.workflows
        self.reconciler.touch(project)
        await self.reconciler.persist(registry)
        return project

    async def rescan_project(self, project_id: str) -> RescanResult:
        """Detect added and removed resources; see :meth:`Reconciler.rescan`."""
        return await self.reconciler.rescan(project_id)

    async def get_project(self, project_id: str) -> Optional[Project]:
        registry = await self.store.load()
        return registry.projects.get(project_id)

    async def list_projects(self) -> list[Project]:
        """All registered projects sorted by name; empty when none."""
        registry = await self.store.load()
        return sorted(registry.projects.values(), key=lambda p: (p.name.casefold(), p.name))

    # -- configuration setters -----------------------------------------

    async def set_agent_model(
        self,
        project_id: str,
        agent_id: str,
        model: Optional[str],
        expected_updated_at: Optional[str] = None,
    ) -> None:
        """
        Assign a model to an agent, or clear it with ``None``.

        Args:
            project_id: Project containing the agent
            agent_id: Agent UUID
            model: "provider,model" string, or None to fall back to the default
            expected_updated_at: Project ``updatedAt`` the caller last saw;
                defaults to the value read at the start of this call

        Raises:
            ValidationError: Malformed identifiers, or a malformed or secret-looking model string
            ProjectNotFoundError, AgentNotFoundError: Unknown identifiers
            ConcurrentModificationError: Project changed since it was read
        """
        require_resource_id(project_id, "project")
        require_resource_id(agent_id, "agent")
        if model is not None:
            require_model_string(model)

        def apply(project: Project) -> None:
            agent = project.find_agent(agent_id)
            if agent is None:
                raise AgentNotFoundError(agent_id, project_id)
            agent.model = model

        await self._update_project(project_id, apply, expected_updated_at)
        self.recorder.record(create_event(
            EventKind.CONFIG_CHANGED, project_id, agent_id, detail=f"model={model or '[default]'}"
        ))

    async def set_workflow_model(
        self,
        project_id: str,
        workflow_id: str,
        model: Optional[str],
        expected_updated_at: Optional[str] = None,
    ) -> None:
        """Assign or clear a workflow's model, leaving its inheritance mode alone."""
        await self.set_workflow_config(project_id, workflow_id, model, UNCHANGED, expected_updated_at)

    async def set_workflow_inheritance_mode(
        self,
        project_id: str,
        workflow_id: str,
        inheritance_mode: Optional[str],
        expected_updated_at: Optional[str] = None,
    ) -> None:
        """Set a workflow's inheritance mode, leaving its model alone."""
        await self.set_workflow_config(project_id, workflow_id, UNCHANGED, inheritance_mode, expected_updated_at)

    async def set_workflow_config(
        self,
        project_id: str,
        workflow_id: str,
        model: Optional[str] = UNCHANGED,
        inheritance_mode: Optional[str] = UNCHANGED,
        expected_updated_at: Optional[str] = None,
    ) -> WorkflowResource:
        """
        Atomically update a workflow's model and inheritance mode.

        Both values are validated before anything is written; either may be
        :data:`UNCHANGED`. ``None`` clears the value.

        Returns:
            The updated workflow entry

        Raises:
            ValidationError: Malformed identifiers, model string or inheritance mode
            ProjectNotFoundError, WorkflowNotFoundError: Unknown identifiers
            ConcurrentModificationError: Project changed since it was read
        """
        require_resource_id(project_id, "project")
        require_resource_id(workflow_id, "workflow")
        if model is not UNCHANGED and model is not None:
            require_model_string(model)
        if inheritance_mode is not UNCHANGED:
            require_inheritance_mode(inheritance_mode)

        updated: list[WorkflowResource] = []

        def apply(project: Project) -> None:
            workflow = project.find_workflow(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id, project_id)
            if model is not UNCHANGED:
                workflow.model = model
            if inheritance_mode is not UNCHANGED:
                workflow.inheritance_mode = inheritance_mode
            updated.append(workflow)

        await self._update_project(project_id, apply, expected_updated_at)
        workflow = updated[0]
        self.recorder.record(create_event(
            EventKind.CONFIG_CHANGED, project_id, workflow_id, workflow.name,
            detail=f"model={workflow.model or '[default]'} mode={workflow.effective_inheritance_mode}",
        ))
        return workflow

    async def _update_project(
        self,
        project_id: str,
        apply: Callable[[Project], None],
        expected_updated_at: Optional[str],
    ) -> None:
        registry = await self.store.load()
        project = self._require_project(registry, project_id)
        seen = expected_updated_at if expected_updated_at is not None else project.updated_at

        apply(project)
        self.reconciler.touch(project)

        # Optimistic check: someone else may have saved since we (or the caller) read
        current = (await self.store.load()).projects.get(project_id)
        found = current.updated_at if current else ""
        if found != seen:
            raise ConcurrentModificationError(project_id, seen, found)

        await self.reconciler.persist(registry)

    # -- lookups ---------------------------------------------------------

    async def get_model_by_agent_id(self, agent_id: str, project_id: Optional[str] = None) -> ModelLookup:
        return await self.lookup.get_model_by_agent_id(agent_id, project_id)

    async def get_model_by_workflow_id(self, workflow_id: str, project_id: Optional[str] = None) -> ModelLookup:
        return await self.lookup.get_model_by_workflow_id(workflow_id, project_id)

    async def detect_project(self, agent_id: str) -> Optional[str]:
        return await self.lookup.detect_project(agent_id)

    async def detect_project_by_workflow_id(self, workflow_id: str) -> Optional[str]:
        return await self.lookup.detect_project_by_workflow_id(workflow_id)

    async def find_project_by_agent_id(self, agent_id: str) -> Optional[Project]:
        return await self.lookup.find_project_by_agent_id(agent_id)

    # -- auto-registration -----------------------------------------------

    def project_root_for(self, agent_file: str | Path) -> Path:
        """
        Derive the project root from an agent file path.

        Raises:
            ValidationError: If the path is not ``<root>/<bmad>/<agents_subdir>/<file>``
        """
        path = Path(agent_file)
        parts = path.parts
        tail = Path(self.config.agents_subdir).parts
        for index, part in enumerate(parts):
            if part not in self.config.bmad_folders:
                continue
            if parts[index + 1:index + 1 + len(tail)] == tail and len(parts) == index + len(tail) + 2:
                return Path(*parts[:index])
        raise ValidationError(f"Agent file path does not match expected pattern: {agent_file}")

    async def auto_register_from_agent_file(self, agent_file: str | Path) -> Optional[Project]:
        """
        Register the project an agent file belongs to, if it is not yet known.

        A ``projects.json`` committed inside the project is merged first;
        entries already in the registry win over in-repo ones.

        Returns:
            The registered Project, or None if it was already registered
        """
        if not agent_file:
            raise ValidationError(f"Invalid agent file path: {agent_file!r}")
        project_path = self.project_root_for(Path(agent_file).expanduser().resolve())

        registry = await self.store.load()
        existing = registry.find_project_by_path(str(project_path))
        if existing is not None:
            self.log.debug(f"Project already registered: {existing.id} ({existing.name})")
            return None

        self.log.info(f"Auto-registering project from agent file: {project_path}")
        in_repo = await self._load_in_repo_registry(project_path / "projects.json")
        if in_repo is not None and in_repo.projects:
            for project_id, project in in_repo.projects.items():
                known = registry.projects.get(project_id)
                if known is None:
                    if not self._accept_in_repo_project(registry, project):
                        continue
                    registry.projects[project_id] = project
                    self.log.info(f"Merged project from in-repo config: {project_id} ({project.name})")
                elif known.path != project.path:
                    self.log.warning(
                        f"Path mismatch for project {project_id}: global={known.path!r} "
                        f"vs in-repo={project.path!r}. Using global path."
                    )
            await self.reconciler.persist(registry)

            merged = registry.find_project_by_path(str(project_path))
            if merged is not None:
                self.log.info(f"Project registered after merge: {merged.id} ({merged.name})")
                return merged

        project = await self.add_project(project_path)
        self.log.info(f"Successfully auto-registered project: {project.id} ({project.name})")
        return project

    def _accept_in_repo_project(self, registry: Registry, project: Project) -> bool:
        """
        Check an in-repo project before it joins the registry.

        Projects with a malformed ID or a path that is already registered are
        rejected. Credential-like or malformed model strings are cleared, and
        workflow entries that still fail validation are dropped.
        """
        if not is_valid_project_id(project.id):
            self.log.warning(f"Skipping in-repo project with invalid ID: {project.id!r}")
            return False
        owner = registry.find_project_by_path(project.path)
        if owner is not None:
            self.log.warning(
                f"Skipping in-repo project {project.id}: path {project.path!r} "
                f"is already registered as {owner.id}"
            )
            return False

        for resource in [*project.agents, *project.workflows]:
            if resource.model is not None and not is_valid_model_string(resource.model):
                self.log.warning(f"Dropping invalid model for in-repo resource {resource.name} ({resource.id})")
                resource.model = None

        workflows = []
        for workflow in project.workflows:
            if is_valid_workflow_config(workflow.to_dict()):
                workflows.append(workflow)
            else:
                self.log.warning(f"Dropping invalid in-repo workflow {workflow.name} ({workflow.id})")
        project.workflows = workflows
        return True

    async def _load_in_repo_registry(self, path: Path) -> Optional[Registry]:
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            self.log.debug(f"No in-repo projects.json at {path}: {e}")
            return None
        try:
            data = json5.loads(content)
            if not isinstance(data, dict) or not isinstance(data.get("projects"), dict):
                raise ValueError("missing projects mapping")
            return Registry.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            self.log.debug(f"No valid in-repo projects.json found at {path}: {e}")
            return None

    async def find_agent_file_by_id(self, agent_id: str, search_dir: str | Path | None = None) -> Optional[Path]:
        """
        Search project directories for the agent file carrying ``agent_id``.

        Args:
            agent_id: Agent UUID to look for
            search_dir: Directory whose children are project roots
                (defaults to ``config.search_dir``)

        Returns:
            Path to the agent file, or None
        """
        if not is_valid_resource_id(agent_id):
            return None
        base = Path(search_dir) if search_dir is not None else self.config.search_dir

        try:
            project_dirs = await asyncio.to_thread(
                lambda: sorted(p for p in base.iterdir() if p.is_dir())
            )
        except OSError as e:
            self.log.debug(f"Error searching for agent file in {base}: {e}")
            return None

        for project_dir in project_dirs:
            for agent_file in await self.scanner.discover_agents(project_dir):
                try:
                    content = await asyncio.to_thread(agent_file.read_text, encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    continue
                found = AGENT_TAG.find(content)
                if found is not None and found.lower() == agent_id.lower():
                    self.log.debug(f"Found agent file for {agent_id}: {agent_file}")
                    return agent_file
        return None

    @staticmethod
    def _require_project(registry: Registry, project_id: str) -> Project:
        project = registry.projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project
