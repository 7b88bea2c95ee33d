"""
Reconciler (rescan engine).
[CTX:PBI-1:1-13:RESCAN]

Keeps three state surfaces in step: the resource files on disk, the
identifier tags inside them, and the registry document. A failure on one
resource is recorded and the batch carries on; the registry is only written
after the whole document passes shape validation.
"""
import logging
from pathlib import Path
from typing import Optional

from ccr_registry.resources.agent import build_agent

from .clock import SystemTimeProvider, TimeProvider, next_timestamp
from .errors import IdentifierCollisionError, ProjectNotFoundError, ValidationError
from .injector import IdentifierInjector
from .models import AgentResource, Project, Registry, RescanResult, ScanResult, WorkflowResource
from .scanner import ResourceScanner
from .store import RegistryStore
from .telemetry import EventKind, TelemetryRecorder, create_event, get_recorder
from .validation import is_valid_project_id, is_valid_registry_data

logger = logging.getLogger(__name__)


def ensure_unique_ids(resources: list[AgentResource] | list[WorkflowResource], project_path: str) -> None:
    """
    Raise if two resources share an identifier.

    Raises:
        IdentifierCollisionError: On the first duplicate found
    """
    seen: set[str] = set()
    for resource in resources:
        key = resource.id.lower()
        if key in seen:
            raise IdentifierCollisionError(resource.id, project_path)
        seen.add(key)


class Reconciler:
    """Diffs on-disk resources against the registry and applies the result."""

    def __init__(
        self,
        store: RegistryStore,
        scanner: ResourceScanner,
        injector: IdentifierInjector,
        time_provider: Optional[TimeProvider] = None,
        log: Optional[logging.Logger] = None,
        recorder: Optional[TelemetryRecorder] = None,
    ):
        self.store = store
        self.scanner = scanner
        self.injector = injector
        self.time_provider = time_provider or SystemTimeProvider()
        self.log = log or logger
        self._recorder = recorder

    @property
    def recorder(self) -> TelemetryRecorder:
        return self._recorder or get_recorder()

    def touch(self, project: Project) -> None:
        """Advance ``updatedAt`` strictly past its current value."""
        project.updated_at = next_timestamp(self.time_provider, project.updated_at)

    async def discover(self, project_path: str | Path, project_id: Optional[str] = None) -> ScanResult:
        """
        Discover every resource in a project tree and assign identifiers.

        Files that cannot be processed are logged and listed in
        ``ScanResult.failed``; they do not abort discovery.

        Args:
            project_path: Absolute project root
            project_id: Project the scan belongs to, for telemetry

        Returns:
            ScanResult with agents and workflows in discovery order

        Raises:
            IdentifierCollisionError: If two files of one kind carry the same ID
        """
        root = Path(project_path)
        result = ScanResult()

        for agent_file in await self.scanner.discover_agents(root):
            try:
                agent_id = await self.injector.inject_agent_id(agent_file)
            except (OSError, ValidationError) as e:
                self.log.warning(f"Failed to process agent file {agent_file}: {e}")
                self._failed(project_id, agent_file.name, agent_file, e)
                result.failed.append(str(agent_file))
                continue
            result.agents.append(build_agent(agent_id, agent_file, root))

        for candidate in await self.scanner.scan_workflows(root):
            try:
                workflow_id = await self.injector.ensure_workflow_id(candidate.directory)
            except (OSError, ValidationError) as e:
                self.log.warning(f"Failed to process workflow {candidate.relative_path}: {e}")
                self._failed(project_id, candidate.name, candidate.directory, e)
                result.failed.append(str(candidate.directory))
                continue
            result.workflows.append(candidate.to_resource(workflow_id))

        ensure_unique_ids(result.agents, str(root))
        ensure_unique_ids(result.workflows, str(root))
        return result

    async def rescan(self, project_id: str) -> RescanResult:
        """
        Reconcile one project against the filesystem and persist the result.

        Args:
            project_id: UUID of the registered project

        Returns:
            RescanResult describing new, deleted and failed resources

        Raises:
            ProjectNotFoundError: If the ID is malformed or not registered
            ValidationError: If the updated document fails shape validation
            RegistryWriteError: If the registry cannot be written
        """
        if not is_valid_project_id(project_id):
            raise ProjectNotFoundError(project_id)

        registry = await self.store.load()
        project = registry.projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)

        root = Path(project.path)
        result = RescanResult()

        await self._reconcile_agents(project, root, result)
        await self._reconcile_workflows(project, root, result)

        self.touch(project)
        result.total_agents = len(project.agents)
        result.total_workflows = len(project.workflows)

        await self.persist(registry)
        return result

    async def persist(self, registry: Registry) -> None:
        """Validate the whole document, then save it."""
        if not is_valid_registry_data(registry.to_dict()):
            raise ValidationError("Invalid projects data structure detected before save")
        await self.store.save(registry)

    async def _reconcile_agents(self, project: Project, root: Path, result: RescanResult) -> None:
        on_disk = {path.name: path for path in await self.scanner.discover_agents(root)}
        recorded = {agent.name for agent in project.agents}

        new_names = [name for name in on_disk if name not in recorded]
        deleted = [agent for agent in project.agents if agent.name not in on_disk]

        # Removals first, so a renamed file is not mistaken for a duplicate
        for agent in deleted:
            project.agents.remove(agent)
            result.deleted_agents.append(agent)
            self.recorder.record(create_event(
                EventKind.AGENT_REMOVED, project.id, agent.id, agent.name, agent.absolute_path
            ))
        removed = {agent.id.lower(): agent for agent in deleted}

        for name in new_names:
            agent_file = on_disk[name]
            try:
                agent_id = await self.injector.inject_agent_id(agent_file)
            except (OSError, ValidationError) as e:
                self.log.warning(f"Failed to process new agent {name}: {e}")
                self._failed(project.id, name, agent_file, e)
                result.failed_agents.append(name)
                continue

            if any(a.id == agent_id or a.name == name for a in project.agents):
                self.log.warning(f"Agent {name} ({agent_id}) already exists, skipping")
                self.recorder.record(create_event(
                    EventKind.RESOURCE_SKIPPED, project.id, agent_id, name, agent_file, "duplicate"
                ))
                continue

            agent = build_agent(agent_id, agent_file, root)
            previous = removed.get(agent_id.lower())
            if previous is not None:
                agent.model = previous.model
            project.agents.append(agent)
            result.new_agents.append(name)
            self.recorder.record(create_event(
                EventKind.AGENT_DISCOVERED, project.id, agent_id, name, agent_file
            ))

    async def _reconcile_workflows(self, project: Project, root: Path, result: RescanResult) -> None:
        on_disk = {c.relative_path: c for c in await self.scanner.scan_workflows(root)}
        recorded = {workflow.relative_path for workflow in project.workflows}

        new_keys = [key for key in on_disk if key not in recorded]
        deleted = [w for w in project.workflows if w.relative_path not in on_disk]

        for workflow in deleted:
            project.workflows.remove(workflow)
            result.deleted_workflows.append(workflow)
            self.recorder.record(create_event(
                EventKind.WORKFLOW_REMOVED, project.id, workflow.id, workflow.name, workflow.absolute_path
            ))
        removed = {workflow.id.lower(): workflow for workflow in deleted}

        for key in new_keys:
            candidate = on_disk[key]
            try:
                workflow_id = await self.injector.ensure_workflow_id(candidate.directory)
            except (OSError, ValidationError) as e:
                self.log.warning(f"Failed to process new workflow {key}: {e}")
                self._failed(project.id, candidate.name, candidate.directory, e)
                result.failed_workflows.append(key)
                continue

            if any(w.id == workflow_id or w.relative_path == key for w in project.workflows):
                self.log.warning(f"Workflow {candidate.name} ({workflow_id}) already exists, skipping")
                self.recorder.record(create_event(
                    EventKind.RESOURCE_SKIPPED, project.id, workflow_id, candidate.name,
                    candidate.directory, "duplicate",
                ))
                continue

            workflow = candidate.to_resource(workflow_id)
            previous = removed.get(workflow_id.lower())
            if previous is not None:
                workflow.model = previous.model
                workflow.inheritance_mode = previous.inheritance_mode or workflow.inheritance_mode
            project.workflows.append(workflow)
            result.new_workflows.append(candidate.name)
            self.recorder.record(create_event(
                EventKind.WORKFLOW_DISCOVERED, project.id, workflow_id, candidate.name, candidate.directory
            ))

    def _failed(self, project_id: Optional[str], name: str, path: Path, error: Exception) -> None:
        self.recorder.record(create_event(
            EventKind.RESOURCE_FAILED, project_id, None, name, path, str(error)
        ))
