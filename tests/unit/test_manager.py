"""
Unit tests for the project manager facade.
[CTX:PBI-1:1-15:MANAGER]

Tests cover:
- Project registration, duplicate and path checks
- Full scans preserving configuration
- Model and inheritance setters with validation before mutation
- Optimistic concurrency on configuration changes
- Auto-registration and agent file search
"""
import json

import pytest
import yaml

from ccr_registry.core.errors import (
    AgentNotFoundError,
    ConcurrentModificationError,
    DuplicateProjectError,
    ProjectNotFoundError,
    SecretDetectedError,
    ValidationError,
    WorkflowNotFoundError,
)
from ccr_registry.core.lookup import LookupStatus
from ccr_registry.core.manager import ProjectManager
from ccr_registry.core.telemetry import EventKind
from ccr_registry.core.validation import is_valid_project_id
from ccr_registry.resources.agent import AGENT_TAG

UNKNOWN_ID = "99999999-9999-4999-8999-999999999999"
IN_REPO_AGENT = "56565656-5656-4656-8656-565656565656"


def in_repo_project(project_id, name, root, agents=(), workflows=()):
    """A project entry as committed in a repository's projects.json."""
    return {
        "id": project_id,
        "name": name,
        "path": str(root),
        "createdAt": "2025-01-01T00:00:00.000000+00:00",
        "updatedAt": "2025-01-01T00:00:00.000000+00:00",
        "agents": list(agents),
        "workflows": list(workflows),
    }


@pytest.fixture
def manager(registry_config, fake_time, recorder):
    return ProjectManager(registry_config, time_provider=fake_time, recorder=recorder)


@pytest.fixture
async def registered(manager, make_project):
    """A registered project with two agents and one workflow."""
    tree = make_project("alpha")
    tree.add_agent("dev.md")
    tree.add_agent("sm.md")
    tree.add_workflow("party-mode")
    project = await manager.add_project(tree.root)
    return tree, project


class TestAddProject:
    """Test project registration."""

    @pytest.mark.asyncio
    async def test_registers_and_tags(self, manager, make_project, recorder):
        tree = make_project("alpha")
        files = [tree.add_agent(n) for n in ("a.md", "b.md", "c.md")]

        project = await manager.add_project(tree.root)

        assert is_valid_project_id(project.id)
        assert project.name == "alpha"
        assert project.path == str(tree.root)
        assert project.created_at == project.updated_at
        assert len({a.id for a in project.agents}) == 3
        for f in files:
            assert AGENT_TAG.count(f.read_text()) == 1
        assert recorder.get_events(EventKind.PROJECT_REGISTERED)[0].project_id == project.id

        stored = await manager.get_project(project.id)
        assert stored.to_dict() == project.to_dict()

    @pytest.mark.asyncio
    async def test_duplicate_path(self, manager, registered):
        tree, project = registered

        with pytest.raises(DuplicateProjectError, match=project.id):
            await manager.add_project(tree.root / "." / "_bmad" / "..")

    @pytest.mark.asyncio
    async def test_invalid_paths(self, manager, tmp_path):
        with pytest.raises(ValidationError, match="Invalid project path"):
            await manager.add_project(tmp_path / "missing")

        file_path = tmp_path / "file.txt"
        file_path.write_text("x")
        with pytest.raises(ValidationError):
            await manager.add_project(file_path)

    @pytest.mark.asyncio
    async def test_empty_project(self, manager, make_project):
        project = await manager.add_project(make_project("empty").root)

        assert project.agents == []
        assert project.workflows == []

    @pytest.mark.asyncio
    async def test_list_projects_sorted(self, manager, make_project):
        assert await manager.list_projects() == []

        for name in ("zeta", "Alpha", "mid"):
            await manager.add_project(make_project(name).root)

        assert [p.name for p in await manager.list_projects()] == ["Alpha", "mid", "zeta"]

    @pytest.mark.asyncio
    async def test_get_unknown_project(self, manager):
        assert await manager.get_project(UNKNOWN_ID) is None


class TestScanProject:
    """Test full re-discovery."""

    @pytest.mark.asyncio
    async def test_preserves_configuration(self, manager, registered):
        tree, project = registered
        dev = project.agents[0]
        workflow = project.workflows[0]
        await manager.set_agent_model(project.id, dev.id, "openai,gpt-4o")
        await manager.set_workflow_config(project.id, workflow.id, "anthropic,claude-3-haiku", "inherit")
        tree.add_agent("qa.md")

        scanned = await manager.scan_project(project.id)

        assert [a.name for a in scanned.agents] == ["dev.md", "qa.md", "sm.md"]
        assert scanned.find_agent(dev.id).model == "openai,gpt-4o"
        assert scanned.find_workflow(workflow.id).model == "anthropic,claude-3-haiku"
        assert scanned.find_workflow(workflow.id).inheritance_mode == "inherit"

    @pytest.mark.asyncio
    async def test_unknown_project(self, manager):
        with pytest.raises(ProjectNotFoundError):
            await manager.scan_project(UNKNOWN_ID)

    @pytest.mark.asyncio
    async def test_rescan_delegates(self, manager, registered):
        tree, project = registered
        tree.add_agent("new.md")

        result = await manager.rescan_project(project.id)

        assert result.new_agents == ["new.md"]


class TestSetAgentModel:
    """Test agent model assignment."""

    @pytest.mark.asyncio
    async def test_set_and_clear(self, manager, registered):
        _, project = registered
        agent_id = project.agents[0].id

        await manager.set_agent_model(project.id, agent_id, "openai,gpt-4o")
        assert (await manager.get_model_by_agent_id(agent_id)).model == "openai,gpt-4o"

        await manager.set_agent_model(project.id, agent_id, None)
        result = await manager.get_model_by_agent_id(agent_id)
        assert result.status is LookupStatus.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_updated_at_advances(self, manager, registered):
        _, project = registered

        await manager.set_agent_model(project.id, project.agents[0].id, "openai,gpt-4o")

        stored = await manager.get_project(project.id)
        assert stored.updated_at > project.updated_at
        assert stored.created_at == project.created_at

    @pytest.mark.asyncio
    async def test_secret_rejected_without_write(self, manager, registered, registry_config):
        _, project = registered
        before = registry_config.registry_path.read_bytes()

        with pytest.raises(SecretDetectedError):
            await manager.set_agent_model(project.id, project.agents[0].id, "sk-test-abc123,gpt-4o")

        assert registry_config.registry_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_malformed_model(self, manager, registered):
        _, project = registered
        with pytest.raises(ValidationError, match="Invalid model string format"):
            await manager.set_agent_model(project.id, project.agents[0].id, "gpt-4o")

    @pytest.mark.asyncio
    async def test_unknown_identifiers(self, manager, registered, registry_config):
        _, project = registered
        before = registry_config.registry_path.read_bytes()

        with pytest.raises(AgentNotFoundError, match=UNKNOWN_ID):
            await manager.set_agent_model(project.id, UNKNOWN_ID, "openai,gpt-4o")
        with pytest.raises(ProjectNotFoundError):
            await manager.set_agent_model(UNKNOWN_ID, project.agents[0].id, "openai,gpt-4o")

        assert registry_config.registry_path.read_bytes() == before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("which", ["project", "agent"])
    async def test_malformed_identifiers(self, manager, registered, registry_config, which):
        _, project = registered
        before = registry_config.registry_path.read_bytes()
        ids = {"project": project.id, "agent": project.agents[0].id}
        ids[which] = "not-a-uuid"

        with pytest.raises(ValidationError, match=f"Invalid {which} ID format"):
            await manager.set_agent_model(ids["project"], ids["agent"], "openai,gpt-4o")

        assert registry_config.registry_path.read_bytes() == before


class TestWorkflowSetters:
    """Test workflow model and inheritance assignment."""

    @pytest.mark.asyncio
    async def test_combined_setter(self, manager, registered):
        _, project = registered
        workflow_id = project.workflows[0].id

        updated = await manager.set_workflow_config(project.id, workflow_id, "openai,gpt-4o", "inherit")

        assert updated.model == "openai,gpt-4o"
        result = await manager.get_model_by_workflow_id(workflow_id)
        assert result.model == "openai,gpt-4o"
        assert result.inheritance_mode == "inherit"

    @pytest.mark.asyncio
    async def test_individual_setters_leave_other_value(self, manager, registered):
        _, project = registered
        workflow_id = project.workflows[0].id

        await manager.set_workflow_inheritance_mode(project.id, workflow_id, "inherit")
        await manager.set_workflow_model(project.id, workflow_id, "deepseek,deepseek-chat")

        workflow = (await manager.get_project(project.id)).find_workflow(workflow_id)
        assert workflow.inheritance_mode == "inherit"
        assert workflow.model == "deepseek,deepseek-chat"

        await manager.set_workflow_model(project.id, workflow_id, None)
        workflow = (await manager.get_project(project.id)).find_workflow(workflow_id)
        assert workflow.model is None
        assert workflow.inheritance_mode == "inherit"

    @pytest.mark.asyncio
    async def test_invalid_mode_rejects_whole_change(self, manager, registered, registry_config):
        _, project = registered
        before = registry_config.registry_path.read_bytes()

        with pytest.raises(ValidationError, match="Invalid inheritance mode"):
            await manager.set_workflow_config(project.id, project.workflows[0].id, "openai,gpt-4o", "parent")

        assert registry_config.registry_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, manager, registered):
        _, project = registered
        with pytest.raises(WorkflowNotFoundError, match=UNKNOWN_ID):
            await manager.set_workflow_model(project.id, UNKNOWN_ID, "openai,gpt-4o")

    @pytest.mark.asyncio
    async def test_malformed_workflow_identifiers(self, manager, registered):
        _, project = registered
        with pytest.raises(ValidationError, match="Invalid workflow ID format"):
            await manager.set_workflow_model(project.id, "wf-1", "openai,gpt-4o")
        with pytest.raises(ValidationError, match="Invalid project ID format"):
            await manager.set_workflow_inheritance_mode("", project.workflows[0].id, "inherit")

    @pytest.mark.asyncio
    async def test_records_config_change(self, manager, registered, recorder):
        _, project = registered
        await manager.set_workflow_model(project.id, project.workflows[0].id, "openai,gpt-4o")

        [event] = recorder.get_events(EventKind.CONFIG_CHANGED)
        assert "model=openai,gpt-4o" in event.detail


class TestOptimisticConcurrency:
    """Test stale-timestamp detection."""

    @pytest.mark.asyncio
    async def test_stale_workflow_update(self, manager, registered, registry_config, fake_time, recorder):
        _, project = registered
        workflow_id = project.workflows[0].id
        other = ProjectManager(registry_config, time_provider=fake_time, recorder=recorder)

        stale = (await manager.get_project(project.id)).updated_at
        await other.set_workflow_model(project.id, workflow_id, "openai,gpt-4o")

        with pytest.raises(ConcurrentModificationError, match=project.id):
            await manager.set_workflow_model(
                project.id, workflow_id, "deepseek,deepseek-chat", expected_updated_at=stale
            )

        workflow = (await manager.get_project(project.id)).find_workflow(workflow_id)
        assert workflow.model == "openai,gpt-4o"

    @pytest.mark.asyncio
    async def test_stale_agent_update(self, manager, registered):
        _, project = registered
        stale = project.updated_at
        await manager.set_agent_model(project.id, project.agents[1].id, "openai,gpt-4o")

        with pytest.raises(ConcurrentModificationError):
            await manager.set_agent_model(
                project.id, project.agents[0].id, "openai,gpt-4o", expected_updated_at=stale
            )

    @pytest.mark.asyncio
    async def test_fresh_timestamp_accepted(self, manager, registered):
        _, project = registered
        fresh = (await manager.get_project(project.id)).updated_at

        await manager.set_agent_model(
            project.id, project.agents[0].id, "openai,gpt-4o", expected_updated_at=fresh
        )

    @pytest.mark.asyncio
    async def test_write_between_read_and_save(self, manager, registered, monkeypatch):
        _, project = registered
        original_touch = manager.reconciler.touch

        def touch_while_another_writer_saves(p):
            original_touch(p)
            registry = manager.store._read_sync().registry
            registry.projects[project.id].updated_at = "2099-01-01T00:00:00.000000+00:00"
            manager.store._save_sync(registry)

        monkeypatch.setattr(manager.reconciler, "touch", touch_while_another_writer_saves)

        with pytest.raises(ConcurrentModificationError, match="2099-01-01"):
            await manager.set_agent_model(project.id, project.agents[0].id, "openai,gpt-4o")

        stored = await manager.get_project(project.id)
        assert stored.agents[0].model is None


class TestLookupsAndDetection:
    """Test lookup delegation."""

    @pytest.mark.asyncio
    async def test_detection(self, manager, registered):
        _, project = registered

        assert await manager.detect_project(project.agents[0].id) == project.id
        assert await manager.detect_project_by_workflow_id(project.workflows[0].id) == project.id
        assert (await manager.find_project_by_agent_id(project.agents[1].id)).id == project.id
        assert await manager.detect_project(UNKNOWN_ID) is None


class TestAutoRegister:
    """Test registration from an agent file path."""

    @pytest.mark.asyncio
    async def test_registers_unknown_project(self, manager, make_project):
        tree = make_project("beta")
        agent_file = tree.add_agent("dev.md")

        project = await manager.auto_register_from_agent_file(agent_file)

        assert project.path == str(tree.root)
        assert [a.name for a in project.agents] == ["dev.md"]
        assert await manager.auto_register_from_agent_file(agent_file) is None

    @pytest.mark.asyncio
    async def test_dot_bmad_layout(self, manager, make_project):
        tree = make_project("gamma", bmad_folder=".bmad")
        agent_file = tree.add_agent("pm.md")

        project = await manager.auto_register_from_agent_file(agent_file)

        assert project.path == str(tree.root)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_path", [
        "",
        "/somewhere/agents/dev.md",
        "/p/_bmad/bmm/workflows/dev.md",
        "/p/_bmad/bmm/agents/nested/dev.md",
    ])
    async def test_rejects_unexpected_layout(self, manager, bad_path):
        with pytest.raises(ValidationError):
            await manager.auto_register_from_agent_file(bad_path)

    @pytest.mark.asyncio
    async def test_merges_in_repo_registry(self, manager, make_project):
        tree = make_project("delta")
        agent_file = tree.add_agent("dev.md", "# Dev\n\n<!-- CCR-AGENT-ID: 550e8400-e29b-41d4-a716-446655440000 -->")
        project_id = "dddddddd-dddd-4ddd-8ddd-dddddddddddd"
        in_repo = {
            "schemaVersion": "1.0.0",
            "projects": {
                project_id: {
                    "id": project_id,
                    "name": "delta",
                    "path": str(tree.root),
                    "createdAt": "2025-01-01T00:00:00.000000+00:00",
                    "updatedAt": "2025-01-01T00:00:00.000000+00:00",
                    "agents": [{
                        "id": "550e8400-e29b-41d4-a716-446655440000",
                        "name": "dev.md",
                        "relativePath": "_bmad/bmm/agents/dev.md",
                        "absolutePath": str(agent_file),
                        "model": "openai,gpt-4o",
                    }],
                    "workflows": [],
                }
            },
        }
        (tree.root / "projects.json").write_text("// committed\n" + json.dumps(in_repo))

        project = await manager.auto_register_from_agent_file(agent_file)

        assert project.id == project_id
        assert project.agents[0].model == "openai,gpt-4o"
        assert (await manager.get_project(project_id)).name == "delta"

    @pytest.mark.asyncio
    async def test_in_repo_credentials_not_persisted(self, manager, make_project, registry_config):
        tree = make_project("zeta")
        agent_file = tree.add_agent("dev.md", f"# Dev\n\n<!-- CCR-AGENT-ID: {IN_REPO_AGENT} -->")
        project_id = "eeeeeeee-eeee-4eee-8eee-eeeeeeeeeeee"
        in_repo = {"projects": {project_id: in_repo_project(
            project_id, "zeta", tree.root,
            agents=[{
                "id": IN_REPO_AGENT,
                "name": "dev.md",
                "relativePath": "_bmad/bmm/agents/dev.md",
                "absolutePath": str(agent_file),
                "model": "sk-ant-abcdef123,gpt-4o",
            }],
            workflows=[
                {
                    "id": "12121212-1212-4212-8212-121212121212",
                    "name": "keep",
                    "relativePath": "_bmad/bmm/workflows/keep",
                    "absolutePath": str(tree.workflows_dir / "keep"),
                    "model": "openai,my-api-key",
                    "inheritanceMode": "inherit",
                },
                {
                    "id": "34343434-3434-4434-8434-343434343434",
                    "name": "broken",
                    "relativePath": "_bmad/bmm/workflows/broken",
                    "absolutePath": str(tree.workflows_dir / "broken"),
                    "inheritanceMode": "parent",
                },
            ],
        )}}
        (tree.root / "projects.json").write_text(json.dumps(in_repo))

        project = await manager.auto_register_from_agent_file(agent_file)

        stored = registry_config.registry_path.read_text()
        assert "sk-ant" not in stored
        assert "my-api-key" not in stored
        assert project.agents[0].model is None
        assert [w.name for w in project.workflows] == ["keep"]
        assert project.workflows[0].model is None
        assert project.workflows[0].inheritance_mode == "inherit"

    @pytest.mark.asyncio
    async def test_in_repo_project_with_registered_path_skipped(self, manager, registered, make_project):
        other_tree, other = registered
        tree = make_project("eta")
        agent_file = tree.add_agent("dev.md")
        own_id = "abababab-abab-4bab-8bab-abababababab"
        stray_id = "cdcdcdcd-cdcd-4dcd-8dcd-cdcdcdcdcdcd"
        in_repo = {"projects": {
            stray_id: in_repo_project(stray_id, "copy-of-alpha", other_tree.root),
            own_id: in_repo_project(own_id, "eta", tree.root),
        }}
        (tree.root / "projects.json").write_text(json.dumps(in_repo))

        project = await manager.auto_register_from_agent_file(agent_file)

        assert project.id == own_id
        projects = await manager.list_projects()
        paths = [p.path for p in projects]
        assert len(paths) == len(set(paths))
        assert {p.id for p in projects} == {other.id, own_id}

    @pytest.mark.asyncio
    async def test_invalid_in_repo_registry_ignored(self, manager, make_project):
        tree = make_project("epsilon")
        agent_file = tree.add_agent("dev.md")
        (tree.root / "projects.json").write_text("{ not json")

        project = await manager.auto_register_from_agent_file(agent_file)

        assert project.path == str(tree.root)


class TestFindAgentFile:
    """Test cross-project agent file search."""

    @pytest.mark.asyncio
    async def test_finds_tagged_file(self, manager, registered, make_project):
        tree, project = registered
        make_project("other").add_agent("dev.md")

        found = await manager.find_agent_file_by_id(project.agents[1].id)

        assert found == tree.agents_dir / "sm.md"

    @pytest.mark.asyncio
    async def test_missing(self, manager, registered, tmp_path):
        assert await manager.find_agent_file_by_id(UNKNOWN_ID) is None
        assert await manager.find_agent_file_by_id("bogus") is None
        assert await manager.find_agent_file_by_id(UNKNOWN_ID, tmp_path / "absent") is None


class TestFromConfigFile:
    """Test construction from a YAML config file."""

    def test_uses_file_values(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CCR_PROJECTS_FILE", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        path = tmp_path / "registry.yml"
        path.write_text(yaml.safe_dump({
            "registry_path": str(tmp_path / "custom.json"),
            "bmad_folders": [".bmad"],
        }))

        manager = ProjectManager.from_config_file(path)

        assert manager.store.registry_path == tmp_path / "custom.json"
        assert manager.scanner.config.bmad_folders == [".bmad"]
