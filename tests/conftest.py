"""
Shared fixtures for registry tests.

Builds throwaway project trees in the conventional layout:

    <project>/<bmad-folder>/bmm/agents/*.md
    <project>/<bmad-folder>/bmm/workflows/**/workflow.yaml
"""
from pathlib import Path
from typing import Optional

import pytest

from ccr_registry.core.clock import FakeTimeProvider
from ccr_registry.core.config import RegistryConfig
from ccr_registry.core.telemetry import TelemetryRecorder


class ProjectTree:
    """Helper for writing agent and workflow files into a project directory."""

    def __init__(self, root: Path, bmad_folder: str = "_bmad"):
        self.root = root
        self.bmad_folder = bmad_folder
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def agents_dir(self) -> Path:
        return self.root / self.bmad_folder / "bmm" / "agents"

    @property
    def workflows_dir(self) -> Path:
        return self.root / self.bmad_folder / "bmm" / "workflows"

    def add_agent(self, name: str, content: str = "# Agent\n\nDoes things.\n") -> Path:
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        path = self.agents_dir / name
        path.write_text(content, encoding="utf-8")
        return path

    def add_workflow(
        self,
        relative_dir: str,
        descriptor: Optional[str] = None,
        instructions: Optional[str] = None,
    ) -> Path:
        directory = self.workflows_dir / relative_dir
        directory.mkdir(parents=True, exist_ok=True)
        if descriptor is None:
            descriptor = f"name: {Path(relative_dir).name}\ndescription: Test workflow\n"
        (directory / "workflow.yaml").write_text(descriptor, encoding="utf-8")
        if instructions is not None:
            (directory / "instructions.md").write_text(instructions, encoding="utf-8")
        return directory


@pytest.fixture
def projects_root(tmp_path):
    """Directory holding test projects."""
    root = (tmp_path / "projects").resolve()
    root.mkdir()
    return root


@pytest.fixture
def make_project(projects_root):
    """Factory creating a ProjectTree under ``projects_root``."""
    def _make(name: str = "demo", bmad_folder: str = "_bmad") -> ProjectTree:
        return ProjectTree(projects_root / name, bmad_folder)
    return _make


@pytest.fixture
def registry_config(tmp_path, projects_root):
    """Config pointing the registry at a temporary home directory."""
    return RegistryConfig(
        registry_path=tmp_path / "home" / ".claude-code-router" / "projects.json",
        search_dir=projects_root,
    )


@pytest.fixture
def fake_time():
    return FakeTimeProvider(initial_time=1_700_000_000.0)


@pytest.fixture
def recorder():
    """Recorder with stats enabled, isolated from the global one."""
    return TelemetryRecorder(collect_stats=True)
