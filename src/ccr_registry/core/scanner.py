"""
Resource scanner.
[CTX:PBI-1:1-11:SCAN]

Walks a project tree for agent files and workflow descriptors. The scanner
only reads: identifier injection is the injector's job. Missing directories
and permission problems never fail the caller; they yield empty results and
a log line.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from ccr_registry.resources.agent import AGENT_FILE_GLOB
from ccr_registry.resources.workflow import (
    WORKFLOW_DESCRIPTOR,
    WorkflowCandidate,
    parse_descriptor,
)

from .config import RegistryConfig, get_default_config
from .errors import CorruptionError

logger = logging.getLogger(__name__)


class ResourceScanner:
    """Discovers agent and workflow resources inside a project directory."""

    def __init__(self, config: Optional[RegistryConfig] = None, log: Optional[logging.Logger] = None):
        """
        Initialize scanner.

        Args:
            config: Layout configuration (bmad folder names, subdirectories)
            log: Logger (defaults to this module's logger)
        """
        self.config = config or get_default_config()
        self.log = log or logger

    def bmad_roots(self, project_path: str | Path) -> list[Path]:
        """Existing ``<project>/<bmad-folder>`` directories, in configured order."""
        project = Path(project_path)
        roots = []
        for folder in self.config.bmad_folders:
            candidate = project / folder
            try:
                if candidate.is_dir():
                    roots.append(candidate)
            except OSError as e:
                self.log.warning(f"Cannot access {candidate}: {e}")
        return roots

    def agent_dirs(self, project_path: str | Path) -> list[Path]:
        return [root / self.config.agents_subdir for root in self.bmad_roots(project_path)]

    def workflow_dirs(self, project_path: str | Path) -> list[Path]:
        return [root / self.config.workflows_subdir for root in self.bmad_roots(project_path)]

    async def discover_agents(self, project_path: str | Path) -> list[Path]:
        """
        Find agent markdown files.

        Args:
            project_path: Absolute project root

        Returns:
            Sorted absolute paths of ``<bmad>/bmm/agents/*.md``; empty on
            missing directories or permission errors
        """
        return await asyncio.to_thread(self._discover_agents_sync, Path(project_path))

    async def scan_workflows(self, project_path: str | Path) -> list[WorkflowCandidate]:
        """
        Find and parse workflow descriptors.

        Workflow directories whose descriptor is absent, empty or unparsable
        are skipped with a warning.

        Args:
            project_path: Absolute project root

        Returns:
            WorkflowCandidate per valid descriptor, ordered by relative path
        """
        return await asyncio.to_thread(self._scan_workflows_sync, Path(project_path))

    def _discover_agents_sync(self, project_path: Path) -> list[Path]:
        found: list[Path] = []
        for agent_dir in self.agent_dirs(project_path):
            try:
                if not agent_dir.is_dir():
                    continue
                found.extend(p for p in agent_dir.glob(AGENT_FILE_GLOB) if p.is_file())
            except PermissionError:
                self.log.warning(f"Permission denied accessing agent directory: {agent_dir}")
                return []
            except OSError as e:
                self.log.warning(f"Cannot scan agent directory {agent_dir}: {e}")
                return []
        return sorted(found)

    def _scan_workflows_sync(self, project_path: Path) -> list[WorkflowCandidate]:
        candidates: list[WorkflowCandidate] = []
        for workflows_dir in self.workflow_dirs(project_path):
            try:
                if not workflows_dir.is_dir():
                    continue
                descriptors = sorted(workflows_dir.rglob(WORKFLOW_DESCRIPTOR))
            except PermissionError:
                self.log.warning(f"Permission denied accessing workflow directory: {workflows_dir}")
                continue
            except OSError as e:
                self.log.warning(f"Cannot scan workflow directory {workflows_dir}: {e}")
                continue

            for descriptor in descriptors:
                try:
                    candidates.append(parse_descriptor(descriptor, project_path))
                except CorruptionError as e:
                    self.log.warning(f"Skipping workflow {descriptor.parent.name}: {e}")
                except (OSError, UnicodeDecodeError) as e:
                    self.log.warning(f"Cannot read workflow descriptor {descriptor}: {e}")
        return candidates
