"""
Identifier injector.
[CTX:PBI-1:1-12:INJECT]

Pairs resource files with registry entries by embedding a UUID v4 tag in the
file itself. Injection is idempotent: a file that already carries a valid tag
is never rewritten. Every modification goes through the store's atomic write.
"""
import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from ccr_registry.resources.agent import AGENT_TAG
from ccr_registry.resources.workflow import (
    WORKFLOW_DESCRIPTOR,
    WORKFLOW_INSTRUCTIONS,
    WORKFLOW_TAG_FILES,
)

from .errors import ResourceWriteError, ValidationError
from .store import atomic_write_text, read_text
from .tags import IdentifierTag
from .telemetry import EventKind, TelemetryRecorder, create_event, get_recorder
from .validation import is_valid_resource_id, require_resource_id

logger = logging.getLogger(__name__)


def _is_writable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.W_OK)


class IdentifierInjector:
    """Reads and writes identifier tags in agent and workflow files."""

    def __init__(
        self,
        backup_suffix: str = ".backup",
        log: Optional[logging.Logger] = None,
        recorder: Optional[TelemetryRecorder] = None,
    ):
        self.backup_suffix = backup_suffix
        self.log = log or logger
        self._recorder = recorder

    @property
    def recorder(self) -> TelemetryRecorder:
        return self._recorder or get_recorder()

    # -- agents ---------------------------------------------------------

    async def inject_agent_id(self, agent_path: str | Path) -> str:
        """
        Return the agent file's identifier, tagging the file if needed.

        Args:
            agent_path: Absolute path to the agent markdown file

        Returns:
            Existing or newly generated UUID v4

        Raises:
            ResourceWriteError: If the file is not writable
            ValidationError: If an existing tag holds a malformed identifier
            OSError: If reading or writing fails
        """
        return await asyncio.to_thread(self._inject_agent_id_sync, Path(agent_path))

    def _inject_agent_id_sync(self, agent_path: Path) -> str:
        if not _is_writable(agent_path):
            raise ResourceWriteError(
                f"Cannot write to agent file {agent_path}: file is not writable"
            )

        content = read_text(agent_path)
        existing = AGENT_TAG.find(content)
        if existing is not None:
            if not is_valid_resource_id(existing):
                raise ValidationError(f"Invalid existing agent ID in {agent_path}: {existing}")
            return existing

        agent_id = self._new_id("agent")
        atomic_write_text(
            agent_path, AGENT_TAG.embed(content, agent_id), self.backup_suffix, log=self.log
        )
        self.recorder.record(
            create_event(
                EventKind.ID_INJECTED,
                resource_id=agent_id,
                resource_name=agent_path.name,
                path=agent_path,
            )
        )
        return agent_id

    # -- workflows ------------------------------------------------------

    async def extract_workflow_id(self, workflow_dir: str | Path) -> Optional[str]:
        """
        Read the workflow identifier from its descriptor or instructions file.

        When both files carry a tag and they disagree, the descriptor wins and
        the inconsistency is logged.

        Returns:
            The identifier, or None if neither file is tagged

        Raises:
            ValidationError: If the chosen tag holds a malformed identifier
        """
        return await asyncio.to_thread(self._extract_workflow_id_sync, Path(workflow_dir))

    async def inject_workflow_id(self, workflow_dir: str | Path, workflow_id: str) -> Path:
        """
        Write ``workflow_id`` into the workflow's files.

        Prepends to ``workflow.yaml`` when writable, otherwise to a writable
        ``instructions.md``. A workflow that is already tagged is left as is.

        Returns:
            Path of the file holding the tag

        Raises:
            ValidationError: If ``workflow_id`` is not a UUID v4
            ResourceWriteError: If no candidate file is writable
        """
        return await asyncio.to_thread(self._inject_workflow_id_sync, Path(workflow_dir), workflow_id)

    async def ensure_workflow_id(self, workflow_dir: str | Path) -> str:
        """Return the workflow's identifier, generating and injecting one if absent."""
        return await asyncio.to_thread(self._ensure_workflow_id_sync, Path(workflow_dir))

    def _read_tags(self, workflow_dir: Path) -> list[tuple[Path, str]]:
        tags = []
        for filename, tag in WORKFLOW_TAG_FILES:
            path = workflow_dir / filename
            if not path.is_file():
                continue
            found = tag.find(read_text(path))
            if found is not None:
                tags.append((path, found))
        return tags

    def _extract_workflow_id_sync(self, workflow_dir: Path) -> Optional[str]:
        tags = self._read_tags(workflow_dir)
        if not tags:
            return None

        chosen_path, chosen = tags[0]
        for other_path, other in tags[1:]:
            if other.lower() != chosen.lower():
                self.log.warning(
                    f"Workflow ID mismatch in {workflow_dir}: {chosen_path.name} has {chosen}, "
                    f"{other_path.name} has {other}. Using {chosen_path.name}."
                )

        if not is_valid_resource_id(chosen):
            raise ValidationError(f"Invalid existing workflow ID in {chosen_path}: {chosen}")
        return chosen

    def _inject_workflow_id_sync(self, workflow_dir: Path, workflow_id: str) -> Path:
        require_resource_id(workflow_id, "workflow")

        tags = self._read_tags(workflow_dir)
        if tags:
            return tags[0][0]

        for filename, tag in WORKFLOW_TAG_FILES:
            path = workflow_dir / filename
            if _is_writable(path):
                self._prepend(path, tag, workflow_id)
                return path
            if path.exists():
                self.log.debug(f"{path} is not writable, trying next workflow file")

        raise ResourceWriteError(
            f"Cannot write workflow ID to {workflow_dir}: neither {WORKFLOW_DESCRIPTOR} "
            f"nor {WORKFLOW_INSTRUCTIONS} is writable"
        )

    def _ensure_workflow_id_sync(self, workflow_dir: Path) -> str:
        existing = self._extract_workflow_id_sync(workflow_dir)
        if existing is not None:
            return existing
        workflow_id = self._new_id("workflow")
        self._inject_workflow_id_sync(workflow_dir, workflow_id)
        return workflow_id

    def _prepend(self, path: Path, tag: IdentifierTag, workflow_id: str) -> None:
        content = read_text(path)
        atomic_write_text(path, tag.embed(content, workflow_id), self.backup_suffix, log=self.log)
        self.recorder.record(
            create_event(
                EventKind.ID_INJECTED,
                resource_id=workflow_id,
                resource_name=path.parent.name,
                path=path,
            )
        )

    @staticmethod
    def _new_id(kind: str) -> str:
        new_id = str(uuid.uuid4())
        return require_resource_id(new_id, kind)
