"""
Workflow resources.

A workflow is a directory under ``<project>/<bmad-folder>/bmm/workflows``
(nested directories allowed) holding a ``workflow.yaml`` descriptor and,
optionally, an ``instructions.md`` file. The identifier tag is prepended to
the descriptor, or to the instructions file when the descriptor cannot be
written.
"""
# [CTX:PBI-1:1-10:WORKFLOW]

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from ccr_registry.core.errors import CorruptionError
from ccr_registry.core.models import WorkflowResource
from ccr_registry.core.tags import PrependTag
from ccr_registry.core.validation import is_valid_inheritance_mode

logger = logging.getLogger(__name__)

WORKFLOW_DESCRIPTOR = "workflow.yaml"
WORKFLOW_INSTRUCTIONS = "instructions.md"

WORKFLOW_YAML_TAG = PrependTag("CCR-WORKFLOW-ID", "# CCR-WORKFLOW-ID: {id}")
WORKFLOW_MD_TAG = PrependTag("CCR-WORKFLOW-ID", "<!-- CCR-WORKFLOW-ID: {id} -->")

# Tag files in preference order; the descriptor wins when both disagree
WORKFLOW_TAG_FILES = (
    (WORKFLOW_DESCRIPTOR, WORKFLOW_YAML_TAG),
    (WORKFLOW_INSTRUCTIONS, WORKFLOW_MD_TAG),
)


@dataclass
class WorkflowCandidate:
    """
    A workflow found on disk, before an identifier is assigned.

    Attributes:
        directory: Absolute path to the workflow directory
        relative_path: Directory path relative to the project root (POSIX form)
        name: Descriptor ``name`` or the directory name
        description: Descriptor ``description`` or ""
        inheritance_mode: Validated ``modelInheritance``/``inheritanceMode``
    """
    directory: Path
    relative_path: str
    name: str
    description: str = ""
    inheritance_mode: Optional[str] = None

    def to_resource(self, workflow_id: str) -> WorkflowResource:
        return WorkflowResource(
            id=workflow_id,
            name=self.name,
            description=self.description,
            relative_path=self.relative_path,
            absolute_path=str(self.directory),
            inheritance_mode=self.inheritance_mode,
        )


def _text_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    return str(value).strip()


def parse_descriptor(descriptor: Path, project_path: Path) -> WorkflowCandidate:
    """
    Parse a ``workflow.yaml`` descriptor.

    Args:
        descriptor: Path to the descriptor file
        project_path: Project root, for the relative path

    Returns:
        WorkflowCandidate for the descriptor's directory

    Raises:
        CorruptionError: If the descriptor is empty, not YAML, or not a mapping
        OSError: If the descriptor cannot be read
    """
    text = descriptor.read_text(encoding="utf-8")
    body = WORKFLOW_YAML_TAG.strip(text)
    if not body.strip():
        raise CorruptionError(str(descriptor), "descriptor is empty")

    try:
        data = yaml.safe_load(body)
    except yaml.YAMLError as e:
        raise CorruptionError(str(descriptor), f"invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise CorruptionError(str(descriptor), "descriptor is not a mapping")

    directory = descriptor.parent
    mode = data.get("inheritanceMode", data.get("modelInheritance"))
    if not is_valid_inheritance_mode(mode):
        logger.warning(f"Ignoring invalid inheritance mode {mode!r} in {descriptor}")
        mode = None

    return WorkflowCandidate(
        directory=directory,
        relative_path=directory.relative_to(project_path).as_posix(),
        name=_text_field(data, "name") or directory.name,
        description=_text_field(data, "description"),
        inheritance_mode=mode,
    )
