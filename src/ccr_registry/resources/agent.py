"""
Agent resource files.

Agents are markdown files under ``<project>/<bmad-folder>/bmm/agents``. Their
identifier is appended as an HTML comment so it stays invisible when the
markdown is rendered.
"""
# [CTX:PBI-1:1-9:AGENT]

from pathlib import Path

from ccr_registry.core.models import AgentResource
from ccr_registry.core.tags import AppendTag

AGENT_TAG = AppendTag("CCR-AGENT-ID", "<!-- CCR-AGENT-ID: {id} -->")

AGENT_FILE_GLOB = "*.md"


def build_agent(agent_id: str, agent_file: Path, project_path: Path) -> AgentResource:
    """
    Create the registry entry for an agent file.

    Args:
        agent_id: Identifier embedded in the file
        agent_file: Absolute path to the agent markdown file
        project_path: Project root the relative path is computed from

    Returns:
        AgentResource named after the file
    """
    return AgentResource(
        id=agent_id,
        name=agent_file.name,
        relative_path=agent_file.relative_to(project_path).as_posix(),
        absolute_path=str(agent_file),
    )
