"""
Identifier tag styles.

This module defines the abstraction for identifier tags embedded in resource
files. A tag style knows how to find an existing tag in a file's text and how
to embed a new one while preserving every original byte.
"""
# [CTX:PBI-1:1-8:TAGS]

import re
from abc import ABC, abstractmethod
from typing import Optional


class IdentifierTag(ABC):
    """
    Abstract base class for identifier tag styles.

    Subclasses decide where the tag goes (end or start of the file). The
    template must contain a single ``{id}`` placeholder.
    """

    def __init__(self, label: str, template: str):
        """
        Args:
            label: Tag label, e.g. "CCR-AGENT-ID"
            template: Full tag text with an ``{id}`` placeholder
        """
        self.label = label
        self.template = template
        head, _, tail = template.partition("{id}")
        self._pattern = re.compile(
            re.escape(head) + r"([^\s>]+)" + re.escape(tail),
        )

    def render(self, resource_id: str) -> str:
        """Render the tag text for an identifier."""
        return self.template.format(id=resource_id)

    def find(self, content: str) -> Optional[str]:
        """
        Find the identifier of the first tag in ``content``.

        Returns:
            The raw identifier text (not validated), or None if no tag is present
        """
        match = self._pattern.search(content)
        return match.group(1) if match else None

    def count(self, content: str) -> int:
        """Number of tags of this style in ``content``."""
        return len(self._pattern.findall(content))

    @abstractmethod
    def embed(self, content: str, resource_id: str) -> str:
        """
        Return ``content`` with a tag for ``resource_id`` added.

        Args:
            content: Original file text
            resource_id: Identifier to embed

        Returns:
            New file text containing every original character in order
        """
        pass


class AppendTag(IdentifierTag):
    """
    Tag placed at the end of the file.

    Exactly one blank line separates the tag from prior content; an empty
    file becomes just the tag.
    """

    def embed(self, content: str, resource_id: str) -> str:
        if not content:
            separator = ""
        elif content.endswith("\n\n"):
            separator = ""
        elif content.endswith("\n"):
            separator = "\n"
        else:
            separator = "\n\n"
        return f"{content}{separator}{self.render(resource_id)}"


class PrependTag(IdentifierTag):
    """Tag placed as the first line of the file."""

    def embed(self, content: str, resource_id: str) -> str:
        return f"{self.render(resource_id)}\n{content}"

    def strip(self, content: str) -> str:
        """Drop a leading tag line, leaving the rest of the text unchanged."""
        first, sep, rest = content.partition("\n")
        if self._pattern.fullmatch(first.rstrip("\r")):
            return rest
        return content
