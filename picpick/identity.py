"""Durable handles for document nodes and cached ancestor descriptions.

A handle is a marker class (``<prefix><uuid4 hex>``) attached to the node
itself, so a node that survives between scans is recognised by reading its
own class list. The selector ``.<marker>`` is what the highlight command
consumes later on.

Nodes that cannot carry a class (no markable surface) get a synthetic handle
that is never memoised; asking again for the same node yields a new handle.
Descriptions are cached per handle and are not refreshed when the DOM around
a node changes afterwards.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger("picpick.identity")

SYNTHETIC_PREFIX = "picpick-ephemeral-"


class MarkableNode(Protocol):
    """Structural view of a document node used by the registry."""

    tag: str
    element_id: str
    markable: bool

    @property
    def classes(self) -> Sequence[str]: ...

    @property
    def parent(self) -> Optional["MarkableNode"]: ...

    def add_class(self, name: str) -> None: ...


def describe_level(tag: str, element_id: str, classes: Sequence[str]) -> str:
    """Render one ancestor as ``tag.class1.class2#id``."""
    text = tag.lower()
    if classes:
        text += "." + ".".join(classes)
    if element_id:
        text += "#" + element_id
    return text


def ancestor_chain(node: MarkableNode) -> List[str]:
    """Describe ``node`` and its ancestors, ordered from the root down."""
    levels: List[str] = []
    current: Optional[MarkableNode] = node
    while current is not None:
        levels.append(describe_level(current.tag, current.element_id, current.classes))
        current = current.parent
    levels.reverse()
    return levels


class IdentityRegistry:
    """Assigns handles to nodes and memoises their path descriptions."""

    def __init__(self, prefix: str = "picpickdl") -> None:
        self.prefix = prefix
        self._descriptions: Dict[str, str] = {}

    def identify(self, node: MarkableNode) -> Tuple[str, bool]:
        """Return ``(selector, is_new)`` for ``node``, marking it if needed."""
        if not node.markable:
            handle = SYNTHETIC_PREFIX + uuid.uuid4().hex
            logger.debug("Node <%s> cannot be marked; using %s", node.tag, handle)
            return f".{handle}", True
        for name in node.classes:
            if name.startswith(self.prefix):
                return f".{name}", False
        marker = self.prefix + uuid.uuid4().hex
        node.add_class(marker)
        return f".{marker}", True

    def describe(self, selector: str, node: MarkableNode) -> str:
        """Return the cached ancestor description for ``selector``."""
        cached = self._descriptions.get(selector)
        if cached is not None:
            return cached
        description = ">".join(ancestor_chain(node))
        if not selector.startswith("." + SYNTHETIC_PREFIX):
            self._descriptions[selector] = description
        return description

    def locate(self, node: MarkableNode, source: str) -> Tuple[str, str]:
        """Identify ``node`` and describe it with the extraction ``source`` appended."""
        selector, _ = self.identify(node)
        return selector, f"{self.describe(selector, node)}>{source}"

    def strip_markers(self, markup: str) -> str:
        """Remove marker classes from serialized markup so it stays stable across scans."""
        cleaned = re.sub(r"\s*" + re.escape(self.prefix) + r"[0-9a-f]{32}", "", markup)
        return cleaned.replace(' class=""', "")

    def forget(self) -> None:
        self._descriptions.clear()

    def __len__(self) -> int:
        return len(self._descriptions)
