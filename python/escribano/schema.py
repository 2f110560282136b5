"""
Document vocabulary: which node and mark kinds exist and what each
container may hold.

The schema is looked up through a process-wide cache with a declared
time-to-live so a deployment can swap the vocabulary without a restart;
`invalidate_schema_cache()` forces the next lookup to rebuild it.
"""

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, FrozenSet, List, Optional

import structlog

from escribano.config import get_settings
from escribano.nodes import CHANGE_TYPES, AtomNode, Node, TextNode

logger = structlog.get_logger(__name__)

BLOCK = "block"
INLINE = "inline"
LIST_ITEM = "listItem"


@dataclass(frozen=True)
class NodeSpec:
    name: str
    group: str  # block | inline | listItem | doc
    content: FrozenSet[str] = frozenset()  # allowed child groups
    textblock: bool = False
    atom: bool = False
    marks_allowed: bool = True


@dataclass(frozen=True)
class Schema:
    nodes: Dict[str, NodeSpec]
    marks: FrozenSet[str]
    heading_levels: range = range(1, 7)

    def spec(self, node_type: str) -> Optional[NodeSpec]:
        return self.nodes.get(node_type)

    def is_textblock(self, node_type: str) -> bool:
        spec = self.nodes.get(node_type)
        return bool(spec and spec.textblock)

    def holds_inline(self, node_type: str) -> bool:
        """True for containers whose children are inline content."""
        spec = self.nodes.get(node_type)
        return bool(spec and INLINE in spec.content)

    def block_types(self) -> List[str]:
        return [name for name, spec in self.nodes.items() if spec.group == BLOCK and not spec.atom and name != "blockChange"]

    def check(self, node: Node) -> List[str]:
        """Returns a list of problems; empty when the tree is valid."""
        problems: List[str] = []
        self._check(node, None, problems)
        return problems

    def _group_of(self, node: Node) -> Optional[str]:
        if isinstance(node, TextNode):
            return INLINE
        spec = self.nodes.get(node.type)
        return spec.group if spec else None

    def _check(self, node: Node, parent: Optional[NodeSpec], problems: List[str]):
        if isinstance(node, TextNode):
            if not node.text:
                problems.append("empty text node")
            if parent is not None and not parent.marks_allowed and node.marks:
                problems.append(f"marks not allowed inside {parent.name}")
            for mark in node.marks:
                if mark.type not in self.marks:
                    problems.append(f"unknown mark {mark.type}")
            return

        spec = self.nodes.get(node.type)
        if spec is None:
            problems.append(f"unknown node {node.type}")
            return
        if node.type == "heading" and node.attrs.get("level") not in self.heading_levels:
            problems.append(f"heading level {node.attrs.get('level')!r} out of range")
        if isinstance(node, AtomNode):
            return

        for child in node.content:
            group = self._group_of(child)
            if group is not None and group not in spec.content:
                problems.append(f"{child.type} not allowed inside {node.type}")
            # Text inside a change annotation follows the mark rules of the enclosing block.
            self._check(child, parent if node.type in CHANGE_TYPES and parent else spec, problems)


_BLOCK_CONTENT = frozenset({BLOCK})
_INLINE_CONTENT = frozenset({INLINE})


def build_default_schema() -> Schema:
    specs = [
        NodeSpec("doc", "doc", _BLOCK_CONTENT),
        NodeSpec("paragraph", BLOCK, _INLINE_CONTENT, textblock=True),
        NodeSpec("heading", BLOCK, _INLINE_CONTENT, textblock=True),
        NodeSpec("codeBlock", BLOCK, _INLINE_CONTENT, textblock=True, marks_allowed=False),
        NodeSpec("blockquote", BLOCK, _BLOCK_CONTENT),
        NodeSpec("bulletList", BLOCK, frozenset({LIST_ITEM})),
        NodeSpec("orderedList", BLOCK, frozenset({LIST_ITEM})),
        NodeSpec(LIST_ITEM, LIST_ITEM, _BLOCK_CONTENT),
        NodeSpec("horizontalRule", BLOCK, atom=True),
        NodeSpec("image", INLINE, atom=True),
        NodeSpec("hardBreak", INLINE, atom=True),
        NodeSpec("mention", INLINE, atom=True),
        NodeSpec("text", INLINE),
        # Change annotations
        NodeSpec("blockChange", BLOCK, _BLOCK_CONTENT),
        NodeSpec("inlineChange", INLINE, _INLINE_CONTENT),
        NodeSpec("lineBreakChange", INLINE, _INLINE_CONTENT),
    ]
    nodes = {spec.name: spec for spec in specs}
    marks = frozenset({"bold", "italic", "underline", "strike", "code", "link"})
    return Schema(nodes=nodes, marks=marks)


@dataclass
class _CacheEntry:
    schema: Schema
    created_at: float = field(default_factory=time.monotonic)

    def is_expired(self, ttl_seconds: float) -> bool:
        return time.monotonic() - self.created_at > ttl_seconds


_lock = Lock()
_entry: Optional[_CacheEntry] = None


def get_schema() -> Schema:
    global _entry
    ttl = get_settings().schema_cache_ttl_seconds
    with _lock:
        if _entry is None or _entry.is_expired(ttl):
            logger.debug("Building document schema", ttl_seconds=ttl)
            _entry = _CacheEntry(build_default_schema())
        return _entry.schema


def invalidate_schema_cache() -> None:
    global _entry
    with _lock:
        _entry = None
