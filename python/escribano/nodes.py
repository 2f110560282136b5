from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

CHANGE_TYPES = ("inlineChange", "blockChange", "lineBreakChange")
ADDED = "added"
DELETED = "deleted"

# Canonical mark order; unknown marks sort after these.
MARK_ORDER = ("link", "bold", "italic", "underline", "strike", "code")


@dataclass(frozen=True)
class Mark:
    type: str
    attrs: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type}
        if self.attrs:
            data["attrs"] = dict(self.attrs)
        return data


@dataclass(frozen=True)
class TextNode:
    text: str
    marks: Tuple[Mark, ...] = ()

    type = "text"


@dataclass(frozen=True)
class AtomNode:
    """Leaf that occupies one position unit and carries no text (hardBreak, image, ...)."""

    type: str
    attrs: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Container:
    type: str
    attrs: Dict[str, Any] = field(default_factory=dict)
    content: Tuple["Node", ...] = ()

    def shell(self) -> "Container":
        return replace(self, content=())

    def with_content(self, content) -> "Container":
        return replace(self, content=tuple(content))


Node = Union[Container, TextNode, AtomNode]

ATOM_TYPES = {"hardBreak", "image", "horizontalRule", "mention"}


def sort_marks(marks) -> Tuple[Mark, ...]:
    def rank(mark: Mark):
        if mark.type in MARK_ORDER:
            return (MARK_ORDER.index(mark.type), mark.type)
        return (len(MARK_ORDER), mark.type)

    return tuple(sorted(marks, key=rank))


def has_mark(marks, mark_type: str) -> bool:
    return any(m.type == mark_type for m in marks)


def add_mark_to_set(marks, mark: Mark) -> Tuple[Mark, ...]:
    return sort_marks([m for m in marks if m.type != mark.type] + [mark])


def remove_mark_from_set(marks, mark_type: str) -> Tuple[Mark, ...]:
    return tuple(m for m in marks if m.type != mark_type)


def node_size(node: Node) -> int:
    if isinstance(node, TextNode):
        return len(node.text)
    if isinstance(node, AtomNode):
        return 1
    return 2 + content_size(node)


def content_size(node: Container) -> int:
    return sum(node_size(child) for child in node.content)


def is_change(node: Node) -> bool:
    return isinstance(node, Container) and node.type in CHANGE_TYPES


def change_type(node: Node) -> Optional[str]:
    if is_change(node):
        return node.attrs.get("changeType")
    return None


def is_deleted(node: Node) -> bool:
    return change_type(node) == DELETED


def text_content(node: Node, include_deleted: bool = True) -> str:
    """Concatenated text of a subtree; hard breaks count as newlines."""
    if isinstance(node, TextNode):
        return node.text
    if isinstance(node, AtomNode):
        return "\n" if node.type == "hardBreak" else ""
    if not include_deleted and is_deleted(node):
        return ""
    return "".join(text_content(child, include_deleted) for child in node.content)


def iter_nodes(node: Node, pos: int = 0) -> Iterator[Tuple[Node, int]]:
    """
    Yields (node, pos) for every descendant of a container, depth first.
    `pos` is the position immediately before the node, relative to the
    start of the container's content.
    """
    if not isinstance(node, Container):
        return
    for child in node.content:
        yield child, pos
        if isinstance(child, Container):
            yield from iter_nodes(child, pos + 1)
        pos += node_size(child)


def node_from_json(data: Dict[str, Any]) -> Node:
    node_type = data.get("type")
    if not node_type:
        raise ValueError(f"Node without type: {data!r}")
    if node_type == "text":
        marks = [Mark(m["type"], dict(m.get("attrs") or {})) for m in data.get("marks") or []]
        return TextNode(data.get("text", ""), sort_marks(marks))
    attrs = dict(data.get("attrs") or {})
    if node_type in ATOM_TYPES:
        return AtomNode(node_type, attrs)
    children = [node_from_json(child) for child in data.get("content") or []]
    # Drop empty text nodes; they carry no position.
    children = [c for c in children if not (isinstance(c, TextNode) and not c.text)]
    return Container(node_type, attrs, tuple(children))


def node_to_json(node: Node) -> Dict[str, Any]:
    if isinstance(node, TextNode):
        data: Dict[str, Any] = {"type": "text", "text": node.text}
        if node.marks:
            data["marks"] = [m.to_json() for m in node.marks]
        return data
    data = {"type": node.type}
    if node.attrs:
        data["attrs"] = dict(node.attrs)
    if isinstance(node, Container) and node.content:
        data["content"] = [node_to_json(child) for child in node.content]
    return data


def doc(*blocks: Node) -> Container:
    return Container("doc", {}, tuple(blocks))


def paragraph(*inline: Union[Node, str]) -> Container:
    children: List[Node] = [TextNode(c) if isinstance(c, str) else c for c in inline]
    return Container("paragraph", {}, tuple(c for c in children if not (isinstance(c, TextNode) and not c.text)))


def heading(level: int, *inline: Union[Node, str]) -> Container:
    return replace(paragraph(*inline), type="heading", attrs={"level": level})


def text(value: str, *mark_types: str) -> TextNode:
    return TextNode(value, sort_marks(Mark(t) for t in mark_types))


def change(kind: str, change_kind: str, change_id: str, *content: Node, semantic_type: Optional[str] = None) -> Container:
    if semantic_type is None:
        semantic_type = "content" if kind == "inlineChange" else "block_change"
    attrs = {"changeType": change_kind, "changeId": change_id, "semanticType": semantic_type}
    return Container(kind, attrs, tuple(content))
