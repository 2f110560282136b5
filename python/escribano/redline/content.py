import re
from typing import Dict, List, Optional, Sequence

from escribano.nodes import AtomNode, Container, Mark, Node, TextNode, add_mark_to_set, doc, sort_marks

STYLE_TAG_RE = re.compile(r"\[(/?)(b|i|u|s|code)\]")
STYLE_TAG_MARKS = {"b": "bold", "i": "italic", "u": "underline", "s": "strike", "code": "code"}
PARAGRAPH_BREAK_RE = re.compile(r"\n{2,}")
LIST_PREFIX_RE = re.compile(r"^\s*(?:[-*\u2022]|\d+[.)])\s+")

BLOCK_TYPE_ALIASES: Dict[str, str] = {
    "p": "paragraph",
    "quote": "blockquote",
    "bullet_list": "bulletList",
    "list": "bulletList",
    "ordered_list": "orderedList",
    "code": "codeBlock",
    "code_block": "codeBlock",
}


def canonical_block_type(block_type: str) -> str:
    return BLOCK_TYPE_ALIASES.get(block_type, block_type)


def strip_style_tags(text: str) -> str:
    return STYLE_TAG_RE.sub("", text)


def parse_styled_text(text: str, base_marks: Sequence[Mark] = (), literal_newlines: bool = False) -> List[Node]:
    """
    Builds inline nodes from text with [b]..[/b]-style markers.

    Markers nest and stack on top of `base_marks`; a closing marker
    without a matching opener is dropped. Newlines become hard breaks
    unless `literal_newlines` is set.
    """
    nodes: List[Node] = []
    active: List[str] = []
    cursor = 0

    def flush(segment: str):
        if not segment:
            return
        marks = sort_marks(base_marks)
        for mark_type in active:
            marks = add_mark_to_set(marks, Mark(mark_type))
        if literal_newlines:
            nodes.append(TextNode(segment, marks))
            return
        for i, line in enumerate(segment.split("\n")):
            if i:
                nodes.append(AtomNode("hardBreak"))
            if line:
                nodes.append(TextNode(line, marks))

    for m in STYLE_TAG_RE.finditer(text):
        flush(text[cursor:m.start()])
        cursor = m.end()
        mark_type = STYLE_TAG_MARKS[m.group(2)]
        if m.group(1):
            if mark_type in active:
                active.remove(mark_type)
        else:
            active.append(mark_type)
    flush(text[cursor:])
    return nodes


def _textblock(block_type: str, text: str, attrs: Optional[dict] = None) -> Container:
    return Container(block_type, dict(attrs or {}), tuple(parse_styled_text(text)))


def build_blocks(content: str, block_type: str, heading_level: Optional[int] = None) -> List[Container]:
    """Constructs the block nodes for `content` rendered as `block_type`."""
    block_type = canonical_block_type(block_type)

    if block_type == "codeBlock":
        code = strip_style_tags(content)
        return [Container("codeBlock", {}, (TextNode(code),) if code else ())]

    if block_type in ("bulletList", "orderedList"):
        lines = [LIST_PREFIX_RE.sub("", line) for line in content.split("\n") if line.strip()]
        items = tuple(Container("listItem", {}, (_textblock("paragraph", line),)) for line in lines or [""])
        attrs = {"start": 1} if block_type == "orderedList" else {}
        return [Container(block_type, attrs, items)]

    chunks = PARAGRAPH_BREAK_RE.split(content) if content else [""]
    if block_type == "blockquote":
        return [Container("blockquote", {}, tuple(_textblock("paragraph", chunk) for chunk in chunks))]
    if block_type == "heading":
        return [_textblock("heading", chunk, {"level": heading_level}) for chunk in chunks]
    return [_textblock(block_type, chunk) for chunk in chunks]


def text_to_document(text: str) -> Container:
    """Plain text to a document: blank lines separate paragraphs, single newlines become hard breaks."""
    paragraphs = PARAGRAPH_BREAK_RE.split(text.strip("\n")) if text.strip() else [""]
    return doc(*[Container("paragraph", {}, tuple(parse_styled_text(p))) for p in paragraphs])
