"""
Read views of a document tree as Markdown with CriticMarkup.

Pending changes render as {++added++} and {--deleted--}; with ids enabled
each change is followed by {>>[Chg:<id>]<<} so a reviewer (human or agent)
can accept or reject it by id.
"""

from typing import List

from escribano.nodes import ADDED, AtomNode, Container, Node, TextNode, change_type, is_change

MARK_DELIMITERS = {
    "bold": ("**", "**"),
    "italic": ("_", "_"),
    "strike": ("~~", "~~"),
    "code": ("`", "`"),
    "underline": ("<u>", "</u>"),
}


def _render_text(node: TextNode) -> str:
    text = node.text
    for mark in reversed(node.marks):
        if mark.type == "link":
            text = f"[{text}]({mark.attrs.get('href', '')})"
            continue
        opening, closing = MARK_DELIMITERS.get(mark.type, ("", ""))
        text = f"{opening}{text}{closing}"
    return text


def _wrap_change(node: Container, body: str, include_ids: bool) -> str:
    if not body:
        return ""
    tag = "++" if change_type(node) == ADDED else "--"
    rendered = f"{{{tag}{body}{tag}}}"
    if include_ids:
        rendered += f"{{>>[Chg:{node.attrs.get('changeId', '?')}]<<}}"
    return rendered


class MarkupRenderer:
    def __init__(self, clean_view: bool = False, include_ids: bool = True):
        self.clean_view = clean_view
        self.include_ids = include_ids

    def render(self, root: Container) -> str:
        return "\n\n".join(self._blocks(root.content)).strip("\n")

    def _inline(self, nodes) -> str:
        parts: List[str] = []
        for node in nodes:
            if isinstance(node, TextNode):
                parts.append(_render_text(node))
            elif isinstance(node, AtomNode):
                if node.type == "hardBreak":
                    parts.append("\n")
                elif node.type == "mention":
                    parts.append(f"@{node.attrs.get('label') or node.attrs.get('id', '')}")
                elif node.type == "image":
                    parts.append(f"![{node.attrs.get('alt', '')}]({node.attrs.get('src', '')})")
            elif is_change(node):
                parts.append(self._change(node, self._inline(node.content)))
            else:
                parts.append(self._inline(node.content))
        return "".join(parts)

    def _change(self, node: Container, body: str) -> str:
        if self.clean_view:
            return "" if change_type(node) != ADDED else body
        return _wrap_change(node, body, self.include_ids)

    def _blocks(self, nodes) -> List[str]:
        out: List[str] = []
        for node in nodes:
            out.extend(self._block(node))
        return out

    def _block(self, node: Node) -> List[str]:
        if isinstance(node, AtomNode):
            return ["---"] if node.type == "horizontalRule" else [self._inline([node])]
        if isinstance(node, TextNode):
            return [_render_text(node)]
        if is_change(node):
            inner = "\n\n".join(self._blocks(node.content))
            rendered = self._change(node, inner)
            return [rendered] if rendered else []
        if node.type == "heading":
            return ["#" * int(node.attrs.get("level", 1)) + " " + self._inline(node.content)]
        if node.type == "paragraph":
            return [self._inline(node.content)]
        if node.type == "codeBlock":
            return ["```\n" + self._inline(node.content) + "\n```"]
        if node.type == "blockquote":
            inner = "\n\n".join(self._blocks(node.content))
            return ["\n".join("> " + line for line in inner.split("\n"))]
        if node.type in ("bulletList", "orderedList"):
            lines = []
            for i, item in enumerate(node.content, start=int(node.attrs.get("start", 1) or 1)):
                prefix = f"{i}. " if node.type == "orderedList" else "- "
                body = "\n".join(self._blocks(item.content if isinstance(item, Container) else [item]))
                lines.append(prefix + body.replace("\n", "\n" + " " * len(prefix)))
            return ["\n".join(lines)]
        return self._blocks(node.content)


def render_markup(root: Container, clean_view: bool = False, include_ids: bool = True) -> str:
    """
    Renders the document as Markdown.

    clean_view=True shows the text as if every pending change were accepted
    (deletions hidden, insertions unwrapped). Otherwise pending changes are
    shown inline as CriticMarkup.
    """
    return MarkupRenderer(clean_view=clean_view, include_ids=include_ids).render(root)
