"""
Position-addressed editing of document trees.

A tree's content is flattened into a token stream where every container
contributes an OPEN and a CLOSE token, every character a CHAR token and
every atomic leaf an ATOM token. Position `p` is the gap before token
`p`, which is exactly the unit addressing scheme used everywhere else.
Edits are splices on the token stream followed by a rebuild; nodes are
immutable so every operation returns a new root.
"""

from typing import List, NamedTuple, Optional, Sequence, Tuple

from escribano.nodes import (
    AtomNode,
    Container,
    Mark,
    Node,
    TextNode,
    add_mark_to_set,
    content_size,
    has_mark,
    is_deleted,
    remove_mark_from_set,
)
from escribano.schema import Schema, get_schema

OPEN = "open"
CLOSE = "close"
CHAR = "char"
ATOM = "atom"


class Token(NamedTuple):
    kind: str
    value: object  # Container shell, AtomNode, or a single character
    marks: Tuple[Mark, ...] = ()


class OpenFrame(NamedTuple):
    index: int
    shell: Container


def tokenize(nodes: Sequence[Node]) -> List[Token]:
    tokens: List[Token] = []
    for node in nodes:
        if isinstance(node, TextNode):
            tokens.extend(Token(CHAR, ch, node.marks) for ch in node.text)
        elif isinstance(node, AtomNode):
            tokens.append(Token(ATOM, node))
        else:
            shell = node.shell()
            tokens.append(Token(OPEN, shell))
            tokens.extend(tokenize(node.content))
            tokens.append(Token(CLOSE, shell))
    return tokens


def build(tokens: Sequence[Token]) -> Tuple[Node, ...]:
    """Rebuilds nodes from a balanced token stream, merging adjacent text with equal marks."""
    levels: List[List[Node]] = [[]]
    shells: List[Container] = []

    for token in tokens:
        if token.kind == OPEN:
            shells.append(token.value)
            levels.append([])
        elif token.kind == CLOSE:
            if not shells:
                raise ValueError("Unbalanced token stream: stray close")
            children = levels.pop()
            levels[-1].append(shells.pop().with_content(children))
        elif token.kind == CHAR:
            siblings = levels[-1]
            last = siblings[-1] if siblings else None
            if isinstance(last, TextNode) and last.marks == token.marks:
                siblings[-1] = TextNode(last.text + token.value, last.marks)
            else:
                siblings.append(TextNode(token.value, token.marks))
        else:
            levels[-1].append(token.value)

    if shells:
        raise ValueError("Unbalanced token stream: unclosed container")
    return tuple(levels[0])


def _tokens(root: Container) -> List[Token]:
    return tokenize(root.content)


def _rebuild(root: Container, tokens: Sequence[Token]) -> Container:
    return root.with_content(build(tokens))


def tree_size(root: Container) -> int:
    return content_size(root)


def normalize_tree(root: Container) -> Container:
    """Merges adjacent text leaves that carry the same marks."""
    return _rebuild(root, _tokens(root))


def open_frames(tokens: Sequence[Token], pos: int) -> List[OpenFrame]:
    """The containers enclosing position `pos`, outermost first."""
    frames: List[OpenFrame] = []
    for i in range(pos):
        token = tokens[i]
        if token.kind == OPEN:
            frames.append(OpenFrame(i, token.value))
        elif token.kind == CLOSE and frames:
            frames.pop()
    return frames


def _matching_close(tokens: Sequence[Token], open_index: int) -> int:
    depth = 0
    for i in range(open_index, len(tokens)):
        kind = tokens[i].kind
        if kind == OPEN:
            depth += 1
        elif kind == CLOSE:
            depth -= 1
            if depth == 0:
                return i
    raise ValueError(f"No close token for container at {open_index}")


def _has_content(tokens: Sequence[Token]) -> bool:
    return any(t.kind in (CHAR, ATOM) for t in tokens)


def parent_type(root: Container, pos: int) -> str:
    frames = open_frames(_tokens(root), pos)
    return frames[-1].shell.type if frames else root.type


def delete_range(root: Container, start: int, end: int) -> Container:
    """
    Removes the content between `start` and `end`.

    Container boundaries cut by the range are joined when the range closes
    as many containers as it opens (deleting across a paragraph break merges
    the two paragraphs); otherwise the cut boundaries are kept so the
    structure stays balanced.
    """
    tokens = _tokens(root)
    removed = tokens[start:end]

    open_stack: List[int] = []
    stray_closes: List[int] = []
    for i, token in enumerate(removed):
        if token.kind == OPEN:
            open_stack.append(i)
        elif token.kind == CLOSE:
            if open_stack:
                open_stack.pop()
            else:
                stray_closes.append(i)

    if len(stray_closes) == len(open_stack):
        kept: List[Token] = []
    else:
        kept = [removed[i] for i in sorted(stray_closes + open_stack)]
    return _rebuild(root, tokens[:start] + kept + tokens[end:])


def insert_inline(root: Container, pos: int, nodes: Sequence[Node], schema: Optional[Schema] = None) -> Container:
    """
    Inserts inline nodes at `pos`. Outside a textblock the content snaps into
    the textblock that starts or ends at `pos`, or else gets its own paragraph.
    """
    schema = schema or get_schema()
    tokens = _tokens(root)
    new_tokens = tokenize(nodes)
    frames = open_frames(tokens, pos)
    holder = frames[-1].shell.type if frames else root.type

    at = pos
    if not schema.holds_inline(holder):
        if pos < len(tokens) and tokens[pos].kind == OPEN and schema.holds_inline(tokens[pos].value.type):
            at = pos + 1
        elif pos > 0 and tokens[pos - 1].kind == CLOSE and schema.holds_inline(tokens[pos - 1].value.type):
            at = pos - 1
        else:
            shell = Container("paragraph")
            new_tokens = [Token(OPEN, shell)] + new_tokens + [Token(CLOSE, shell)]

    return _rebuild(root, tokens[:at] + new_tokens + tokens[at:])


def insert_blocks(root: Container, pos: int, blocks: Sequence[Node], schema: Optional[Schema] = None) -> Container:
    """
    Inserts block nodes at `pos`. Inside a textblock the insertion moves to
    just before or after it when `pos` is at its edge; otherwise the
    textblock (and any inline containers around `pos`) is split in two.
    """
    schema = schema or get_schema()
    tokens = _tokens(root)
    new_tokens = tokenize(blocks)
    frames = open_frames(tokens, pos)

    inline_chain: List[OpenFrame] = []
    for frame in reversed(frames):
        if not schema.holds_inline(frame.shell.type):
            break
        inline_chain.append(frame)

    if not inline_chain:
        return _rebuild(root, tokens[:pos] + new_tokens + tokens[pos:])

    outer = inline_chain[-1]
    close_index = _matching_close(tokens, outer.index)
    if not _has_content(tokens[outer.index + 1:pos]):
        return _rebuild(root, tokens[:outer.index] + new_tokens + tokens[outer.index:])
    if not _has_content(tokens[pos:close_index]):
        return _rebuild(root, tokens[:close_index + 1] + new_tokens + tokens[close_index + 1:])

    closes = [Token(CLOSE, frame.shell) for frame in inline_chain]
    reopens = [Token(OPEN, frame.shell) for frame in reversed(inline_chain)]
    return _rebuild(root, tokens[:pos] + closes + new_tokens + reopens + tokens[pos:])


def replace_with_inline(
    root: Container, start: int, end: int, nodes: Sequence[Node], schema: Optional[Schema] = None
) -> Container:
    deleted = delete_range(root, start, end)
    if not nodes:
        return deleted
    return insert_inline(deleted, start, nodes, schema)


def _live_chars(tokens: Sequence[Token], start: int, end: int) -> List[int]:
    """Indexes of CHAR tokens in [start, end) that are not inside a deleted change annotation."""
    deleted: List[bool] = []
    live: List[int] = []
    for i in range(min(end, len(tokens))):
        token = tokens[i]
        if token.kind == OPEN:
            deleted.append(is_deleted(token.value) or bool(deleted and deleted[-1]))
        elif token.kind == CLOSE:
            if deleted:
                deleted.pop()
        elif token.kind == CHAR and i >= start and not (deleted and deleted[-1]):
            live.append(i)
    return live


def add_mark(root: Container, start: int, end: int, mark: Mark) -> Container:
    tokens = _tokens(root)
    for i in _live_chars(tokens, start, end):
        token = tokens[i]
        tokens[i] = token._replace(marks=add_mark_to_set(token.marks, mark))
    return _rebuild(root, tokens)


def remove_mark(root: Container, start: int, end: int, mark_type: str) -> Container:
    tokens = _tokens(root)
    for i in _live_chars(tokens, start, end):
        token = tokens[i]
        tokens[i] = token._replace(marks=remove_mark_from_set(token.marks, mark_type))
    return _rebuild(root, tokens)


def range_has_mark(root: Container, start: int, end: int, mark_type: str, every: bool = True) -> bool:
    """True when every character (or, with every=False, any character) in the range carries the mark."""
    tokens = _tokens(root)
    chars = [tokens[i] for i in _live_chars(tokens, start, end)]
    if every:
        return bool(chars) and all(has_mark(t.marks, mark_type) for t in chars)
    return any(has_mark(t.marks, mark_type) for t in chars)


def marks_at(root: Container, pos: int) -> Tuple[Mark, ...]:
    """Marks of the character before `pos`, or after it at the start of a text run."""
    tokens = _tokens(root)
    if 0 < pos <= len(tokens) and tokens[pos - 1].kind == CHAR:
        return tokens[pos - 1].marks
    if pos < len(tokens) and tokens[pos].kind == CHAR:
        return tokens[pos].marks
    return ()

