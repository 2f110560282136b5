from bisect import bisect_right
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from escribano.errors import InvalidRange
from escribano.nodes import AtomNode, Container, Node, TextNode, is_change, is_deleted, node_size

logger = structlog.get_logger(__name__)

# Blocks that start on a new line of projected text.
SEPARATED_BLOCKS = {"paragraph", "heading", "blockquote", "listItem", "codeBlock"}


@dataclass
class TextRange:
    text_start: int
    text_end: int
    pos_start: int
    pos_end: int

    @property
    def length(self) -> int:
        return self.text_end - self.text_start


@dataclass
class Projection:
    text: str
    ranges: List[TextRange]
    # Tree position of every character of `text`.
    char_positions: List[int] = field(default_factory=list)

    def offset_to_position(self, offset: int) -> int:
        return map_offset_to_position(offset, self.ranges)


class DocumentMapper:
    """
    Flattens a document tree into plain text plus the range table that maps
    text offsets back to tree positions.

    Deleted change annotations contribute no text but still advance the
    position counter by their full size, so every reported position is a
    real address in the tree being mapped.
    """

    def __init__(self, root: Container, block_separator: str = "\n"):
        self.root = root
        self.block_separator = block_separator
        self._chars: List[str] = []
        self.ranges: List[TextRange] = []
        self.char_positions: List[int] = []
        # Position right after the last projected character.
        self._last_pos_end: Optional[int] = None
        self._block_had_text = False
        self._in_block = False
        self._build_map()

    @property
    def full_text(self) -> str:
        return "".join(self._chars)

    def projection(self) -> Projection:
        return Projection(self.full_text, self.ranges, self.char_positions)

    def _build_map(self):
        self._walk(self.root.content, 0)

    def _walk(self, nodes, pos: int) -> int:
        for node in nodes:
            pos = self._visit(node, pos)
        return pos

    def _visit(self, node: Node, pos: int) -> int:
        if isinstance(node, TextNode):
            self._emit(node.text, pos, pos + len(node.text))
            self._block_had_text = True
            return pos + len(node.text)

        if isinstance(node, AtomNode):
            if node.type == "hardBreak":
                self._emit("\n", pos, pos + 1)
            return pos + 1

        if is_change(node):
            if is_deleted(node):
                return pos + node_size(node)
            return self._walk(node.content, pos + 1) + 1

        if node.type in SEPARATED_BLOCKS:
            self._start_block()
        return self._walk(node.content, pos + 1) + 1

    def _start_block(self):
        if self._in_block and self._block_had_text and self._chars and self._chars[-1] != "\n":
            sep_pos = self._last_pos_end
            self._emit(self.block_separator, sep_pos, sep_pos + 1, per_char=False)
        self._in_block = True
        self._block_had_text = False

    def _emit(self, text: str, pos_start: int, pos_end: int, per_char: bool = True):
        text_start = len(self._chars)
        self._chars.extend(text)
        self.ranges.append(TextRange(text_start, text_start + len(text), pos_start, pos_end))
        if per_char:
            self.char_positions.extend(range(pos_start, pos_start + len(text)))
        else:
            self.char_positions.extend([pos_start] * len(text))
        self._last_pos_end = pos_end if per_char else pos_start


def project(root: Container, block_separator: str = "\n") -> Projection:
    return DocumentMapper(root, block_separator).projection()


def map_offset_to_position(offset: int, ranges: List[TextRange]) -> int:
    """
    Maps a plain-text offset to a tree position.

    An offset on the boundary between two ranges resolves to the start of
    the later range. The end offset of the last range resolves to that
    range's position end.
    """
    if not ranges:
        raise InvalidRange(f"Offset {offset} cannot be mapped: document has no text")

    starts = [r.text_start for r in ranges]
    i = bisect_right(starts, offset) - 1
    if i >= 0:
        current = ranges[i]
        if offset < current.text_end:
            # Separators span one text char but may not span one position.
            return min(current.pos_start + (offset - current.text_start), current.pos_end)
        if offset == current.text_end and i == len(ranges) - 1:
            return current.pos_end
    raise InvalidRange(f"Offset {offset} outside projected text of length {ranges[-1].text_end}")
