"""
Structural diff between two document trees.

Node identity is a content-derived hash (type, significant attributes and a
whitespace/case-insensitive summary of the text), never a tree position, so
a paragraph that merely shifted is recognised as the same node. Sibling
lists are diffed by encoding each hash as one character and running
diff-match-patch over the encoded strings.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import structlog
from diff_match_patch import diff_match_patch

from escribano.config import get_settings
from escribano.nodes import AtomNode, Container, Node, TextNode, is_change, text_content
from escribano.normalize import normalize_text

logger = structlog.get_logger(__name__)

TRANSIENT_ATTRS = {"transient", "tempId"}
SUMMARY_WORDS = 2
SUMMARY_CHARS = 15
# Supplementary private use area; encoded hashes never collide with real text.
ENCODING_BASE = 0xF0000


@dataclass
class Keep:
    node: Node


@dataclass
class Modify:
    old: Container
    new: Container
    delta: "ContentDelta"


@dataclass
class TextDiff:
    old: TextNode
    new: TextNode
    segments: List[Tuple[int, str]]  # diff-match-patch (op, text) pairs


@dataclass
class Delete:
    node: Node


@dataclass
class Insert:
    node: Node


@dataclass
class Move:
    """A node that only changed place. `arriving` marks its new location."""

    node: Node
    arriving: bool


DeltaOp = Union[Keep, Modify, TextDiff, Delete, Insert, Move]
ContentDelta = List[DeltaOp]


def normalize_attrs(attrs: Dict[str, Any]) -> Dict[str, Any]:
    return {k: attrs[k] for k in sorted(attrs) if k not in TRANSIENT_ATTRS and attrs[k] is not None}


def text_summary(value: str) -> str:
    words = normalize_text(value.casefold()).split()
    return " ".join(words[:SUMMARY_WORDS])[:SUMMARY_CHARS]


def stable_hash(node: Node) -> str:
    if isinstance(node, TextNode):
        payload = ["text", [m.to_json() for m in node.marks], normalize_text(node.text)]
    elif isinstance(node, AtomNode):
        payload = [node.type, normalize_attrs(node.attrs)]
    elif is_change(node):
        payload = [node.type, normalize_attrs(node.attrs)]
    else:
        payload = [node.type, normalize_attrs(node.attrs), text_summary(text_content(node))]
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def _hashes_to_chars(old: List[str], new: List[str]) -> Tuple[str, str]:
    codes: Dict[str, int] = {}

    def encode(hashes: List[str]) -> str:
        chars = []
        for h in hashes:
            if h not in codes:
                codes[h] = len(codes)
            chars.append(chr(ENCODING_BASE + codes[h]))
        return "".join(chars)

    return encode(old), encode(new)


def _same_shape(old: Node, new: Node) -> bool:
    return (
        isinstance(old, Container)
        and isinstance(new, Container)
        and old.type == new.type
        and normalize_attrs(old.attrs) == normalize_attrs(new.attrs)
    )


def _diff_text(old: TextNode, new: TextNode) -> List[DeltaOp]:
    if max(len(old.text), len(new.text)) < get_settings().text_diff_min_length:
        return [Delete(old), Insert(new)]
    dmp = diff_match_patch()
    segments = dmp.diff_main(old.text, new.text, False)
    dmp.diff_cleanupSemantic(segments)
    return [TextDiff(old, new, [(op, text) for op, text in segments])]


def _pair(old: Node, new: Node) -> List[DeltaOp]:
    if _same_shape(old, new):
        return [Modify(old, new, diff_content(old.content, new.content))]
    if isinstance(old, TextNode) and isinstance(new, TextNode) and old.marks == new.marks:
        return _diff_text(old, new)
    return [Delete(old), Insert(new)]


def _flush(deleted: List[Node], inserted: List[Node], moved_out: Set[int], moved_in: Set[int], ops: ContentDelta):
    """Emits a run of deletions and insertions, pairing them positionally in new-document order."""
    olds = [n for n in deleted if id(n) not in moved_out]
    k = 0
    for new in inserted:
        if id(new) in moved_in:
            ops.append(Move(new, arriving=True))
        elif k < len(olds):
            ops.extend(_pair(olds[k], new))
            k += 1
        else:
            ops.append(Insert(new))
    for old in olds[k:]:
        ops.append(Delete(old))
    for old in deleted:
        if id(old) in moved_out:
            ops.append(Move(old, arriving=False))


def _find_moves(deleted: List[Node], inserted: List[Node]) -> Tuple[Set[int], Set[int]]:
    moved_out: Set[int] = set()
    moved_in: Set[int] = set()
    pending = list(inserted)
    for old in deleted:
        if not isinstance(old, Container):
            continue
        for new in pending:
            if new == old:
                moved_out.add(id(old))
                moved_in.add(id(new))
                pending.remove(new)
                break
    return moved_out, moved_in


def diff_content(old: Tuple[Node, ...], new: Tuple[Node, ...]) -> ContentDelta:
    old_hashes = [stable_hash(n) for n in old]
    new_hashes = [stable_hash(n) for n in new]
    chars_old, chars_new = _hashes_to_chars(old_hashes, new_hashes)

    dmp = diff_match_patch()
    dmp.Diff_Timeout = 0
    encoded = dmp.diff_main(chars_old, chars_new, False)

    # First pass: collect whole-level deletes and inserts for move detection.
    all_deleted: List[Node] = []
    all_inserted: List[Node] = []
    i = j = 0
    for op, chars in encoded:
        n = len(chars)
        if op == -1:
            all_deleted.extend(old[i:i + n])
            i += n
        elif op == 1:
            all_inserted.extend(new[j:j + n])
            j += n
        else:
            i += n
            j += n
    moved_out, moved_in = _find_moves(all_deleted, all_inserted)

    ops: ContentDelta = []
    deleted: List[Node] = []
    inserted: List[Node] = []
    i = j = 0
    for op, chars in encoded:
        n = len(chars)
        if op == -1:
            deleted.extend(old[i:i + n])
            i += n
        elif op == 1:
            inserted.extend(new[j:j + n])
            j += n
        else:
            _flush(deleted, inserted, moved_out, moved_in, ops)
            deleted, inserted = [], []
            for k in range(n):
                a, b = old[i + k], new[j + k]
                if a == b:
                    ops.append(Keep(a))
                else:
                    ops.extend(_pair(a, b))
            i += n
            j += n
    _flush(deleted, inserted, moved_out, moved_in, ops)
    return ops


def diff(old_root: Container, new_root: Container) -> Optional[ContentDelta]:
    """Delta turning `old_root` into `new_root`, or None when they are equal."""
    if old_root == new_root:
        return None
    delta = diff_content(old_root.content, new_root.content)
    logger.debug("Computed delta", ops=len(delta), changed=sum(1 for op in delta if not isinstance(op, Keep)))
    return delta


def is_empty(delta: Optional[ContentDelta]) -> bool:
    return not delta or all(isinstance(op, Keep) for op in delta)


def summarize(delta: Optional[ContentDelta]) -> List[Dict[str, Any]]:
    """Flat, JSON-friendly description of a delta (for CLI and tool output)."""
    out: List[Dict[str, Any]] = []

    def walk(ops: ContentDelta, path: str):
        for index, op in enumerate(ops):
            where = f"{path}/{index}"
            if isinstance(op, Modify):
                walk(op.delta, f"{where}:{op.new.type}")
            elif isinstance(op, TextDiff):
                for seg_op, text in op.segments:
                    if seg_op:
                        out.append({"path": where, "op": "insert" if seg_op > 0 else "delete", "text": text})
            elif isinstance(op, (Delete, Insert)):
                kind = "delete" if isinstance(op, Delete) else "insert"
                out.append({"path": where, "op": kind, "text": text_content(op.node)})
            elif isinstance(op, Move) and op.arriving:
                out.append({"path": where, "op": "move", "text": text_content(op.node)})

    walk(delta or [], "")
    return out
