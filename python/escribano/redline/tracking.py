"""
Change tracking: turns a structural delta into added/deleted change
annotations inside the tree, and resolves those annotations on review.
"""

import uuid
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from escribano.diff import ContentDelta, Delete, Insert, Keep, Modify, Move, TextDiff, diff, is_empty
from escribano.errors import MergeConstructionFailure
from escribano.models import ChangeGroup, ChangePatch, ReviewAction, ReviewActionType
from escribano.nodes import (
    ADDED,
    DELETED,
    AtomNode,
    Container,
    Node,
    TextNode,
    change,
    change_type,
    is_change,
    iter_nodes,
    node_size,
    text_content,
)
from escribano.schema import Schema, get_schema
from escribano.utils.tree import normalize_tree

logger = structlog.get_logger(__name__)

LIST_TYPES = ("bulletList", "orderedList")
# Containers that are removed when review leaves them empty.
PRUNABLE = ("listItem", "bulletList", "orderedList", "blockquote")


def generate_change_id() -> str:
    return uuid.uuid4().hex[:12]


def annotate(node: Node, kind: str, change_id: str, inline: bool, schema: Schema) -> Node:
    """Wraps `node` in an added/deleted annotation, descending into lists so each item stays reviewable."""
    existing = change_type(node)
    if existing is not None:
        if existing == kind or existing == DELETED:
            return node
        # Deleting previously added content: keep the original suggestion inside the deletion.
        return Container(node.type, _change_attrs(kind, change_id, node.type), (node,))

    if isinstance(node, Container) and schema.is_textblock(node.type) and not node.content and kind == ADDED:
        return node
    if isinstance(node, Container) and node.type in LIST_TYPES:
        return node.with_content([annotate(item, kind, change_id, False, schema) for item in node.content])
    if isinstance(node, Container) and node.type == "listItem":
        return node.with_content([annotate(child, kind, change_id, False, schema) for child in node.content])

    if inline or isinstance(node, TextNode) or (isinstance(node, AtomNode) and node.type != "horizontalRule"):
        return change("inlineChange", kind, change_id, node)
    return change("blockChange", kind, change_id, node)


def _change_attrs(kind: str, change_id: str, node_type: str) -> dict:
    return {
        "changeType": kind,
        "changeId": change_id,
        "semanticType": "content" if node_type == "inlineChange" else "block_change",
    }


def _merge_ops(ops: ContentDelta, change_id: str, inline: bool, schema: Schema) -> List[Node]:
    out: List[Node] = []
    for op in ops:
        if isinstance(op, Keep):
            out.append(op.node)
        elif isinstance(op, Modify):
            child_inline = schema.holds_inline(op.new.type)
            out.append(op.new.with_content(_merge_ops(op.delta, change_id, child_inline, schema)))
        elif isinstance(op, TextDiff):
            for seg_op, text in op.segments:
                if not text:
                    continue
                if seg_op == 0:
                    out.append(TextNode(text, op.new.marks))
                elif seg_op < 0:
                    out.append(annotate(TextNode(text, op.old.marks), DELETED, change_id, True, schema))
                else:
                    out.append(annotate(TextNode(text, op.new.marks), ADDED, change_id, True, schema))
        elif isinstance(op, Delete):
            out.append(annotate(op.node, DELETED, change_id, inline, schema))
        elif isinstance(op, Insert):
            out.append(annotate(op.node, ADDED, change_id, inline, schema))
        elif isinstance(op, Move):
            if op.arriving:
                out.append(op.node)
        else:
            raise MergeConstructionFailure(f"Unknown delta op {type(op).__name__}")
    return out


def merge(old_root: Container, new_root: Container, delta: Optional[ContentDelta], change_id: str,
          schema: Optional[Schema] = None) -> Container:
    """
    Rebuilds `new_root` with every insertion of `delta` marked added and
    every deletion kept in place marked deleted. Raises
    MergeConstructionFailure when the result cannot be built or is invalid.
    """
    schema = schema or get_schema()
    if not delta:
        return new_root
    try:
        merged = new_root.with_content(_merge_ops(delta, change_id, False, schema))
    except MergeConstructionFailure:
        raise
    except Exception as e:
        raise MergeConstructionFailure(f"Could not rebuild merged tree: {e}") from e
    problems = schema.check(merged)
    if problems:
        raise MergeConstructionFailure("Merged tree violates schema: " + "; ".join(problems[:3]))
    return merged


def merge_with_fallback(old_root: Container, new_root: Container, change_id: Optional[str] = None,
                        schema: Optional[Schema] = None) -> Tuple[Container, Optional[str]]:
    """
    Diffs and merges in one step. Returns the merged tree and the change id
    used, or the post-edit tree and None when nothing changed or the merge
    could not be constructed.
    """
    delta = diff(old_root, new_root)
    if is_empty(delta):
        return new_root, None
    change_id = change_id or generate_change_id()
    try:
        return merge(old_root, new_root, delta, change_id, schema), change_id
    except MergeConstructionFailure as e:
        logger.warning("Merge failed, keeping unannotated result", error=str(e))
        return new_root, None


def collect_patches(root: Container, change_id: str) -> List[ChangePatch]:
    patches = []
    for node, pos in iter_nodes(root):
        if is_change(node) and node.attrs.get("changeId") == change_id:
            patches.append(
                ChangePatch(
                    change_id=change_id,
                    change_type=node.attrs.get("changeType"),
                    semantic_type=node.attrs.get("semanticType", ""),
                    from_pos=pos,
                    to_pos=pos + node_size(node),
                    text=text_content(node),
                )
            )
    return patches


def build_change_group(root: Container, change_id: str, label: str = "", source: str = "tool") -> ChangeGroup:
    return ChangeGroup(id=change_id, label=label, source=source, patches=collect_patches(root, change_id))


def _resolve(nodes: Sequence[Node], selects: Callable[[Container], bool], accept: bool) -> List[Node]:
    out: List[Node] = []
    for node in nodes:
        if not isinstance(node, Container):
            out.append(node)
            continue
        if is_change(node) and selects(node):
            # Accepting keeps added content; rejecting keeps deleted content.
            if (change_type(node) == ADDED) == accept:
                out.extend(_resolve(node.content, selects, accept))
            continue
        content = _resolve(node.content, selects, accept)
        if node.type in PRUNABLE and node.content and not content:
            continue
        out.append(node.with_content(content))
    return out


def _review(root: Container, selects: Callable[[Container], bool], accept: bool) -> Container:
    return normalize_tree(root.with_content(_resolve(root.content, selects, accept)))


def accept_all(root: Container) -> Container:
    return _review(root, lambda node: True, accept=True)


def reject_all(root: Container) -> Container:
    return _review(root, lambda node: True, accept=False)


def accept_change(root: Container, change_id: str) -> Container:
    return _review(root, lambda node: node.attrs.get("changeId") == change_id, accept=True)


def reject_change(root: Container, change_id: str) -> Container:
    return _review(root, lambda node: node.attrs.get("changeId") == change_id, accept=False)


def accept_group(root: Container, groups: List[ChangeGroup], group_id: str) -> Tuple[Container, List[ChangeGroup]]:
    return accept_change(root, group_id), [g for g in groups if g.id != group_id]


def reject_group(root: Container, groups: List[ChangeGroup], group_id: str) -> Tuple[Container, List[ChangeGroup]]:
    return reject_change(root, group_id), [g for g in groups if g.id != group_id]


def toggle_group_visibility(groups: List[ChangeGroup], group_id: str) -> List[ChangeGroup]:
    return [g.model_copy(update={"visible": not g.visible}) if g.id == group_id else g for g in groups]


def change_ids(root: Container) -> List[str]:
    seen: List[str] = []
    for node, _ in iter_nodes(root):
        if is_change(node):
            cid = node.attrs.get("changeId")
            if cid and cid not in seen:
                seen.append(cid)
    return seen


def apply_review_actions(root: Container, actions: Sequence[ReviewAction]) -> Tuple[Container, int, int]:
    """Applies ACCEPT/REJECT actions by change id. Returns (tree, applied, skipped)."""
    applied = 0
    skipped = 0
    for action in actions:
        target = action.target_id.removeprefix("Chg:")
        if target not in change_ids(root):
            logger.info("Review target not found", target_id=action.target_id)
            skipped += 1
            continue
        if action.action == ReviewActionType.ACCEPT:
            root = accept_change(root, target)
        else:
            root = reject_change(root, target)
        applied += 1
    return root, applied, skipped
