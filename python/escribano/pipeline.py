"""
Edit batches end to end: read the snapshot, apply every operation in
order against the evolving tree, diff the result against the snapshot,
merge it back as tracked changes and commit atomically.
"""

from dataclasses import replace
from typing import Any, List, Optional, Sequence, Tuple

import structlog

from escribano.models import BatchResult, ChangeGroup, ReviewAction
from escribano.redline.engine import EditEngine
from escribano.redline.tracking import (
    accept_all,
    accept_group,
    apply_review_actions,
    build_change_group,
    change_ids,
    merge_with_fallback,
    reject_all,
    reject_group,
    toggle_group_visibility,
)
from escribano.store import DocumentStore, StoredDocument

logger = structlog.get_logger(__name__)


def run_batch(
    snapshot: StoredDocument, edits: Sequence[Any], label: str = "", source: str = "tool"
) -> Tuple[StoredDocument, BatchResult]:
    """Pure batch step: returns the new document state and the batch report."""
    engine = EditEngine(snapshot.content)
    applied, skipped = engine.apply_edits(edits)
    total = applied + skipped

    merged, change_id = merge_with_fallback(snapshot.content, engine.doc)
    groups: List[ChangeGroup] = list(snapshot.change_groups)
    if change_id:
        groups.append(build_change_group(merged, change_id, label=label, source=source))

    result = BatchResult(
        ok=applied > 0 or total == 0,
        applied=applied,
        total=total,
        message=f"{applied} of {total} operations applied",
        outcomes=list(engine.outcomes),
        change_group_id=change_id,
    )
    logger.info("Edit batch", doc_id=snapshot.doc_id, applied=applied, skipped=skipped, change_id=change_id)
    return replace(snapshot, content=merged, change_groups=groups), result


def apply_text_edits(
    store: DocumentStore, doc_id: str, edits: Sequence[Any], label: str = "", source: str = "tool"
) -> BatchResult:
    """
    Applies `edits` to the stored document as one atomic transform.

    On a version conflict the whole batch is re-run against the newer
    snapshot, so positions are always resolved against the tree that is
    actually committed. Storage failures propagate.
    """
    result: Optional[BatchResult] = None

    def transform(snapshot: StoredDocument) -> StoredDocument:
        nonlocal result
        updated, result = run_batch(snapshot, edits, label=label, source=source)
        return updated

    stored = store.transform(doc_id, transform)
    return result.model_copy(update={"version": stored.version})


def _prune_groups(snapshot: StoredDocument) -> StoredDocument:
    live = set(change_ids(snapshot.content))
    return replace(snapshot, change_groups=[g for g in snapshot.change_groups if g.id in live])


def review_changes(store: DocumentStore, doc_id: str, actions: Sequence[ReviewAction]) -> Tuple[int, int]:
    """Accepts or rejects individual changes by id. Returns (applied, skipped)."""
    counts = (0, 0)

    def transform(snapshot: StoredDocument) -> StoredDocument:
        nonlocal counts
        content, applied, skipped = apply_review_actions(snapshot.content, actions)
        counts = (applied, skipped)
        return _prune_groups(replace(snapshot, content=content))

    store.transform(doc_id, transform)
    return counts


def resolve_all(store: DocumentStore, doc_id: str, accept: bool = True) -> StoredDocument:
    """Accept-all commits the current text as the new baseline; reject-all restores the pre-change text."""
    resolve = accept_all if accept else reject_all
    return store.transform(doc_id, lambda snap: replace(snap, content=resolve(snap.content), change_groups=[]))


def resolve_group(store: DocumentStore, doc_id: str, group_id: str, accept: bool = True) -> StoredDocument:
    resolve = accept_group if accept else reject_group

    def transform(snapshot: StoredDocument) -> StoredDocument:
        content, groups = resolve(snapshot.content, snapshot.change_groups, group_id)
        return replace(snapshot, content=content, change_groups=groups)

    return store.transform(doc_id, transform)


def toggle_visibility(store: DocumentStore, doc_id: str, group_id: str) -> StoredDocument:
    return store.transform(
        doc_id, lambda snap: replace(snap, change_groups=toggle_group_visibility(snap.change_groups, group_id))
    )
