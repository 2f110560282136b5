import json
from typing import Any, Dict, List, Optional

import structlog
from mcp.server.fastmcp import FastMCP

from escribano.config import configure_logging, get_settings
from escribano.diff import diff, summarize
from escribano.errors import DocumentNotFound, StoreError
from escribano.markup import render_markup
from escribano.models import ReviewAction
from escribano.pipeline import apply_text_edits, resolve_all, resolve_group, review_changes, toggle_visibility
from escribano.redline.content import text_to_document
from escribano.store import JsonFileStore

# MCP speaks JSON-RPC over stdio: every log line must go to stderr.
configure_logging()
logger = structlog.get_logger(__name__)

mcp = FastMCP("Escribano Editing Service")


def _store() -> JsonFileStore:
    return JsonFileStore(get_settings().store_root)


@mcp.tool()
def create_document(doc_id: str, text: str, overwrite: bool = False) -> str:
    """
    Creates a document from plain text. Blank lines separate paragraphs and
    single newlines become line breaks.

    Args:
        doc_id: Identifier (letters, digits, '.', '_' and '-').
        text: Initial document text.
        overwrite: Replace an existing document with the same id.
    """
    try:
        store = _store()
        if store.exists(doc_id) and not overwrite:
            return f"Error: document {doc_id} already exists."
        stored = store.put(doc_id, text_to_document(text), change_groups=[])
        return f"Created {doc_id} (version {stored.version})."
    except StoreError as e:
        return f"Error creating document: {str(e)}"


@mcp.tool()
def read_document(doc_id: str, clean_view: bool = False) -> str:
    """
    Returns the document as Markdown.

    Args:
        doc_id: Document identifier.
        clean_view: If False (default), pending changes are shown inline as CriticMarkup
                    ({--deleted--}{++inserted++}{>>[Chg:id]<<}) so you can see and review them.
                    If True, returns the text as if every change were accepted.
    """
    try:
        stored = _store().get_snapshot(doc_id)
        return render_markup(stored.content, clean_view=clean_view)
    except StoreError as e:
        return f"Error reading document: {str(e)}"


@mcp.tool()
def edit_document(doc_id: str, edits: List[Dict[str, Any]], label: Optional[str] = None) -> str:
    """
    Applies a batch of edit operations as one group of tracked changes.

    Operations locate their target by text, matched against the document as
    it would read with all pending changes accepted. Matching ignores
    whitespace runs, curly vs straight quotes and dash variants.

    Each edit is an object with a `type`:
    - replace: findText, replaceText, optional contextBefore/contextAfter, occurrenceIndex (1-based),
      maxOccurrences, replaceAll.
    - insert: insertText, afterText or beforeText, optional occurrenceIndex.
    - delete: findText (fails as ambiguous when it occurs more than once without context or occurrenceIndex).
    - add_mark / remove_mark: text, markType (bold, italic, underline, strike, code).
    - replace_mark: text, oldMarkType, newMarkType.
    - add_block: content, blockType (paragraph, heading, blockquote, bulletList, orderedList, codeBlock),
      headingLevel, afterText/beforeText. Defaults to the end of the document.
    - rewrite_section: text, afterText and/or beforeText. Replaces everything between the anchors
      with new paragraphs; refused when the section covers most of the document.
    - insert_at {pos, text}, replace_range {from, to, text}, delete_range {from, to}: raw positions.

    Payload text may carry [b]..[/b], [i]..[/i], [u]..[/u], [s]..[/s] and [code]..[/code] markers.

    Args:
        doc_id: Document identifier.
        edits: Edit operations, applied in order.
        label: Optional label for the change group (e.g. 'Counsel review').
    """
    try:
        result = apply_text_edits(_store(), doc_id, edits, label=label or get_settings().default_author)
    except StoreError as e:
        return f"Error applying edits: {str(e)}"

    lines = [f"{result.message} (version {result.version})."]
    if result.change_group_id:
        lines.append(f"Change group: {result.change_group_id}")
    for outcome in result.outcomes:
        if not outcome.applied:
            lines.append(f"- Skipped #{outcome.index} ({outcome.type}): {outcome.reason}. {outcome.detail}".rstrip())
    return "\n".join(lines)


@mcp.tool(name="review_changes")
def review_changes_tool(doc_id: str, actions: List[ReviewAction]) -> str:
    """
    Accepts or rejects individual tracked changes.

    Args:
        doc_id: Document identifier.
        actions: ACCEPT or REJECT actions. Target ids (e.g. "Chg:3f2a9c01b7de") come from the
                 CriticMarkup returned by read_document.
    """
    try:
        applied, skipped = review_changes(_store(), doc_id, actions)
        return f"Applied {applied} actions. Skipped {skipped} actions."
    except StoreError as e:
        return f"Error managing actions: {str(e)}"


@mcp.tool()
def accept_all_changes(doc_id: str) -> str:
    """
    Accepts every pending change and clears the change groups, making the
    current text the new baseline for the next round of edits.
    """
    try:
        stored = resolve_all(_store(), doc_id, accept=True)
        return f"Accepted all changes (version {stored.version})."
    except StoreError as e:
        return f"Error accepting changes: {str(e)}"


@mcp.tool()
def reject_all_changes(doc_id: str) -> str:
    """Rejects every pending change, restoring the text as it was before them."""
    try:
        stored = resolve_all(_store(), doc_id, accept=False)
        return f"Rejected all changes (version {stored.version})."
    except StoreError as e:
        return f"Error rejecting changes: {str(e)}"


@mcp.tool()
def resolve_change_group(doc_id: str, group_id: str, accept: bool = True) -> str:
    """
    Accepts (default) or rejects every change recorded in one change group.

    Args:
        doc_id: Document identifier.
        group_id: Id returned by edit_document or list_change_groups.
        accept: False to reject the group instead.
    """
    try:
        stored = resolve_group(_store(), doc_id, group_id, accept=accept)
        verb = "Accepted" if accept else "Rejected"
        return f"{verb} change group {group_id} (version {stored.version})."
    except StoreError as e:
        return f"Error resolving change group: {str(e)}"


@mcp.tool()
def toggle_change_group(doc_id: str, group_id: str) -> str:
    """Flips the visibility flag of a change group. The document text is not touched."""
    try:
        stored = toggle_visibility(_store(), doc_id, group_id)
        visible = next((g.visible for g in stored.change_groups if g.id == group_id), None)
        if visible is None:
            return f"Error: no change group {group_id}."
        return f"Change group {group_id} is now {'visible' if visible else 'hidden'}."
    except StoreError as e:
        return f"Error toggling change group: {str(e)}"


@mcp.tool()
def list_change_groups(doc_id: str) -> str:
    """Lists pending change groups (id, label, source, creation time and patches) as JSON."""
    try:
        stored = _store().get_snapshot(doc_id)
        return json.dumps([g.model_dump(mode="json") for g in stored.change_groups], indent=2)
    except StoreError as e:
        return f"Error listing change groups: {str(e)}"


@mcp.tool()
def diff_documents(original_id: str, modified_id: str) -> str:
    """
    Compares two stored documents structurally and lists inserted, deleted
    and moved content as JSON.
    """
    try:
        store = _store()
        changes = summarize(diff(store.get_snapshot(original_id).content, store.get_snapshot(modified_id).content))
    except DocumentNotFound as e:
        return f"Error: {str(e)}"
    except StoreError as e:
        return f"Error computing diff: {str(e)}"
    if not changes:
        return "No differences found between the documents."
    return json.dumps(changes, indent=2, ensure_ascii=False)


def main():
    logger.info("Starting MCP server", store_root=get_settings().store_root)
    mcp.run()


if __name__ == "__main__":
    main()
