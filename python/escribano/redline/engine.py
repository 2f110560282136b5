from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from escribano.config import get_settings
from escribano.errors import AmbiguousMatch, AnchorNotFound, EditError, InvalidRange, SchemaViolation, UnsupportedKind
from escribano.models import (
    AddBlockEdit,
    AddMarkEdit,
    DeleteEdit,
    DeleteRangeEdit,
    EditOutcome,
    InsertAtEdit,
    InsertEdit,
    RemoveMarkEdit,
    ReplaceEdit,
    ReplaceMarkEdit,
    ReplaceRangeEdit,
    RewriteSectionEdit,
    parse_edit,
)
from escribano.nodes import Container, Mark
from escribano.normalize import DEFAULT_OPTIONS, NormalizeOptions
from escribano.redline.content import build_blocks, canonical_block_type, parse_styled_text, strip_style_tags
from escribano.redline.search import (
    Match,
    NormalizedIndex,
    SearchOptions,
    build_index,
    find_anchor_position,
    find_matches,
    find_with_fallback,
    select_by_occurrence,
)
from escribano.schema import Schema, get_schema
from escribano.utils import tree

logger = structlog.get_logger(__name__)


class EditEngine:
    """
    Applies edit operations one at a time to an in-memory document.

    Every operation resolves its positions against the tree left by the
    previous one; positions are never reused across operations. A failing
    operation leaves the tree untouched and the batch carries on.
    """

    def __init__(self, root: Container, schema: Optional[Schema] = None, options: NormalizeOptions = DEFAULT_OPTIONS):
        self.original = root
        self.doc = root
        self.schema = schema or get_schema()
        self.options = options
        self.outcomes: List[EditOutcome] = []
        self._handlers: Dict[str, Callable[[Any], Container]] = {
            "replace": self._replace,
            "insert": self._insert,
            "delete": self._delete,
            "add_mark": self._add_mark,
            "remove_mark": self._remove_mark,
            "replace_mark": self._replace_mark,
            "add_block": self._add_block,
            "rewrite_section": self._rewrite_section,
            "insert_at": self._insert_at,
            "replace_range": self._replace_range,
            "delete_range": self._delete_range,
        }

    def apply_edits(self, edits: Iterable[Any]) -> Tuple[int, int]:
        """Applies a batch in order. Returns (applied, skipped)."""
        applied = 0
        skipped = 0
        for i, edit in enumerate(edits):
            outcome = self.apply_edit(edit, index=i)
            if outcome.applied:
                applied += 1
            else:
                skipped += 1
        return applied, skipped

    def apply_edit(self, edit: Any, index: int = 0) -> EditOutcome:
        raw_type = edit.get("type", "?") if isinstance(edit, dict) else getattr(edit, "type", "?")
        try:
            op = parse_edit(edit)
        except ValidationError as e:
            logger.warning("Skipping invalid operation", index=index, op_type=raw_type, errors=e.error_count())
            return self._record(EditOutcome(index=index, type=str(raw_type), applied=False, reason="invalid_operation", detail=str(e)))

        self._ensure_content()
        try:
            updated = self._handlers[op.type](op)
            problems = self.schema.check(updated)
            if problems:
                raise SchemaViolation("; ".join(problems[:3]), op.type)
        except EditError as e:
            logger.info("Operation skipped", index=index, op_type=op.type, reason=e.reason, detail=str(e))
            return self._record(EditOutcome(index=index, type=op.type, applied=False, reason=e.reason, detail=str(e)))
        except Exception as e:
            logger.error("Operation failed", index=index, op_type=op.type, error=str(e), exc_info=True)
            return self._record(EditOutcome(index=index, type=op.type, applied=False, reason="mutation_failed", detail=str(e)))

        self.doc = updated
        return self._record(EditOutcome(index=index, type=op.type, applied=True))

    def _record(self, outcome: EditOutcome) -> EditOutcome:
        self.outcomes.append(outcome)
        return outcome

    def _ensure_content(self):
        if not self.doc.content:
            logger.debug("Empty document, inserting paragraph")
            self.doc = self.doc.with_content([Container("paragraph")])

    # -- resolution -------------------------------------------------------

    def _index(self) -> NormalizedIndex:
        return build_index(self.doc, self.options)

    @staticmethod
    def _search_options(op) -> SearchOptions:
        return SearchOptions(context_before=op.context_before, context_after=op.context_after)

    def _select(self, matches: List[Match], op, what: str) -> List[Match]:
        if not matches:
            raise AnchorNotFound(f"Text not found: {what[:80]!r}", op.type)
        selected = select_by_occurrence(matches, op.occurrence_index, op.max_occurrences, op.replace_all)
        if not selected:
            raise AnchorNotFound(f"Occurrence {op.occurrence_index} of {what[:80]!r} not found ({len(matches)} matches)", op.type)
        return selected

    def _anchor(self, op, default: int) -> int:
        if not (op.after_text or op.before_text):
            return default
        pos = find_anchor_position(self._index(), op.after_text, op.before_text, op.occurrence_index)
        if pos is None:
            raise AnchorNotFound(f"Anchor not found: {(op.after_text or op.before_text)[:80]!r}", op.type)
        return pos

    def _inline_content(self, text: str, pos: int, marks):
        if tree.parent_type(self.doc, pos) == "codeBlock":
            return parse_styled_text(strip_style_tags(text), literal_newlines=True)
        return parse_styled_text(text, marks)

    def _check_range(self, op, start: int, end: int) -> Tuple[int, int]:
        size = tree.tree_size(self.doc)
        if start < 0 or start > end:
            raise InvalidRange(f"Invalid range {start}..{end}", op.type)
        if start > size:
            raise InvalidRange(f"Range {start}..{end} starts past document end ({size})", op.type)
        if end > size:
            logger.debug("Clamping range end", end=end, size=size)
            end = size
        return start, end

    # -- operations --------------------------------------------------------

    def _replace(self, op: ReplaceEdit) -> Container:
        matches = find_with_fallback(self._index(), op.find_text, self._search_options(op))
        doc = self.doc
        for m in reversed(self._select(matches, op, op.find_text)):
            if not op.replace_text:
                doc = tree.delete_range(doc, m.from_pos, m.to_pos)
                continue
            marks = tree.marks_at(doc, min(m.from_pos + 1, m.to_pos))
            nodes = self._inline_content(op.replace_text, m.from_pos, marks)
            doc = tree.replace_with_inline(doc, m.from_pos, m.to_pos, nodes, self.schema)
        return doc

    def _insert(self, op: InsertEdit) -> Container:
        pos = self._anchor(op, default=0)
        nodes = self._inline_content(op.insert_text, pos, tree.marks_at(self.doc, pos))
        if not nodes:
            raise InvalidRange("Nothing to insert", op.type)
        return tree.insert_inline(self.doc, pos, nodes, self.schema)

    def _delete(self, op: DeleteEdit) -> Container:
        matches = find_with_fallback(self._index(), op.find_text, self._search_options(op))
        disambiguated = op.occurrence_index is not None or op.max_occurrences is not None or op.replace_all
        if len(matches) > 1 and not disambiguated:
            raise AmbiguousMatch(
                f"Multiple matches ({len(matches)}) for {op.find_text[:80]!r}. Add context or an occurrence index.",
                op.type,
            )
        doc = self.doc
        for m in reversed(self._select(matches, op, op.find_text)):
            doc = tree.delete_range(doc, m.from_pos, m.to_pos)
        return doc

    def _require_mark(self, op, mark_type: str):
        if mark_type not in self.schema.marks:
            raise UnsupportedKind(f"Unknown mark type: {mark_type}", op.type)

    def _add_mark(self, op: AddMarkEdit) -> Container:
        self._require_mark(op, op.mark_type)
        matches = [
            m
            for m in find_matches(self._index(), op.text, self._search_options(op))
            if not tree.range_has_mark(self.doc, m.from_pos, m.to_pos, op.mark_type)
        ]
        doc = self.doc
        for m in reversed(self._select(matches, op, op.text)):
            doc = tree.add_mark(doc, m.from_pos, m.to_pos, Mark(op.mark_type))
        return doc

    def _marked_matches(self, op, mark_type: str) -> List[Match]:
        return [
            m
            for m in find_matches(self._index(), op.text, self._search_options(op))
            if tree.range_has_mark(self.doc, m.from_pos, m.to_pos, mark_type, every=False)
        ]

    def _remove_mark(self, op: RemoveMarkEdit) -> Container:
        self._require_mark(op, op.mark_type)
        doc = self.doc
        for m in reversed(self._select(self._marked_matches(op, op.mark_type), op, op.text)):
            doc = tree.remove_mark(doc, m.from_pos, m.to_pos, op.mark_type)
        return doc

    def _replace_mark(self, op: ReplaceMarkEdit) -> Container:
        self._require_mark(op, op.old_mark_type)
        self._require_mark(op, op.new_mark_type)
        doc = self.doc
        for m in reversed(self._select(self._marked_matches(op, op.old_mark_type), op, op.text)):
            doc = tree.remove_mark(doc, m.from_pos, m.to_pos, op.old_mark_type)
            doc = tree.add_mark(doc, m.from_pos, m.to_pos, Mark(op.new_mark_type))
        return doc

    def _add_block(self, op: AddBlockEdit) -> Container:
        block_type = canonical_block_type(op.block_type)
        if block_type not in self.schema.block_types():
            raise UnsupportedKind(f"Unknown block type: {op.block_type}", op.type)
        level = None
        if block_type == "heading":
            level = op.heading_level or 1
            if level not in self.schema.heading_levels:
                raise UnsupportedKind(f"Heading level {level} out of range", op.type)

        size = tree.tree_size(self.doc)
        try:
            pos = self._anchor(op, default=size)
        except AnchorNotFound:
            logger.warning("Block anchor not found, appending at document end", op_type=op.type)
            pos = size
        return tree.insert_blocks(self.doc, pos, build_blocks(op.content, block_type, level), self.schema)

    def _section_anchor(self, op, index: NormalizedIndex, after_text=None, before_text=None) -> int:
        pos = find_anchor_position(index, after_text, before_text, op.occurrence_index)
        if pos is None:
            raise AnchorNotFound(f"Section anchor not found: {(after_text or before_text)[:80]!r}", op.type)
        return pos

    def _rewrite_section(self, op: RewriteSectionEdit) -> Container:
        settings = get_settings()
        size = tree.tree_size(self.doc)
        index = self._index()
        start = self._section_anchor(op, index, after_text=op.after_text) if op.after_text else 0
        end = self._section_anchor(op, index, before_text=op.before_text) if op.before_text else size
        if start > end:
            start, end = end, start

        limit = min(size * settings.section_rewrite_max_fraction, settings.section_rewrite_max_size)
        if end - start > limit:
            raise InvalidRange(f"Section {start}..{end} is wider than the rewrite limit ({int(limit)} of {size})", op.type)

        logger.debug("Rewriting section", start=start, end=end, size=size)
        doc = tree.delete_range(self.doc, start, end)
        return tree.insert_blocks(doc, start, build_blocks(op.text, "paragraph"), self.schema)

    def _insert_at(self, op: InsertAtEdit) -> Container:
        size = tree.tree_size(self.doc)
        if op.pos < 0 or op.pos > size:
            raise InvalidRange(f"Position {op.pos} outside document of size {size}", op.type)
        nodes = self._inline_content(op.text, op.pos, tree.marks_at(self.doc, op.pos))
        if not nodes:
            raise InvalidRange("Nothing to insert", op.type)
        return tree.insert_inline(self.doc, op.pos, nodes, self.schema)

    def _replace_range(self, op: ReplaceRangeEdit) -> Container:
        start, end = self._check_range(op, op.start, op.end)
        if not op.text:
            return tree.delete_range(self.doc, start, end)
        marks = tree.marks_at(self.doc, min(start + 1, end)) if end > start else tree.marks_at(self.doc, start)
        nodes = self._inline_content(op.text, start, marks)
        return tree.replace_with_inline(self.doc, start, end, nodes, self.schema)

    def _delete_range(self, op: DeleteRangeEdit) -> Container:
        start, end = self._check_range(op, op.start, op.end)
        return tree.delete_range(self.doc, start, end)
