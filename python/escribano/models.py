import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _EditBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _Locator(_EditBase):
    """Find descriptor shared by search-based operations."""

    context_before: Optional[str] = Field(
        None, description="Text expected shortly before the match. Use it to pick one of several occurrences."
    )
    context_after: Optional[str] = Field(None, description="Text expected shortly after the match.")
    occurrence_index: Optional[int] = Field(None, ge=1, description="1-based occurrence to act on.")
    max_occurrences: Optional[int] = Field(None, ge=1, description="Act on the first N occurrences.")
    replace_all: bool = Field(False, description="Act on every occurrence.")


class ReplaceEdit(_Locator):
    """
    Search and replace. The engine finds `find_text` in the live text of the
    document (deleted suggestions are invisible to it) and rewrites it.
    """

    type: Literal["replace"] = "replace"
    find_text: str = Field(..., min_length=1, description="Text to find. Matching ignores whitespace width.")
    replace_text: str = Field(
        "",
        validation_alias=AliasChoices("replace_text", "replaceText", "text"),
        description=(
            "Replacement. Newlines become line breaks; [b]..[/b], [i], [u], [s] and [code] tags add formatting. "
            "Empty deletes the match."
        ),
    )


class InsertEdit(_EditBase):
    type: Literal["insert"] = "insert"
    insert_text: str = Field(..., validation_alias=AliasChoices("insert_text", "insertText", "text"))
    after_text: Optional[str] = Field(None, description="Insert right after this text.")
    before_text: Optional[str] = Field(None, description="Insert right before this text (used when after_text is absent or not found).")
    occurrence_index: Optional[int] = Field(None, ge=1)


class DeleteEdit(_Locator):
    type: Literal["delete"] = "delete"
    find_text: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("find_text", "findText", "delete_text", "deleteText", "text"),
        description="Text to delete. Must identify a single occurrence unless occurrence options are given.",
    )


class AddMarkEdit(_Locator):
    type: Literal["add_mark"] = "add_mark"
    text: str = Field(..., min_length=1)
    mark_type: str = Field(..., description="bold, italic, underline, strike or code.")


class RemoveMarkEdit(_Locator):
    type: Literal["remove_mark"] = "remove_mark"
    text: str = Field(..., min_length=1)
    mark_type: str


class ReplaceMarkEdit(_Locator):
    type: Literal["replace_mark"] = "replace_mark"
    text: str = Field(..., min_length=1)
    old_mark_type: str
    new_mark_type: str


class AddBlockEdit(_EditBase):
    type: Literal["add_block"] = "add_block"
    content: str = Field("", validation_alias=AliasChoices("content", "text"))
    block_type: str = Field(
        "paragraph",
        validation_alias=AliasChoices("block_type", "blockType", "paragraph_type", "paragraphType"),
        description="paragraph, heading, blockquote, bulletList, orderedList or codeBlock.",
    )
    heading_level: Optional[int] = None
    after_text: Optional[str] = None
    before_text: Optional[str] = None
    occurrence_index: Optional[int] = Field(None, ge=1)


class RewriteSectionEdit(_EditBase):
    """
    Replaces the section between two anchors with new paragraphs. The
    anchors themselves are kept; a missing anchor extends the section to
    the start or end of the document.
    """

    type: Literal["rewrite_section"] = "rewrite_section"
    text: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("text", "target_text", "targetText", "content"),
        description="New section text. Blank lines separate paragraphs.",
    )
    after_text: Optional[str] = Field(None, description="The section starts right after this text.")
    before_text: Optional[str] = Field(None, description="The section ends right before this text.")
    occurrence_index: Optional[int] = Field(None, ge=1)


class InsertAtEdit(_EditBase):
    """Raw position insert."""

    type: Literal["insert_at"] = "insert_at"
    pos: int
    text: str


class ReplaceRangeEdit(_EditBase):
    type: Literal["replace_range"] = "replace_range"
    start: int = Field(..., alias="from")
    end: int = Field(..., alias="to")
    text: str = ""


class DeleteRangeEdit(_EditBase):
    type: Literal["delete_range"] = "delete_range"
    start: int = Field(..., alias="from")
    end: int = Field(..., alias="to")


EditOperation = Annotated[
    Union[
        ReplaceEdit,
        InsertEdit,
        DeleteEdit,
        AddMarkEdit,
        RemoveMarkEdit,
        ReplaceMarkEdit,
        AddBlockEdit,
        RewriteSectionEdit,
        InsertAtEdit,
        ReplaceRangeEdit,
        DeleteRangeEdit,
    ],
    Field(discriminator="type"),
]

_edit_adapter = TypeAdapter(EditOperation)

TYPE_ALIASES = {
    "replace_text": "replace",
    "add_paragraph": "add_block",
    "insert_block": "add_block",
    "delete_text": "delete",
    "rewrite_section_by_anchors": "rewrite_section",
}


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def canonical_edit_type(data: Dict[str, Any]) -> str:
    raw = _snake(str(data.get("type", "")))
    if raw == "insert_text":
        return "insert_at" if "pos" in data else "insert"
    if raw == "delete_text" and "from" in data:
        return "delete_range"
    return TYPE_ALIASES.get(raw, raw)


def parse_edit(data: Union[Dict[str, Any], BaseModel]):
    """Validates one operation, accepting camelCase or snake_case type tags and field names."""
    if isinstance(data, BaseModel):
        return data
    payload = dict(data)
    payload["type"] = canonical_edit_type(payload)
    return _edit_adapter.validate_python(payload)


class ReviewActionType(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class ReviewAction(BaseModel):
    """Accept or reject one pending change (by change id) or a whole change group."""

    action: ReviewActionType = Field(..., description="ACCEPT or REJECT.")
    target_id: str = Field(..., description="A change id ('Chg:<id>' in the marked-up view) or a change group id.")


class ChangePatch(BaseModel):
    change_id: str
    change_type: Literal["added", "deleted"]
    semantic_type: str
    from_pos: int
    to_pos: int
    text: str = ""


class ChangeGroup(BaseModel):
    id: str
    label: str = ""
    source: Literal["tool", "user"] = "tool"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    patches: List[ChangePatch] = Field(default_factory=list)
    visible: bool = True


class EditOutcome(BaseModel):
    index: int
    type: str
    applied: bool
    reason: Optional[str] = None
    detail: Optional[str] = None


class BatchResult(BaseModel):
    ok: bool
    applied: int
    total: int
    message: str
    outcomes: List[EditOutcome] = Field(default_factory=list)
    version: Optional[int] = None
    change_group_id: Optional[str] = None
