from typing import Optional


class EditError(Exception):
    """An edit operation could not be applied. Caught per operation; never aborts a batch."""

    reason = "error"

    def __init__(self, message: str, op_type: Optional[str] = None):
        super().__init__(message)
        self.op_type = op_type


class AnchorNotFound(EditError):
    reason = "anchor_not_found"


class AmbiguousMatch(EditError):
    reason = "ambiguous_match"


class InvalidRange(EditError):
    reason = "invalid_range"


class UnsupportedKind(EditError):
    reason = "unsupported_kind"


class SchemaViolation(EditError):
    """The mutated tree no longer satisfies the document schema."""

    reason = "schema_violation"


class MergeConstructionFailure(EditError):
    reason = "merge_failure"


class StoreError(Exception):
    pass


class DocumentNotFound(StoreError):
    pass


class VersionConflict(StoreError):
    pass
