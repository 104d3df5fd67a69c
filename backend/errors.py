"""Error values shared by the card validator and the review scheduler.

Expected domain failures are returned as values so a batch import or a
review session can collect them and keep going. Only caller mistakes
(wrong argument types) and storage failures are raised.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorKind(Enum):
    """Category of a validation or scheduling failure."""

    # Structural field checks
    MISSING_FIELD = "missing_field"
    TYPE_MISMATCH = "type_mismatch"
    LENGTH_EXCEEDED = "length_exceeded"
    COUNT_OUT_OF_RANGE = "count_out_of_range"
    INVALID_VALUE = "invalid_value"
    INVALID_URL = "invalid_url"

    # Card semantics
    INVALID_REFERENCE = "invalid_reference"
    DUPLICATE_CHOICE = "duplicate_choice"
    MALFORMED_CLOZE_SYNTAX = "malformed_cloze_syntax"
    EMPTY_CLOZE_DELETION = "empty_cloze_deletion"
    UNSUPPORTED_IMAGE_EXTENSION = "unsupported_image_extension"

    # Review slots
    SLOT_OVERLAP = "slot_overlap"

    # Grading
    INVALID_OUTCOME = "invalid_outcome"
    NOT_FOUND = "not_found"
    CONCURRENCY_CONFLICT = "concurrency_conflict"


@dataclass(frozen=True)
class FieldError:
    """A single problem with one submitted field."""

    kind: ErrorKind
    message: str


ErrorMap = dict[str, list[FieldError]]


def add_error(errors: ErrorMap, field: str, kind: ErrorKind, message: str) -> None:
    """Append an error for ``field``, keeping insertion order."""
    errors.setdefault(field, []).append(FieldError(kind=kind, message=message))


def error_messages(errors: ErrorMap) -> dict[str, list[str]]:
    """Flatten an error map to plain messages for display."""
    return {field: [e.message for e in field_errors] for field, field_errors in errors.items()}


@dataclass(frozen=True)
class SchedulingError:
    """A grading request that could not be applied."""

    kind: ErrorKind
    message: str
    child_id: int | None = None
    flashcard_id: int | None = None

    @property
    def retryable(self) -> bool:
        """Conflicts may succeed if the whole read-modify-write is repeated."""
        return self.kind is ErrorKind.CONCURRENCY_CONFLICT
