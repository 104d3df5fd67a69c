"""Flashcard normalization and validation.

``normalize`` reshapes raw authored or imported fields (true/false and
cloze cards derive their question/answer, tags arrive as a comma string).
``validate`` then checks every rule for the declared card type and returns
all problems at once, keyed by field name, so a form or an import report
can show them side by side.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlparse

from backend.cards import cloze
from backend.cards.types import (
    CARD_TYPES,
    DIFFICULTY_LEVELS,
    IMAGE_EXTENSIONS,
    MAX_CHOICE_LENGTH,
    MAX_CHOICES,
    MAX_IMPORT_SOURCE_LENGTH,
    MAX_TAG_LENGTH,
    MAX_TEXT_LENGTH,
    MAX_URL_LENGTH,
    MIN_CHOICES,
    TRUE_FALSE_CHOICES,
    BasicCard,
    CardContent,
    CardType,
    ClozeCard,
    Difficulty,
    FlashcardDraft,
    ImageOcclusionCard,
    MultipleChoiceCard,
    TrueFalseCard,
    TypedAnswerCard,
)
from backend.errors import ErrorKind, ErrorMap, add_error, error_messages

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Outcome of validating one card submission."""

    fields: dict[str, Any]
    errors: ErrorMap = field(default_factory=dict)
    draft: FlashcardDraft | None = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def messages(self) -> dict[str, list[str]]:
        return error_messages(self.errors)


# --- Normalization ---


def normalize_tags(value: Any) -> list[str] | None:
    """Split a comma-separated tag string; lists pass through unchanged.

    Duplicates are kept. Anything other than a string, list, tuple or None
    is a caller error.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    if isinstance(value, list | tuple):
        return list(value)
    raise TypeError(f"tags must be a string or a list, got {type(value).__name__}")


def _normalize_true_false(fields: dict[str, Any]) -> None:
    answer = fields.get("true_false_answer")
    if isinstance(answer, bool):
        answer = "true" if answer else "false"
    elif isinstance(answer, str):
        answer = answer.strip().lower()
    if not answer:
        return
    fields["true_false_answer"] = answer
    is_true = answer == "true"
    fields["choices"] = list(TRUE_FALSE_CHOICES)
    fields["correct_choices"] = [0 if is_true else 1]
    fields["answer"] = TRUE_FALSE_CHOICES[0] if is_true else TRUE_FALSE_CHOICES[1]


def _normalize_cloze(fields: dict[str, Any]) -> None:
    text = fields.get("cloze_text")
    if not isinstance(text, str) or not text:
        return
    answers = cloze.unique_answers(text)
    fields["question"] = cloze.mask(text)
    fields["answer"] = ", ".join(answers)
    fields["cloze_answers"] = answers


def normalize(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Return a normalized copy of submitted card fields."""
    fields = dict(raw)

    card_type = fields.get("card_type")
    if isinstance(card_type, CardType):
        card_type = fields["card_type"] = card_type.value

    if card_type == CardType.TRUE_FALSE.value:
        _normalize_true_false(fields)
    elif card_type == CardType.CLOZE.value:
        _normalize_cloze(fields)

    if "tags" in fields:
        fields["tags"] = normalize_tags(fields["tags"])

    if fields.get("difficulty_level") in (None, ""):
        fields["difficulty_level"] = Difficulty.MEDIUM.value
    if fields.get("is_active") is None:
        fields["is_active"] = True

    return fields


# --- Field helpers ---


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == []


def _label(name: str) -> str:
    return name.replace("_", " ")


def _required_text(
    fields: Mapping[str, Any],
    name: str,
    errors: ErrorMap,
    max_length: int = MAX_TEXT_LENGTH,
    message: str | None = None,
) -> str | None:
    value = fields.get(name)
    if _is_blank(value):
        add_error(errors, name, ErrorKind.MISSING_FIELD, message or f"The {_label(name)} field is required.")
        return None
    return _check_text(value, name, errors, max_length)


def _optional_text(
    fields: Mapping[str, Any],
    name: str,
    errors: ErrorMap,
    max_length: int = MAX_TEXT_LENGTH,
) -> str | None:
    value = fields.get(name)
    if value is None:
        return None
    return _check_text(value, name, errors, max_length)


def _check_text(value: Any, name: str, errors: ErrorMap, max_length: int) -> str | None:
    if not isinstance(value, str):
        add_error(errors, name, ErrorKind.TYPE_MISMATCH, f"The {_label(name)} must be a string.")
        return None
    if len(value) > max_length:
        add_error(
            errors,
            name,
            ErrorKind.LENGTH_EXCEEDED,
            f"The {_label(name)} may not be greater than {max_length} characters.",
        )
        return None
    return value


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _image_extension(url: str) -> str:
    return PurePosixPath(urlparse(url).path).suffix.lstrip(".").lower()


# --- Per-type rules ---


def _validate_question_answer(
    fields: Mapping[str, Any], errors: ErrorMap
) -> tuple[str | None, str | None]:
    question = _required_text(fields, "question", errors)
    answer = _required_text(fields, "answer", errors)
    return question, answer


def _validate_basic(fields: Mapping[str, Any], errors: ErrorMap) -> CardContent | None:
    question, answer = _validate_question_answer(fields, errors)
    if question is None or answer is None:
        return None
    if fields["card_type"] == CardType.TYPED_ANSWER.value:
        return TypedAnswerCard(question=question, answer=answer)
    return BasicCard(question=question, answer=answer)


def _validate_choices(fields: Mapping[str, Any], errors: ErrorMap) -> list[str] | None:
    choices = fields.get("choices")
    if _is_blank(choices):
        add_error(errors, "choices", ErrorKind.MISSING_FIELD, "Multiple choice cards must have at least 2 choices.")
        return None
    if not isinstance(choices, list | tuple):
        add_error(errors, "choices", ErrorKind.TYPE_MISMATCH, "Choices must be a list.")
        return None

    valid = True
    if len(choices) < MIN_CHOICES:
        add_error(
            errors, "choices", ErrorKind.COUNT_OUT_OF_RANGE, "Multiple choice cards must have at least 2 choices."
        )
        valid = False
    elif len(choices) > MAX_CHOICES:
        add_error(
            errors, "choices", ErrorKind.COUNT_OUT_OF_RANGE, "Multiple choice cards can have at most 6 choices."
        )
        valid = False

    for i, choice in enumerate(choices):
        key = f"choices.{i}"
        if _is_blank(choice):
            add_error(errors, key, ErrorKind.MISSING_FIELD, "Choices cannot be empty.")
            valid = False
        elif _check_text(choice, key, errors, MAX_CHOICE_LENGTH) is None:
            valid = False

    text_choices = [c for c in choices if isinstance(c, str)]
    if len(text_choices) != len(set(text_choices)):
        add_error(errors, "choices", ErrorKind.DUPLICATE_CHOICE, "All choices must be unique.")
        valid = False

    return list(choices) if valid else None


def _validate_correct_choices(
    fields: Mapping[str, Any], choices: Any, errors: ErrorMap
) -> list[int] | None:
    correct = fields.get("correct_choices")
    if _is_blank(correct):
        add_error(
            errors,
            "correct_choices",
            ErrorKind.MISSING_FIELD,
            "Multiple choice cards must have at least 1 correct choice.",
        )
        return None
    if not isinstance(correct, list | tuple):
        add_error(errors, "correct_choices", ErrorKind.TYPE_MISMATCH, "Correct choices must be a list.")
        return None

    choice_count = len(choices) if isinstance(choices, list | tuple) else 0
    indices: list[int] = []
    for i, index in enumerate(correct):
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            add_error(
                errors,
                f"correct_choices.{i}",
                ErrorKind.TYPE_MISMATCH,
                "Correct choices must be valid choice indices.",
            )
            continue
        if index >= choice_count:
            add_error(
                errors,
                "correct_choices",
                ErrorKind.INVALID_REFERENCE,
                f"Correct choice index {index} is invalid.",
            )
            continue
        indices.append(index)

    if len(indices) != len(correct):
        return None
    return list(dict.fromkeys(indices))


def _validate_multiple_choice(fields: Mapping[str, Any], errors: ErrorMap) -> CardContent | None:
    question, answer = _validate_question_answer(fields, errors)
    choices = _validate_choices(fields, errors)
    correct = _validate_correct_choices(fields, fields.get("choices"), errors)
    if question is None or answer is None or choices is None or correct is None:
        return None
    return MultipleChoiceCard(
        question=question,
        answer=answer,
        choices=tuple(choices),
        correct_choices=tuple(correct),
    )


def _validate_true_false(fields: Mapping[str, Any], errors: ErrorMap) -> CardContent | None:
    question, answer = _validate_question_answer(fields, errors)

    choice = fields.get("true_false_answer")
    if _is_blank(choice):
        add_error(errors, "true_false_answer", ErrorKind.MISSING_FIELD, "Must select either True or False.")
        choice = None
    elif choice not in ("true", "false"):
        add_error(errors, "true_false_answer", ErrorKind.INVALID_VALUE, "Must select either True or False.")
        choice = None

    choices = fields.get("choices")
    if choices is not None and (not isinstance(choices, list | tuple) or len(choices) != 2):
        add_error(errors, "choices", ErrorKind.COUNT_OUT_OF_RANGE, "True/false cards must have exactly 2 choices.")
    correct = fields.get("correct_choices")
    if correct is not None and (not isinstance(correct, list | tuple) or len(correct) != 1):
        add_error(
            errors,
            "correct_choices",
            ErrorKind.COUNT_OUT_OF_RANGE,
            "True/false cards must have exactly 1 correct choice.",
        )

    if question is None or answer is None or choice is None:
        return None
    return TrueFalseCard(question=question, answer=answer, is_true=choice == "true")


def _validate_cloze(fields: Mapping[str, Any], errors: ErrorMap) -> CardContent | None:
    text = _required_text(
        fields, "cloze_text", errors, message="Cloze deletion cards must have cloze text with {{}} syntax."
    )
    # Derived by normalize; only their shape is checked here
    _optional_text(fields, "question", errors)
    _optional_text(fields, "answer", errors)

    if text is None:
        return None

    valid = True
    if not cloze.DELETION_PATTERN.search(text):
        add_error(
            errors,
            "cloze_text",
            ErrorKind.MALFORMED_CLOZE_SYNTAX,
            "Cloze text must contain at least one deletion using {{}} syntax.",
        )
        valid = False
    if cloze.is_malformed(text):
        add_error(
            errors,
            "cloze_text",
            ErrorKind.MALFORMED_CLOZE_SYNTAX,
            "Invalid cloze syntax. Use {{word}} or {{c1::word}} format.",
        )
        valid = False
    if any(not deletion for deletion in cloze.deletions(text)):
        add_error(errors, "cloze_text", ErrorKind.EMPTY_CLOZE_DELETION, "Cloze deletions cannot be empty.")
        valid = False

    if not valid:
        return None
    answers = cloze.unique_answers(text)
    return ClozeCard(
        cloze_text=text,
        question=cloze.mask(text),
        answer=", ".join(answers),
        cloze_answers=tuple(answers),
    )


def _validate_image_url(
    fields: Mapping[str, Any], name: str, errors: ErrorMap, required: bool
) -> str | None:
    if required:
        url = _required_text(
            fields, name, errors, MAX_URL_LENGTH, message="Image occlusion cards must have a question image URL."
        )
    elif _is_blank(fields.get(name)):
        return None
    else:
        url = _optional_text(fields, name, errors, MAX_URL_LENGTH)
    if url is None:
        return None

    valid = True
    if not _is_url(url):
        add_error(errors, name, ErrorKind.INVALID_URL, f"The {_label(name)} must be a valid URL.")
        valid = False
    if required and _image_extension(url) not in IMAGE_EXTENSIONS:
        add_error(
            errors,
            name,
            ErrorKind.UNSUPPORTED_IMAGE_EXTENSION,
            "URL must point to a valid image file (jpg, png, gif, etc.).",
        )
        valid = False
    return url if valid else None


def _validate_image_occlusion(fields: Mapping[str, Any], errors: ErrorMap) -> CardContent | None:
    question, answer = _validate_question_answer(fields, errors)
    image_url = _validate_image_url(fields, "question_image_url", errors, required=True)
    answer_image_url = _validate_image_url(fields, "answer_image_url", errors, required=False)
    answer_image_ok = "answer_image_url" not in errors

    regions = fields.get("occlusion_data")
    valid_regions = True
    if _is_blank(regions):
        add_error(
            errors, "occlusion_data", ErrorKind.MISSING_FIELD, "Image occlusion cards must have occlusion data."
        )
        valid_regions = False
    elif not isinstance(regions, list | tuple):
        add_error(errors, "occlusion_data", ErrorKind.TYPE_MISMATCH, "Occlusion data must be a list of regions.")
        valid_regions = False
    else:
        for i, region in enumerate(regions):
            if not isinstance(region, Mapping):
                add_error(
                    errors, f"occlusion_data.{i}", ErrorKind.TYPE_MISMATCH, "Each occlusion region must be an object."
                )
                valid_regions = False

    if question is None or answer is None or image_url is None or not valid_regions or not answer_image_ok:
        return None
    return ImageOcclusionCard(
        question=question,
        answer=answer,
        question_image_url=image_url,
        occlusion_data=tuple(dict(region) for region in regions),
        answer_image_url=answer_image_url,
    )


TYPE_RULES: dict[CardType, Callable[[Mapping[str, Any], ErrorMap], CardContent | None]] = {
    CardType.BASIC: _validate_basic,
    CardType.TYPED_ANSWER: _validate_basic,
    CardType.MULTIPLE_CHOICE: _validate_multiple_choice,
    CardType.TRUE_FALSE: _validate_true_false,
    CardType.CLOZE: _validate_cloze,
    CardType.IMAGE_OCCLUSION: _validate_image_occlusion,
}


# --- Shared rules ---


def _validate_tags(fields: Mapping[str, Any], errors: ErrorMap) -> tuple[str, ...]:
    tags = fields.get("tags")
    if tags is None:
        return ()
    if not isinstance(tags, list | tuple):
        add_error(errors, "tags", ErrorKind.TYPE_MISMATCH, "Tags must be a list.")
        return ()
    for i, tag in enumerate(tags):
        if not isinstance(tag, str):
            add_error(errors, f"tags.{i}", ErrorKind.TYPE_MISMATCH, "Each tag must be a string.")
        elif len(tag) > MAX_TAG_LENGTH:
            add_error(
                errors,
                f"tags.{i}",
                ErrorKind.LENGTH_EXCEEDED,
                f"Each tag may not be greater than {MAX_TAG_LENGTH} characters.",
            )
    return tuple(tags)


def _validate_choice_field(
    fields: Mapping[str, Any], name: str, allowed: list[str], errors: ErrorMap
) -> str | None:
    value = fields.get(name)
    if _is_blank(value):
        add_error(errors, name, ErrorKind.MISSING_FIELD, f"The {_label(name)} field is required.")
        return None
    if value not in allowed:
        add_error(errors, name, ErrorKind.INVALID_VALUE, f"The selected {_label(name)} is invalid.")
        return None
    return value


def validate(fields: Mapping[str, Any]) -> ValidationResult:
    """Check normalized card fields against every rule for their card type.

    Errors accumulate rather than stopping at the first failure. Running
    this twice on the same input gives the same result.
    """
    errors: ErrorMap = {}

    card_type = _validate_choice_field(fields, "card_type", CARD_TYPES, errors)
    difficulty = _validate_choice_field(fields, "difficulty_level", DIFFICULTY_LEVELS, errors)
    tags = _validate_tags(fields, errors)
    hint = _optional_text(fields, "hint", errors)
    import_source = _optional_text(fields, "import_source", errors, MAX_IMPORT_SOURCE_LENGTH)

    is_active = fields.get("is_active", True)
    if is_active is None:
        is_active = True
    elif not isinstance(is_active, bool):
        add_error(errors, "is_active", ErrorKind.TYPE_MISMATCH, "The is active field must be true or false.")

    content = None
    if card_type is not None:
        content = TYPE_RULES[CardType(card_type)](fields, errors)

    result = ValidationResult(fields=dict(fields), errors=errors)
    if errors:
        logger.debug("Card validation failed for %s: %s", card_type, sorted(errors))
        return result

    result.draft = FlashcardDraft(
        content=content,
        difficulty_level=Difficulty(difficulty),
        tags=tags,
        hint=hint,
        is_active=is_active,
        import_source=import_source,
    )
    return result


def check(raw: Mapping[str, Any]) -> ValidationResult:
    """Normalize then validate, the path every authoring and import flow takes."""
    return validate(normalize(raw))
