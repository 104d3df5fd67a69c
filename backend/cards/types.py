"""Flashcard content variants.

Each card type carries only the fields it needs. The validator builds one
of these once a submission passes, so downstream code can dispatch on the
variant instead of re-checking ``card_type`` strings.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class CardType(Enum):
    BASIC = "basic"
    TYPED_ANSWER = "typed_answer"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    CLOZE = "cloze"
    IMAGE_OCCLUSION = "image_occlusion"


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


CARD_TYPES = [t.value for t in CardType]
DIFFICULTY_LEVELS = [d.value for d in Difficulty]

TRUE_FALSE_CHOICES = ("True", "False")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "svg")

# Limits
MAX_TEXT_LENGTH = 65535
MAX_CHOICE_LENGTH = 1000
MAX_TAG_LENGTH = 100
MAX_URL_LENGTH = 255
MAX_IMPORT_SOURCE_LENGTH = 50
MIN_CHOICES = 2
MAX_CHOICES = 6


@dataclass(frozen=True)
class BasicCard:
    card_type: ClassVar[CardType] = CardType.BASIC

    question: str
    answer: str


@dataclass(frozen=True)
class TypedAnswerCard:
    card_type: ClassVar[CardType] = CardType.TYPED_ANSWER

    question: str
    answer: str


@dataclass(frozen=True)
class MultipleChoiceCard:
    card_type: ClassVar[CardType] = CardType.MULTIPLE_CHOICE

    question: str
    answer: str
    choices: tuple[str, ...]
    correct_choices: tuple[int, ...]


@dataclass(frozen=True)
class TrueFalseCard:
    card_type: ClassVar[CardType] = CardType.TRUE_FALSE

    question: str
    answer: str
    is_true: bool

    @property
    def choices(self) -> tuple[str, ...]:
        return TRUE_FALSE_CHOICES

    @property
    def correct_choices(self) -> tuple[int, ...]:
        return (0,) if self.is_true else (1,)


@dataclass(frozen=True)
class ClozeCard:
    card_type: ClassVar[CardType] = CardType.CLOZE

    cloze_text: str
    question: str  # cloze_text with every deletion masked
    answer: str
    cloze_answers: tuple[str, ...]


@dataclass(frozen=True)
class ImageOcclusionCard:
    card_type: ClassVar[CardType] = CardType.IMAGE_OCCLUSION

    question: str
    answer: str
    question_image_url: str
    occlusion_data: tuple[dict, ...]
    answer_image_url: str | None = None


CardContent = (
    BasicCard
    | TypedAnswerCard
    | MultipleChoiceCard
    | TrueFalseCard
    | ClozeCard
    | ImageOcclusionCard
)


@dataclass(frozen=True)
class FlashcardDraft:
    """A validated card ready to persist."""

    content: CardContent
    difficulty_level: Difficulty = Difficulty.MEDIUM
    tags: tuple[str, ...] = ()
    hint: str | None = None
    is_active: bool = True
    import_source: str | None = None

    @property
    def card_type(self) -> CardType:
        return self.content.card_type

    def to_record(self) -> dict[str, Any]:
        """Flatten to flashcard columns, clearing fields of other variants."""
        content = self.content
        record: dict[str, Any] = {
            "card_type": content.card_type.value,
            "question": content.question,
            "answer": content.answer,
            "hint": self.hint,
            "choices": None,
            "correct_choices": None,
            "cloze_text": None,
            "cloze_answers": None,
            "question_image_url": None,
            "answer_image_url": None,
            "occlusion_data": None,
            "difficulty_level": self.difficulty_level.value,
            "tags": list(self.tags),
            "is_active": self.is_active,
            "import_source": self.import_source,
        }
        if isinstance(content, MultipleChoiceCard | TrueFalseCard):
            record["choices"] = list(content.choices)
            record["correct_choices"] = list(content.correct_choices)
        elif isinstance(content, ClozeCard):
            record["cloze_text"] = content.cloze_text
            record["cloze_answers"] = list(content.cloze_answers)
        elif isinstance(content, ImageOcclusionCard):
            record["question_image_url"] = content.question_image_url
            record["answer_image_url"] = content.answer_image_url
            record["occlusion_data"] = [dict(region) for region in content.occlusion_data]
        return record
