"""Checking a child's response against a flashcard.

Choice, typed and cloze cards can be checked automatically. Basic and
image occlusion cards are self-assessed: the child reveals the answer and
grades themselves, so there is nothing to compare.
"""

import logging
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from backend.cards.types import CardType
from backend.srs.scheduler import Outcome

logger = logging.getLogger(__name__)

CHOICE_TYPES = (CardType.MULTIPLE_CHOICE, CardType.TRUE_FALSE)
SELF_ASSESSED_TYPES = (CardType.BASIC, CardType.IMAGE_OCCLUSION)


@dataclass
class AnswerCheck:
    """The result of checking one response."""

    is_correct: bool | None  # None when the card is self-assessed
    expected: str
    actual: str
    feedback: str

    @property
    def is_self_assessed(self) -> bool:
        return self.is_correct is None


def normalize_for_comparison(text: str) -> str:
    """Normalize text for comparison.

    - Unicode NFC normalization
    - Remove zero-width characters
    - Strip whitespace
    - Lowercase
    """
    text = unicodedata.normalize("NFC", text)
    for char in ["\u200b", "\u200c", "\u200d", "\ufeff"]:
        text = text.replace(char, "")
    return text.strip().lower()


def _check_choices(card: Any, selected: Iterable[int]) -> AnswerCheck:
    correct = sorted(card.correct_choices or [])
    chosen = sorted(set(selected))
    choices = list(card.choices or [])
    expected = ", ".join(choices[i] for i in correct if i < len(choices))
    actual = ", ".join(choices[i] for i in chosen if 0 <= i < len(choices))
    if chosen == correct:
        return AnswerCheck(True, expected, actual, "Correct!")
    return AnswerCheck(False, expected, actual, f"The correct answer was: {expected}")


def _check_typed(card: Any, response: str) -> AnswerCheck:
    if normalize_for_comparison(response) == normalize_for_comparison(card.answer):
        return AnswerCheck(True, card.answer, response, "Correct!")
    return AnswerCheck(False, card.answer, response, f"Expected: {card.answer}")


def _check_cloze(card: Any, blanks: Sequence[str]) -> AnswerCheck:
    expected = list(card.cloze_answers or [])
    actual = ", ".join(blanks)
    joined = ", ".join(expected)
    if len(blanks) != len(expected):
        return AnswerCheck(False, joined, actual, f"Expected: {joined}")
    for given, wanted in zip(blanks, expected):
        if normalize_for_comparison(given) != normalize_for_comparison(wanted):
            return AnswerCheck(False, joined, actual, f"Expected: {joined}")
    return AnswerCheck(True, joined, actual, "Correct!")


def check_answer(card: Any, response: Any = None) -> AnswerCheck:
    """Check ``response`` against a card.

    ``card`` is anything with the flashcard attributes (a stored
    ``Flashcard`` or a validated content variant). The response shape
    depends on the card type: selected choice indices for choice cards,
    a string for typed answers, one string per blank for cloze cards.
    """
    card_type = CardType(card.card_type)

    if card_type in SELF_ASSESSED_TYPES:
        return AnswerCheck(None, card.answer, "", "Check your answer and grade yourself.")
    if card_type in CHOICE_TYPES:
        if response is None or isinstance(response, str | int):
            raise TypeError("choice cards expect an iterable of selected indices")
        return _check_choices(card, response)
    if card_type is CardType.TYPED_ANSWER:
        if not isinstance(response, str):
            raise TypeError("typed answer cards expect a string response")
        return _check_typed(card, response)
    if isinstance(response, str) or response is None:
        raise TypeError("cloze cards expect one string per blank")
    return _check_cloze(card, list(response))


def adjust_outcome(outcome: Outcome, check: AnswerCheck | None) -> Outcome:
    """Downgrade a good/easy self-grade to again when the answer was wrong."""
    if check is None or check.is_correct is not False:
        return outcome
    if outcome in (Outcome.GOOD, Outcome.EASY):
        logger.debug("Incorrect answer graded %s, recording as again", outcome.value)
        return Outcome.AGAIN
    return outcome
