"""Tests for checking responses against cards."""

import pytest

from backend.cards.answers import adjust_outcome, check_answer, normalize_for_comparison
from backend.cards.types import (
    BasicCard,
    ClozeCard,
    MultipleChoiceCard,
    TrueFalseCard,
    TypedAnswerCard,
)
from backend.srs.scheduler import Outcome


def _make_mc(correct: tuple[int, ...] = (1,)) -> MultipleChoiceCard:
    return MultipleChoiceCard(
        question="Which are planets?",
        answer="Mars",
        choices=("Sun", "Mars", "Venus", "Moon"),
        correct_choices=correct,
    )


class TestNormalizeForComparison:
    def test_strips_and_lowercases(self) -> None:
        assert normalize_for_comparison("  Paris ") == "paris"

    def test_removes_zero_width(self) -> None:
        assert normalize_for_comparison("Pa\u200bris\ufeff") == "paris"

    def test_nfc(self) -> None:
        assert normalize_for_comparison("cafe\u0301") == normalize_for_comparison("caf\u00e9")


class TestCheckAnswer:
    def test_basic_is_self_assessed(self) -> None:
        check = check_answer(BasicCard(question="Q", answer="A"))
        assert check.is_self_assessed
        assert check.expected == "A"

    def test_multiple_choice_correct(self) -> None:
        check = check_answer(_make_mc(), [1])
        assert check.is_correct is True
        assert check.feedback == "Correct!"

    def test_multiple_choice_wrong(self) -> None:
        check = check_answer(_make_mc(), [0])
        assert check.is_correct is False
        assert check.actual == "Sun"
        assert check.feedback == "The correct answer was: Mars"

    def test_multiple_choice_needs_every_correct_choice(self) -> None:
        card = _make_mc(correct=(1, 2))
        assert check_answer(card, [2, 1]).is_correct is True
        assert check_answer(card, [1]).is_correct is False

    def test_choice_response_must_be_iterable(self) -> None:
        with pytest.raises(TypeError):
            check_answer(_make_mc(), 1)

    def test_true_false(self) -> None:
        card = TrueFalseCard(question="Water is wet", answer="True", is_true=True)
        assert check_answer(card, [0]).is_correct is True
        assert check_answer(card, [1]).is_correct is False

    def test_typed_answer_ignores_case(self) -> None:
        card = TypedAnswerCard(question="Capital of France?", answer="Paris")
        assert check_answer(card, " paris").is_correct is True
        wrong = check_answer(card, "Lyon")
        assert wrong.is_correct is False
        assert wrong.feedback == "Expected: Paris"

    def test_typed_answer_needs_string(self) -> None:
        with pytest.raises(TypeError):
            check_answer(TypedAnswerCard(question="Q", answer="A"), None)

    def test_cloze_blanks_in_order(self) -> None:
        card = ClozeCard(
            cloze_text="The {{sun}} is a {{star}}",
            question="The [...] is a [...]",
            answer="sun, star",
            cloze_answers=("sun", "star"),
        )
        assert check_answer(card, ["Sun", "star"]).is_correct is True
        assert check_answer(card, ["star", "sun"]).is_correct is False
        assert check_answer(card, ["sun"]).is_correct is False

    def test_cloze_rejects_plain_string(self) -> None:
        card = ClozeCard(cloze_text="{{a}}", question="[...]", answer="a", cloze_answers=("a",))
        with pytest.raises(TypeError):
            check_answer(card, "a")


class TestAdjustOutcome:
    def setup_method(self) -> None:
        self.wrong = check_answer(_make_mc(), [0])
        self.right = check_answer(_make_mc(), [1])

    def test_wrong_good_becomes_again(self) -> None:
        assert adjust_outcome(Outcome.GOOD, self.wrong) is Outcome.AGAIN
        assert adjust_outcome(Outcome.EASY, self.wrong) is Outcome.AGAIN

    def test_wrong_hard_kept(self) -> None:
        assert adjust_outcome(Outcome.HARD, self.wrong) is Outcome.HARD

    def test_right_answer_kept(self) -> None:
        assert adjust_outcome(Outcome.EASY, self.right) is Outcome.EASY

    def test_self_assessed_kept(self) -> None:
        check = check_answer(BasicCard(question="Q", answer="A"))
        assert adjust_outcome(Outcome.GOOD, check) is Outcome.GOOD
        assert adjust_outcome(Outcome.GOOD, None) is Outcome.GOOD
