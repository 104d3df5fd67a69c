"""Tests for CLI commands and input helpers."""

from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import homeschool_review.__main__ as cli
from backend.cards.answers import check_answer
from backend.cards.repository import create_flashcard
from backend.config import utcnow
from backend.models import Child, Flashcard, Topic
from backend.srs.scheduler import Outcome
from backend.srs.service import enroll


@pytest.fixture
def use_test_db(monkeypatch: pytest.MonkeyPatch, session_factory: async_sessionmaker[AsyncSession]) -> None:
    async def ensure_db() -> None:
        pass

    monkeypatch.setattr(cli, "async_session", session_factory)
    monkeypatch.setattr(cli, "ensure_db", ensure_db)


def _feed_input(monkeypatch: pytest.MonkeyPatch, answers: list[str]) -> None:
    remaining = iter(answers)
    monkeypatch.setattr("builtins.input", lambda _prompt="": next(remaining))


# --- Input helpers ---


class TestInputHelpers:
    def test_grade_keys(self) -> None:
        assert cli.parse_grade_input("1", Outcome.GOOD) is Outcome.AGAIN
        assert cli.parse_grade_input("4", Outcome.GOOD) is Outcome.EASY

    def test_grade_names(self) -> None:
        assert cli.parse_grade_input(" Hard ", Outcome.GOOD) is Outcome.HARD

    def test_blank_takes_suggestion(self) -> None:
        assert cli.parse_grade_input("", Outcome.AGAIN) is Outcome.AGAIN

    def test_unknown_grade(self) -> None:
        assert cli.parse_grade_input("7", Outcome.GOOD) is None

    def test_choice_input(self) -> None:
        assert cli.parse_choice_input("1, 3") == [0, 2]
        assert cli.parse_choice_input("x") == []

    def test_suggestion_follows_answer_check(self) -> None:
        card = Flashcard(card_type="typed_answer", question="Q", answer="Paris")
        assert cli.suggest_outcome(check_answer(card, "Lyon")) is Outcome.AGAIN
        assert cli.suggest_outcome(check_answer(card, "paris")) is Outcome.GOOD
        assert cli.suggest_outcome(None) is Outcome.GOOD

    def test_card_prompt_lists_choices(self) -> None:
        card = Flashcard(
            card_type="multiple_choice", question="Pick one", answer="B", choices=["A", "B"], hint="Not A"
        )
        assert cli.format_card_prompt(card) == ["  Pick one", "    1. A", "    2. B", "  Hint: Not A"]


class TestParser:
    def test_add_card_fields(self) -> None:
        args = cli.build_parser().parse_args(
            [
                "add-card",
                "--topic",
                "1",
                "--type",
                "multiple_choice",
                "--question",
                "Pick",
                "--answer",
                "B",
                "--choices",
                "A; B; C",
                "--correct",
                "2",
            ]
        )
        assert cli._card_fields(args) == {
            "card_type": "multiple_choice",
            "question": "Pick",
            "answer": "B",
            "choices": ["A", "B", "C"],
            "correct_choices": [1],
        }

    def test_review_requires_child(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["review"])


# --- Commands ---


class TestCommands:
    @pytest.mark.asyncio
    async def test_add_child(self, use_test_db: None, capsys: pytest.CaptureFixture[str]) -> None:
        await cli.cmd_add_child(cli.build_parser().parse_args(["add-child", "Ada", "--grade", "3"]))
        assert "Added Ada (id=1)" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_add_card_reports_errors(
        self, use_test_db: None, topic: Topic, capsys: pytest.CaptureFixture[str]
    ) -> None:
        args = cli.build_parser().parse_args(
            ["add-card", "--topic", str(topic.id), "--type", "cloze", "--cloze-text", "no blanks here"]
        )
        await cli.cmd_add_card(args)
        out = capsys.readouterr().out
        assert "Card not saved:" in out
        assert "cloze_text: Cloze text must contain at least one deletion" in out

    @pytest.mark.asyncio
    async def test_import_and_enroll(
        self,
        use_test_db: None,
        tmp_path: Path,
        child: Child,
        topic: Topic,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        path = tmp_path / "cards.txt"
        path.write_text("What is 2+2?\t4\nFish fly\tfalse\nThe {{ }} is hot\tsun\n", encoding="utf-8")
        args = cli.build_parser().parse_args(
            ["import", str(path), "--topic", str(topic.id), "--child", str(child.id)]
        )
        await cli.cmd_import(args)
        out = capsys.readouterr().out
        assert "Row 3:" in out
        assert "Imported 2 of 3 cards" in out
        assert f"Enrolled 2 cards for child {child.id}" in out

    @pytest.mark.asyncio
    async def test_slots_defaults(
        self, use_test_db: None, child: Child, capsys: pytest.CaptureFixture[str]
    ) -> None:
        await cli.cmd_slots(cli.build_parser().parse_args(["slots", "--child", str(child.id), "--defaults"]))
        out = capsys.readouterr().out
        assert "Created 14 default slots" in out
        assert "Monday 08:00-08:05 (micro)" in out

    @pytest.mark.asyncio
    async def test_review_session(
        self,
        use_test_db: None,
        monkeypatch: pytest.MonkeyPatch,
        db: AsyncSession,
        child: Child,
        topic: Topic,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        saved = await create_flashcard(
            db, topic.id, {"card_type": "basic", "question": "Capital of Peru?", "answer": "Lima"}
        )
        await enroll(db, child.id, [saved.flashcard.id], now=utcnow() - timedelta(minutes=1))
        # Reveal the answer, then accept the suggested grade
        _feed_input(monkeypatch, ["", ""])

        await cli.cmd_review(cli.build_parser().parse_args(["review", "--child", str(child.id)]))
        out = capsys.readouterr().out
        assert "Capital of Peru?" in out
        assert "Answer: Lima" in out
        assert "Interval: 1d → 3d" in out
        assert "Next review in 3d" in out
        assert "Session Complete!" in out

    @pytest.mark.asyncio
    async def test_review_nothing_due(
        self, use_test_db: None, child: Child, capsys: pytest.CaptureFixture[str]
    ) -> None:
        await cli.cmd_review(cli.build_parser().parse_args(["review", "--child", str(child.id)]))
        assert "You're all caught up!" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_stats(self, use_test_db: None, child: Child, capsys: pytest.CaptureFixture[str]) -> None:
        await cli.cmd_stats(cli.build_parser().parse_args(["stats", "--child", str(child.id)]))
        out = capsys.readouterr().out
        assert "Review statistics for Ada" in out
        assert "30-day retention:" in out
