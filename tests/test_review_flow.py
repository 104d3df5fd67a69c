"""End-to-end tests: card storage, enrollment, grading, sessions and stats."""

import asyncio
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.cards.repository import (
    create_flashcard,
    force_delete,
    get_flashcard,
    import_into_topic,
    list_flashcards,
    restore,
    set_active,
    soft_delete,
    update_flashcard,
)
from backend.errors import ErrorKind
from backend.models import Child, Flashcard, ReviewLog, ReviewState, Topic
from backend.srs.locks import KeyedLocks
from backend.srs.scheduler import Outcome, ReviewStatus
from backend.srs.service import enroll, grade
from backend.srs.session import start_session
from backend.srs.slots import add_slot
from backend.srs.stats import child_stats

NOW = datetime(2026, 10, 19, 12, 0, 0)  # Monday


async def _make_card(db: AsyncSession, topic: Topic, **fields) -> Flashcard:
    raw = {"card_type": "basic", "question": "What is 2+2?", "answer": "4", **fields}
    saved = await create_flashcard(db, topic.id, raw)
    assert saved.ok, saved.messages()
    return saved.flashcard


async def _state(db: AsyncSession, child: Child, card: Flashcard) -> ReviewState:
    stmt = (
        select(ReviewState)
        .where(ReviewState.child_id == child.id, ReviewState.flashcard_id == card.id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one()


# --- Repository ---


class TestRepository:
    @pytest.mark.asyncio
    async def test_create_stores_normalized_fields(self, db: AsyncSession, topic: Topic) -> None:
        card = await _make_card(
            db, topic, card_type="true_false", question="Fish can fly", answer=None, true_false_answer="false"
        )
        assert card.answer == "False"
        assert card.choices == ["True", "False"]
        assert card.correct_choices == [1]
        assert card.difficulty_level == "medium"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid(self, db: AsyncSession, topic: Topic) -> None:
        saved = await create_flashcard(db, topic.id, {"card_type": "cloze", "cloze_text": "no blanks"})
        assert not saved.ok
        assert saved.errors["cloze_text"][0].kind is ErrorKind.MALFORMED_CLOZE_SYNTAX
        assert await list_flashcards(db, topic.id) == []

    @pytest.mark.asyncio
    async def test_create_unknown_topic(self, db: AsyncSession) -> None:
        saved = await create_flashcard(db, 999, {"card_type": "basic", "question": "Q", "answer": "A"})
        assert saved.messages() == {"topic_id": ["The selected topic is invalid."]}

    @pytest.mark.asyncio
    async def test_update_switching_type_clears_old_columns(self, db: AsyncSession, topic: Topic) -> None:
        card = await _make_card(db, topic, card_type="multiple_choice", choices=["3", "4"], correct_choices=[1])
        saved = await update_flashcard(db, card.id, {"card_type": "cloze", "cloze_text": "2+2 is {{4}}"})
        assert saved.ok
        assert card.card_type == "cloze"
        assert card.question == "2+2 is [...]"
        assert card.choices is None
        assert card.correct_choices is None

    @pytest.mark.asyncio
    async def test_update_keeps_stored_type(self, db: AsyncSession, topic: Topic) -> None:
        card = await _make_card(db, topic, card_type="typed_answer")
        saved = await update_flashcard(db, card.id, {"question": "What is 3+3?", "answer": "6"})
        assert saved.ok
        assert card.card_type == "typed_answer"
        assert card.answer == "6"

    @pytest.mark.asyncio
    async def test_soft_delete_and_restore(self, db: AsyncSession, topic: Topic) -> None:
        card = await _make_card(db, topic)
        assert await soft_delete(db, card.id)
        assert await get_flashcard(db, card.id) is None
        assert await get_flashcard(db, card.id, include_deleted=True) is card
        assert await list_flashcards(db, topic.id) == []
        assert await restore(db, card.id)
        assert await list_flashcards(db, topic.id) == [card]
        assert not await restore(db, card.id)

    @pytest.mark.asyncio
    async def test_set_active(self, db: AsyncSession, topic: Topic) -> None:
        cards = [await _make_card(db, topic) for _ in range(3)]
        assert await set_active(db, [c.id for c in cards[:2]], False) == 2
        assert await set_active(db, [], False) == 0
        active = await list_flashcards(db, topic.id, active_only=True)
        assert [c.id for c in active] == [cards[2].id]

    @pytest.mark.asyncio
    async def test_force_delete_removes_history(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        await enroll(db, child.id, [card.id], now=NOW)
        assert (await grade(db, child.id, card.id, "good", now=NOW)).ok
        assert await force_delete(db, card.id)
        assert (await db.execute(select(func.count(ReviewState.id)))).scalar() == 0
        assert (await db.execute(select(func.count(ReviewLog.id)))).scalar() == 0
        assert not await force_delete(db, card.id)

    @pytest.mark.asyncio
    async def test_import_into_topic(self, db: AsyncSession, topic: Topic) -> None:
        records = [
            {"card_type": "basic", "question": "Q1", "answer": "A1"},
            {"card_type": "basic", "question": "Q2"},
        ]
        report, cards = await import_into_topic(db, topic.id, records, source="paste")
        assert report.imported_count == 1
        assert report.errors_by_row == {2: {"answer": ["The answer field is required."]}}
        assert cards[0].import_source == "paste"
        assert len(await list_flashcards(db, topic.id)) == 1

    @pytest.mark.asyncio
    async def test_reimport_skips_existing_cards(self, db: AsyncSession, topic: Topic) -> None:
        records = [
            {"card_type": "basic", "question": "Q1", "answer": "A1"},
            {"card_type": "basic", "question": "Q2", "answer": "A2"},
        ]
        await import_into_topic(db, topic.id, records)
        report, cards = await import_into_topic(db, topic.id, records)
        assert cards == []
        assert report.duplicates_by_row == {
            1: "Duplicate of an existing card",
            2: "Duplicate of an existing card",
        }
        assert len(await list_flashcards(db, topic.id)) == 2

    @pytest.mark.asyncio
    async def test_import_into_missing_topic(self, db: AsyncSession) -> None:
        report, cards = await import_into_topic(db, 999, [{"card_type": "basic", "question": "Q", "answer": "A"}])
        assert cards == []
        assert report.batch_error == "Topic 999 does not exist"


# --- Enrollment and grading ---


class TestGrade:
    @pytest.mark.asyncio
    async def test_enroll_is_idempotent(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        deleted = await _make_card(db, topic)
        await soft_delete(db, deleted.id)
        created = await enroll(db, child.id, [card.id, card.id, deleted.id, 999], now=NOW)
        assert [s.flashcard_id for s in created] == [card.id]
        assert created[0].status == "new"
        assert created[0].due_at == NOW
        assert await enroll(db, child.id, [card.id], now=NOW) == []

    @pytest.mark.asyncio
    async def test_grade_good(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        await enroll(db, child.id, [card.id], now=NOW)
        result = await grade(db, child.id, card.id, "good", now=NOW)
        assert result.ok
        assert result.transition.describe() == ["Interval: 1d → 3d", "Ease factor: 2.50 → 2.50"]

        state = await _state(db, child, card)
        assert state.interval_days == 3.0
        assert state.repetition_count == 1
        assert state.status == ReviewStatus.LEARNING.value
        assert state.due_at == NOW + timedelta(days=3)
        assert state.last_reviewed_at == NOW

        log = (await db.execute(select(ReviewLog))).scalar_one()
        assert log.outcome == "good"
        assert log.interval_before == 1.0
        assert log.interval_after == 3.0

    @pytest.mark.asyncio
    async def test_not_yet_due(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        await enroll(db, child.id, [card.id], now=NOW)
        await grade(db, child.id, card.id, Outcome.GOOD, now=NOW)
        result = await grade(db, child.id, card.id, Outcome.GOOD, now=NOW + timedelta(days=1))
        assert result.error.kind is ErrorKind.NOT_FOUND
        assert result.error.message == "This card is no longer due."
        assert not db.in_transaction()
        assert (await _state(db, child, card)).repetition_count == 1

    @pytest.mark.asyncio
    async def test_invalid_outcome(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        await enroll(db, child.id, [card.id], now=NOW)
        result = await grade(db, child.id, card.id, "perfect", now=NOW)
        assert result.error.kind is ErrorKind.INVALID_OUTCOME
        assert result.error.flashcard_id == card.id
        assert (await _state(db, child, card)).status == "new"

    @pytest.mark.asyncio
    async def test_unknown_item(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        result = await grade(db, child.id, card.id, "good", now=NOW)
        assert result.error.kind is ErrorKind.NOT_FOUND
        assert not db.in_transaction()

    @pytest.mark.asyncio
    async def test_inactive_card(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        await enroll(db, child.id, [card.id], now=NOW)
        await set_active(db, [card.id], False)
        result = await grade(db, child.id, card.id, "good", now=NOW)
        assert result.error.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_wrong_answer_downgrades_to_again(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic, card_type="typed_answer", question="Capital of France?", answer="Paris")
        await enroll(db, child.id, [card.id], now=NOW)
        result = await grade(db, child.id, card.id, "easy", now=NOW, response="Lyon")
        assert result.answer_check.is_correct is False
        assert result.transition.outcome is Outcome.AGAIN
        assert (await _state(db, child, card)).status == ReviewStatus.LEARNING.value

    @pytest.mark.asyncio
    async def test_concurrent_grades_apply_once(
        self, session_factory: async_sessionmaker[AsyncSession], child: Child, topic: Topic
    ) -> None:
        async with session_factory() as setup:
            card = await _make_card(setup, topic)
            await enroll(setup, child.id, [card.id], now=NOW)

        locks = KeyedLocks()

        async def grade_once(outcome: str):
            async with session_factory() as db:
                return await grade(db, child.id, card.id, outcome, now=NOW, locks=locks)

        results = await asyncio.gather(grade_once("good"), grade_once("easy"))
        assert sum(r.ok for r in results) == 1
        failed = next(r for r in results if not r.ok)
        assert failed.error.kind is ErrorKind.NOT_FOUND
        assert len(locks) == 0

        async with session_factory() as db:
            assert (await _state(db, child, card)).repetition_count == 1
            assert (await db.execute(select(func.count(ReviewLog.id)))).scalar() == 1

    @pytest.mark.asyncio
    async def test_stale_write_is_a_conflict(
        self, session_factory: async_sessionmaker[AsyncSession], child: Child, topic: Topic
    ) -> None:
        async with session_factory() as setup:
            card = await _make_card(setup, topic)
            await enroll(setup, child.id, [card.id], now=NOW)

        class InterferingSession(AsyncSession):
            """Commits another writer's change just before its own flush."""

            async def commit(self) -> None:
                async with session_factory() as other:
                    await other.execute(
                        update(ReviewState.__table__)
                        .where(ReviewState.__table__.c.flashcard_id == card.id)
                        .values(interval_days=99.0, version_id=ReviewState.__table__.c.version_id + 1)
                    )
                    await other.commit()
                await super().commit()

        interfering = async_sessionmaker(session_factory.kw["bind"], class_=InterferingSession, expire_on_commit=False)
        async with interfering() as db:
            result = await grade(db, child.id, card.id, "good", now=NOW, locks=KeyedLocks())
        assert result.error.kind is ErrorKind.CONCURRENCY_CONFLICT
        assert result.error.retryable

        async with session_factory() as db:
            state = await _state(db, child, card)
            assert state.interval_days == 99.0
            assert state.repetition_count == 0
            assert (await db.execute(select(func.count(ReviewLog.id)))).scalar() == 0


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_serializes(self) -> None:
        locks = KeyedLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("item"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert "item" not in locks

    @pytest.mark.asyncio
    async def test_released_on_error(self) -> None:
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold(1):
                raise RuntimeError("boom")
        assert len(locks) == 0


# --- Sessions ---


class TestReviewSession:
    @pytest.mark.asyncio
    async def test_full_session(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        cards = [await _make_card(db, topic) for _ in range(3)]
        await enroll(db, child.id, [c.id for c in cards], now=NOW)

        start = await start_session(db, child.id, now=NOW, local_time=NOW)
        assert start.allowed
        session = start.session
        assert session.total == 3

        first = await session.current_card(db)
        assert first.id == cards[0].id
        for outcome in ("good", "again", "easy"):
            assert (await session.grade(db, outcome, now=NOW)).ok

        assert session.is_complete
        assert session.current is None
        assert session.stats.cards_reviewed == 3
        assert session.stats.new_cards_seen == 3
        assert session.stats.outcomes == {"again": 1, "hard": 0, "good": 1, "easy": 1}
        assert not session.end().ended_early

        result = await session.grade(db, "good", now=NOW)
        assert result.error.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_outcome_keeps_cursor(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        await enroll(db, child.id, [card.id], now=NOW)
        session = (await start_session(db, child.id, now=NOW, local_time=NOW)).session

        result = await session.grade(db, "meh", now=NOW)
        assert result.error.kind is ErrorKind.INVALID_OUTCOME
        assert session.remaining == 1
        assert (await session.grade(db, "hard", now=NOW)).ok
        assert session.remaining == 0

    @pytest.mark.asyncio
    async def test_deleted_card_is_skipped(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        cards = [await _make_card(db, topic) for _ in range(2)]
        await enroll(db, child.id, [c.id for c in cards], now=NOW)
        session = (await start_session(db, child.id, now=NOW, local_time=NOW)).session

        await soft_delete(db, cards[0].id)
        skipped = await session.grade(db, "good", now=NOW)
        assert skipped.error.kind is ErrorKind.NOT_FOUND
        assert session.stats.skipped == 1
        assert session.current.flashcard_id == cards[1].id

    @pytest.mark.asyncio
    async def test_end_early_leaves_rest_due(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        cards = [await _make_card(db, topic) for _ in range(3)]
        await enroll(db, child.id, [c.id for c in cards], now=NOW)
        session = (await start_session(db, child.id, now=NOW, local_time=NOW)).session

        await session.grade(db, "good", now=NOW)
        stats = session.end()
        assert stats.ended_early
        assert session.remaining == 0
        assert (await _state(db, child, cards[1])).due_at == NOW

    @pytest.mark.asyncio
    async def test_outside_slots_is_refused(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        card = await _make_card(db, topic)
        await enroll(db, child.id, [card.id], now=NOW)
        await add_slot(db, child.id, {"day_of_week": 1, "start_time": "08:00", "end_time": "08:05"})
        await add_slot(db, child.id, {"day_of_week": 1, "start_time": "19:30", "end_time": "19:35"})

        start = await start_session(db, child.id, now=NOW, local_time=NOW)
        assert not start.allowed
        assert start.gate.next_slot.start_time == time(19, 30)

        inside = await start_session(db, child.id, now=NOW, local_time=NOW.replace(hour=8, minute=2))
        assert inside.allowed
        assert inside.gate.capacity == 10

    @pytest.mark.asyncio
    async def test_micro_slot_caps_session(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        cards = [await _make_card(db, topic) for _ in range(12)]
        await enroll(db, child.id, [c.id for c in cards], now=NOW - timedelta(days=1))
        # Make every card a due review rather than new
        await db.execute(update(ReviewState).values(status=ReviewStatus.REVIEWING.value))
        await db.commit()
        await add_slot(db, child.id, {"day_of_week": 1, "start_time": "11:55", "end_time": "12:05"})

        session = (await start_session(db, child.id, now=NOW, local_time=NOW)).session
        assert session.total == 10


# --- Stats ---


class TestChildStats:
    @pytest.mark.asyncio
    async def test_stats_after_reviews(self, db: AsyncSession, child: Child, topic: Topic) -> None:
        cards = [await _make_card(db, topic) for _ in range(4)]
        await enroll(db, child.id, [c.id for c in cards], now=NOW)
        for card, outcome in zip(cards, ("good", "easy", "again")):
            assert (await grade(db, child.id, card.id, outcome, now=NOW)).ok

        stats = await child_stats(db, child.id, now=NOW)
        assert stats.cards_enrolled == 4
        assert stats.cards_due == 1
        assert stats.cards_new == 1
        assert stats.cards_mastered == 0
        assert stats.total_reviews == 3
        assert stats.retention == 0.667
        assert stats.streak_days == 1

    @pytest.mark.asyncio
    async def test_empty(self, db: AsyncSession, child: Child) -> None:
        stats = await child_stats(db, child.id, now=NOW)
        assert stats.as_dict() == {
            "cards_enrolled": 0,
            "cards_due": 0,
            "cards_new": 0,
            "cards_mastered": 0,
            "total_reviews": 0,
            "retention": None,
            "streak_days": 0,
        }
