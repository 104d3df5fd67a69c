"""CLI interface for Homeschool Review.

Usage:
    python -m homeschool_review add-child "Ada" --grade 3
    python -m homeschool_review add-topic Science Plants "Photosynthesis"
    python -m homeschool_review add-card --topic 1 --question "2+2?" --answer 4
    python -m homeschool_review import cards.txt --topic 1 --child 1
    python -m homeschool_review enroll --child 1 --topic 1
    python -m homeschool_review slots --child 1 --defaults
    python -m homeschool_review due --child 1
    python -m homeschool_review stats --child 1
    python -m homeschool_review review --child 1
"""

import argparse
import asyncio
import logging
from pathlib import Path

from sqlalchemy import select

from backend.cards.answers import AnswerCheck, check_answer
from backend.cards.importer import parse_file
from backend.cards.repository import create_flashcard, import_into_topic, list_flashcards
from backend.cards.types import CardType
from backend.config import local_now, utcnow
from backend.database import async_session, init_db
from backend.errors import error_messages
from backend.models import Child, Flashcard, Subject, Topic, Unit
from backend.srs.queue import build_due_queue
from backend.srs.scheduler import Outcome, format_interval
from backend.srs.service import enroll
from backend.srs.session import start_session
from backend.srs.slots import (
    add_slot,
    create_default_slots,
    delete_slot,
    list_slots,
    toggle_slot,
    window_from_record,
)
from backend.srs.stats import child_stats

GRADE_KEYS = {"1": Outcome.AGAIN, "2": Outcome.HARD, "3": Outcome.GOOD, "4": Outcome.EASY}


async def ensure_db() -> None:
    """Create tables if they don't exist."""
    await init_db()


async def get_child(db, child_id: int) -> Child | None:
    child = await db.get(Child, child_id)
    if child is None:
        print(f"  No child with id {child_id}.")
    return child


def parse_grade_input(raw: str, suggested: Outcome) -> Outcome | None:
    """Map a keypress (1-4 or a grade name) to an outcome; blank takes the suggestion."""
    raw = raw.strip().lower()
    if not raw:
        return suggested
    if raw in GRADE_KEYS:
        return GRADE_KEYS[raw]
    try:
        return Outcome(raw)
    except ValueError:
        return None


def parse_choice_input(raw: str) -> list[int]:
    """Turn "1, 3" into zero-based indices [0, 2]; anything unparseable is dropped."""
    return [int(part) - 1 for part in raw.replace(" ", "").split(",") if part.isdigit()]


def format_card_prompt(card: Flashcard) -> list[str]:
    """Lines shown before the child answers."""
    lines = [f"  {card.question}"]
    if card.card_type == CardType.IMAGE_OCCLUSION.value:
        lines.append(f"  Image: {card.question_image_url}")
    if card.choices:
        lines.extend(f"    {i}. {choice}" for i, choice in enumerate(card.choices, 1))
    if card.hint:
        lines.append(f"  Hint: {card.hint}")
    return lines


def suggest_outcome(check: AnswerCheck | None) -> Outcome:
    if check is not None and check.is_correct is False:
        return Outcome.AGAIN
    return Outcome.GOOD


async def cmd_add_child(args: argparse.Namespace) -> None:
    """Add a child profile."""
    await ensure_db()
    async with async_session() as db:
        child = Child(name=args.name, grade=args.grade)
        db.add(child)
        await db.commit()
        print(f"  Added {child.name} (id={child.id})")


async def cmd_add_topic(args: argparse.Namespace) -> None:
    """Add a topic, creating its subject and unit if needed."""
    await ensure_db()
    async with async_session() as db:
        subject = (
            await db.execute(select(Subject).where(Subject.name == args.subject))
        ).scalar_one_or_none()
        if subject is None:
            subject = Subject(name=args.subject)
            db.add(subject)
            await db.flush()

        unit = (
            await db.execute(select(Unit).where(Unit.subject_id == subject.id, Unit.name == args.unit))
        ).scalar_one_or_none()
        if unit is None:
            unit = Unit(subject_id=subject.id, name=args.unit)
            db.add(unit)
            await db.flush()

        topic = Topic(unit_id=unit.id, title=args.title)
        db.add(topic)
        await db.commit()
        print(f"  Added topic '{topic.title}' (id={topic.id}) under {subject.name} / {unit.name}")


def _card_fields(args: argparse.Namespace) -> dict:
    fields = {
        "card_type": args.type,
        "question": args.question,
        "answer": args.answer,
        "hint": args.hint,
        "difficulty_level": args.difficulty,
        "tags": args.tags,
    }
    if args.choices:
        fields["choices"] = [c.strip() for c in args.choices.split(";")]
    if args.correct:
        fields["correct_choices"] = parse_choice_input(args.correct)
    if args.true_false:
        fields["true_false_answer"] = args.true_false
    if args.cloze_text:
        fields["cloze_text"] = args.cloze_text
    if args.image_url:
        fields["question_image_url"] = args.image_url
    return {k: v for k, v in fields.items() if v is not None}


def print_errors(errors: dict[str, list[str]], indent: str = "  ") -> None:
    for field_name, messages in errors.items():
        for message in messages:
            print(f"{indent}{field_name}: {message}")


async def cmd_add_card(args: argparse.Namespace) -> None:
    """Author a single flashcard."""
    await ensure_db()
    async with async_session() as db:
        result = await create_flashcard(db, args.topic, _card_fields(args))
        if not result.ok:
            print("  Card not saved:")
            print_errors(result.messages(), indent="    ")
            return
        print(f"  Added {result.flashcard.card_type} card (id={result.flashcard.id})")


async def cmd_import(args: argparse.Namespace) -> None:
    """Import flashcards from a file into a topic."""
    await ensure_db()
    parsed = parse_file(Path(args.file))
    for error in parsed.errors:
        print(f"  {error}")

    async with async_session() as db:
        report, cards = await import_into_topic(db, args.topic, parsed.records, source=args.source)
        if report.batch_error:
            print(f"  Import refused: {report.batch_error}")
            return

        for row, errors in report.errors_by_row.items():
            print(f"  Row {row}:")
            print_errors(errors, indent="    ")
        for row, message in report.duplicates_by_row.items():
            print(f"  Row {row}: {message}, skipped")
        print(f"  Imported {len(cards)} of {report.total} cards")

        if args.child is not None and cards:
            created = await enroll(db, args.child, [card.id for card in cards])
            print(f"  Enrolled {len(created)} cards for child {args.child}")


async def cmd_enroll(args: argparse.Namespace) -> None:
    """Put every active card in a topic into a child's rotation."""
    await ensure_db()
    async with async_session() as db:
        if await get_child(db, args.child) is None:
            return
        cards = await list_flashcards(db, args.topic, active_only=True)
        created = await enroll(db, args.child, [card.id for card in cards])
        print(f"  Enrolled {len(created)} new cards ({len(cards)} in topic)")


async def cmd_slots(args: argparse.Namespace) -> None:
    """List or change a child's review slots."""
    await ensure_db()
    async with async_session() as db:
        if await get_child(db, args.child) is None:
            return

        if args.defaults:
            created = await create_default_slots(db, args.child)
            print(f"  Created {len(created)} default slots")
        if args.add:
            day, start, end = args.add
            result = await add_slot(
                db,
                args.child,
                {"day_of_week": day, "start_time": start, "end_time": end, "slot_type": args.type},
            )
            if isinstance(result, dict):
                print("  Slot not added:")
                print_errors(error_messages(result), indent="    ")
            else:
                print(f"  Added slot {window_from_record(result).label()}")
        if args.toggle is not None:
            result = await toggle_slot(db, args.child, args.toggle)
            if result is None:
                print(f"  No slot with id {args.toggle}")
            elif isinstance(result, dict):
                print_errors(error_messages(result))
        if args.delete is not None and not await delete_slot(db, args.child, args.delete):
            print(f"  No slot with id {args.delete}")

        slots = await list_slots(db, args.child)
        if not slots:
            print("  No review slots: reviews are open any time")
        for slot in slots:
            print(f"  [{slot.id}] {window_from_record(slot).label()}")


async def cmd_due(args: argparse.Namespace) -> None:
    """Show how many cards are due."""
    await ensure_db()
    async with async_session() as db:
        items = await build_due_queue(db, args.child, capacity=10_000)
    new = sum(1 for item in items if item.is_new)
    print(f"  {len(items) - new} cards due, {new} new cards available")


async def cmd_stats(args: argparse.Namespace) -> None:
    """Show a child's statistics."""
    await ensure_db()
    async with async_session() as db:
        child = await get_child(db, args.child)
        if child is None:
            return
        stats = await child_stats(db, args.child)

    retention = f"{stats.retention * 100:.0f}%" if stats.retention is not None else "-"
    print(f"\n  Review statistics for {child.name}")
    print(f"  {'Cards enrolled:':<20} {stats.cards_enrolled}")
    print(f"  {'Due now:':<20} {stats.cards_due}")
    print(f"  {'New (unseen):':<20} {stats.cards_new}")
    print(f"  {'Mastered:':<20} {stats.cards_mastered}")
    print(f"  {'Total reviews:':<20} {stats.total_reviews}")
    print(f"  {'30-day retention:':<20} {retention}")
    print(f"  {'Streak (days):':<20} {stats.streak_days}")
    print()


def _read_response(card: Flashcard) -> tuple[bool, object]:
    """Prompt for an answer. Returns (quit, response)."""
    card_type = CardType(card.card_type)
    if card_type in (CardType.MULTIPLE_CHOICE, CardType.TRUE_FALSE):
        raw = input("\n  Your answer (number, comma-separated if several): ").strip()
        return raw.lower() == "q", parse_choice_input(raw)
    if card_type is CardType.TYPED_ANSWER:
        raw = input("\n  Your answer: ").strip()
        return raw.lower() == "q", raw
    if card_type is CardType.CLOZE:
        raw = input("\n  Fill the blanks (separate with ;): ").strip()
        return raw.lower() == "q", [part.strip() for part in raw.split(";")]
    raw = input("\n  Press enter to show the answer: ").strip()
    return raw.lower() == "q", None


async def cmd_review(args: argparse.Namespace) -> None:
    """Run an interactive review session."""
    await ensure_db()
    async with async_session() as db:
        if await get_child(db, args.child) is None:
            return

        start = await start_session(db, args.child, now=utcnow(), local_time=local_now())
        if not start.allowed:
            print("\n  Reviews are closed right now.")
            if start.gate.next_slot is not None:
                print(f"  Next slot today: {start.gate.next_slot.start_time:%H:%M}")
            return

        session = start.session
        if session.total == 0:
            print("\n  No cards due for review. You're all caught up!")
            return

        print("\n  Review Session")
        print(f"  {session.total} cards (up to {start.gate.capacity} this session)\n")
        print("  Grades: 1=Again  2=Hard  3=Good  4=Easy")
        print("  Type 'q' to quit\n")

        while not session.is_complete:
            item = session.current
            card = await session.current_card(db)
            label = f"  [{session.total - session.remaining + 1}/{session.total}]"
            if item.is_new:
                label += " (NEW)"
            print(label)
            for line in format_card_prompt(card):
                print(line)

            quit_requested, response = _read_response(card)
            if quit_requested:
                session.end()
                print("\n  Session ended early.")
                break

            check = check_answer(card, response) if response is not None else None
            if check is not None:
                print(f"  {check.feedback}")
            print(f"  Answer: {card.answer}")

            suggested = suggest_outcome(check)
            outcome = None
            while outcome is None:
                outcome = parse_grade_input(input(f"  Grade [1-4, enter={suggested.value}]: "), suggested)

            result = await session.grade(db, outcome, response=response)
            if result.ok:
                for line in result.transition.describe():
                    print(f"  {line}")
                print(f"  Next review in {format_interval(result.transition.new_interval)}\n")
            else:
                print(f"  {result.error.message}\n")

    stats = session.stats
    if not stats.ended_early:
        print("\n  Session Complete!")
    print(
        f"  Reviewed: {stats.cards_reviewed}  "
        + "  ".join(f"{name.title()}: {count}" for name, count in stats.outcomes.items())
        + "\n"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homeschool-review",
        description="Flashcards and spaced repetition review for homeschool families",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add-child
    child_parser = subparsers.add_parser("add-child", help="Add a child profile")
    child_parser.add_argument("name")
    child_parser.add_argument("--grade", default=None)

    # add-topic
    topic_parser = subparsers.add_parser("add-topic", help="Add a topic to the curriculum")
    topic_parser.add_argument("subject")
    topic_parser.add_argument("unit")
    topic_parser.add_argument("title")

    # add-card
    card_parser = subparsers.add_parser("add-card", help="Author a flashcard")
    card_parser.add_argument("--topic", type=int, required=True)
    card_parser.add_argument("--type", default=CardType.BASIC.value, choices=[t.value for t in CardType])
    card_parser.add_argument("--question")
    card_parser.add_argument("--answer")
    card_parser.add_argument("--hint")
    card_parser.add_argument("--difficulty", default=None)
    card_parser.add_argument("--tags", default=None, help="Comma-separated tags")
    card_parser.add_argument("--choices", help="Semicolon-separated choices")
    card_parser.add_argument("--correct", help="Correct choice numbers, e.g. 1,3")
    card_parser.add_argument("--true-false", choices=["true", "false"])
    card_parser.add_argument("--cloze-text")
    card_parser.add_argument("--image-url")

    # import
    import_parser = subparsers.add_parser("import", help="Import flashcards from a file")
    import_parser.add_argument("file")
    import_parser.add_argument("--topic", type=int, required=True)
    import_parser.add_argument("--child", type=int, default=None, help="Also enroll for this child")
    import_parser.add_argument("--source", default="import")

    # enroll
    enroll_parser = subparsers.add_parser("enroll", help="Enroll a topic's cards for a child")
    enroll_parser.add_argument("--child", type=int, required=True)
    enroll_parser.add_argument("--topic", type=int, required=True)

    # slots
    slots_parser = subparsers.add_parser("slots", help="Show or edit review slots")
    slots_parser.add_argument("--child", type=int, required=True)
    slots_parser.add_argument("--add", nargs=3, metavar=("DAY", "START", "END"))
    slots_parser.add_argument("--type", default="micro", help="micro or standard")
    slots_parser.add_argument("--defaults", action="store_true", help="Create the default schedule")
    slots_parser.add_argument("--toggle", type=int, metavar="SLOT_ID")
    slots_parser.add_argument("--delete", type=int, metavar="SLOT_ID")

    # due, stats, review
    for name, help_text in (
        ("due", "Show cards due for review"),
        ("stats", "Show statistics"),
        ("review", "Start a review session"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--child", type=int, required=True)

    return parser


COMMANDS = {
    "add-child": cmd_add_child,
    "add-topic": cmd_add_topic,
    "add-card": cmd_add_card,
    "import": cmd_import,
    "enroll": cmd_enroll,
    "slots": cmd_slots,
    "due": cmd_due,
    "stats": cmd_stats,
    "review": cmd_review,
}


def main() -> None:
    """Entry point for the Homeschool Review CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return

    asyncio.run(COMMANDS[args.command](args))


if __name__ == "__main__":
    main()
