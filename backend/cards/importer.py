"""Bulk flashcard import from pasted text or files.

Text imports are one card per line, ``question<delim>answer[<delim>hint]``,
with the delimiter (tab, comma, `` - ``, pipe or semicolon) detected from the
first few lines. ``#hashtags`` anywhere on a line become tags. A line may
instead use the extended CSV layout::

    type,question,answer,choices,correct,hint,tags

where choices, correct indices and tags are ``;``-separated.

Imported records go through exactly the same normalize/validate path as
cards authored by hand.
"""

import csv
import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from backend.cards import cloze
from backend.cards.answers import normalize_for_comparison
from backend.cards.types import CARD_TYPES, CardType, FlashcardDraft
from backend.cards.validator import check
from backend.config import settings
from backend.errors import error_messages

logger = logging.getLogger(__name__)

# Detection order matters: the first best-scoring delimiter wins ties
DELIMITERS: dict[str, str] = {
    "tab": "\t",
    "comma": ",",
    "dash": " - ",
    "pipe": "|",
    "semicolon": ";",
}
SAMPLE_LINES = 5
EXTENDED_COLUMNS = 5

HASHTAG_PATTERN = re.compile(r"#(\w+)")
CHOICE_MARKER_PATTERN = re.compile(r"^[a-d]\)|^\d+\)")
TRUE_FALSE_PATTERN = re.compile(r"^(true|false|yes|no|t|f|y|n)$", re.IGNORECASE)
TRUTHY_ANSWERS = ("true", "yes", "t", "y", "1")
ANKI_CLOZE_PATTERN = re.compile(r"\{\{c\d+::(.*?)\}\}")
IMAGE_URL_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)

SUPPORTED_EXTENSIONS = {".txt", ".csv", ".tsv", ".json"}


@dataclass
class ParsedImport:
    """Records parsed from import text, before validation."""

    records: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    delimiter: str | None = None
    total_lines: int = 0


@dataclass
class ImportReport:
    """Validated drafts plus the per-row errors and duplicates that kept other rows out."""

    drafts: list[FlashcardDraft] = field(default_factory=list)
    errors_by_row: dict[int, dict[str, list[str]]] = field(default_factory=dict)
    duplicates_by_row: dict[int, str] = field(default_factory=dict)
    total: int = 0
    batch_error: str | None = None

    @property
    def imported_count(self) -> int:
        return len(self.drafts)

    @property
    def failed_count(self) -> int:
        return len(self.errors_by_row)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates_by_row)


# --- Line parsing ---


def split_line(line: str, delimiter: str) -> list[str]:
    """Split one line; comma lines honour CSV quoting."""
    if delimiter == ",":
        return next(csv.reader([line]), [])
    return line.split(delimiter)


def _is_extended(parts: list[str]) -> bool:
    return len(parts) >= EXTENDED_COLUMNS and parts[0].strip().lower() in CARD_TYPES


def detect_delimiter(lines: list[str]) -> str | None:
    """Pick the delimiter that most consistently yields 2-3 columns.

    Lines in the extended layout always use commas.
    """
    sample = lines[:SAMPLE_LINES]
    if any(_is_extended(split_line(line, ",")) for line in sample):
        return ","
    scores: dict[str, float] = {}

    for delimiter in DELIMITERS.values():
        score = 0
        valid_lines = 0
        for line in sample:
            parts = split_line(line, delimiter)
            if len(parts) < 2:
                continue
            valid_lines += 1
            if len(parts) == 2:
                score += 3  # question, answer
            elif len(parts) == 3:
                score += 2  # question, answer, hint
            else:
                score += 1
        if valid_lines:
            scores[delimiter] = score / len(sample)

    if not scores:
        return None
    return max(scores, key=scores.get)


def _split_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(";")]


def _parse_index(value: str) -> int | str:
    value = value.strip()
    return int(value) if value.isdigit() else value


def parse_line(line: str, delimiter: str, line_number: int) -> dict[str, Any] | str:
    """Parse one line into a raw record, or return an error message."""
    parts = split_line(line, delimiter)
    if len(parts) < 2:
        return f"Line {line_number}: Must contain at least question and answer separated by delimiter"

    record: dict[str, Any] = {
        "card_type": None,
        "question": parts[0].strip(),
        "answer": parts[1].strip(),
        "hint": parts[2].strip() if len(parts) > 2 else None,
        "choices": None,
        "correct_choices": None,
        "difficulty_level": "medium",
        "tags": list(dict.fromkeys(HASHTAG_PATTERN.findall(line))),
    }

    if _is_extended(parts):
        record["card_type"] = parts[0].strip().lower()
        record["question"] = parts[1].strip()
        record["answer"] = parts[2].strip()
        if parts[3].strip():
            record["choices"] = _split_list(parts[3])
        if parts[4].strip():
            record["correct_choices"] = [_parse_index(p) for p in parts[4].split(";")]
        record["hint"] = parts[5].strip() if len(parts) > 5 else None
        if len(parts) > 6 and parts[6].strip():
            record["tags"] = _split_list(parts[6])

    if not record["question"]:
        return f"Line {line_number}: Question cannot be empty"
    if not record["answer"]:
        return f"Line {line_number}: Answer cannot be empty"
    return record


# --- Type detection and shaping ---


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def detect_card_type(record: Mapping[str, Any]) -> str:
    """Guess a card type from its question and answer."""
    question = record.get("question") or ""
    answer = record.get("answer") or ""
    choices = record.get("choices")

    if cloze.DELETION_PATTERN.search(question) or cloze.DELETION_PATTERN.search(answer):
        return CardType.CLOZE.value
    if isinstance(choices, list) and len(choices) > 2:
        return CardType.MULTIPLE_CHOICE.value
    if CHOICE_MARKER_PATTERN.search(answer) or ";" in answer:
        return CardType.MULTIPLE_CHOICE.value
    if TRUE_FALSE_PATTERN.match(answer.strip()):
        return CardType.TRUE_FALSE.value
    if _is_url(question) and IMAGE_URL_PATTERN.search(question):
        return CardType.IMAGE_OCCLUSION.value
    return CardType.BASIC.value


def _prepare_multiple_choice(record: dict[str, Any]) -> dict[str, Any]:
    answer = record.get("answer") or ""
    choices = record.get("choices") or []
    if not choices:
        if ";" in answer:
            choices = _split_list(answer)
        elif "\n" in answer:
            choices = [c.strip() for c in answer.split("\n") if c.strip()]
        else:
            choices = [answer, "Option B", "Option C", "Option D"]
    correct = record.get("correct_choices") or [0]
    choices = choices[:6]

    record["choices"] = choices
    record["correct_choices"] = correct
    record["answer"] = ", ".join(
        str(choices[i]) for i in correct if isinstance(i, int) and 0 <= i < len(choices)
    )
    return record


def _prepare_true_false(record: dict[str, Any]) -> dict[str, Any]:
    if record.get("true_false_answer") not in (None, ""):
        return record
    answer = str(record.get("answer") or "").strip().lower()
    record["true_false_answer"] = "true" if answer in TRUTHY_ANSWERS else "false"
    return record


def _prepare_cloze(record: dict[str, Any]) -> dict[str, Any]:
    if record.get("cloze_text"):
        return record
    question = record.get("question") or ""
    answer = record.get("answer") or ""
    if cloze.DELETION_PATTERN.search(question):
        text = question
    elif cloze.DELETION_PATTERN.search(answer):
        text = answer
    else:
        text = question.replace(answer, "{{" + answer + "}}") if answer else question
    record["cloze_text"] = ANKI_CLOZE_PATTERN.sub(r"{{\1}}", text)
    return record


def _prepare_image_occlusion(record: dict[str, Any]) -> dict[str, Any]:
    question = record.get("question") or ""
    if not record.get("question_image_url"):
        record["question_image_url"] = question if _is_url(question) else None
    record.setdefault("occlusion_data", None)
    if not record["occlusion_data"]:
        # A single placeholder region, adjusted later in the editor
        record["occlusion_data"] = [
            {"type": "rectangle", "x": 100, "y": 100, "width": 200, "height": 50, "answer": record.get("answer")}
        ]
    return record


PREPARERS = {
    CardType.MULTIPLE_CHOICE.value: _prepare_multiple_choice,
    CardType.TRUE_FALSE.value: _prepare_true_false,
    CardType.CLOZE.value: _prepare_cloze,
    CardType.IMAGE_OCCLUSION.value: _prepare_image_occlusion,
}


def prepare_record(record: Mapping[str, Any]) -> dict[str, Any]:
    """Detect the card type if missing and shape the record for validation."""
    prepared = dict(record)
    if not prepared.get("card_type"):
        prepared["card_type"] = detect_card_type(prepared)
    preparer = PREPARERS.get(prepared["card_type"])
    return preparer(prepared) if preparer else prepared


# --- Entry points ---


def parse_text(content: str) -> ParsedImport:
    """Parse pasted or uploaded text into prepared records."""
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    numbered = [(i + 1, line) for i, line in enumerate(content.split("\n")) if line.strip()]
    parsed = ParsedImport(total_lines=len(numbered))

    if not numbered:
        parsed.errors.append("No content lines found")
        return parsed

    parsed.delimiter = detect_delimiter([line for _, line in numbered])
    if parsed.delimiter is None:
        parsed.errors.append(
            'Could not detect delimiter. Supported formats: tab-separated, comma-separated, or " - " separated'
        )
        return parsed

    for line_number, line in numbered:
        result = parse_line(line, parsed.delimiter, line_number)
        if isinstance(result, str):
            parsed.errors.append(result)
        else:
            parsed.records.append(prepare_record(result))

    logger.info(
        "Parsed %d of %d lines (delimiter %r, %d errors)",
        len(parsed.records),
        parsed.total_lines,
        parsed.delimiter,
        len(parsed.errors),
    )
    return parsed


def parse_json(content: str) -> ParsedImport:
    """Parse a JSON list of card objects, keeping every field given."""
    data = json.loads(content)
    if isinstance(data, dict):
        data = data.get("flashcards", [data])
    if not isinstance(data, list):
        raise ValueError("JSON import must be a list of card objects")
    parsed = ParsedImport(total_lines=len(data))
    for i, item in enumerate(data, start=1):
        if isinstance(item, dict):
            parsed.records.append(prepare_record(item))
        else:
            parsed.errors.append(f"Item {i}: Must be an object")
    return parsed


def parse_file(path: Path) -> ParsedImport:
    """Read a .txt/.csv/.tsv/.json import file."""
    ext = path.suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported file type: {ext}. Supported: {sorted(SUPPORTED_EXTENSIONS)}")
    logger.info("Reading %s (%s)", path.name, ext)
    content = path.read_text(encoding="utf-8")
    if ext == ".json":
        return parse_json(content)
    return parse_text(content)


def duplicate_key(question: str | None, answer: str | None) -> tuple[str, str]:
    """Comparison key for spotting the same card twice."""
    return normalize_for_comparison(question or ""), normalize_for_comparison(answer or "")


def import_records(
    records: Iterable[Mapping[str, Any]],
    source: str = "import",
    max_size: int | None = None,
    existing: Iterable[Any] = (),
) -> ImportReport:
    """Validate every record; valid ones become drafts, the rest are reported by row.

    A batch over the size cap is refused outright. A valid row whose question
    and answer match one of ``existing`` (anything with ``question`` and
    ``answer`` attributes) or an earlier row of the batch is skipped as a
    duplicate.
    """
    records = list(records)
    max_size = settings.max_import_size if max_size is None else max_size
    report = ImportReport(total=len(records))

    if len(records) > max_size:
        report.batch_error = f"Import contains {len(records)} cards, but maximum allowed is {max_size}"
        logger.warning(report.batch_error)
        return report

    seen: dict[tuple[str, str], int | None] = {duplicate_key(card.question, card.answer): None for card in existing}

    for row, record in enumerate(records, start=1):
        try:
            result = check({**record, "import_source": source})
        except TypeError as exc:
            report.errors_by_row[row] = {"tags": [str(exc)]}
            continue
        if not result.is_valid:
            report.errors_by_row[row] = error_messages(result.errors)
            continue

        key = duplicate_key(result.draft.content.question, result.draft.content.answer)
        if key in seen:
            first_row = seen[key]
            report.duplicates_by_row[row] = (
                "Duplicate of an existing card" if first_row is None else f"Duplicate of row {first_row}"
            )
            continue
        seen[key] = row
        report.drafts.append(result.draft)

    logger.info(
        "Import from %s: %d valid, %d rejected, %d duplicates of %d",
        source,
        report.imported_count,
        report.failed_count,
        report.duplicate_count,
        report.total,
    )
    return report
