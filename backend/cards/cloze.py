"""Cloze deletion syntax: ``{{answer}}`` and Anki-style ``{{c1::answer}}``."""

import re

DELETION_PATTERN = re.compile(r"\{\{([^{}]*)\}\}")
CLOZE_NUMBER_PREFIX = re.compile(r"^c\d+::")
MARKER_PATTERN = re.compile(r"\{\{|\}\}")

PLACEHOLDER = "[...]"


def clean_deletion(raw: str) -> str:
    """Strip the ``cN::`` prefix and surrounding whitespace."""
    return CLOZE_NUMBER_PREFIX.sub("", raw).strip()


def deletions(text: str) -> list[str]:
    """Return every deletion's cleaned content, left to right."""
    return [clean_deletion(m.group(1)) for m in DELETION_PATTERN.finditer(text)]


def unique_answers(text: str) -> list[str]:
    """Return distinct non-empty deletion contents in first-seen order."""
    seen: dict[str, None] = {}
    for answer in deletions(text):
        if answer:
            seen.setdefault(answer, None)
    return list(seen)


def mask(text: str) -> str:
    """Replace every deletion with the placeholder marker."""
    return DELETION_PATTERN.sub(PLACEHOLDER, text)


def is_malformed(text: str) -> bool:
    """Check marker balance in a single left-to-right scan.

    Malformed means an opening marker while a deletion is already open
    (nesting), a closing marker with nothing open, or a deletion still open
    at the end of the text.
    """
    is_open = False
    for marker in MARKER_PATTERN.finditer(text):
        if marker.group() == "{{":
            if is_open:
                return True
            is_open = True
        else:
            if not is_open:
                return True
            is_open = False
    return is_open
