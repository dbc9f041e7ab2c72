from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from .structure import BookStructure, Verse

__all__ = [
    "ReferenceRange",
    "format_reference",
    "parse_reference",
    "select_verses",
    "validate_range",
]

_REFERENCE_RE = re.compile(
    r"^\s*(?P<book>[1-3]?[A-Za-z]{2,3})\s+"
    r"(?P<start_chapter>\d+):(?P<start_verse>\d+)"
    r"(?:\s*[-–]\s*(?:(?P<end_chapter>\d+):)?(?P<end_verse>\d+))?\s*$"
)


@dataclass(frozen=True)
class ReferenceRange:
    """
    Book plus start chapter/verse and an optional end.

    `end_chapter` defaults to the start chapter and `end_verse` to the start
    verse. Values are not checked on construction; see `validate_range`.
    """

    book: str
    start_chapter: int
    start_verse: int
    end_chapter: int | None = None
    end_verse: int | None = None

    @property
    def last_chapter(self) -> int:
        return self.end_chapter if self.end_chapter is not None else self.start_chapter

    @property
    def is_multi_chapter(self) -> bool:
        return self.last_chapter != self.start_chapter

    def __str__(self) -> str:
        return format_reference(self)


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def validate_range(reference: ReferenceRange) -> str | None:
    """Return a message describing why the range is unusable, or None."""
    fields = (
        ("start chapter", reference.start_chapter),
        ("start verse", reference.start_verse),
    )
    for label, value in fields:
        if not _is_positive_int(value):
            return f"Invalid {label} {value!r}: expected an integer >= 1"
    for label, value in (("end chapter", reference.end_chapter), ("end verse", reference.end_verse)):
        if value is not None and not _is_positive_int(value):
            return f"Invalid {label} {value!r}: expected an integer >= 1"
    if reference.last_chapter < reference.start_chapter:
        return f"End chapter {reference.last_chapter} is before start chapter {reference.start_chapter}"
    if (
        not reference.is_multi_chapter
        and reference.end_verse is not None
        and reference.end_verse < reference.start_verse
    ):
        return f"End verse {reference.end_verse} is before start verse {reference.start_verse}"
    return None


def parse_reference(value: str) -> ReferenceRange:
    """
    Parse `"3JN 1:1"`, `"3JN 1:1-3"` or `"3JN 1:14-2:3"`.

    Raises ValueError for text that is not a reference.
    """
    if not isinstance(value, str):
        raise TypeError("Reference must be a string.")
    match = _REFERENCE_RE.match(value)
    if match is None:
        raise ValueError(f"Unrecognized reference: {value!r}")
    end_chapter = match.group("end_chapter")
    end_verse = match.group("end_verse")
    reference = ReferenceRange(
        book=match.group("book").upper(),
        start_chapter=int(match.group("start_chapter")),
        start_verse=int(match.group("start_verse")),
        end_chapter=int(end_chapter) if end_chapter else None,
        end_verse=int(end_verse) if end_verse else None,
    )
    problem = validate_range(reference)
    if problem:
        raise ValueError(problem)
    return reference


def format_reference(reference: ReferenceRange) -> str:
    book = reference.book
    if reference.is_multi_chapter:
        end_verse = "" if reference.end_verse is None else reference.end_verse
        return f"{book} {reference.start_chapter}:{reference.start_verse}-{reference.last_chapter}:{end_verse}"
    if reference.end_verse is not None and reference.end_verse != reference.start_verse:
        return f"{book} {reference.start_chapter}:{reference.start_verse}-{reference.end_verse}"
    return f"{book} {reference.start_chapter}:{reference.start_verse}"


def _verse_bounds(reference: ReferenceRange, chapter: int) -> tuple[int, float]:
    if not reference.is_multi_chapter:
        end = reference.end_verse if reference.end_verse is not None else reference.start_verse
        return reference.start_verse, end
    if chapter == reference.start_chapter:
        return reference.start_verse, float("inf")
    if chapter == reference.last_chapter:
        return 1, reference.end_verse if reference.end_verse is not None else float("inf")
    return 1, float("inf")


def select_verses(book: BookStructure | Iterable[object], reference: ReferenceRange) -> list[Verse]:
    """
    Verses of `book` inside `reference`, ascending (chapter, verse).

    A span verse such as `4-6` is included when any of its verses falls in the
    range. The range is assumed valid.
    """
    chapters = book.chapters if isinstance(book, BookStructure) else tuple(book)
    selected: list[Verse] = []
    for chapter in sorted(chapters, key=lambda item: item.number):
        if not reference.start_chapter <= chapter.number <= reference.last_chapter:
            continue
        low, high = _verse_bounds(reference, chapter.number)
        for verse in chapter.verses:
            if verse.span_end >= low and verse.span_start <= high:
                selected.append(verse)
    return selected
