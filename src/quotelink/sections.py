from __future__ import annotations

import json
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Mapping

from .structure import SectionBoundary, TranslatorSection

__all__ = [
    "DEFAULT_SECTIONS_RESOURCE",
    "DefaultSectionTable",
    "parse_boundary",
]

DEFAULT_SECTIONS_RESOURCE = "data/default_sections.json"


def parse_boundary(value: object) -> SectionBoundary | None:
    """Parse a `"chapter:verse"` label; returns None for anything else."""
    if not isinstance(value, str):
        return None
    chapter_raw, sep, verse_raw = value.strip().partition(":")
    if not sep or not chapter_raw.isdigit() or not verse_raw.isdigit():
        return None
    chapter, verse = int(chapter_raw), int(verse_raw)
    if chapter < 1 or verse < 1:
        return None
    return SectionBoundary(chapter, verse)


@dataclass(frozen=True)
class DefaultSectionTable:
    """
    Fallback translator sections per book code.

    Only consulted by the builder when a book carries no section markers.
    Construct one and pass it in; nothing here is cached at module level.
    """

    books: Mapping[str, tuple[TranslatorSection, ...]] = field(default_factory=dict)
    source: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "DefaultSectionTable":
        if not isinstance(payload, Mapping):
            raise ValueError("Default section payload must be a JSON object.")
        books_raw = payload.get("books")
        books: dict[str, tuple[TranslatorSection, ...]] = {}
        if isinstance(books_raw, Mapping):
            for code, entries in books_raw.items():
                if not isinstance(code, str) or not isinstance(entries, list):
                    continue
                sections: list[TranslatorSection] = []
                for entry in entries:
                    if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                        continue
                    start = parse_boundary(entry[0])
                    end = parse_boundary(entry[1])
                    if start is None or end is None:
                        continue
                    if (end.chapter, end.verse) < (start.chapter, start.verse):
                        continue
                    sections.append(TranslatorSection(start, end, source="default"))
                if sections:
                    books[code.upper()] = tuple(sections)
        source = payload.get("source")
        return cls(books=books, source=source if isinstance(source, str) else None)

    @classmethod
    def load(cls, path: Path) -> "DefaultSectionTable":
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid default section file {path}: {exc}") from exc
        return cls.from_payload(payload)

    @classmethod
    def bundled(cls) -> "DefaultSectionTable":
        data_path = resources.files("quotelink").joinpath(DEFAULT_SECTIONS_RESOURCE)
        return cls.from_payload(json.loads(data_path.read_text("utf-8")))

    def sections_for(self, book_code: str) -> tuple[TranslatorSection, ...]:
        return self.books.get(book_code.upper(), ())

    def __contains__(self, book_code: object) -> bool:
        return isinstance(book_code, str) and book_code.upper() in self.books
