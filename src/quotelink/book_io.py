from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .nodes import BookSource, deserialize_book
from .sections import parse_boundary
from .structure import (
    ROLE_ANCHOR,
    ROLE_TARGET,
    BookStats,
    BookStructure,
    Chapter,
    TranslatorSection,
    Verse,
    WordAlignment,
    build_paragraph,
)
from .tokens import LexicalEntry, deserialize_lexical, deserialize_tokens, serialize_lexical, serialize_tokens

__all__ = [
    "BOOK_FORMAT_VERSION",
    "BookFormatError",
    "RESOURCE_MANIFEST_FILENAME",
    "ResourceManifest",
    "book_structure_path",
    "load_book_source",
    "load_book_structure",
    "load_resource_manifest",
    "source_sha1",
    "write_book_structure",
]

BOOK_FORMAT_VERSION = 1
RESOURCE_MANIFEST_FILENAME = "resource.json"
_BOOK_SUFFIX = ".json"


class BookFormatError(ValueError):
    """Raised when a book file or usfm-js source cannot be read."""


@dataclass
class ResourceManifest:
    resource: str
    role: str
    books: dict[str, dict[str, object]]


def source_sha1(payload: Mapping[str, object]) -> str:
    """Fingerprint of a usfm-js payload, stable across key order."""
    encoded = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def book_structure_path(root: Path, resource_id: str, book_code: str) -> Path:
    return Path(root) / resource_id / f"{book_code.upper()}{_BOOK_SUFFIX}"


def _read_json(path: Path) -> object:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise BookFormatError(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise BookFormatError(f"Invalid JSON in {path}: {exc}") from exc


def load_book_source(path: Path, *, book_code: str | None = None) -> BookSource:
    """Read a usfm-js JSON file; the book code falls back to the file stem."""
    payload = _read_json(path)
    if not isinstance(payload, dict):
        raise BookFormatError(f"{path} does not hold a usfm-js book object.")
    try:
        return deserialize_book(payload, book_code=book_code)
    except ValueError:
        stem = Path(path).stem.split("-")[-1].split(".")[0]
        if not stem or book_code:
            raise BookFormatError(f"{path}: book code missing.") from None
        return deserialize_book(payload, book_code=stem)


def _serialize_alignment(alignment: WordAlignment) -> dict[str, object]:
    return {
        "verse_ref": alignment.verse_ref,
        "source_content": alignment.source_content,
        "target_text": alignment.target_text,
        "target_words": list(alignment.target_words),
        "lexical": [serialize_lexical(entry) for entry in alignment.lexical],
        "anchor_ids": list(alignment.anchor_ids),
    }


def _serialize_verse(verse: Verse) -> dict[str, object]:
    payload: dict[str, object] = {
        "number": verse.number,
        "key": verse.key,
        "reference": verse.reference,
        "text": verse.text,
        "paragraph_id": verse.paragraph_id,
        "span_start": verse.span_start,
        "span_end": verse.span_end,
        "tokens": serialize_tokens(verse.tokens),
    }
    if verse.section_markers:
        payload["section_markers"] = verse.section_markers
    if verse.alignments:
        payload["alignments"] = [_serialize_alignment(item) for item in verse.alignments]
    return payload


def _build_book_payload(
    resource_id: str,
    book: BookStructure,
    *,
    source_digest: str | None,
) -> dict[str, object]:
    chapters_payload = []
    for chapter in book.chapters:
        chapters_payload.append(
            {
                "number": chapter.number,
                "verses": [_serialize_verse(verse) for verse in chapter.verses],
                "paragraphs": [
                    {
                        "id": paragraph.id,
                        "style": paragraph.style,
                        "verses": [verse.key for verse in paragraph.verses],
                    }
                    for paragraph in chapter.paragraphs
                ],
            }
        )
    payload: dict[str, object] = {
        "version": BOOK_FORMAT_VERSION,
        "resource": resource_id,
        "role": book.role,
        "book_code": book.book_code,
        "chapters": chapters_payload,
        "sections": [
            {"start": section.start.label, "end": section.end.label, "source": section.source}
            for section in book.sections
        ],
        "stats": book.stats.as_dict(),
    }
    if book.book_name:
        payload["book_name"] = book.book_name
    if source_digest:
        payload["source_sha1"] = source_digest
    return payload


def load_resource_manifest(resource_dir: Path) -> ResourceManifest | None:
    manifest_path = Path(resource_dir) / RESOURCE_MANIFEST_FILENAME
    if not manifest_path.exists():
        return None
    try:
        payload = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    role = payload.get("role")
    books = payload.get("books")
    resource = payload.get("resource")
    return ResourceManifest(
        resource=resource if isinstance(resource, str) else Path(resource_dir).name,
        role=role if role in (ROLE_ANCHOR, ROLE_TARGET) else ROLE_TARGET,
        books={
            str(code): dict(entry)
            for code, entry in (books.items() if isinstance(books, dict) else ())
            if isinstance(entry, dict)
        },
    )


def _update_resource_manifest(
    resource_dir: Path,
    resource_id: str,
    book: BookStructure,
    manifest: ResourceManifest | None,
    digest: str | None,
) -> None:
    books = manifest.books if manifest else {}
    entry: dict[str, object] = {"stats": book.stats.as_dict()}
    if digest:
        entry["source_sha1"] = digest
    books[book.book_code] = entry
    payload = {
        "version": BOOK_FORMAT_VERSION,
        "resource": resource_id,
        "role": book.role,
        "books": dict(sorted(books.items())),
    }
    (resource_dir / RESOURCE_MANIFEST_FILENAME).write_text(
        json.dumps(payload, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def write_book_structure(
    root: Path,
    resource_id: str,
    book: BookStructure,
    *,
    source_digest: str | None = None,
) -> Path:
    """Write `<root>/<resource_id>/<BOOK>.json` and refresh the resource manifest."""
    if not resource_id or "/" in resource_id or resource_id.startswith("."):
        raise ValueError(f"Invalid resource id: {resource_id!r}")
    resource_dir = Path(root) / resource_id
    manifest = load_resource_manifest(resource_dir)
    if manifest and manifest.role != book.role:
        raise ValueError(
            f"Resource {resource_id} is a {manifest.role} resource; cannot add a {book.role} book."
        )
    resource_dir.mkdir(parents=True, exist_ok=True)
    path = book_structure_path(root, resource_id, book.book_code)
    payload = _build_book_payload(resource_id, book, source_digest=source_digest)
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    _update_resource_manifest(resource_dir, resource_id, book, manifest, source_digest)
    return path


def _as_int(value: object, default: int | None = None) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def _load_lexical(items: object) -> tuple[LexicalEntry, ...]:
    if not isinstance(items, list):
        return ()
    entries = (deserialize_lexical(item) for item in items)
    return tuple(entry for entry in entries if entry is not None)


def _load_alignments(items: object) -> tuple[WordAlignment, ...]:
    if not isinstance(items, list):
        return ()
    alignments = []
    for item in items:
        if not isinstance(item, dict):
            continue
        words = item.get("target_words")
        anchor_ids = item.get("anchor_ids")
        alignments.append(
            WordAlignment(
                verse_ref=str(item.get("verse_ref", "")),
                source_content=str(item.get("source_content", "")),
                target_text=str(item.get("target_text", "")),
                target_words=tuple(word for word in words if isinstance(word, str)) if isinstance(words, list) else (),
                lexical=_load_lexical(item.get("lexical")),
                anchor_ids=tuple(value for value in anchor_ids if isinstance(value, int))
                if isinstance(anchor_ids, list)
                else (),
            )
        )
    return tuple(alignments)


def _load_verse(path: Path, entry: object) -> Verse:
    if not isinstance(entry, dict):
        raise BookFormatError(f"{path}: verse entry is not an object.")
    number = _as_int(entry.get("number"))
    key = entry.get("key")
    text = entry.get("text")
    if number is None or not isinstance(key, str) or not isinstance(text, str):
        raise BookFormatError(f"{path}: verse entry missing number, key or text.")
    tokens_raw = entry.get("tokens")
    return Verse(
        number=number,
        key=key,
        reference=str(entry.get("reference", "")),
        text=text,
        tokens=tuple(deserialize_tokens(tokens_raw)) if isinstance(tokens_raw, list) else (),
        paragraph_id=str(entry.get("paragraph_id", "")),
        span_start=_as_int(entry.get("span_start"), number) or number,
        span_end=_as_int(entry.get("span_end"), number) or number,
        section_markers=_as_int(entry.get("section_markers"), 0) or 0,
        alignments=_load_alignments(entry.get("alignments")),
    )


def _load_chapter(path: Path, entry: object) -> Chapter:
    if not isinstance(entry, dict) or _as_int(entry.get("number")) is None:
        raise BookFormatError(f"{path}: chapter entry missing number.")
    verses_raw = entry.get("verses")
    verses = tuple(_load_verse(path, item) for item in verses_raw) if isinstance(verses_raw, list) else ()
    by_key = {verse.key: verse for verse in verses}
    paragraphs = []
    paragraphs_raw = entry.get("paragraphs")
    for item in paragraphs_raw if isinstance(paragraphs_raw, list) else ():
        if not isinstance(item, dict):
            continue
        keys = item.get("verses")
        members = [by_key[key] for key in keys if key in by_key] if isinstance(keys, list) else []
        if not members:
            continue
        style = item.get("style") if isinstance(item.get("style"), str) else "p"
        paragraph_id = item.get("id") if isinstance(item.get("id"), str) else members[0].paragraph_id
        paragraphs.append(build_paragraph(paragraph_id, style, members))
    return Chapter(number=entry["number"], verses=verses, paragraphs=tuple(paragraphs))


def _load_sections(items: object) -> tuple[TranslatorSection, ...]:
    sections = []
    for item in items if isinstance(items, list) else ():
        if not isinstance(item, dict):
            continue
        start = parse_boundary(item.get("start"))
        end = parse_boundary(item.get("end"))
        if start is None or end is None:
            continue
        source = item.get("source") if item.get("source") in ("markers", "default") else "markers"
        sections.append(TranslatorSection(start, end, source=source))
    return tuple(sections)


def _load_stats(payload: object) -> BookStats:
    if not isinstance(payload, dict):
        return BookStats()
    return BookStats(
        **{
            name: _as_int(payload.get(name), 0) or 0
            for name in ("chapters", "verses", "paragraphs", "sections", "alignments", "tokens")
        }
    )


def load_book_structure(path: Path) -> BookStructure:
    """Rebuild a structure written by `write_book_structure`."""
    payload = _read_json(path)
    if not isinstance(payload, dict):
        raise BookFormatError(f"{path} does not hold a book object.")
    version = payload.get("version")
    if version != BOOK_FORMAT_VERSION:
        raise BookFormatError(f"{path}: unsupported book format version {version!r}.")
    book_code = payload.get("book_code")
    role = payload.get("role")
    if not isinstance(book_code, str) or role not in (ROLE_ANCHOR, ROLE_TARGET):
        raise BookFormatError(f"{path}: missing book_code or role.")
    chapters_raw = payload.get("chapters")
    if not isinstance(chapters_raw, list):
        raise BookFormatError(f"{path}: missing chapters.")
    book_name = payload.get("book_name")
    return BookStructure(
        book_code=book_code,
        role=role,
        chapters=tuple(_load_chapter(path, entry) for entry in chapters_raw),
        sections=_load_sections(payload.get("sections")),
        stats=_load_stats(payload.get("stats")),
        book_name=book_name if isinstance(book_name, str) else None,
    )
