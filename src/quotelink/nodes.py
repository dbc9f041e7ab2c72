from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Union

__all__ = [
    "AlignmentMilestone",
    "BookSource",
    "Node",
    "ParagraphMarker",
    "SectionMarker",
    "TextNode",
    "WordNode",
    "SECTION_MARKER_LITERAL",
    "deserialize_book",
    "deserialize_nodes",
]

SECTION_MARKER_LITERAL = "\\ts\\*"
_SECTION_TAGS = {"ts", "ts\\*", "ts-s"}
_PARAGRAPH_TYPES = {"paragraph", "quote", "paragraph-marker"}
_MILESTONE_TYPES = {"milestone", "alignment-milestone"}


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class WordNode:
    text: str
    occurrence: int | None = None
    occurrences: int | None = None
    strong: str | None = None
    lemma: str | None = None
    morph: str | None = None


@dataclass(frozen=True)
class AlignmentMilestone:
    """
    A `\\zaln` alignment milestone from a target-language resource.

    `content`/`occurrence` name the original-language word the enclosed
    target words translate. Children mix words, text and nested milestones
    (multi-word idioms aligned as one unit).
    """

    content: str = ""
    strong: str = ""
    lemma: str = ""
    morph: str = ""
    occurrence: int | None = None
    occurrences: int | None = None
    children: tuple["Node", ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.children


@dataclass(frozen=True)
class ParagraphMarker:
    style: str = "p"


@dataclass(frozen=True)
class SectionMarker:
    tag: str = "ts"


Node = Union[TextNode, WordNode, AlignmentMilestone, ParagraphMarker, SectionMarker]


@dataclass(frozen=True)
class BookSource:
    """Tagged nodes for one book, as emitted by the external USFM tokenizer."""

    book_code: str
    chapters: Mapping[str, Mapping[str, tuple[Node, ...]]]
    headers: tuple[Node, ...] = ()
    book_name: str | None = None
    raw: Mapping[str, object] | None = field(default=None, compare=False, repr=False)


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
    return None


def _as_str(value: object) -> str:
    return value if isinstance(value, str) else ""


def _deserialize_node(entry: Mapping[str, object]) -> Node | None:
    node_type = entry.get("type")
    tag = entry.get("tag")
    if isinstance(tag, str) and tag in _SECTION_TAGS:
        return SectionMarker(tag=tag)
    if node_type == "section-marker":
        return SectionMarker(tag=_as_str(tag) or "ts")
    if node_type == "text":
        text = entry.get("text")
        return TextNode(text=text) if isinstance(text, str) else None
    if node_type == "word":
        text = entry.get("text")
        if not isinstance(text, str):
            return None
        return WordNode(
            text=text,
            occurrence=_as_int(entry.get("occurrence")),
            occurrences=_as_int(entry.get("occurrences")),
            strong=_as_str(entry.get("strong")) or None,
            lemma=_as_str(entry.get("lemma")) or None,
            morph=_as_str(entry.get("morph")) or None,
        )
    if node_type in _MILESTONE_TYPES:
        if node_type == "milestone" and tag not in (None, "zaln"):
            return None
        children = entry.get("children")
        return AlignmentMilestone(
            content=_as_str(entry.get("content")),
            strong=_as_str(entry.get("strong")),
            lemma=_as_str(entry.get("lemma")),
            morph=_as_str(entry.get("morph")),
            occurrence=_as_int(entry.get("occurrence")),
            occurrences=_as_int(entry.get("occurrences")),
            children=tuple(deserialize_nodes(children)) if isinstance(children, list) else (),
        )
    if node_type in _PARAGRAPH_TYPES:
        style = tag if isinstance(tag, str) and tag else _as_str(entry.get("style")) or "p"
        return ParagraphMarker(style=style)
    return None


def deserialize_nodes(data: Iterable[object] | Mapping[str, object] | None) -> list[Node]:
    """
    Convert usfm-js style verse objects into typed nodes.

    Accepts a bare list or a `{"verseObjects": [...]}` wrapper. Entries that are
    not recognised (footnotes, unknown milestones) are skipped.
    """
    if data is None:
        return []
    if isinstance(data, Mapping):
        data = data.get("verseObjects") or []
    nodes: list[Node] = []
    for entry in data:
        if not isinstance(entry, Mapping):
            continue
        node = _deserialize_node(entry)
        if node is not None:
            nodes.append(node)
    return nodes


def _book_code_from_headers(headers: object) -> str | None:
    if not isinstance(headers, list):
        return None
    for entry in headers:
        if not isinstance(entry, Mapping) or entry.get("tag") != "id":
            continue
        content = entry.get("content")
        if isinstance(content, str) and content.strip():
            return content.split()[0].upper()
    return None


def _book_name_from_headers(headers: object) -> str | None:
    if not isinstance(headers, list):
        return None
    for tag in ("toc1", "h", "toc2"):
        for entry in headers:
            if isinstance(entry, Mapping) and entry.get("tag") == tag:
                content = entry.get("content")
                if isinstance(content, str) and content.strip():
                    return content.strip()
    return None


def deserialize_book(payload: Mapping[str, object], *, book_code: str | None = None) -> BookSource:
    """
    Build a `BookSource` from a usfm-js style document
    (`{"headers": [...], "chapters": {"1": {"1": {"verseObjects": [...]}}}}`).

    The book code comes from the argument, then the `\\id` header.
    """
    if not isinstance(payload, Mapping):
        raise TypeError("Book payload must be a mapping.")
    headers_raw = payload.get("headers")
    code = book_code or _book_code_from_headers(headers_raw)
    if not code:
        raise ValueError("Book code missing: pass book_code or include an \\id header.")
    chapters_raw = payload.get("chapters")
    chapters: dict[str, dict[str, tuple[Node, ...]]] = {}
    if isinstance(chapters_raw, Mapping):
        for chapter_key, verses_raw in chapters_raw.items():
            if not isinstance(verses_raw, Mapping):
                continue
            chapters[str(chapter_key)] = {
                str(verse_key): tuple(deserialize_nodes(verse_raw))
                for verse_key, verse_raw in verses_raw.items()
                if isinstance(verse_raw, (list, Mapping))
            }
    headers: list[Node] = []
    if isinstance(headers_raw, list):
        for entry in headers_raw:
            if not isinstance(entry, Mapping):
                continue
            tag = entry.get("tag")
            if isinstance(tag, str) and tag in _SECTION_TAGS:
                headers.append(SectionMarker(tag=tag))
            elif entry.get("type") in _PARAGRAPH_TYPES:
                headers.append(ParagraphMarker(style=_as_str(tag) or "p"))
            elif SECTION_MARKER_LITERAL in _as_str(entry.get("content")):
                headers.append(SectionMarker())
    return BookSource(
        book_code=code.upper(),
        chapters=chapters,
        headers=tuple(headers),
        book_name=_book_name_from_headers(headers_raw),
        raw=payload,
    )
