from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Iterable, Iterator, Mapping, Sequence

from .logging_utils import debug_log
from .nodes import (
    SECTION_MARKER_LITERAL,
    AlignmentMilestone,
    BookSource,
    Node,
    ParagraphMarker,
    SectionMarker,
    TextNode,
    WordNode,
)
from .tokens import (
    TOKEN_WORD,
    AlignmentLink,
    LexicalEntry,
    Token,
    clean_markup_residue,
    reanchor_tokens,
    scan_text,
    semantic_token_id,
)

if TYPE_CHECKING:
    from .sections import DefaultSectionTable

__all__ = [
    "BookStats",
    "BookStructure",
    "Chapter",
    "Paragraph",
    "ROLE_ANCHOR",
    "ROLE_TARGET",
    "SectionBoundary",
    "StructuralError",
    "TranslatorSection",
    "Verse",
    "VerseKey",
    "WordAlignment",
    "build_book",
    "build_paragraph",
    "extract_alignment",
    "indent_level_for_style",
    "paragraph_type_for_style",
    "parse_verse_key",
    "span_anchor_refs",
]

ROLE_ANCHOR = "anchor"
ROLE_TARGET = "target"
_ROLES = (ROLE_ANCHOR, ROLE_TARGET)
DEFAULT_PARAGRAPH_STYLE = "p"

_SPAN_KEY_RE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")
_NUMERIC_KEY_RE = re.compile(r"^\s*(\d+)\s*$")
_WHITESPACE_RE = re.compile(r"\s+")
_QUOTE_STYLE_RE = re.compile(r"^q([1-4])$")

_MilestoneStack = tuple[tuple[tuple[int, ...], LexicalEntry], ...]


def _debug_log(message: str) -> None:
    debug_log("build", message)


class StructuralError(ValueError):
    """Raised for verse keys or chapters that cannot be structured."""


@dataclass(frozen=True)
class VerseKey:
    key: str
    number: int
    span_start: int
    span_end: int

    @property
    def is_span(self) -> bool:
        return self.span_end > self.span_start

    @property
    def label(self) -> str:
        if self.is_span:
            return f"{self.span_start}-{self.span_end}"
        return str(self.number)


def parse_verse_key(key: object) -> VerseKey:
    if isinstance(key, int) and not isinstance(key, bool):
        key = str(key)
    if not isinstance(key, str):
        raise StructuralError(f"Verse key must be a string, got {type(key).__name__}.")
    match = _NUMERIC_KEY_RE.match(key)
    if match:
        number = int(match.group(1))
        if number < 1:
            raise StructuralError(f"Verse number must be positive: {key!r}")
        return VerseKey(key=key, number=number, span_start=number, span_end=number)
    match = _SPAN_KEY_RE.match(key)
    if match:
        start, end = int(match.group(1)), int(match.group(2))
        if start < 1 or end < start:
            raise StructuralError(f"Invalid verse span: {key!r}")
        return VerseKey(key=key, number=start, span_start=start, span_end=end)
    raise StructuralError(f"Unrecognized verse key: {key!r}")


def _parse_chapter_key(key: object) -> int:
    if isinstance(key, int) and not isinstance(key, bool):
        number = key
    elif isinstance(key, str) and _NUMERIC_KEY_RE.match(key):
        number = int(key)
    else:
        raise StructuralError(f"Unrecognized chapter key: {key!r}")
    if number < 1:
        raise StructuralError(f"Chapter number must be positive: {key!r}")
    return number


def indent_level_for_style(style: str) -> int:
    match = _QUOTE_STYLE_RE.match(style)
    if match:
        return int(match.group(1))
    if style.startswith("q"):
        return 1
    return 0


def paragraph_type_for_style(style: str) -> str:
    return "quote" if style.startswith("q") else "paragraph"


@dataclass(frozen=True)
class WordAlignment:
    """Target words covered by one top-level alignment milestone."""

    verse_ref: str
    source_content: str
    target_text: str
    target_words: tuple[str, ...]
    lexical: tuple[LexicalEntry, ...]
    anchor_ids: tuple[int, ...]


@dataclass(frozen=True)
class Verse:
    number: int
    key: str
    reference: str
    text: str
    tokens: tuple[Token, ...]
    paragraph_id: str
    span_start: int
    span_end: int
    section_markers: int = 0
    alignments: tuple[WordAlignment, ...] = ()

    @property
    def is_span(self) -> bool:
        return self.span_end > self.span_start

    def covers(self, verse: int) -> bool:
        return self.span_start <= verse <= self.span_end


@dataclass(frozen=True)
class Paragraph:
    id: str
    style: str
    type: str
    indent_level: int
    verses: tuple[Verse, ...]
    combined_text: str
    tokens: tuple[Token, ...]


@dataclass(frozen=True)
class Chapter:
    number: int
    verses: tuple[Verse, ...]
    paragraphs: tuple[Paragraph, ...]

    def verse(self, number: int) -> Verse | None:
        for verse in self.verses:
            if verse.covers(number):
                return verse
        return None


@dataclass(frozen=True)
class SectionBoundary:
    chapter: int
    verse: int

    @property
    def label(self) -> str:
        return f"{self.chapter}:{self.verse}"


@dataclass(frozen=True)
class TranslatorSection:
    start: SectionBoundary
    end: SectionBoundary
    source: str = "markers"


@dataclass(frozen=True)
class BookStats:
    chapters: int = 0
    verses: int = 0
    paragraphs: int = 0
    sections: int = 0
    alignments: int = 0
    tokens: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "chapters": self.chapters,
            "verses": self.verses,
            "paragraphs": self.paragraphs,
            "sections": self.sections,
            "alignments": self.alignments,
            "tokens": self.tokens,
        }


@dataclass(frozen=True)
class BookStructure:
    """
    Built, immutable form of one book of one resource.

    `role` is `"anchor"` for the original-language text the alignment links
    point at, `"target"` for translations carrying those links.
    """

    book_code: str
    role: str
    chapters: tuple[Chapter, ...]
    sections: tuple[TranslatorSection, ...] = ()
    stats: BookStats = field(default_factory=BookStats)
    book_name: str | None = None

    @property
    def is_anchor(self) -> bool:
        return self.role == ROLE_ANCHOR

    @property
    def alignments(self) -> tuple[WordAlignment, ...]:
        return tuple(alignment for verse in self.verses() for alignment in verse.alignments)

    def verses(self) -> Iterator[Verse]:
        for chapter in self.chapters:
            yield from chapter.verses

    def paragraphs(self) -> Iterator[Paragraph]:
        for chapter in self.chapters:
            yield from chapter.paragraphs

    def token_stream(self) -> Iterator[Token]:
        for verse in self.verses():
            yield from verse.tokens

    def chapter(self, number: int) -> Chapter | None:
        for chapter in self.chapters:
            if chapter.number == number:
                return chapter
        return None

    def verse(self, chapter: int, verse: int) -> Verse | None:
        found = self.chapter(chapter)
        return found.verse(verse) if found is not None else None

    def token(self, token_id: int) -> Token | None:
        for token in self.token_stream():
            if token.id == token_id:
                return token
        return None


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", clean_markup_residue(text)).strip()


def _lexical_entry(milestone: AlignmentMilestone) -> LexicalEntry:
    return LexicalEntry(
        content=_collapse(milestone.content),
        strong=milestone.strong,
        lemma=milestone.lemma,
        morph=milestone.morph,
        occurrence=milestone.occurrence,
        occurrences=milestone.occurrences,
    )


def _collect_alignment(
    milestone: AlignmentMilestone,
    lexical: list[LexicalEntry],
    words: list[str],
) -> None:
    lexical.append(_lexical_entry(milestone))
    for child in milestone.children:
        if isinstance(child, WordNode):
            cleaned = _collapse(child.text)
            if cleaned:
                words.append(cleaned)
        elif isinstance(child, TextNode):
            cleaned = _collapse(child.text)
            if cleaned:
                words.append(cleaned)
        elif isinstance(child, AlignmentMilestone) and not child.is_empty:
            _collect_alignment(child, lexical, words)


def span_anchor_refs(book_code: str, chapter: int, key: VerseKey) -> tuple[str, ...]:
    """
    Verse references a milestone inside verse `key` may point at.

    A span verse `4-5` answers to its own reference and to each covered verse,
    so an anchor resource that keeps 4 and 5 apart still links up.
    """
    refs = [f"{book_code} {chapter}:{key.label}"]
    if key.is_span:
        refs.extend(f"{book_code} {chapter}:{number}" for number in range(key.span_start, key.span_end + 1))
    return tuple(refs)


def _milestone_ids(anchor_refs: Sequence[str], entry: LexicalEntry) -> tuple[int, ...]:
    if not entry.content:
        return ()
    return tuple(semantic_token_id(ref, entry.content, entry.occurrence or 1) for ref in anchor_refs)


def extract_alignment(
    milestone: AlignmentMilestone,
    verse_ref: str,
    *,
    anchor_refs: Sequence[str] | None = None,
) -> WordAlignment | None:
    """
    Flatten a (possibly nested) alignment milestone.

    Target words are gathered in document order through every nesting level;
    the lexical list holds one entry per level, outermost first. Anchor ids
    are computed against `anchor_refs` (default: `verse_ref` alone). Returns
    None when the milestone yields no target words.
    """
    if milestone.is_empty:
        return None
    lexical: list[LexicalEntry] = []
    words: list[str] = []
    _collect_alignment(milestone, lexical, words)
    if not words:
        return None
    refs = tuple(anchor_refs) if anchor_refs else (verse_ref,)
    anchor_ids = tuple(anchor_id for entry in lexical for anchor_id in _milestone_ids(refs, entry))
    return WordAlignment(
        verse_ref=verse_ref,
        source_content=" ".join(entry.content for entry in lexical if entry.content),
        target_text=" ".join(words),
        target_words=tuple(words),
        lexical=tuple(lexical),
        anchor_ids=anchor_ids,
    )


@dataclass
class _TokenDraft:
    text: str
    type: str
    start: int
    end: int
    link: AlignmentLink | None = None
    strong: str | None = None
    lemma: str | None = None
    morph: str | None = None


class _VerseWalker:
    """Walks one verse's nodes, building its text and token drafts."""

    def __init__(self, verse_ref: str, role: str, anchor_refs: Sequence[str] = ()) -> None:
        self.verse_ref = verse_ref
        self.role = role
        self.anchor_refs = tuple(anchor_refs) or (verse_ref,)
        self.parts: list[str] = []
        self.length = 0
        self.need_space = False
        self.last_type: str | None = None
        self.drafts: list[_TokenDraft] = []
        self.alignments: list[WordAlignment] = []
        self.pending_style: str | None = None
        self.section_markers = 0

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def _emit(
        self,
        text: str,
        token_type: str,
        link: AlignmentLink | None = None,
        word: WordNode | None = None,
    ) -> None:
        if self.length and (self.need_space or (token_type == TOKEN_WORD and self.last_type == TOKEN_WORD)):
            self.parts.append(" ")
            self.length += 1
        start = self.length
        self.parts.append(text)
        self.length += len(text)
        draft = _TokenDraft(text, token_type, start, self.length, link=link)
        if word is not None:
            draft.strong = word.strong
            draft.lemma = word.lemma
            draft.morph = word.morph
        self.drafts.append(draft)
        self.need_space = False
        self.last_type = token_type

    def _emit_text(self, raw: str, stack: _MilestoneStack, word: WordNode | None = None) -> None:
        cleaned = clean_markup_residue(raw)
        cursor = 0
        # anchor words keep a closing elision mark; milestone content does too
        for run in scan_text(cleaned, keep_elision=self.role == ROLE_ANCHOR):
            if run.start > cursor and cleaned[cursor:run.start].strip() == "":
                self.need_space = True
            link = None
            lexical_word = None
            if run.type == TOKEN_WORD:
                if self.role == ROLE_TARGET and stack:
                    link = AlignmentLink(
                        anchor_ids=tuple(anchor_id for ids, _ in stack for anchor_id in ids),
                        lexical=tuple(entry for _, entry in stack),
                    )
                elif self.role == ROLE_ANCHOR:
                    lexical_word = word
            self._emit(run.text, run.type, link=link, word=lexical_word)
            cursor = run.end
        if cursor < len(cleaned) and cleaned[cursor:].strip() == "":
            self.need_space = True

    def walk(self, nodes: Iterable[Node], stack: _MilestoneStack = ()) -> None:
        for node in nodes:
            if isinstance(node, TextNode):
                self.section_markers += node.text.count(SECTION_MARKER_LITERAL)
                self._emit_text(node.text, stack)
            elif isinstance(node, WordNode):
                self._emit_text(node.text, stack, word=node)
            elif isinstance(node, AlignmentMilestone):
                if node.is_empty:
                    _debug_log(f"{self.verse_ref}: skipping empty alignment milestone")
                    continue
                if not stack:
                    alignment = extract_alignment(node, self.verse_ref, anchor_refs=self.anchor_refs)
                    if alignment is not None:
                        self.alignments.append(alignment)
                    else:
                        _debug_log(f"{self.verse_ref}: milestone {node.content!r} has no target words")
                entry = _lexical_entry(node)
                if entry.content:
                    self.walk(node.children, stack + ((_milestone_ids(self.anchor_refs, entry), entry),))
                else:
                    self.walk(node.children, stack)
            elif isinstance(node, ParagraphMarker):
                self.pending_style = node.style or DEFAULT_PARAGRAPH_STYLE
            elif isinstance(node, SectionMarker):
                self.section_markers += 1


def _finish_tokens(
    drafts: Sequence[_TokenDraft],
    verse_ref: str,
    role: str,
    next_id: int,
) -> tuple[list[Token], int]:
    totals: dict[str, int] = {}
    for draft in drafts:
        totals[draft.text] = totals.get(draft.text, 0) + 1
    seen: dict[str, int] = {}
    tokens: list[Token] = []
    for draft in drafts:
        occurrence = seen.get(draft.text, 0) + 1
        seen[draft.text] = occurrence
        if role == ROLE_ANCHOR:
            token_id = semantic_token_id(verse_ref, draft.text, occurrence)
        else:
            token_id = next_id
            next_id += 1
        tokens.append(
            Token(
                id=token_id,
                text=draft.text,
                type=draft.type,
                verse_ref=verse_ref,
                start=draft.start,
                end=draft.end,
                occurrence=occurrence,
                occurrences=totals[draft.text],
                alignment=draft.link,
                strong=draft.strong,
                lemma=draft.lemma,
                morph=draft.morph,
            )
        )
    return tokens, next_id


def build_paragraph(paragraph_id: str, style: str, verses: Sequence[Verse]) -> Paragraph:
    """Join verse texts with single spaces and re-anchor their tokens."""
    tokens: list[Token] = []
    offset = 0
    for verse in verses:
        tokens.extend(reanchor_tokens(verse.tokens, offset))
        offset += len(verse.text) + 1
    return Paragraph(
        id=paragraph_id,
        style=style,
        type=paragraph_type_for_style(style),
        indent_level=indent_level_for_style(style),
        verses=tuple(verses),
        combined_text=" ".join(verse.text for verse in verses),
        tokens=tuple(tokens),
    )


def _scan_markers(nodes: Iterable[Node]) -> tuple[str | None, int]:
    style: str | None = None
    markers = 0
    for node in nodes:
        if isinstance(node, ParagraphMarker):
            style = node.style or DEFAULT_PARAGRAPH_STYLE
        elif isinstance(node, SectionMarker):
            markers += 1
        elif isinstance(node, TextNode):
            markers += node.text.count(SECTION_MARKER_LITERAL)
    return style, markers


@dataclass
class _SectionTracker:
    sections: list[TranslatorSection] = field(default_factory=list)
    open_start: SectionBoundary | None = None
    previous_end: SectionBoundary | None = None
    markers: int = 0

    def mark(self, chapter: int, key: VerseKey) -> None:
        self.markers += 1
        start = SectionBoundary(chapter, key.span_start)
        if self.open_start is not None and self.previous_end is not None:
            self.sections.append(TranslatorSection(self.open_start, self.previous_end))
        self.open_start = start

    def advance(self, chapter: int, key: VerseKey) -> None:
        self.previous_end = SectionBoundary(chapter, key.span_end)

    def finish(self) -> list[TranslatorSection]:
        if self.open_start is not None and self.previous_end is not None:
            self.sections.append(TranslatorSection(self.open_start, self.previous_end))
            self.open_start = None
        return self.sections


def _sorted_chapters(source: BookSource) -> list[tuple[int, Mapping[str, Sequence[Node]]]]:
    chapters: list[tuple[int, Mapping[str, Sequence[Node]]]] = []
    for key, verses in source.chapters.items():
        try:
            number = _parse_chapter_key(key)
        except StructuralError as exc:
            _debug_log(f"{source.book_code}: skipping chapter ({exc})")
            continue
        chapters.append((number, verses))
    chapters.sort(key=lambda item: item[0])
    return chapters


def _sorted_verse_keys(
    book_code: str,
    chapter: int,
    verses: Mapping[str, Sequence[Node]],
) -> list[tuple[VerseKey, tuple[Node, ...]]]:
    keyed: list[tuple[VerseKey, tuple[Node, ...]]] = []
    for key, nodes in verses.items():
        if key == "front":
            continue
        try:
            verse_key = parse_verse_key(key)
        except StructuralError as exc:
            _debug_log(f"{book_code} {chapter}: skipping verse ({exc})")
            continue
        keyed.append((verse_key, tuple(nodes)))
    keyed.sort(key=lambda item: (item[0].number, item[0].span_end))
    return keyed


def build_book(
    source: BookSource,
    *,
    role: str = ROLE_TARGET,
    default_sections: DefaultSectionTable | None = None,
) -> BookStructure:
    """
    Structure one book of tagged nodes into chapters, paragraphs, verses and tokens.

    Unusable chapter and verse keys are skipped. Sections come from in-text
    markers, else from `default_sections` when given.
    """
    if not isinstance(source, BookSource):
        raise TypeError("build_book expects a BookSource.")
    if role not in _ROLES:
        raise ValueError(f"role must be one of {', '.join(_ROLES)}; got {role!r}.")
    if not source.chapters:
        raise StructuralError(f"{source.book_code}: book has no chapters.")

    book_code = source.book_code
    pending_style, header_markers = _scan_markers(source.headers)
    tracker = _SectionTracker()
    if header_markers:
        tracker.markers += header_markers
        tracker.open_start = SectionBoundary(1, 1)

    chapters: list[Chapter] = []
    next_id = 1
    for chapter_number, raw_verses in _sorted_chapters(source):
        front_style, front_markers = _scan_markers(raw_verses.get("front", ()))
        if front_style is not None:
            pending_style = front_style
        verses: list[Verse] = []
        groups: list[tuple[str, list[Verse]]] = []
        open_new = True
        for verse_key, nodes in _sorted_verse_keys(book_code, chapter_number, raw_verses):
            verse_ref = f"{book_code} {chapter_number}:{verse_key.label}"
            walker = _VerseWalker(verse_ref, role, span_anchor_refs(book_code, chapter_number, verse_key))
            walker.walk(nodes)
            if walker.section_markers or front_markers:
                is_seed_verse = tracker.previous_end is None and tracker.open_start is not None
                if is_seed_verse:
                    tracker.markers += 1
                    tracker.open_start = SectionBoundary(chapter_number, verse_key.span_start)
                else:
                    tracker.mark(chapter_number, verse_key)
                front_markers = 0
            tracker.advance(chapter_number, verse_key)

            text = walker.text
            if not text.strip():
                _debug_log(f"{verse_ref}: empty after cleaning, skipped")
                if walker.pending_style is not None:
                    pending_style = walker.pending_style
                continue
            tokens, next_id = _finish_tokens(walker.drafts, verse_ref, role, next_id)
            if open_new or pending_style is not None:
                style = pending_style or DEFAULT_PARAGRAPH_STYLE
                groups.append((style, []))
                pending_style = None
                open_new = False
            paragraph_id = f"{book_code}.{chapter_number}.p{len(groups)}"
            verse = Verse(
                number=verse_key.number,
                key=verse_key.key,
                reference=verse_ref,
                text=text,
                tokens=tuple(tokens),
                paragraph_id=paragraph_id,
                span_start=verse_key.span_start,
                span_end=verse_key.span_end,
                section_markers=walker.section_markers,
                alignments=tuple(walker.alignments),
            )
            verses.append(verse)
            groups[-1][1].append(verse)
            if walker.pending_style is not None:
                pending_style = walker.pending_style
        if not verses:
            _debug_log(f"{book_code} {chapter_number}: no usable verses")
            continue
        paragraphs = tuple(
            build_paragraph(f"{book_code}.{chapter_number}.p{index}", style, group)
            for index, (style, group) in enumerate(groups, start=1)
        )
        chapters.append(Chapter(number=chapter_number, verses=tuple(verses), paragraphs=paragraphs))

    sections = tracker.finish()
    if not tracker.markers:
        sections = []
        if default_sections is not None:
            sections = list(default_sections.sections_for(book_code))
            if sections:
                _debug_log(f"{book_code}: no section markers, using {len(sections)} default sections")

    structure = BookStructure(
        book_code=book_code,
        role=role,
        chapters=tuple(chapters),
        sections=tuple(sections),
        book_name=source.book_name,
    )
    stats = BookStats(
        chapters=len(structure.chapters),
        verses=sum(len(chapter.verses) for chapter in structure.chapters),
        paragraphs=sum(len(chapter.paragraphs) for chapter in structure.chapters),
        sections=len(structure.sections),
        alignments=len(structure.alignments),
        tokens=sum(len(verse.tokens) for verse in structure.verses()),
    )
    return replace(structure, stats=stats)
