from __future__ import annotations

import hashlib
import re
import unicodedata
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, Mapping

__all__ = [
    "AlignmentLink",
    "LexicalEntry",
    "TextRun",
    "Token",
    "TOKEN_PUNCTUATION",
    "TOKEN_WORD",
    "clean_markup_residue",
    "deserialize_lexical",
    "deserialize_tokens",
    "reanchor_tokens",
    "scan_text",
    "semantic_token_id",
    "serialize_lexical",
    "serialize_tokens",
]

TOKEN_WORD = "word"
TOKEN_PUNCTUATION = "punctuation"

_SEMANTIC_ID_MASK = (1 << 53) - 1
_WORD_JOINERS = {"'", "\u2019", "\u02bc", "\u200d"}
_ELISION_MARKS = {"'", "\u2019", "\u02bc"}
_MARKER_RE = re.compile(r"\\[a-z-]+\*?")
_ATTRIBUTE_RE = re.compile(r"\|[^\\|]*?(?=\\|$)")
_ESCAPED_STAR_RE = re.compile(r"\\\*")


@dataclass(frozen=True)
class LexicalEntry:
    """Original-language word an alignment milestone points at."""

    content: str
    strong: str = ""
    lemma: str = ""
    morph: str = ""
    occurrence: int | None = None
    occurrences: int | None = None


@dataclass(frozen=True)
class AlignmentLink:
    """
    One-directional reference from a target-language token to anchor tokens.

    `anchor_ids` holds the ids of every enclosing milestone, outermost first
    (a milestone inside a span verse contributes one id per covered verse),
    and `lexical` one metadata entry per milestone.
    """

    anchor_ids: tuple[int, ...]
    lexical: tuple[LexicalEntry, ...] = ()

    @property
    def strong(self) -> str | None:
        return self.lexical[0].strong or None if self.lexical else None

    @property
    def lemma(self) -> str | None:
        return self.lexical[0].lemma or None if self.lexical else None


@dataclass(frozen=True)
class Token:
    """
    Smallest addressable unit of a resource's text.

    Offsets are relative to the immediate container: the verse text for verse
    tokens, the paragraph's combined text for paragraph tokens. Ids are shared
    between both views.
    """

    id: int
    text: str
    type: str
    verse_ref: str
    start: int
    end: int
    occurrence: int = 1
    occurrences: int = 1
    alignment: AlignmentLink | None = None
    strong: str | None = None
    lemma: str | None = None
    morph: str | None = None

    @property
    def is_word(self) -> bool:
        return self.type == TOKEN_WORD

    @property
    def is_punctuation(self) -> bool:
        return self.type == TOKEN_PUNCTUATION


@dataclass(frozen=True)
class TextRun:
    text: str
    start: int
    end: int
    type: str


def semantic_token_id(verse_ref: str, surface: str, occurrence: int) -> int:
    """
    Deterministic id for an anchor-resource token.

    A target resource computes the same id from a milestone's content and
    occurrence, so alignment links resolve without loading the anchor.
    """
    key = f"{verse_ref}:{surface.strip()}:{occurrence}".encode("utf-8")
    digest = hashlib.blake2b(key, digest_size=8).digest()
    return int.from_bytes(digest, "big") & _SEMANTIC_ID_MASK


def clean_markup_residue(text: str) -> str:
    """Strip leftover USFM markers, attribute tails and escaped stars."""
    text = _ATTRIBUTE_RE.sub("", text)
    text = _MARKER_RE.sub("", text)
    return _ESCAPED_STAR_RE.sub("", text)


def _is_word_char(ch: str) -> bool:
    return unicodedata.category(ch)[0] in "LMN"


def scan_text(text: str, *, keep_elision: bool = False) -> Iterator[TextRun]:
    """
    Split text into word and punctuation runs, skipping whitespace.

    Word runs are letters, marks and digits; an apostrophe or joiner between
    two word characters stays inside the word. With `keep_elision`, an
    apostrophe closing a word (`δι’`, `ἀπ’`) stays attached to it as well.
    """
    length = len(text)
    index = 0
    while index < length:
        ch = text[index]
        if ch.isspace():
            index += 1
            continue
        start = index
        if _is_word_char(ch):
            index += 1
            while index < length:
                current = text[index]
                if _is_word_char(current):
                    index += 1
                elif current in _WORD_JOINERS and index + 1 < length and _is_word_char(text[index + 1]):
                    index += 1
                elif keep_elision and current in _ELISION_MARKS:
                    index += 1
                    break
                else:
                    break
            yield TextRun(text[start:index], start, index, TOKEN_WORD)
            continue
        index += 1
        while index < length:
            current = text[index]
            if current.isspace() or _is_word_char(current):
                break
            index += 1
        yield TextRun(text[start:index], start, index, TOKEN_PUNCTUATION)


def reanchor_tokens(tokens: Iterable[Token], offset: int) -> list[Token]:
    if offset == 0:
        return list(tokens)
    return [replace(token, start=token.start + offset, end=token.end + offset) for token in tokens]


def serialize_lexical(entry: LexicalEntry) -> dict[str, object]:
    return {
        "content": entry.content,
        "strong": entry.strong,
        "lemma": entry.lemma,
        "morph": entry.morph,
        "occurrence": entry.occurrence,
        "occurrences": entry.occurrences,
    }


def serialize_tokens(tokens: Iterable[Token]) -> list[dict[str, object]]:
    payload: list[dict[str, object]] = []
    for token in tokens:
        entry: dict[str, object] = {
            "id": token.id,
            "text": token.text,
            "type": token.type,
            "verse_ref": token.verse_ref,
            "start": token.start,
            "end": token.end,
            "occurrence": token.occurrence,
            "occurrences": token.occurrences,
        }
        if token.alignment is not None:
            entry["align"] = list(token.alignment.anchor_ids)
            entry["lexical"] = [serialize_lexical(item) for item in token.alignment.lexical]
        if token.strong:
            entry["strong"] = token.strong
        if token.lemma:
            entry["lemma"] = token.lemma
        if token.morph:
            entry["morph"] = token.morph
        payload.append(entry)
    return payload


def deserialize_lexical(data: object) -> LexicalEntry | None:
    if not isinstance(data, Mapping):
        return None
    content = data.get("content")
    if not isinstance(content, str):
        return None
    occurrence = data.get("occurrence")
    occurrences = data.get("occurrences")
    return LexicalEntry(
        content=content,
        strong=data.get("strong") if isinstance(data.get("strong"), str) else "",
        lemma=data.get("lemma") if isinstance(data.get("lemma"), str) else "",
        morph=data.get("morph") if isinstance(data.get("morph"), str) else "",
        occurrence=occurrence if isinstance(occurrence, int) else None,
        occurrences=occurrences if isinstance(occurrences, int) else None,
    )


def deserialize_tokens(data: Iterable[Mapping[str, object]]) -> list[Token]:
    tokens: list[Token] = []
    for entry in data:
        if not isinstance(entry, Mapping):
            continue
        token_id = entry.get("id")
        text = entry.get("text")
        token_type = entry.get("type")
        verse_ref = entry.get("verse_ref")
        start = entry.get("start")
        end = entry.get("end")
        if (
            not isinstance(token_id, int)
            or not isinstance(text, str)
            or token_type not in (TOKEN_WORD, TOKEN_PUNCTUATION)
            or not isinstance(verse_ref, str)
            or not isinstance(start, int)
            or not isinstance(end, int)
        ):
            continue
        occurrence = entry.get("occurrence")
        if not isinstance(occurrence, int):
            occurrence = 1
        occurrences = entry.get("occurrences")
        if not isinstance(occurrences, int):
            occurrences = occurrence
        alignment = None
        align = entry.get("align")
        if isinstance(align, list):
            anchor_ids = tuple(value for value in align if isinstance(value, int))
            lexical_raw = entry.get("lexical")
            lexical: list[LexicalEntry] = []
            if isinstance(lexical_raw, list):
                for item in lexical_raw:
                    parsed = deserialize_lexical(item)
                    if parsed is not None:
                        lexical.append(parsed)
            if anchor_ids:
                alignment = AlignmentLink(anchor_ids=anchor_ids, lexical=tuple(lexical))
        strong = entry.get("strong")
        lemma = entry.get("lemma")
        morph = entry.get("morph")
        tokens.append(
            Token(
                id=token_id,
                text=text,
                type=token_type,
                verse_ref=verse_ref,
                start=start,
                end=end,
                occurrence=occurrence,
                occurrences=occurrences,
                alignment=alignment,
                strong=strong if isinstance(strong, str) else None,
                lemma=lemma if isinstance(lemma, str) else None,
                morph=morph if isinstance(morph, str) else None,
            )
        )
    return tokens
