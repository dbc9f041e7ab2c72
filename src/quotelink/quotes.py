from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .logging_utils import debug_log
from .references import ReferenceRange, format_reference, select_verses, validate_range
from .structure import BookStructure, Verse
from .tokens import TOKEN_WORD, Token, scan_text

__all__ = [
    "ERROR_EMPTY_QUOTE",
    "ERROR_EMPTY_RANGE",
    "ERROR_INVALID_RANGE",
    "ERROR_QUOTE_NOT_FOUND",
    "QUOTE_DELIMITER",
    "QuoteMatch",
    "ResolvedQuote",
    "SubQuote",
    "parse_quote",
    "resolve_quote",
]

QUOTE_DELIMITER = " & "

ERROR_QUOTE_NOT_FOUND = "quote_not_found"
ERROR_INVALID_RANGE = "invalid_range"
ERROR_EMPTY_RANGE = "empty_range"
ERROR_EMPTY_QUOTE = "empty_quote"


def _debug_log(message: str) -> None:
    debug_log("quote", message)


@dataclass(frozen=True)
class SubQuote:
    text: str
    words: tuple[str, ...]


@dataclass(frozen=True)
class QuoteMatch:
    """One sub-quote located inside one verse."""

    quote: str
    occurrence: int
    verse_ref: str
    tokens: tuple[Token, ...]
    start: int
    end: int


@dataclass(frozen=True)
class ResolvedQuote:
    success: bool
    matches: tuple[QuoteMatch, ...] = ()
    total_tokens: tuple[Token, ...] = ()
    error: str | None = None
    error_kind: str | None = None

    @property
    def anchor_ids(self) -> frozenset[int]:
        return frozenset(token.id for token in self.total_tokens)

    @classmethod
    def failure(cls, error: str, kind: str) -> "ResolvedQuote":
        return cls(success=False, error=error, error_kind=kind)


def parse_quote(expression: str) -> list[SubQuote]:
    """
    Split a quote expression on `" & "` into word sequences.

    Punctuation inside a sub-quote is dropped, except a closing elision mark
    (`δι’`), which stays with its word as it does in anchor text. Sub-quotes
    without words are left out.
    """
    if not isinstance(expression, str):
        raise TypeError("Quote expression must be a string.")
    parts: list[SubQuote] = []
    for raw in expression.split(QUOTE_DELIMITER):
        text = raw.strip()
        words = tuple(run.text for run in scan_text(text, keep_elision=True) if run.type == TOKEN_WORD)
        if words:
            parts.append(SubQuote(text=text, words=words))
    return parts


def _word_tokens(verse: Verse) -> list[Token]:
    return [token for token in verse.tokens if token.type == TOKEN_WORD]


def _matches_at(words: Sequence[Token], index: int, wanted: Sequence[str]) -> bool:
    if index + len(wanted) > len(words):
        return False
    return all(words[index + offset].text.strip() == word for offset, word in enumerate(wanted))


def _find_match(
    verse_words: Sequence[Sequence[Token]],
    wanted: Sequence[str],
    occurrence: int,
    start_verse: int,
    start_word: int,
) -> tuple[int, int] | None:
    seen = 0
    for verse_index in range(start_verse, len(verse_words)):
        words = verse_words[verse_index]
        first = start_word if verse_index == start_verse else 0
        for word_index in range(first, len(words)):
            if _matches_at(words, word_index, wanted):
                seen += 1
                if seen == occurrence:
                    return verse_index, word_index
    return None


def resolve_quote(
    source: BookStructure,
    quote: str,
    occurrence: int,
    reference: ReferenceRange,
) -> ResolvedQuote:
    """
    Locate `quote` inside `reference` of an anchor book.

    The first sub-quote takes the `occurrence`-th match counted over the whole
    range; each later sub-quote takes the first match after the previous one.
    Data problems come back as a failed ResolvedQuote; bad arguments raise.
    """
    if not isinstance(source, BookStructure):
        raise TypeError("resolve_quote expects a BookStructure source.")
    if not isinstance(quote, str):
        raise TypeError("Quote must be a string.")
    if isinstance(occurrence, bool) or not isinstance(occurrence, int):
        raise TypeError("Occurrence must be an integer.")
    if occurrence < 1:
        raise ValueError(f"Occurrence must be >= 1, got {occurrence}.")
    if not isinstance(reference, ReferenceRange):
        raise TypeError("Reference must be a ReferenceRange.")

    problem = validate_range(reference)
    if problem:
        return ResolvedQuote.failure(problem, ERROR_INVALID_RANGE)
    scope = format_reference(reference)
    sub_quotes = parse_quote(quote)
    if not sub_quotes:
        return ResolvedQuote.failure(f"Quote {quote!r} contains no words", ERROR_EMPTY_QUOTE)
    if reference.book.upper() != source.book_code.upper():
        return ResolvedQuote.failure(
            f"No verses found in range {scope} (loaded book is {source.book_code})",
            ERROR_EMPTY_RANGE,
        )
    verses = select_verses(source, reference)
    if not verses:
        return ResolvedQuote.failure(f"No verses found in range {scope}", ERROR_EMPTY_RANGE)

    verse_words = [_word_tokens(verse) for verse in verses]
    matches: list[QuoteMatch] = []
    cursor_verse = 0
    cursor_word = 0
    for index, sub_quote in enumerate(sub_quotes):
        target = occurrence if index == 0 else 1
        _debug_log(
            f"searching {sub_quote.text!r} (occurrence {target}) from "
            f"{verses[cursor_verse].reference} word {cursor_word}"
        )
        found = _find_match(verse_words, sub_quote.words, target, cursor_verse, cursor_word)
        if found is None:
            searched = scope if index == 0 else f"{scope} after {matches[-1].verse_ref}"
            return ResolvedQuote.failure(
                f'Quote "{sub_quote.text}" (occurrence {target}) not found in {searched}',
                ERROR_QUOTE_NOT_FOUND,
            )
        verse_index, word_index = found
        tokens = tuple(verse_words[verse_index][word_index : word_index + len(sub_quote.words)])
        matches.append(
            QuoteMatch(
                quote=sub_quote.text,
                occurrence=target,
                verse_ref=verses[verse_index].reference,
                tokens=tokens,
                start=tokens[0].start,
                end=tokens[-1].end,
            )
        )
        cursor_verse = verse_index
        cursor_word = word_index + len(sub_quote.words)

    total_tokens = tuple(token for match in matches for token in match.tokens)
    return ResolvedQuote(success=True, matches=tuple(matches), total_tokens=total_tokens)
