from __future__ import annotations

import pytest

from quotelink.quotes import (
    ERROR_EMPTY_QUOTE,
    ERROR_EMPTY_RANGE,
    ERROR_INVALID_RANGE,
    ERROR_QUOTE_NOT_FOUND,
    parse_quote,
    resolve_quote,
)
from quotelink.references import ReferenceRange, parse_reference
from quotelink.structure import BookStructure
from quotelink.tokens import semantic_token_id


def _texts(result) -> list[str]:
    return [token.text for token in result.total_tokens]


def test_parse_quote_splits_on_ampersand_and_drops_punctuation() -> None:
    parts = parse_quote("Γαΐῳ  &  τῷ ἀγαπητῷ, & ,")
    assert [part.words for part in parts] == [("Γαΐῳ",), ("τῷ", "ἀγαπητῷ")]
    assert parts[1].text == "τῷ ἀγαπητῷ,"
    assert parse_quote("a&b")[0].words == ("a", "b")


def test_resolve_single_phrase(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ὁ πρεσβύτερος", 1, parse_reference("3JN 1:1"))
    assert result.success
    assert result.error is None and result.error_kind is None
    assert _texts(result) == ["ὁ", "πρεσβύτερος"]
    match = result.matches[0]
    assert match.verse_ref == "3JN 1:1"
    assert (match.start, match.end) == (0, len("ὁ πρεσβύτερος"))
    assert result.anchor_ids == frozenset(
        {semantic_token_id("3JN 1:1", "ὁ", 1), semantic_token_id("3JN 1:1", "πρεσβύτερος", 1)}
    )


def test_resolve_discontiguous_quote(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "Γαΐῳ & τῷ & ἀγαπητῷ", 1, parse_reference("3JN 1:1"))
    assert result.success
    assert [match.quote for match in result.matches] == ["Γαΐῳ", "τῷ", "ἀγαπητῷ"]
    assert [match.occurrence for match in result.matches] == [1, 1, 1]
    assert _texts(result) == ["Γαΐῳ", "τῷ", "ἀγαπητῷ"]


def test_resolve_searches_whole_range(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ἀγαπητέ", 1, parse_reference("3JN 1:1-3"))
    assert result.success
    assert result.matches[0].verse_ref == "3JN 1:2"


def test_occurrence_counts_within_verse(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "καὶ", 2, parse_reference("3JN 1:1-2"))
    assert result.success
    token = result.total_tokens[0]
    assert token.verse_ref == "3JN 1:2"
    assert token.occurrence == 2
    assert token.id == semantic_token_id("3JN 1:2", "καὶ", 2)


def test_occurrence_counts_across_verses(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ἀληθείᾳ", 3, parse_reference("3JN 1:1-3"))
    assert result.success
    token = result.total_tokens[0]
    assert token.verse_ref == "3JN 1:3"
    assert token.occurrence == 2


def test_occurrence_beyond_count_fails(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ἀληθείᾳ", 4, parse_reference("3JN 1:1-3"))
    assert not result.success
    assert result.error_kind == ERROR_QUOTE_NOT_FOUND
    assert result.error == 'Quote "ἀληθείᾳ" (occurrence 4) not found in 3JN 1:1-3'
    assert result.matches == () and result.total_tokens == ()


def test_missing_word_fails(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "nonexistent", 1, parse_reference("3JN 1:1"))
    assert not result.success
    assert result.error_kind == ERROR_QUOTE_NOT_FOUND
    assert "not found in 3JN 1:1" in result.error


def test_later_sub_quotes_must_follow_earlier_ones(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ἀγαπῶ & ἐγὼ", 1, parse_reference("3JN 1:1"))
    assert not result.success
    assert result.error_kind == ERROR_QUOTE_NOT_FOUND
    assert "ἐγὼ" in result.error


def test_occurrence_only_moves_first_sub_quote(anchor_book: BookStructure) -> None:
    reference = parse_reference("3JN 1:2")
    first = resolve_quote(anchor_book, "καὶ & σου", 1, reference)
    second = resolve_quote(anchor_book, "καὶ & σου", 2, reference)
    assert first.success and second.success
    assert [token.occurrence for token in first.total_tokens] == [1, 1]
    assert [token.occurrence for token in second.total_tokens] == [2, 1]
    assert first.total_tokens[1].id == second.total_tokens[1].id
    assert [match.occurrence for match in second.matches] == [2, 1]


def test_sub_quotes_may_continue_into_later_verses(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ἀγαπητῷ & καὶ", 1, parse_reference("3JN 1:1-2"))
    assert result.success
    assert [match.verse_ref for match in result.matches] == ["3JN 1:1", "3JN 1:2"]
    assert result.total_tokens[1].occurrence == 1


def test_match_never_crosses_verse_boundary(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ἀληθείᾳ ἀγαπητέ", 1, parse_reference("3JN 1:1-2"))
    assert not result.success
    assert result.error_kind == ERROR_QUOTE_NOT_FOUND


def test_punctuation_in_quote_is_ignored(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "ἀγαπητῷ, ὃν", 1, parse_reference("3JN 1:1"))
    assert result.success
    assert _texts(result) == ["ἀγαπητῷ", "ὃν"]


def test_invalid_range_is_reported_first(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "", 1, ReferenceRange("3JN", 0, 1))
    assert not result.success
    assert result.error_kind == ERROR_INVALID_RANGE
    backwards = resolve_quote(anchor_book, "καὶ", 1, ReferenceRange("3JN", 1, 3, None, 1))
    assert backwards.error_kind == ERROR_INVALID_RANGE


def test_empty_range(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, "καὶ", 1, ReferenceRange("3JN", 5, 1))
    assert not result.success
    assert result.error_kind == ERROR_EMPTY_RANGE
    other_book = resolve_quote(anchor_book, "καὶ", 1, ReferenceRange("ROM", 1, 1))
    assert other_book.error_kind == ERROR_EMPTY_RANGE
    assert "3JN" in other_book.error


def test_empty_quote(anchor_book: BookStructure) -> None:
    result = resolve_quote(anchor_book, " , & . ", 1, parse_reference("3JN 1:1"))
    assert not result.success
    assert result.error_kind == ERROR_EMPTY_QUOTE


def test_bad_arguments_raise(anchor_book: BookStructure) -> None:
    reference = parse_reference("3JN 1:1")
    with pytest.raises(TypeError):
        resolve_quote(anchor_book, "καὶ", "1", reference)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        resolve_quote(anchor_book, "καὶ", True, reference)
    with pytest.raises(ValueError):
        resolve_quote(anchor_book, "καὶ", 0, reference)
    with pytest.raises(TypeError):
        resolve_quote(anchor_book, None, 1, reference)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        resolve_quote(anchor_book, "καὶ", 1, "3JN 1:1")  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        resolve_quote(None, "καὶ", 1, reference)  # type: ignore[arg-type]


def test_parse_quote_keeps_elided_words_whole() -> None:
    parts = parse_quote("δι’ αὐτοῦ & ἀπ’ ἀρχῆς")
    assert [part.words for part in parts] == [("δι’", "αὐτοῦ"), ("ἀπ’", "ἀρχῆς")]
