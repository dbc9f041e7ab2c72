from __future__ import annotations

import pytest

from quotelink.nodes import deserialize_book
from quotelink.projection import (
    AlignmentIndex,
    Projection,
    anchor_ids_for_token,
    build_phrase,
    project,
    project_from_token,
)
from quotelink.quotes import resolve_quote
from quotelink.references import parse_reference
from quotelink.structure import ROLE_ANCHOR, ROLE_TARGET, BookStructure, build_book
from quotelink.tokens import semantic_token_id

from usfm_samples import milestone, simple_book, text, word


def _ids(*surfaces: str, verse_ref: str = "3JN 1:1") -> set[int]:
    return {semantic_token_id(verse_ref, surface, 1) for surface in surfaces}


def _target_token(book: BookStructure, surface: str):
    return next(token for token in book.token_stream() if token.text == surface)


def test_discontiguous_quote_projects_with_punctuation_gap(
    anchor_book: BookStructure, target_book: BookStructure
) -> None:
    resolved = resolve_quote(anchor_book, "Γαΐῳ & τῷ & ἀγαπητῷ", 1, parse_reference("3JN 1:1"))
    projection = project(resolved.anchor_ids, target_book)
    assert projection.token_ids == (3, 4, 6, 7)
    assert projection.phrase == "to Gaius, the beloved"


def test_word_gap_becomes_ellipsis(target_book: BookStructure) -> None:
    projection = project(_ids("ὁ", "ἀγαπητῷ"), target_book)
    assert projection.token_ids == (1, 7)
    assert projection.phrase == "The ... beloved"
    custom = project(_ids("ὁ", "ἀγαπητῷ"), target_book, ellipsis="…")
    assert custom.phrase == "The … beloved"


def test_gap_across_verses_uses_ellipsis(target_book: BookStructure) -> None:
    ids = _ids("ἀγαπητῷ") | _ids("ἀγαπητέ", verse_ref="3JN 1:2")
    assert project(ids, target_book).phrase == "beloved ... Beloved"


def test_nested_alignment_projects_each_level(target_book: BookStructure) -> None:
    assert project(_ids("ἐγὼ"), target_book).phrase == "I love"
    assert project(_ids("ἀγαπῶ"), target_book).token_ids == (11,)
    both = project(_ids("ἐγὼ", "ἀγαπῶ"), target_book)
    assert both.token_ids == (10, 11)
    assert both.phrase == "I love"


def test_adjacent_words_inside_one_alignment(target_book: BookStructure) -> None:
    projection = project(_ids("εὔχομαί", verse_ref="3JN 1:2"), target_book)
    assert projection.phrase == "I pray"


def test_no_match_gives_empty_projection(target_book: BookStructure) -> None:
    assert project({12345}, target_book) == Projection()
    assert project([], target_book).is_empty
    assert project(set(), target_book).phrase == ""


def test_project_accepts_index_verses_and_tokens(target_book: BookStructure) -> None:
    ids = _ids("Γαΐῳ", "τῷ")
    expected = project(ids, target_book)
    index = AlignmentIndex.from_structure(target_book)
    assert project(ids, index) == expected
    assert project(ids, list(target_book.verses())) == expected
    assert project(ids, list(target_book.paragraphs())) == expected
    assert project(ids, list(target_book.token_stream())) == expected
    assert len(index) == 22


def test_project_rejects_bad_streams(target_book: BookStructure) -> None:
    with pytest.raises(TypeError):
        project({1}, None)
    with pytest.raises(TypeError):
        project({1}, "The elder")
    with pytest.raises(TypeError):
        project({1}, [object()])
    with pytest.raises(TypeError):
        project("12", target_book)  # type: ignore[arg-type]


def test_anchor_stream_highlights_itself(anchor_book: BookStructure) -> None:
    projection = project(_ids("Γαΐῳ", "ἀγαπητῷ"), anchor_book)
    assert [token.text for token in projection.tokens] == ["Γαΐῳ", "ἀγαπητῷ"]
    assert projection.phrase == "Γαΐῳ ... ἀγαπητῷ"


def test_reverse_projection_from_target_token(
    anchor_book: BookStructure, target_book: BookStructure
) -> None:
    love = _target_token(target_book, "love")
    assert anchor_ids_for_token(love, role=ROLE_TARGET) == frozenset(_ids("ἐγὼ", "ἀγαπῶ"))
    results = project_from_token(love, {"ugnt": anchor_book, "ult": target_book}, role=ROLE_TARGET)
    assert [token.text for token in results["ugnt"].tokens] == ["ἐγὼ", "ἀγαπῶ"]
    assert results["ugnt"].phrase == "ἐγὼ ἀγαπῶ"
    assert results["ult"].phrase == "I love"


def test_anchor_token_click_projects_onto_all_streams(
    anchor_book: BookStructure, target_book: BookStructure
) -> None:
    gaius = next(token for token in anchor_book.token_stream() if token.text == "Γαΐῳ")
    assert anchor_ids_for_token(gaius, role=ROLE_ANCHOR) == frozenset({gaius.id})
    results = project_from_token(gaius, {"ugnt": anchor_book, "ult": target_book}, role=ROLE_ANCHOR)
    assert results["ugnt"].token_ids == (gaius.id,)
    assert results["ult"].phrase == "to Gaius"


def test_unaligned_target_token_projects_nothing(
    anchor_book: BookStructure, target_book: BookStructure
) -> None:
    comma = _target_token(target_book, ",")
    assert anchor_ids_for_token(comma, role=ROLE_TARGET) == frozenset()
    results = project_from_token(comma, {"ugnt": anchor_book, "ult": target_book}, role=ROLE_TARGET)
    assert all(projection.is_empty for projection in results.values())
    with pytest.raises(TypeError):
        anchor_ids_for_token("love")  # type: ignore[arg-type]


def test_build_phrase_orders_by_stream_position(target_book: BookStructure) -> None:
    stream = list(target_book.token_stream())
    picked = [stream[6], stream[0], stream[3]]
    assert build_phrase(picked, stream) == "The ... Gaius ... beloved"
    assert build_phrase([], stream) == ""


def test_elided_anchor_words_project_onto_target() -> None:
    anchor = build_book(
        deserialize_book(simple_book({"1": {"3": [word("δι’"), text(" "), word("αὐτοῦ"), text(".")]}})),
        role=ROLE_ANCHOR,
    )
    target = build_book(
        deserialize_book(
            simple_book(
                {"1": {"3": [milestone("δι’", [word("through")]), text(" "), milestone("αὐτοῦ", [word("him")]), text(".")]}}
            )
        )
    )
    resolved = resolve_quote(anchor, "δι’ αὐτοῦ", 1, parse_reference("TST 1:3"))
    assert resolved.success
    assert [token.text for token in resolved.total_tokens] == ["δι’", "αὐτοῦ"]
    assert project(resolved.anchor_ids, target).phrase == "through him"


def test_span_verse_target_matches_separate_anchor_verses() -> None:
    anchor = build_book(
        deserialize_book(simple_book({"1": {"4": [word("λόγος")], "5": [word("ἀγάπη")]}})),
        role=ROLE_ANCHOR,
    )
    target = build_book(
        deserialize_book(
            simple_book(
                {"1": {"4-5": [milestone("λόγος", [word("word")]), text(" "), milestone("ἀγάπη", [word("love")])]}}
            )
        )
    )
    resolved = resolve_quote(anchor, "ἀγάπη", 1, parse_reference("TST 1:5"))
    assert project(resolved.anchor_ids, target).phrase == "love"
    both = {token.id for token in anchor.token_stream()}
    assert project(both, target).phrase == "word love"


def test_plain_lists_take_stream_role(anchor_book: BookStructure, target_book: BookStructure) -> None:
    gaius = next(token for token in anchor_book.token_stream() if token.text == "Γαΐῳ")
    tokens = list(anchor_book.token_stream())
    assert project({gaius.id}, tokens, role=ROLE_ANCHOR).token_ids == (gaius.id,)
    assert project({gaius.id}, list(anchor_book.verses()), role=ROLE_ANCHOR).token_ids == (gaius.id,)
    assert project({gaius.id}, tokens).is_empty
    with pytest.raises(ValueError):
        project({gaius.id}, tokens, role="source")

    results = project_from_token(
        gaius,
        {"ugnt": tokens, "ult": list(target_book.token_stream())},
        role=ROLE_ANCHOR,
        stream_roles={"ugnt": ROLE_ANCHOR},
    )
    assert results["ugnt"].phrase == "Γαΐῳ"
    assert results["ult"].phrase == "to Gaius"
