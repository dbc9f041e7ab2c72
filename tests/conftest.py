from __future__ import annotations

from pathlib import Path

import pytest

from quotelink.book_io import write_book_structure
from quotelink.nodes import deserialize_book
from quotelink.structure import ROLE_ANCHOR, ROLE_TARGET, BookStructure, build_book

from usfm_samples import anchor_payload, target_payload


@pytest.fixture
def anchor_book() -> BookStructure:
    return build_book(deserialize_book(anchor_payload()), role=ROLE_ANCHOR)


@pytest.fixture
def target_book() -> BookStructure:
    return build_book(deserialize_book(target_payload()), role=ROLE_TARGET)


@pytest.fixture
def library_root(tmp_path: Path, anchor_book: BookStructure, target_book: BookStructure) -> Path:
    root = tmp_path / "library"
    write_book_structure(root, "ugnt", anchor_book)
    write_book_structure(root, "ult", target_book)
    return root
