from __future__ import annotations

import json
from pathlib import Path

import pytest

from quotelink.book_io import RESOURCE_MANIFEST_FILENAME
from quotelink.library import ResourceLibrary, ResourceNotFoundError
from quotelink.projection import AlignmentIndex
from quotelink.structure import ROLE_ANCHOR, ROLE_TARGET


def test_list_resources_reads_manifest_roles(library_root: Path) -> None:
    (library_root / "empty").mkdir()
    (library_root / ".cache").mkdir()
    library = ResourceLibrary(library_root)
    listings = library.list_resources()
    assert [(item.resource, item.role, item.books) for item in listings] == [
        ("ugnt", ROLE_ANCHOR, ["3JN"]),
        ("ult", ROLE_TARGET, ["3JN"]),
    ]
    assert [item.resource for item in library.anchor_resources()] == ["ugnt"]
    assert [item.resource for item in library.target_resources()] == ["ult"]
    assert library.books("ult") == ["3JN"]


def test_role_falls_back_to_book_file(library_root: Path) -> None:
    (library_root / "ugnt" / RESOURCE_MANIFEST_FILENAME).unlink()
    library = ResourceLibrary(library_root)
    assert library.resource("ugnt").role == ROLE_ANCHOR


def test_missing_root_lists_nothing(tmp_path: Path) -> None:
    assert ResourceLibrary(tmp_path / "missing").list_resources() == []


def test_load_caches_books(library_root: Path) -> None:
    library = ResourceLibrary(library_root)
    first = library.load("ult", "3jn")
    assert library.load("ult", "3JN") is first
    assert [(resource, book) for resource, book, _ in library.loaded()] == [("ult", "3JN")]
    library.invalidate("ult")
    assert library.loaded() == []
    assert library.load("ult", "3JN") is not first


def test_index_is_cached_per_book(library_root: Path) -> None:
    library = ResourceLibrary(library_root)
    index = library.index("ult", "3JN")
    assert isinstance(index, AlignmentIndex)
    assert library.index("ult", "3jn") is index
    library.invalidate()
    assert library.index("ult", "3JN") is not index


def test_unknown_resource_or_book(library_root: Path) -> None:
    library = ResourceLibrary(library_root)
    with pytest.raises(ResourceNotFoundError):
        library.load("missing", "3JN")
    with pytest.raises(ResourceNotFoundError, match="no book ROM"):
        library.load("ult", "rom")
    with pytest.raises(ResourceNotFoundError):
        library.load("../ult", "3JN")
    with pytest.raises(ResourceNotFoundError):
        library.resource("missing")
    assert library.try_load("ult", "ROM") is None


def test_try_load_skips_broken_book(library_root: Path) -> None:
    path = library_root / "ult" / "3JN.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["version"] = 0
    path.write_text(json.dumps(payload), encoding="utf-8")
    assert ResourceLibrary(library_root).try_load("ult", "3JN") is None
