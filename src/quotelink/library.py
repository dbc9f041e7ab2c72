from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from .book_io import (
    RESOURCE_MANIFEST_FILENAME,
    BookFormatError,
    book_structure_path,
    load_book_structure,
    load_resource_manifest,
)
from .logging_utils import debug_log
from .projection import AlignmentIndex
from .structure import ROLE_ANCHOR, ROLE_TARGET, BookStructure

__all__ = [
    "ResourceLibrary",
    "ResourceListing",
    "ResourceNotFoundError",
]


class ResourceNotFoundError(LookupError):
    """Raised when a resource or book is not present in the library root."""


@dataclass(slots=True)
class ResourceListing:
    resource: str
    role: str
    path: Path
    books: list[str]


def _book_files(resource_dir: Path) -> list[Path]:
    return sorted(
        path
        for path in resource_dir.glob("*.json")
        if path.is_file() and path.name != RESOURCE_MANIFEST_FILENAME
    )


def _peek_role(path: Path) -> str:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return ROLE_TARGET
    role = payload.get("role") if isinstance(payload, dict) else None
    return role if role in (ROLE_ANCHOR, ROLE_TARGET) else ROLE_TARGET


class ResourceLibrary:
    """
    Built books under one root, loaded on demand.

    The instance owns its cache; create one per process or app and pass it
    around. Layout: `<root>/<resource>/<BOOK>.json` plus `resource.json`.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._books: dict[tuple[str, str], BookStructure] = {}
        self._indexes: dict[tuple[str, str], AlignmentIndex] = {}

    def list_resources(self) -> list[ResourceListing]:
        if not self.root.is_dir():
            return []
        listings: list[ResourceListing] = []
        for entry in sorted(self.root.iterdir(), key=lambda item: item.name.casefold()):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            files = _book_files(entry)
            if not files:
                continue
            manifest = load_resource_manifest(entry)
            role = manifest.role if manifest else _peek_role(files[0])
            listings.append(
                ResourceListing(
                    resource=entry.name,
                    role=role,
                    path=entry,
                    books=[path.stem.upper() for path in files],
                )
            )
        return listings

    def resource(self, resource_id: str) -> ResourceListing:
        for listing in self.list_resources():
            if listing.resource == resource_id:
                return listing
        raise ResourceNotFoundError(f"Unknown resource: {resource_id}")

    def anchor_resources(self) -> list[ResourceListing]:
        return [listing for listing in self.list_resources() if listing.role == ROLE_ANCHOR]

    def target_resources(self) -> list[ResourceListing]:
        return [listing for listing in self.list_resources() if listing.role == ROLE_TARGET]

    def books(self, resource_id: str) -> list[str]:
        return list(self.resource(resource_id).books)

    def load(self, resource_id: str, book_code: str) -> BookStructure:
        key = (resource_id, book_code.upper())
        cached = self._books.get(key)
        if cached is not None:
            return cached
        if resource_id.startswith(".") or "/" in resource_id or "/" in book_code:
            raise ResourceNotFoundError(f"Unknown resource: {resource_id}")
        path = book_structure_path(self.root, resource_id, book_code)
        if not path.exists():
            if not path.parent.is_dir():
                raise ResourceNotFoundError(f"Unknown resource: {resource_id}")
            raise ResourceNotFoundError(f"{resource_id} has no book {book_code.upper()}")
        debug_log("library", f"loading {path}")
        book = load_book_structure(path)
        self._books[key] = book
        return book

    def try_load(self, resource_id: str, book_code: str) -> BookStructure | None:
        try:
            return self.load(resource_id, book_code)
        except (ResourceNotFoundError, BookFormatError) as exc:
            debug_log("library", f"skipping {resource_id}/{book_code}: {exc}")
            return None

    def index(self, resource_id: str, book_code: str) -> AlignmentIndex:
        key = (resource_id, book_code.upper())
        index = self._indexes.get(key)
        if index is None:
            index = AlignmentIndex.from_structure(self.load(resource_id, book_code))
            self._indexes[key] = index
        return index

    def loaded(self) -> list[tuple[str, str, BookStructure]]:
        return [(resource, book, structure) for (resource, book), structure in self._books.items()]

    def invalidate(self, resource_id: str | None = None) -> None:
        if resource_id is None:
            self._books.clear()
            self._indexes.clear()
            return
        for cache in (self._books, self._indexes):
            for key in [key for key in cache if key[0] == resource_id]:
                cache.pop(key, None)
