from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .book_io import BookFormatError
from .library import ResourceLibrary, ResourceNotFoundError
from .projection import DEFAULT_ELLIPSIS, AlignmentIndex, Projection, anchor_ids_for_token, project
from .quotes import resolve_quote
from .references import ReferenceRange, format_reference, parse_reference
from .sections import DefaultSectionTable
from .structure import BookStructure, TranslatorSection
from .tokens import Token

__all__ = ["WebConfig", "create_app"]


@dataclass(slots=True)
class WebConfig:
    root: Path
    anchor: str | None = None
    ellipsis: str = DEFAULT_ELLIPSIS
    default_sections: Path | None = None


def _token_payload(token: Token) -> dict[str, object]:
    payload: dict[str, object] = {
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
        payload["align"] = list(token.alignment.anchor_ids)
    for key in ("strong", "lemma", "morph"):
        value = getattr(token, key)
        if value:
            payload[key] = value
    return payload


def _projection_payload(projection: Projection) -> dict[str, object]:
    return {"token_ids": list(projection.token_ids), "phrase": projection.phrase}


def _section_payload(section: TranslatorSection) -> dict[str, object]:
    return {"start": section.start.label, "end": section.end.label, "source": section.source}


def _parse_reference_arg(book: str, ref: str) -> ReferenceRange:
    text = ref.strip()
    try:
        return parse_reference(text)
    except ValueError:
        pass
    try:
        return parse_reference(f"{book} {text}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def create_app(config: WebConfig) -> FastAPI:
    root = config.root.expanduser().resolve()
    if not root.exists():
        raise FileNotFoundError(f"Library root not found: {root}")

    app = FastAPI(title="quotelink")
    app.state.config = config
    app.state.root = root

    library = ResourceLibrary(root)
    library_lock = threading.Lock()
    section_table = (
        DefaultSectionTable.load(config.default_sections)
        if config.default_sections is not None
        else DefaultSectionTable.bundled()
    )
    app.state.library = library

    def _load(resource: str, book: str) -> BookStructure:
        with library_lock:
            try:
                return library.load(resource, book)
            except ResourceNotFoundError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except BookFormatError as exc:
                raise HTTPException(status_code=500, detail=str(exc)) from exc

    def _index(resource: str, book: str) -> AlignmentIndex:
        with library_lock:
            return library.index(resource, book)

    def _anchor_resource() -> str:
        if config.anchor:
            return config.anchor
        with library_lock:
            anchors = library.anchor_resources()
        if not anchors:
            raise HTTPException(status_code=404, detail="No anchor resource in library")
        return anchors[0].resource

    def _resources_with_book(book: str) -> list[str]:
        with library_lock:
            listings = library.list_resources()
        return [listing.resource for listing in listings if book.upper() in listing.books]

    @app.get("/api/resources")
    def api_resources() -> JSONResponse:
        with library_lock:
            listings = library.list_resources()
        payload = [
            {"id": listing.resource, "role": listing.role, "books": listing.books}
            for listing in listings
        ]
        return JSONResponse({"resources": payload, "anchor": config.anchor})

    @app.get("/api/resources/{resource}/books/{book}")
    def api_book(resource: str, book: str) -> JSONResponse:
        structure = _load(resource, book)
        sections = structure.sections or section_table.sections_for(structure.book_code)
        return JSONResponse(
            {
                "resource": resource,
                "role": structure.role,
                "book_code": structure.book_code,
                "book_name": structure.book_name,
                "stats": structure.stats.as_dict(),
                "sections": [_section_payload(section) for section in sections],
                "chapters": [
                    {
                        "number": chapter.number,
                        "verses": len(chapter.verses),
                        "paragraphs": [
                            {
                                "id": paragraph.id,
                                "style": paragraph.style,
                                "indent_level": paragraph.indent_level,
                                "verses": [verse.key for verse in paragraph.verses],
                            }
                            for paragraph in chapter.paragraphs
                        ],
                    }
                    for chapter in structure.chapters
                ],
            }
        )

    @app.get("/api/quote")
    def api_quote(
        book: str,
        ref: str,
        quote: str,
        occurrence: int = 1,
        targets: str | None = None,
    ) -> JSONResponse:
        if occurrence < 1:
            raise HTTPException(status_code=400, detail="occurrence must be >= 1")
        reference = _parse_reference_arg(book, ref)
        anchor = _anchor_resource()
        anchor_book = _load(anchor, reference.book)
        resolved = resolve_quote(anchor_book, quote, occurrence, reference)
        payload: dict[str, object] = {
            "success": resolved.success,
            "reference": format_reference(reference),
            "quote": quote,
            "occurrence": occurrence,
            "anchor": {"resource": anchor, "token_ids": [token.id for token in resolved.total_tokens]},
            "matches": [
                {
                    "quote": match.quote,
                    "occurrence": match.occurrence,
                    "verse_ref": match.verse_ref,
                    "start": match.start,
                    "end": match.end,
                    "tokens": [_token_payload(token) for token in match.tokens],
                }
                for match in resolved.matches
            ],
            "targets": {},
        }
        if not resolved.success:
            payload["error"] = resolved.error
            payload["error_kind"] = resolved.error_kind
            return JSONResponse(payload)
        if targets:
            target_ids = [item.strip() for item in targets.split(",") if item.strip()]
        else:
            target_ids = [
                resource for resource in _resources_with_book(reference.book) if resource != anchor
            ]
        projections: dict[str, object] = {}
        for resource in target_ids:
            _load(resource, reference.book)
            index = _index(resource, reference.book)
            projections[resource] = _projection_payload(
                project(resolved.anchor_ids, index, ellipsis=config.ellipsis)
            )
        payload["targets"] = projections
        return JSONResponse(payload)

    @app.get("/api/resources/{resource}/books/{book}/tokens/{token_id}/aligned")
    def api_aligned(resource: str, book: str, token_id: int) -> JSONResponse:
        structure = _load(resource, book)
        token = structure.token(token_id)
        if token is None:
            raise HTTPException(status_code=404, detail="Token not found")
        anchor_ids = anchor_ids_for_token(token, role=structure.role)
        results: dict[str, object] = {}
        for other in _resources_with_book(structure.book_code):
            _load(other, structure.book_code)
            index = _index(other, structure.book_code)
            results[other] = _projection_payload(project(anchor_ids, index, ellipsis=config.ellipsis))
        return JSONResponse(
            {
                "token": _token_payload(token),
                "anchor_ids": sorted(anchor_ids),
                "resources": results,
            }
        )

    return app
