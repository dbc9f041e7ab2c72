from __future__ import annotations

import argparse
import json
import os
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .book_io import (
    BookFormatError,
    load_book_source,
    load_resource_manifest,
    source_sha1,
    write_book_structure,
)
from .library import ResourceLibrary, ResourceNotFoundError
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .projection import DEFAULT_ELLIPSIS, project
from .quotes import resolve_quote
from .references import format_reference, parse_reference
from .sections import DefaultSectionTable
from .structure import ROLE_ANCHOR, ROLE_TARGET, BookStats, StructuralError, build_book
from .web import WebConfig, create_app

ROOT_ENV = "QUOTELINK_ROOT"
DEFAULT_SECTIONS_ENV = "QUOTELINK_DEFAULT_SECTIONS"


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("quotelink")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"quotelink {__version__}",
    )


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    _add_version_flag(parser)
    parser.add_argument(
        "--root",
        default=os.environ.get(ROOT_ENV),
        help=f"Library root holding built resources (default: ${ROOT_ENV}).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print builder and resolver debug lines.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="quotelink",
        description=(
            "Resolve original-language quotes to token spans and project them onto aligned "
            "translations. Subcommands: build, resolve, web."
        ),
    )
    _add_version_flag(ap)
    return ap


def build_build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="quotelink build",
        description="Structure usfm-js JSON books and store them in the library.",
    )
    _add_common_flags(ap)
    ap.add_argument("inputs", nargs="+", help="usfm-js JSON files (one book per file).")
    ap.add_argument("--resource", required=True, help="Resource id, e.g. ugnt or ult.")
    ap.add_argument(
        "--role",
        choices=[ROLE_ANCHOR, ROLE_TARGET],
        default=ROLE_TARGET,
        help="anchor for the original-language text, target for aligned translations.",
    )
    ap.add_argument("--book", help="Book code override when building a single file.")
    ap.add_argument(
        "--default-sections",
        default=os.environ.get(DEFAULT_SECTIONS_ENV),
        help=(
            "JSON file with fallback translator sections "
            f"(default: ${DEFAULT_SECTIONS_ENV}, else the bundled table)."
        ),
    )
    ap.add_argument(
        "--force",
        action="store_true",
        help="Rebuild books whose source has not changed since the last build.",
    )
    return ap


def build_resolve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="quotelink resolve",
        description="Resolve a quote in the anchor resource and project it onto targets.",
    )
    _add_common_flags(ap)
    ap.add_argument("--anchor", required=True, help="Anchor resource id.")
    ap.add_argument("--ref", required=True, help='Reference range, e.g. "3JN 1:1-3".')
    ap.add_argument("--quote", required=True, help='Quote expression, sub-quotes joined by " & ".')
    ap.add_argument("--occurrence", type=int, default=1, help="Occurrence of the first sub-quote (default: 1).")
    ap.add_argument(
        "--target",
        action="append",
        default=[],
        help="Target resource id (repeatable; default: every target holding the book).",
    )
    ap.add_argument("--ellipsis", default=DEFAULT_ELLIPSIS, help="Gap marker for projected phrases.")
    ap.add_argument("--json", action="store_true", help="Print the result as JSON.")
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="quotelink web",
        description="Serve the quote and alignment API over HTTP.",
    )
    _add_common_flags(ap)
    ap.add_argument("--anchor", help="Anchor resource id (default: first anchor in the library).")
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=2047,
        help="Port for the web server (default: 2047).",
    )
    ap.add_argument("--ellipsis", default=DEFAULT_ELLIPSIS, help="Gap marker for projected phrases.")
    ap.add_argument(
        "--default-sections",
        default=os.environ.get(DEFAULT_SECTIONS_ENV),
        help="JSON file with fallback translator sections.",
    )
    return ap


def _require_root(args: argparse.Namespace) -> Path:
    if not args.root:
        raise SystemExit(f"Library root is required: pass --root or set {ROOT_ENV}.")
    return Path(args.root).expanduser().resolve()


def _load_section_table(path: str | None) -> DefaultSectionTable:
    if not path:
        return DefaultSectionTable.bundled()
    try:
        return DefaultSectionTable.load(Path(path).expanduser())
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Cannot load default sections: {exc}") from exc


def _run_build(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    root = _require_root(args)
    inputs = [Path(item).expanduser() for item in args.inputs]
    missing = [path for path in inputs if not path.exists()]
    if missing:
        raise SystemExit(f"Input not found: {missing[0]}")
    if args.book and len(inputs) > 1:
        raise SystemExit("--book can only be used with a single input file.")
    table = _load_section_table(args.default_sections)
    manifest = load_resource_manifest(root / args.resource)
    console = Console(stderr=True)
    results: list[tuple[str, BookStats | None, str]] = []

    progress = Progress(
        TextColumn("{task.description}", justify="left"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        TextColumn("{task.fields[detail]}", justify="left"),
        console=console,
        transient=False,
        disable=not console.is_terminal,
    )
    with progress:
        task = progress.add_task(f"Building {args.resource}", total=len(inputs), detail="")
        for path in inputs:
            progress.update(task, detail=path.name)
            try:
                source = load_book_source(path, book_code=args.book)
            except BookFormatError as exc:
                raise SystemExit(str(exc)) from exc
            digest = source_sha1(source.raw or {})
            previous = manifest.books.get(source.book_code) if manifest else None
            if not args.force and previous and previous.get("source_sha1") == digest:
                results.append((source.book_code, None, "unchanged"))
                progress.advance(task)
                continue
            try:
                book = build_book(source, role=args.role, default_sections=table)
                write_book_structure(root, args.resource, book, source_digest=digest)
            except (StructuralError, ValueError) as exc:
                raise SystemExit(f"{path.name}: {exc}") from exc
            results.append((book.book_code, book.stats, "built"))
            progress.advance(task)

    table_view = Table(title=f"{args.resource} ({args.role})")
    for column in ("Book", "Status", "Chapters", "Verses", "Paragraphs", "Sections", "Alignments", "Tokens"):
        table_view.add_column(column, justify="left" if column in ("Book", "Status") else "right")
    for code, stats, status in results:
        if stats is None:
            table_view.add_row(code, status, *([""] * 6))
            continue
        table_view.add_row(
            code,
            status,
            str(stats.chapters),
            str(stats.verses),
            str(stats.paragraphs),
            str(stats.sections),
            str(stats.alignments),
            str(stats.tokens),
        )
    Console().print(table_view)
    return 0


def _run_resolve(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    root = _require_root(args)
    if args.occurrence < 1:
        raise SystemExit("--occurrence must be >= 1.")
    try:
        reference = parse_reference(args.ref)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    library = ResourceLibrary(root)
    try:
        anchor_book = library.load(args.anchor, reference.book)
    except (ResourceNotFoundError, BookFormatError) as exc:
        raise SystemExit(str(exc)) from exc
    resolved = resolve_quote(anchor_book, args.quote, args.occurrence, reference)

    targets = list(args.target)
    if not targets and resolved.success:
        targets = [
            listing.resource
            for listing in library.target_resources()
            if reference.book in listing.books and listing.resource != args.anchor
        ]
    projections = {}
    if resolved.success:
        for resource in targets:
            try:
                index = library.index(resource, reference.book)
            except (ResourceNotFoundError, BookFormatError) as exc:
                raise SystemExit(str(exc)) from exc
            projections[resource] = project(resolved.anchor_ids, index, ellipsis=args.ellipsis)

    if args.json:
        payload: dict[str, object] = {
            "success": resolved.success,
            "reference": format_reference(reference),
            "matches": [
                {
                    "quote": match.quote,
                    "verse_ref": match.verse_ref,
                    "token_ids": [token.id for token in match.tokens],
                    "start": match.start,
                    "end": match.end,
                }
                for match in resolved.matches
            ],
            "targets": {
                resource: {"token_ids": list(item.token_ids), "phrase": item.phrase}
                for resource, item in projections.items()
            },
        }
        if not resolved.success:
            payload["error"] = resolved.error
            payload["error_kind"] = resolved.error_kind
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0 if resolved.success else 1

    console = Console()
    if not resolved.success:
        console.print(f"[red]{resolved.error}[/red]")
        return 1
    for match in resolved.matches:
        words = " ".join(token.text for token in match.tokens)
        console.print(f"[bold]{match.verse_ref}[/bold] {words}")
    for resource, item in projections.items():
        phrase = item.phrase or "[dim](no aligned words)[/dim]"
        console.print(f"[cyan]{resource}[/cyan]: {phrase}")
    return 0


def _run_web(args: argparse.Namespace) -> None:
    set_debug_logging(bool(args.debug))
    root = _require_root(args)
    config = WebConfig(
        root=root,
        anchor=args.anchor,
        ellipsis=args.ellipsis,
        default_sections=Path(args.default_sections).expanduser() if args.default_sections else None,
    )
    try:
        app = create_app(config)
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc
    print(f"Serving quotelink from {root}")
    print(f"API URL: http://{args.host}:{args.port}/api/resources")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info",
        log_config=build_uvicorn_log_config(),
    )


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "build":
        build_args = build_build_parser().parse_args(argv[1:])
        return _run_build(build_args)
    if argv and argv[0] == "resolve":
        resolve_args = build_resolve_parser().parse_args(argv[1:])
        return _run_resolve(resolve_args)
    if argv and argv[0] == "web":
        web_args = build_web_parser().parse_args(argv[1:])
        _run_web(web_args)
        return 0

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.error(f"unknown command: {argv[0]}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
