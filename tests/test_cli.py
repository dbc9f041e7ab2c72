from __future__ import annotations

import json
from pathlib import Path

import pytest

from quotelink import cli
from quotelink.book_io import load_book_structure, load_resource_manifest
from quotelink.structure import ROLE_ANCHOR

from usfm_samples import anchor_payload, target_payload


def _write_source(tmp_path: Path, name: str, payload: dict[str, object]) -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


def test_build_writes_books_and_manifest(tmp_path: Path) -> None:
    root = tmp_path / "library"
    source = _write_source(tmp_path, "65-3JN.json", anchor_payload(with_sections=True))
    code = cli.main(["build", str(source), "--root", str(root), "--resource", "ugnt", "--role", "anchor"])
    assert code == 0
    book = load_book_structure(root / "ugnt" / "3JN.json")
    assert book.role == ROLE_ANCHOR
    assert len(book.sections) == 2
    manifest = load_resource_manifest(root / "ugnt")
    assert manifest is not None and manifest.role == ROLE_ANCHOR
    assert "source_sha1" in manifest.books["3JN"]


def test_build_skips_unchanged_sources_unless_forced(tmp_path: Path) -> None:
    root = tmp_path / "library"
    source = _write_source(tmp_path, "3JN.json", target_payload())
    args = ["build", str(source), "--root", str(root), "--resource", "ult"]
    assert cli.main(args) == 0
    book_path = root / "ult" / "3JN.json"
    book_path.unlink()
    assert cli.main(args) == 0
    assert not book_path.exists()
    assert cli.main([*args, "--force"]) == 0
    assert book_path.exists()


def test_build_rejects_role_change(tmp_path: Path) -> None:
    root = tmp_path / "library"
    source = _write_source(tmp_path, "3JN.json", target_payload())
    cli.main(["build", str(source), "--root", str(root), "--resource", "ult"])
    with pytest.raises(SystemExit):
        cli.main(["build", str(source), "--root", str(root), "--resource", "ult", "--role", "anchor", "--force"])


def test_build_requires_existing_inputs(tmp_path: Path) -> None:
    with pytest.raises(SystemExit, match="Input not found"):
        cli.main(["build", str(tmp_path / "missing.json"), "--root", str(tmp_path), "--resource", "ult"])


def test_root_is_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(cli.ROOT_ENV, raising=False)
    with pytest.raises(SystemExit, match="Library root is required"):
        cli.main(["resolve", "--anchor", "ugnt", "--ref", "3JN 1:1", "--quote", "Γαΐῳ"])


def test_root_defaults_to_environment(monkeypatch: pytest.MonkeyPatch, library_root: Path, capsys) -> None:
    monkeypatch.setenv(cli.ROOT_ENV, str(library_root))
    code = cli.main(["resolve", "--anchor", "ugnt", "--ref", "3JN 1:1", "--quote", "ὁ", "--json"])
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["targets"]["ult"]["phrase"] == "The"


def test_resolve_json_projects_onto_targets(library_root: Path, capsys) -> None:
    code = cli.main(
        [
            "resolve",
            "--root",
            str(library_root),
            "--anchor",
            "ugnt",
            "--ref",
            "3JN 1:1",
            "--quote",
            "Γαΐῳ & τῷ & ἀγαπητῷ",
            "--json",
        ]
    )
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is True
    assert payload["reference"] == "3JN 1:1"
    assert [match["quote"] for match in payload["matches"]] == ["Γαΐῳ", "τῷ", "ἀγαπητῷ"]
    assert payload["targets"] == {"ult": {"token_ids": [3, 4, 6, 7], "phrase": "to Gaius, the beloved"}}


def test_resolve_json_reports_failure(library_root: Path, capsys) -> None:
    code = cli.main(
        [
            "resolve",
            "--root",
            str(library_root),
            "--anchor",
            "ugnt",
            "--ref",
            "3JN 1:1",
            "--quote",
            "nonexistent",
            "--json",
        ]
    )
    assert code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is False
    assert payload["error_kind"] == "quote_not_found"
    assert payload["targets"] == {}


def test_resolve_custom_ellipsis(library_root: Path, capsys) -> None:
    args = ["resolve", "--root", str(library_root), "--anchor", "ugnt", "--ref", "3JN 1:1"]
    code = cli.main([*args, "--quote", "ὁ & ἀγαπητῷ", "--ellipsis", "…", "--target", "ult", "--json"])
    assert code == 0
    assert json.loads(capsys.readouterr().out)["targets"]["ult"]["phrase"] == "The … beloved"


@pytest.mark.parametrize(
    "extra",
    [
        ["--ref", "not a ref", "--quote", "ὁ"],
        ["--ref", "3JN 1:1", "--quote", "ὁ", "--occurrence", "0"],
        ["--ref", "ROM 1:1", "--quote", "ὁ"],
    ],
)
def test_resolve_bad_input_exits(library_root: Path, extra: list[str]) -> None:
    with pytest.raises(SystemExit):
        cli.main(["resolve", "--root", str(library_root), "--anchor", "ugnt", *extra])


def test_web_runs_uvicorn_with_config(monkeypatch: pytest.MonkeyPatch, library_root: Path) -> None:
    calls: list[dict[str, object]] = []

    def fake_run(app, **kwargs):
        calls.append({"app": app, **kwargs})

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    assert cli.main(["web", "--root", str(library_root), "--port", "9000", "--anchor", "ugnt"]) == 0
    assert len(calls) == 1
    assert calls[0]["port"] == 9000
    assert calls[0]["host"] == "127.0.0.1"
    assert calls[0]["app"].state.config.anchor == "ugnt"
    formatter = calls[0]["log_config"]["formatters"]["access"]["()"]
    assert formatter == "quotelink.logging_utils.Utf8AccessFormatter"


def test_unknown_command_errors() -> None:
    with pytest.raises(SystemExit):
        cli.main(["frobnicate"])
