"""CLI tests for btmdump."""

import json
import logging
import sys

import pytest

from btmdump import cli


def _run_cli(args, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["btmdump"] + args)
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    return excinfo.value.code


@pytest.fixture(autouse=True)
def _restore_logger_level():
    """--quiet lowers the package logger level; undo it between tests."""
    logger = logging.getLogger("btmdump")
    level = logger.level
    yield
    logger.setLevel(level)


@pytest.fixture
def store_file(tmp_path, v1_tree):
    import plistlib

    path = tmp_path / "BackgroundItems-v4.btm"
    path.write_bytes(plistlib.dumps(v1_tree, fmt=plistlib.FMT_BINARY))
    return path


def test_text_dump_ok(store_file, monkeypatch, capsys):
    code = _run_cli([str(store_file)], monkeypatch)
    assert code == 0
    captured = capsys.readouterr()
    lines = captured.out.splitlines()
    assert lines[0] == f"path: {store_file}"
    assert "version: 1" in lines
    assert "[OK] Decoded 3 record(s) for 2 owner(s)" in captured.err


def test_json_dump(store_file, monkeypatch, capsys):
    code = _run_cli([str(store_file), "--json", "--quiet"], monkeypatch)
    assert code == 0
    captured = capsys.readouterr()
    data = json.loads(captured.out)
    assert data["path"] == str(store_file)
    assert data["version"] == 1
    assert sorted(data["itemsByOwner"]) == ["*", "501"]
    assert captured.err == ""


def test_json_indent(store_file, monkeypatch, capsys):
    _run_cli([str(store_file), "--json", "--indent", "2", "--quiet"], monkeypatch)
    out = capsys.readouterr().out
    assert out.startswith("{\n  ")
    assert json.loads(out)["version"] == 1


def test_output_file(store_file, tmp_path, monkeypatch, capsys):
    target = tmp_path / "out" / "dump.json"
    code = _run_cli([str(store_file), "--json", "--output", str(target)], monkeypatch)
    assert code == 0
    captured = capsys.readouterr()
    assert captured.out == ""
    assert f"Output: {target}" in captured.err
    assert json.loads(target.read_text(encoding="utf-8"))["version"] == 1


def test_default_store_from_environment(store_file, monkeypatch, capsys):
    monkeypatch.setenv("BTMDUMP_STORE_DIR", str(store_file.parent))
    code = _run_cli(["--quiet"], monkeypatch)
    assert code == 0
    assert capsys.readouterr().out.splitlines()[0] == f"path: {store_file}"


def test_missing_store_fails(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("BTMDUMP_STORE_DIR", str(tmp_path))
    code = _run_cli([], monkeypatch)
    assert code == 1
    assert "Error:" in capsys.readouterr().err


def test_corrupt_store_fails(tmp_path, monkeypatch, capsys):
    path = tmp_path / "BackgroundItems-v4.btm"
    path.write_bytes(b"not a plist at all")
    code = _run_cli([str(path)], monkeypatch)
    assert code == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Error:" in captured.err


def test_partial_store_reports_issues(tmp_path, builder, monkeypatch, capsys):
    item = builder.add_item(identifier="com.example.bad", url=builder.add_url("not a url"))
    root = builder.add_obj("Storage", items=builder.add_array([item]))
    path = tmp_path / "BackgroundItems-v4.btm"
    path.write_bytes(builder.to_bytes(root))

    code = _run_cli([str(path)], monkeypatch)
    assert code == 0
    err = capsys.readouterr().err
    assert "[PARTIAL] Decoded 1 record(s) for 1 owner(s)" in err
    assert "com.example.bad: INVALID_URL" in err


def test_version_flag(monkeypatch, capsys):
    code = _run_cli(["--version"], monkeypatch)
    assert code == 0
    assert capsys.readouterr().out.startswith("btmdump ")
