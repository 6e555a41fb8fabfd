from __future__ import annotations

import json
import runpy
import sys
import zipfile
from pathlib import Path

import pytest

import artmerge.cli as cli
from tests.conftest import layout_xml
from tests.fixtures.fake_packs import PNG_A, make_pack


def test_cli_help_exits_zero(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as e:
        cli.main(["--help"])
    assert int(e.value.code or 0) == 0
    assert "artmerge" in capsys.readouterr().out


def test_cli_merge_json_smoke(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    a = make_pack(tmp_path, "A", {"mario": {"bezel.png": PNG_A, "default.lay": layout_xml()}})
    b = make_pack(tmp_path, "B", {"mario": {"bezel.png": PNG_A, "default.lay": layout_xml()}})
    out_dir = tmp_path / "out"

    rc = cli.main(
        [
            "merge",
            "--pack", str(a.path), "--label", "A",
            "--pack", str(b.path), "--label", "B",
            "--out", str(out_dir),
            "--scratch", str(tmp_path / "scratch"),
            "--json",
        ]
    )
    assert int(rc) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["processed"] == 1
    assert data["results"][0]["state"] == "done"
    assert data["results"][0]["files_deduplicated"] == 1
    assert (out_dir / "mario.zip").exists()
    assert (out_dir / "artmerge_run.log").exists()


def test_cli_merge_human_output_and_findings_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    a = make_pack(tmp_path, "A", {"mario": {"bezel.png": PNG_A, "default.lay": layout_xml(file="missing.png")}})

    rc = cli.main(["merge", "--pack", str(a.path), "--label", "A", "--out", str(tmp_path / "out"), "--max", "1"])
    assert int(rc) == 1
    out = capsys.readouterr().out
    assert "MERGE" in out
    assert "Findings:     1" in out


def test_cli_merge_config_error_exits_two(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    a = make_pack(tmp_path, "A", {"mario": {"bezel.png": PNG_A}})
    rc = cli.main(["merge", "--pack", str(a.path), "--out", str(tmp_path / "out")])
    assert int(rc) == 2
    assert "CONFIG ERROR" in capsys.readouterr().out


def test_cli_merge_reads_settings_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    a = make_pack(tmp_path, "A", {"alpha": {"x.png": b"1"}, "beta": {"y.png": b"2"}})
    settings = tmp_path / "settings.json"
    settings.write_text(
        json.dumps({"packs": [str(a.path)], "labels": ["A"], "out_dir": str(tmp_path / "out"), "max_entries": 1}),
        encoding="utf-8",
    )

    rc = cli.main(["merge", "--config", str(settings), "--json"])
    assert int(rc) == 0
    data = json.loads(capsys.readouterr().out)
    assert (data["processed"], data["skipped"]) == (1, 1)


def test_cli_index_lists_entries(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    a = make_pack(tmp_path, "A", {"mario": {"x.png": b"1"}, "zelda": {"y.png": b"2"}})
    b = make_pack(tmp_path, "B", {"Mario": {"z.png": b"3"}})

    rc = cli.main(["index", "--pack", str(a.path), "--label", "A", "--pack", str(b.path), "--label", "B", "--json"])
    assert int(rc) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["entry_count"] == 2
    assert data["entries"][0]["packs"] == ["A", "B"]

    rc = cli.main(["index", "--pack", str(a.path), "--label", "A"])
    assert int(rc) == 0
    out = capsys.readouterr().out
    assert "INDEX" in out
    assert "zelda: A" in out


def test_cli_verify_exit_codes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    good = tmp_path / "good.zip"
    with zipfile.ZipFile(good, "w") as zf:
        zf.writestr("default.lay", layout_xml(file="A/bezel.png"))
        zf.writestr("A/bezel.png", PNG_A)
    bad = tmp_path / "bad.zip"
    with zipfile.ZipFile(bad, "w") as zf:
        zf.writestr("default.lay", layout_xml(file="A/gone.png"))

    assert int(cli.main(["verify", str(good)])) == 0
    assert "1/1 resolved (ok)" in capsys.readouterr().out

    assert int(cli.main(["verify", str(good), str(bad), "--json"])) == 1
    data = json.loads(capsys.readouterr().out)
    assert [len(r["findings"]) for r in data] == [0, 1]


def test_python_m_artmerge_help_executes___main__(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(sys, "argv", ["artmerge", "--help"])
    with pytest.raises(SystemExit) as e:
        runpy.run_module("artmerge", run_name="__main__")
    assert int(e.value.code or 0) == 0
    assert "artmerge" in capsys.readouterr().out
