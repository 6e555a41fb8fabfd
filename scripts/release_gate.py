#!/usr/bin/env python3
"""Release gate for artmerge.

Byte-compiles the package, runs the test suite, then ruff and mypy (unless
skipped), and finally packs a source-only zip under ./dist/.
"""

from __future__ import annotations

import argparse
import re
import subprocess
import sys
import zipfile
from pathlib import Path


_SKIP_TOP = {".git", ".venv", "venv", "build", "dist", "htmlcov", ".mypy_cache", ".ruff_cache", ".pytest_cache"}
_SKIP_SUFFIX = (".pyc", ".pyo", ".log", ".partial")


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _read_version(repo_root: Path) -> str:
    p = repo_root / "artmerge" / "__init__.py"
    m = re.search(r"__version__\s*=\s*['\"]([^'\"]+)['\"]", p.read_text(encoding="utf-8"))
    if not m:
        raise RuntimeError(f"Could not parse __version__ from {p}")
    return m.group(1)


def _run(cmd: list[str], *, cwd: Path) -> None:
    print("[release_gate] " + " ".join(cmd))
    subprocess.run(cmd, cwd=str(cwd), check=True)


def _is_excluded(rel_posix: str) -> bool:
    parts = rel_posix.split("/")
    if parts[0] in _SKIP_TOP:
        return True
    if any(p == "__pycache__" or p.endswith(".egg-info") for p in parts):
        return True
    base = parts[-1]
    if base in {".DS_Store", "Thumbs.db", ".coverage"}:
        return True
    return base.endswith(_SKIP_SUFFIX)


def _make_source_zip(repo_root: Path, out_zip: Path) -> int:
    out_zip.parent.mkdir(parents=True, exist_ok=True)
    if out_zip.exists():
        out_zip.unlink()
    n = 0
    with zipfile.ZipFile(out_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for abs_path in sorted(repo_root.rglob("*")):
            if abs_path.is_dir():
                continue
            rel_posix = abs_path.relative_to(repo_root).as_posix()
            if _is_excluded(rel_posix):
                continue
            zf.write(abs_path, rel_posix)
            n += 1
    return n


def main(argv: list[str] | None = None) -> int:
    repo_root = _repo_root()

    ap = argparse.ArgumentParser(description="Release gate: compile, tests, lint, typecheck, source zip")
    ap.add_argument("--skip-lint", action="store_true", help="Skip ruff and mypy.")
    ap.add_argument("--no-zip", action="store_true", help="Skip creating the source zip.")
    ap.add_argument("--outdir", default="dist", help="Output directory for artifacts (default: dist)")
    args = ap.parse_args(argv)

    version = _read_version(repo_root)
    outdir = (repo_root / args.outdir).resolve()
    print(f"[release_gate] repo: {repo_root}")
    print(f"[release_gate] python: {sys.executable}")
    print(f"[release_gate] version: {version}")

    _run([sys.executable, "-B", "-m", "compileall", "-q", "artmerge"], cwd=repo_root)
    print("[release_gate] compileall: ok")

    _run([sys.executable, "-m", "pytest", "-q"], cwd=repo_root)
    print("[release_gate] pytest: ok")

    _run([sys.executable, "-m", "artmerge", "--help"], cwd=repo_root)
    print("[release_gate] cli: ok")

    if args.skip_lint:
        print("[release_gate] ruff/mypy: skipped")
    else:
        print("[release_gate] tip: if ruff/mypy are missing, install: python -m pip install -e .[dev]")
        _run([sys.executable, "-m", "ruff", "check", ".", "--force-exclude"], cwd=repo_root)
        print("[release_gate] ruff: ok")
        # scope comes from [tool.mypy] files= in pyproject.toml
        _run([sys.executable, "-m", "mypy"], cwd=repo_root)
        print("[release_gate] mypy: ok")

    if not args.no_zip:
        out_zip = outdir / f"artmerge_v{version}_src.zip"
        n = _make_source_zip(repo_root, out_zip)
        size_kb = out_zip.stat().st_size / 1024
        print(f"[release_gate] source zip: {out_zip} ({n} files, {size_kb:.1f} KB)")

    print("[release_gate] all good")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
