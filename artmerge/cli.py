from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import ConfigError, MergeConfig, build_config, load_config_file
from .constants import DEFAULT_LAYOUT_NAME, DIGEST_CHOICES
from .index import build_catalog
from .merge import EntryState, RunSummary, merge_packs
from .rewrite import make_asset_predicate
from .util import dumps_pretty
from .verify import VerifyReport, verify_archive


def _add_pack_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--pack", action="append", default=[], help="Pack archive (zip or folder). Repeatable; order matters.")
    p.add_argument("--label", action="append", default=[], help="Label for the matching --pack (output subfolder). Repeatable.")
    p.add_argument("--config", default="", help="JSON settings file; command-line options override it.")
    p.add_argument("--json", action="store_true", help="Emit JSON output.")


def _config_from_args(args: argparse.Namespace) -> MergeConfig:
    file_values: Dict[str, Any] = {}
    cfg_path = str(getattr(args, "config", "") or "").strip()
    if cfg_path:
        file_values = load_config_file(Path(cfg_path))

    overrides: Dict[str, Any] = {
        "packs": list(getattr(args, "pack", []) or []),
        "labels": list(getattr(args, "label", []) or []),
    }
    for attr, key in (
        ("out", "out_dir"),
        ("scratch", "scratch_dir"),
        ("max", "max_entries"),
        ("layout_name", "layout_name"),
        ("digest", "digest"),
        ("log", "log_path"),
        ("error_log", "error_log_path"),
    ):
        overrides[key] = getattr(args, attr, None)
    if getattr(args, "overwrite", False):
        overrides["overwrite"] = True
    if getattr(args, "keep_scratch", False):
        overrides["cleanup_scratch"] = False
    if getattr(args, "no_dedup", False):
        overrides["dedup"] = False
    if getattr(args, "store", False):
        overrides["compression"] = "stored"
    return build_config(file_values, overrides)


def _cmd_merge(args: argparse.Namespace) -> int:
    from .app_logging import init_app_logging, shutdown_app_logging

    try:
        cfg = _config_from_args(args)
        cfg.validate()
    except ConfigError as e:
        print(f"CONFIG ERROR: {e}")
        return 2

    init_app_logging(cfg.run_log(), cfg.error_log())
    try:
        progress = None if args.json else print
        try:
            summary = merge_packs(cfg, progress=progress)
        except ConfigError as e:
            print(f"CONFIG ERROR: {e}")
            return 2
    finally:
        shutdown_app_logging()

    if args.json:
        print(dumps_pretty(summary))
    else:
        _print_merge_human(cfg, summary)
    return 0 if summary.ok else 1


def _print_merge_human(cfg: MergeConfig, s: RunSummary) -> None:
    print("")
    print("== artmerge: MERGE ==")
    print(f"Packs:        {', '.join(cfg.labels)}")
    print(f"Output:       {cfg.out_dir}")
    print(f"Entries:      {s.entries_found} found")
    print(f"Processed:    {s.processed}")
    print(f"Skipped:      {s.skipped}")
    print(f"Failed:       {s.failed}")
    print(f"Findings:     {s.findings}")
    failed = [r for r in s.results if r.state == EntryState.FAILED]
    if failed:
        print("")
        print(f"Failed entries ({len(failed)}):")
        for r in failed[:40]:
            print(f"  - {r.name}: {r.error}")
        if len(failed) > 40:
            print(f"  ... and {len(failed) - 40} more")
    print("")
    print(f"Run log:      {cfg.run_log()}")
    print(f"Error log:    {cfg.error_log()}")


def _cmd_index(args: argparse.Namespace) -> int:
    try:
        cfg = _config_from_args(args)
        if len(cfg.packs) != len(cfg.labels):
            raise ConfigError(f"Pack/label count mismatch: {len(cfg.packs)} pack(s) but {len(cfg.labels)} label(s)")
        catalog = build_catalog(cfg.make_packs(), nested_ext=cfg.nested_ext)
    except ConfigError as e:
        print(f"CONFIG ERROR: {e}")
        return 2

    if args.json:
        print(dumps_pretty(catalog.summary()))
        return 0

    print("== artmerge: INDEX ==")
    for p in catalog.packs:
        print(f"Pack {p.index}:       {p.label} ({p.path})")
    print(f"Entries:      {len(catalog.entries)}")
    print("")
    for e in catalog.entries:
        print(f"  {e.name}: {', '.join(e.pack_labels)}")
    if catalog.warnings:
        print("")
        print("Warnings:")
        for w in catalog.warnings:
            print(f"  - {w}")
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    predicate = make_asset_predicate()
    reports: List[VerifyReport] = []
    for path in args.archives:
        reports.append(verify_archive(Path(path), layout_name=args.layout_name, predicate=predicate))

    if args.json:
        print(dumps_pretty(reports))
    else:
        print("== artmerge: VERIFY ==")
        for r in reports:
            status = "ok" if r.ok else f"{len(r.missing)} missing, {len(r.repaired)} repairable"
            print(f"{r.archive}: {r.resolved}/{r.references} resolved ({status})")
            for f in r.findings:
                if f.kind == "repaired":
                    print(f"  - {f.reference} -> {f.repaired_to} (by filename)")
                else:
                    print(f"  - {f.reference} (missing)")
    return 0 if all(r.ok for r in reports) else 1


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="artmerge", description="artmerge (merge per-entry artwork archives from several packs).")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_merge = sub.add_parser("merge", help="Merge every catalog entry across the given packs.")
    _add_pack_args(p_merge)
    p_merge.add_argument("--out", default=None, help="Output folder for merged archives.")
    p_merge.add_argument("--scratch", default=None, help="Scratch folder for per-entry extraction (default: system temp).")
    p_merge.add_argument("--max", type=int, default=None, help="Process at most N entries (0 = unlimited).")
    p_merge.add_argument("--overwrite", action="store_true", help="Replace existing output archives.")
    p_merge.add_argument("--keep-scratch", action="store_true", help="Do not delete per-entry scratch folders.")
    p_merge.add_argument("--layout-name", default=None, help=f"Root-level layout file name (default: {DEFAULT_LAYOUT_NAME}).")
    p_merge.add_argument("--no-dedup", action="store_true", help="Copy every file even when the bytes are identical.")
    p_merge.add_argument("--digest", choices=list(DIGEST_CHOICES), default=None, help="Content hash used for dedup (default: sha1).")
    p_merge.add_argument("--store", action="store_true", help="Write output entries uncompressed.")
    p_merge.add_argument("--log", default=None, help="Run log file (append). Default: <out>/artmerge_run.log")
    p_merge.add_argument("--error-log", default=None, help="Errors-only log file (append). Default: <out>/artmerge_errors.log")
    p_merge.set_defaults(func=_cmd_merge)

    p_index = sub.add_parser("index", help="List catalog entries and the packs that contribute to each.")
    _add_pack_args(p_index)
    p_index.set_defaults(func=_cmd_index)

    p_verify = sub.add_parser("verify", help="Re-check asset references inside merged archives.")
    p_verify.add_argument("archives", nargs="+", help="Merged output archive(s).")
    p_verify.add_argument("--layout-name", default=DEFAULT_LAYOUT_NAME, help=f"Root-level layout file name (default: {DEFAULT_LAYOUT_NAME}).")
    p_verify.add_argument("--json", action="store_true", help="Emit JSON report.")
    p_verify.set_defaults(func=_cmd_verify)

    args = p.parse_args(argv)
    rv = args.func(args)
    if rv is None:
        return 0
    try:
        return int(rv)
    except (TypeError, ValueError):
        return 1
