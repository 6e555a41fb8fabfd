from __future__ import annotations

import logging
import os
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .archive import ArchiveEntry, ArchiveError, ArchiveReader, ZipArchiveReader, ZipArchiveWriter, open_archive
from .config import ConfigError, MergeConfig
from .constants import PARTIAL_SUFFIX, SCRATCH_PREFIX
from .content_store import ContentStore
from .file_utils import remove_file, remove_tree
from .index import Catalog, CatalogEntry, PackContribution, build_catalog
from .layout import LayoutDocument, LayoutMerger, LayoutParseError
from .naming import UnsafePathError, clean_relative_path, destination_path
from .rewrite import AssetPredicate, FileReferenceMap, make_asset_predicate, prefix_identifiers, rewrite_file_references
from .util import safe_identifier
from .verify import VerifyReport, verify_archive


_LOG = logging.getLogger("artmerge.merge")

ProgressFn = Callable[[str], None]


class MergeError(RuntimeError):
    pass


class EntryState(str, Enum):
    INIT = "init"
    EXTRACT = "extract_contribution"
    PARSE_LAYOUT = "parse_layout"
    COPY_ASSETS = "copy_assets"
    REWRITE_LAYOUT = "rewrite_layout"
    MERGE_INTO_OUTPUT = "merge_into_output"
    WRITE_MERGED_LAYOUT = "write_merged_layout"
    VERIFY = "verify"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class EntryResult:
    name: str
    packs: List[str] = field(default_factory=list)
    state: EntryState = EntryState.INIT
    output: Optional[str] = None
    files_written: int = 0
    files_deduplicated: int = 0
    layouts_merged: int = 0
    views_skipped: int = 0
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    failed_at: Optional[str] = None
    skip_reason: Optional[str] = None
    verify: Optional[VerifyReport] = None

    @property
    def ok(self) -> bool:
        return self.state == EntryState.DONE and (self.verify is None or self.verify.ok)


@dataclass
class RunSummary:
    entries_found: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    findings: int = 0
    results: List[EntryResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.findings == 0


@dataclass
class _RunContext:
    config: MergeConfig
    store: ContentStore
    predicate: AssetPredicate
    readers: Dict[int, ArchiveReader]
    scratch_root: Optional[Path]
    progress: Optional[ProgressFn] = None

    def emit(self, msg: str) -> None:
        if self.progress is None:
            return
        try:
            self.progress(msg)
        except Exception:
            # progress sinks are best-effort
            pass


def _enter(result: EntryResult, state: EntryState) -> None:
    result.state = state
    _LOG.debug("[%s] -> %s", result.name, state.value)


def _warn(result: EntryResult, msg: str) -> None:
    result.warnings.append(msg)
    _LOG.warning("[%s] %s", result.name, msg)


def _find_root_layout(entries: List[ArchiveEntry], layout_name: str) -> Optional[ArchiveEntry]:
    want = layout_name.casefold()
    for e in entries:
        name = e.name.lstrip("/")
        if "/" in name or "\\" in name:
            continue
        if name.casefold() == want:
            return e
    return None


def _copy_asset(
    entry: ArchiveEntry,
    contrib: PackContribution,
    *,
    ctx: _RunContext,
    namespace: str,
    writer: ZipArchiveWriter,
    refs: FileReferenceMap,
    claimed: Set[str],
    result: EntryResult,
) -> None:
    label = contrib.pack.label
    try:
        rel = clean_relative_path(entry.name)
    except UnsafePathError as e:
        _warn(result, f"{label}: skipping {entry.name!r}: {e}")
        return
    dest = destination_path(label, rel)
    # A repeated member must not touch the reference map or the content store.
    if dest in claimed or dest in writer:
        _warn(result, f"{label}: duplicate member {entry.name!r} in {contrib.member_name}; keeping the first")
        return
    claimed.add(dest)
    try:
        data = entry.read()
    except ArchiveError as e:
        _warn(result, f"{label}: unreadable entry {entry.name!r}: {e}")
        return

    # Variants point at our own destination first; dedup may repoint them.
    refs.add_asset(rel, dest)

    canonical = dest
    if ctx.store.enabled:
        canonical = ctx.store.resolve(ctx.store.digest(data), dest, namespace=namespace)
    if canonical != dest:
        refs.repoint(dest, canonical)
        result.files_deduplicated += 1
        _LOG.debug("[%s] %s is identical to %s; not copied", result.name, dest, canonical)
        return

    writer.write(dest, data)
    result.files_written += 1


def _merge_contribution(
    contrib: PackContribution,
    *,
    ctx: _RunContext,
    namespace: str,
    scratch: Path,
    writer: ZipArchiveWriter,
    merger: LayoutMerger,
    entry_refs: FileReferenceMap,
    result: EntryResult,
) -> bool:
    """Fold one pack's nested archive into the output; False if it could not be opened."""
    label = contrib.pack.label
    layout_name = ctx.config.layout_name

    _enter(result, EntryState.EXTRACT)
    reader = ctx.readers[contrib.pack.index]
    work_dir = scratch / f"{contrib.pack.index:02d}_{safe_identifier(label) or 'pack'}"
    try:
        nested_path = reader.extract_member(contrib.member_name, work_dir)
        nested = ZipArchiveReader(nested_path)
    except ArchiveError as e:
        _warn(result, f"{label}: cannot open nested archive {contrib.member_name}: {e}")
        return False

    doc: Optional[LayoutDocument] = None
    refs = FileReferenceMap()
    claimed: Set[str] = set()
    with nested:
        files = [e for e in nested.entries() if not e.is_dir]

        _enter(result, EntryState.PARSE_LAYOUT)
        layout_entry = _find_root_layout(files, layout_name)
        if layout_entry is None:
            _LOG.info("[%s] %s: no %s; copying assets only", result.name, label, layout_name)
        else:
            try:
                doc = LayoutDocument.from_bytes(layout_entry.read(), source=f"{label}:{contrib.member_name}/{layout_entry.name}")
            except (LayoutParseError, ArchiveError) as e:
                _warn(result, f"{label}: layout omitted: {e}")
                doc = None

        _enter(result, EntryState.COPY_ASSETS)
        for e in files:
            if e is layout_entry:
                continue
            _copy_asset(e, contrib, ctx=ctx, namespace=namespace, writer=writer, refs=refs, claimed=claimed, result=result)

    if doc is not None:
        _enter(result, EntryState.REWRITE_LAYOUT)
        renamed = prefix_identifiers(doc, label)
        stats = rewrite_file_references(doc, [refs, entry_refs], ctx.predicate)
        _LOG.info(
            "[%s] %s: %d identifier(s) prefixed, %d reference(s) rewritten, %d unresolved",
            result.name,
            label,
            len(renamed),
            stats.rewritten,
            len(stats.unresolved),
        )

        _enter(result, EntryState.MERGE_INTO_OUTPUT)
        before = merger.counts.duplicate_views
        merger.add_contribution(doc)
        result.layouts_merged += 1
        result.views_skipped += merger.counts.duplicate_views - before

    refs.fold_into(entry_refs)
    return True


def merge_entry(entry: CatalogEntry, ctx: _RunContext) -> EntryResult:
    """Build one output archive from every contribution of ``entry``.

    Never raises: failures are recorded on the returned result.
    """
    cfg = ctx.config
    result = EntryResult(name=entry.name, packs=entry.pack_labels)
    out_path = Path(cfg.out_dir) / f"{entry.name}{cfg.nested_ext}"
    result.output = str(out_path)

    if out_path.exists() and not cfg.overwrite:
        result.state = EntryState.SKIPPED
        result.skip_reason = "output exists"
        _LOG.info("[%s] Output exists, skipping (overwrite disabled): %s", entry.name, out_path)
        return result

    partial = out_path.with_name(out_path.name + PARTIAL_SUFFIX)
    scratch: Optional[Path] = None
    try:
        scratch = Path(tempfile.mkdtemp(prefix=f"{SCRATCH_PREFIX}{safe_identifier(entry.name) or 'entry'}_", dir=ctx.scratch_root))
        _LOG.info("[%s] Merging %d contribution(s): %s", entry.name, len(entry.contributions), ", ".join(entry.pack_labels))

        merger = LayoutMerger()
        entry_refs = FileReferenceMap()
        remove_file(partial)
        with ZipArchiveWriter(partial, compression=cfg.compression) as writer:
            opened = 0
            for contrib in entry.contributions:
                opened += _merge_contribution(
                    contrib,
                    ctx=ctx,
                    namespace=entry.key,
                    scratch=scratch,
                    writer=writer,
                    merger=merger,
                    entry_refs=entry_refs,
                    result=result,
                )
            if not opened:
                raise MergeError(f"No readable contribution among {len(entry.contributions)} pack(s)")

            _enter(result, EntryState.WRITE_MERGED_LAYOUT)
            writer.write(cfg.layout_name, merger.finish().to_bytes())
            written_bytes = writer.bytes_written

        os.replace(partial, out_path)

        _enter(result, EntryState.VERIFY)
        result.verify = verify_archive(out_path, layout_name=cfg.layout_name, predicate=ctx.predicate, entry_name=entry.name)
        _enter(result, EntryState.DONE)
        _LOG.info(
            "[%s] Done: %d file(s) written (%d bytes), %d deduplicated, %d layout(s) merged, %d finding(s)",
            entry.name,
            result.files_written,
            written_bytes,
            result.files_deduplicated,
            result.layouts_merged,
            len(result.verify.findings),
        )
    except Exception as e:
        result.failed_at = result.state.value
        result.state = EntryState.FAILED
        result.error = f"{type(e).__name__}: {e}"
        _LOG.error("[%s] Failed during %s: %s", entry.name, result.failed_at, result.error, exc_info=True)
    finally:
        remove_file(partial)
        if scratch is not None:
            if cfg.cleanup_scratch:
                if not remove_tree(scratch):
                    _LOG.warning("[%s] Could not remove scratch dir %s", entry.name, scratch)
            else:
                _LOG.info("[%s] Keeping scratch dir %s", entry.name, scratch)
    return result


def merge_packs(
    config: MergeConfig,
    *,
    store: Optional[ContentStore] = None,
    catalog: Optional[Catalog] = None,
    progress: Optional[ProgressFn] = None,
) -> RunSummary:
    """Merge every catalog entry found in the configured packs.

    Entries are processed one at a time in sorted order. A failing entry is
    logged and the run moves on; only configuration errors abort.
    """
    config.validate()
    packs = config.make_packs()
    if catalog is None:
        catalog = build_catalog(packs, nested_ext=config.nested_ext)
    if store is None:
        store = ContentStore(config.digest, enabled=config.dedup)

    out_dir = Path(config.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    scratch_root = Path(config.scratch_dir) if config.scratch_dir else None
    if scratch_root is not None:
        scratch_root.mkdir(parents=True, exist_ok=True)

    summary = RunSummary(entries_found=len(catalog.entries), warnings=list(catalog.warnings))
    cap = int(config.max_entries or 0)
    _LOG.info(
        "Run: %d pack(s), %d catalog entr%s, cap=%s, dedup=%s (%s), out=%s",
        len(packs),
        len(catalog.entries),
        "y" if len(catalog.entries) == 1 else "ies",
        cap or "none",
        "on" if store.enabled else "off",
        store.algorithm,
        out_dir,
    )

    with ExitStack() as stack:
        readers: Dict[int, ArchiveReader] = {}
        for p in packs:
            try:
                readers[p.index] = stack.enter_context(open_archive(p.path))
            except ArchiveError as e:
                raise ConfigError(f"Cannot open pack '{p.label}': {e}") from e

        ctx = _RunContext(config=config, store=store, predicate=make_asset_predicate(config.asset_extensions), readers=readers, scratch_root=scratch_root, progress=progress)

        for i, entry in enumerate(catalog.entries):
            if cap and i >= cap:
                res = EntryResult(name=entry.name, packs=entry.pack_labels, state=EntryState.SKIPPED, skip_reason="processing cap")
                summary.results.append(res)
                summary.skipped += 1
                continue

            ctx.emit(f"[{i + 1}/{len(catalog.entries)}] {entry.name} ({', '.join(entry.pack_labels)})")
            res = merge_entry(entry, ctx)
            summary.results.append(res)
            if res.state == EntryState.SKIPPED:
                summary.skipped += 1
            elif res.state == EntryState.FAILED:
                summary.failed += 1
                ctx.emit(f"  FAILED: {res.error}")
            else:
                summary.processed += 1
                if res.verify is not None and res.verify.findings:
                    summary.findings += len(res.verify.findings)
                    ctx.emit(f"  {len(res.verify.findings)} unresolved reference(s); see error log")

    if cap and len(catalog.entries) > cap:
        _LOG.info("Processing cap %d reached; %d entr(ies) not processed", cap, len(catalog.entries) - cap)
    _LOG.info(
        "Finished: %d processed, %d skipped, %d failed, %d verifier finding(s)",
        summary.processed,
        summary.skipped,
        summary.failed,
        summary.findings,
    )
    return summary
