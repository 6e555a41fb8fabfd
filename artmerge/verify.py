from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from .archive import ArchiveError, ZipArchiveReader
from .constants import DEFAULT_LAYOUT_NAME, IDENTIFIER_ATTRS
from .layout import LayoutDocument, LayoutParseError
from .rewrite import AssetPredicate, make_asset_predicate
from .util import leaf_name, relpath_posix


_LOG = logging.getLogger("artmerge.verify")


@dataclass(frozen=True)
class Finding:
    kind: str  # "repaired" | "missing"
    reference: str
    repaired_to: Optional[str] = None


@dataclass
class VerifyReport:
    archive: str
    layout_name: str
    references: int = 0
    resolved: int = 0
    findings: List[Finding] = field(default_factory=list)

    @property
    def missing(self) -> List[Finding]:
        return [f for f in self.findings if f.kind == "missing"]

    @property
    def repaired(self) -> List[Finding]:
        return [f for f in self.findings if f.kind == "repaired"]

    @property
    def ok(self) -> bool:
        return not self.findings


def _normalize_ref(value: str) -> str:
    p = relpath_posix(value.strip())
    while p.startswith("./"):
        p = p[2:]
    return p.lstrip("/")


def collect_references(doc: LayoutDocument, predicate: AssetPredicate) -> List[str]:
    """Asset-looking attribute and text values in document order, without repeats.

    Identifier attributes (name, element, ref) are skipped, matching the rewriter.
    """
    refs: List[str] = []
    for node in doc.iter_nodes():
        values = [v for k, v in node.attrib.items() if k not in IDENTIFIER_ATTRS]
        if node.text and node.text.strip():
            values.append(node.text.strip())
        for v in values:
            if predicate(v) and v not in refs:
                refs.append(v)
    return refs


def find_by_leaf(reference: str, names: Sequence[str]) -> Optional[str]:
    leaf = leaf_name(reference).casefold()
    if not leaf:
        return None
    for n in names:
        if leaf_name(n).casefold() == leaf:
            return n
    return None


def verify_archive(
    path: Path,
    *,
    layout_name: str = DEFAULT_LAYOUT_NAME,
    predicate: Optional[AssetPredicate] = None,
    entry_name: str = "",
) -> VerifyReport:
    """Check that every asset reference in the archive's layout resolves.

    Unresolved references get a leaf-name repair attempt. Repairs are only
    reported: the archive is never rewritten here.
    """
    pred = predicate or make_asset_predicate()
    tag = entry_name or Path(path).stem
    report = VerifyReport(archive=str(path), layout_name=layout_name)

    try:
        with ZipArchiveReader(path) as reader:
            names = reader.names()
            layout_member = next((n for n in names if n.casefold() == layout_name.casefold()), None)
            if layout_member is None:
                report.findings.append(Finding(kind="missing", reference=layout_name))
                _LOG.error("[%s] Missing layout '%s' in %s", tag, layout_name, path)
                return report
            data = reader.read(layout_member)
    except ArchiveError as e:
        report.findings.append(Finding(kind="missing", reference=layout_name))
        _LOG.error("[%s] Cannot read output archive for verification: %s", tag, e)
        return report

    try:
        doc = LayoutDocument.from_bytes(data, source=f"{path}:{layout_name}")
    except LayoutParseError as e:
        report.findings.append(Finding(kind="missing", reference=layout_name))
        _LOG.error("[%s] Merged layout does not parse: %s", tag, e)
        return report

    name_set = set(names)
    for ref in collect_references(doc, pred):
        report.references += 1
        if _normalize_ref(ref) in name_set:
            report.resolved += 1
            continue
        hit = find_by_leaf(ref, names)
        if hit is not None:
            report.findings.append(Finding(kind="repaired", reference=ref, repaired_to=hit))
            _LOG.error("[%s] Unresolved reference '%s' repairable by filename -> '%s'", tag, ref, hit)
        else:
            report.findings.append(Finding(kind="missing", reference=ref))
            _LOG.error("[%s] Missing reference '%s'", tag, ref)
    return report
