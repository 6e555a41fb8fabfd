from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .archive import ArchiveError, open_archive
from .constants import NESTED_ARCHIVE_EXT
from .util import leaf_name


_LOG = logging.getLogger("artmerge.index")


class ConfigError(ValueError):
    """Fatal configuration problem detected before any processing."""

    pass


@dataclass(frozen=True)
class Pack:
    index: int
    label: str
    path: Path


@dataclass(frozen=True)
class PackContribution:
    pack: Pack
    member_name: str


@dataclass
class CatalogEntry:
    key: str  # case-folded identifier
    name: str  # first spelling seen; used for the output file name
    contributions: List[PackContribution] = field(default_factory=list)

    @property
    def pack_labels(self) -> List[str]:
        return [c.pack.label for c in self.contributions]


@dataclass
class Catalog:
    packs: List[Pack]
    entries: List[CatalogEntry]
    warnings: List[str] = field(default_factory=list)

    def get(self, name: str) -> Optional[CatalogEntry]:
        k = (name or "").casefold()
        for e in self.entries:
            if e.key == k:
                return e
        return None

    def summary(self) -> dict:
        return {
            "packs": [{"index": p.index, "label": p.label, "path": str(p.path)} for p in self.packs],
            "entry_count": len(self.entries),
            "entries": [
                {"name": e.name, "packs": e.pack_labels, "members": [c.member_name for c in e.contributions]}
                for e in self.entries
            ],
            "warnings": list(self.warnings),
        }


def make_packs(paths: Sequence[Union[Path, str]], labels: Sequence[str]) -> List[Pack]:
    if len(paths) != len(labels):
        raise ConfigError(f"Pack/label count mismatch: {len(paths)} pack(s) but {len(labels)} label(s)")
    packs: List[Pack] = []
    for i, (p, lab) in enumerate(zip(paths, labels)):
        pp = Path(p).expanduser()
        if not pp.exists():
            raise ConfigError(f"Pack archive does not exist: {pp}")
        packs.append(Pack(index=i, label=str(lab), path=pp))
    return packs


def _entry_base_name(member: str, nested_ext: str) -> str:
    leaf = leaf_name(member)
    return leaf[: len(leaf) - len(nested_ext)]


def build_catalog(packs: Sequence[Pack], *, nested_ext: str = NESTED_ARCHIVE_EXT) -> Catalog:
    """Scan every pack once and group nested archives by base filename.

    Entries come back sorted case-insensitively so runs are reproducible
    regardless of pack scan order.
    """
    ext = nested_ext.lower()
    by_key: Dict[str, CatalogEntry] = {}
    warnings: List[str] = []

    for pack in packs:
        try:
            reader = open_archive(pack.path)
        except ArchiveError as e:
            raise ConfigError(f"Cannot read pack '{pack.label}': {e}") from e
        found = 0
        with reader:
            for entry in reader.entries():
                if entry.is_dir or not entry.name.lower().endswith(ext):
                    continue
                base = _entry_base_name(entry.name, ext)
                if not base:
                    continue
                key = base.casefold()
                cat = by_key.get(key)
                if cat is None:
                    cat = CatalogEntry(key=key, name=base)
                    by_key[key] = cat
                dup = next((c for c in cat.contributions if c.pack.index == pack.index), None)
                if dup is not None:
                    msg = (
                        f"Pack '{pack.label}' contains '{base}' more than once "
                        f"(keeping {dup.member_name}, ignoring {entry.name})"
                    )
                    warnings.append(msg)
                    _LOG.warning(msg)
                    continue
                cat.contributions.append(PackContribution(pack=pack, member_name=entry.name))
                found += 1
        _LOG.info("Indexed pack '%s': %d nested archive(s) (%s)", pack.label, found, pack.path)

    entries = sorted(by_key.values(), key=lambda e: (e.name.casefold(), e.name))
    return Catalog(packs=list(packs), entries=entries, warnings=warnings)
