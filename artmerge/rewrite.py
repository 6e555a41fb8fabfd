from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .constants import DEFAULT_ASSET_EXTENSIONS, IDENTIFIER_ATTRS, IDENTIFIER_REF_ATTRS, PREFIXED_DEFINITION_TAGS, VIEW_TAG
from .layout import LayoutDocument
from .naming import clean_relative_path, identifier_prefix, name_variants, view_prefix
from .util import leaf_name, relpath_posix


AssetPredicate = Callable[[str], bool]


def make_asset_predicate(extensions: Iterable[str] = DEFAULT_ASSET_EXTENSIONS) -> AssetPredicate:
    """Build a predicate that accepts values ending in one of ``extensions``."""
    exts = sorted({("." + e.strip().lstrip(".")).lower() for e in extensions if e and e.strip().lstrip(".")})
    if not exts:
        return lambda _value: False
    pat = re.compile(r"(?:" + "|".join(re.escape(e) for e in exts) + r")\s*$", re.IGNORECASE)

    def _is_asset(value: str) -> bool:
        return bool(value) and bool(pat.search(value))

    return _is_asset


class FileReferenceMap:
    """Case-insensitive map from name variants to canonical output paths."""

    def __init__(self) -> None:
        self._map: Dict[str, str] = {}

    @staticmethod
    def _key(name: str) -> str:
        return (name or "").strip().casefold()

    def __len__(self) -> int:
        return len(self._map)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._key(name) in self._map

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._map.items())

    def get(self, name: str) -> Optional[str]:
        return self._map.get(self._key(name))

    def add(self, variant: str, path: str, *, overwrite: bool = True) -> None:
        k = self._key(variant)
        if not k:
            return
        if overwrite or k not in self._map:
            self._map[k] = path

    def add_asset(self, rel_path: str, dest: str) -> None:
        """Register every variant of one asset.

        Bare-filename forms keep the first asset that claimed them, so two
        files sharing a leaf name in different folders do not steal each
        other's full-path mappings.
        """
        rel = clean_relative_path(rel_path)
        leaf = leaf_name(rel)
        top_level = "/" not in rel
        bare = {self._key(leaf), self._key("./" + leaf), self._key(".\\" + leaf)}
        for v in name_variants(rel, dest):
            self.add(v, dest, overwrite=top_level or self._key(v) not in bare)

    def repoint(self, old_path: str, new_path: str) -> int:
        n = 0
        for k, v in self._map.items():
            if v == old_path:
                self._map[k] = new_path
                n += 1
        return n

    def fold_into(self, other: "FileReferenceMap") -> None:
        """Copy mappings into ``other`` without replacing what it already holds."""
        for k, v in self._map.items():
            other.add(k, v, overwrite=False)


def _exact(value: str) -> Optional[str]:
    return value


def _slash_normalized(value: str) -> Optional[str]:
    return relpath_posix(value)


def _bare_filename(value: str) -> Optional[str]:
    return leaf_name(value) or None


def _dot_slash_filename(value: str) -> Optional[str]:
    leaf = leaf_name(value)
    return ("./" + leaf) if leaf else None


def _dot_backslash_filename(value: str) -> Optional[str]:
    leaf = leaf_name(value)
    return (".\\" + leaf) if leaf else None


# Tried in this order; the first step that yields a mapped key wins.
LOOKUP_STEPS: Tuple[Callable[[str], Optional[str]], ...] = (
    _exact,
    _slash_normalized,
    _bare_filename,
    _dot_slash_filename,
    _dot_backslash_filename,
)


def lookup(value: str, maps: Sequence[FileReferenceMap]) -> Optional[str]:
    """Resolve ``value`` against ``maps`` (earlier maps take precedence)."""
    raw = (value or "").strip()
    if not raw:
        return None
    for m in maps:
        for step in LOOKUP_STEPS:
            key = step(raw)
            if not key:
                continue
            hit = m.get(key)
            if hit is not None:
                return hit
    return None


def prefix_identifiers(doc: LayoutDocument, label: str) -> Dict[str, str]:
    """Give every definition and view in ``doc`` a per-pack name.

    Element and group names become ``<label>__<name>`` and each ``element=`` /
    ``ref=`` attribute pointing at an old name follows it. Views get a readable
    ``<label> - <name>`` title; nothing refers to a view by name.

    Returns the old -> new identifier mapping.
    """
    prefix = identifier_prefix(label)
    renamed: Dict[str, str] = {}
    for tag in PREFIXED_DEFINITION_TAGS:
        for node in doc.definitions(tag):
            name = doc.get_attr(node, "name")
            if not name:
                continue
            new_name = prefix + name
            doc.set_attr(node, "name", new_name)
            renamed.setdefault(name, new_name)

    if renamed:
        for node in doc.iter_nodes():
            for attr in IDENTIFIER_REF_ATTRS:
                old = node.attrib.get(attr)
                if old is not None and old in renamed:
                    node.set(attr, renamed[old])

    vp = view_prefix(label)
    for node in doc.definitions(VIEW_TAG):
        name = doc.get_attr(node, "name")
        doc.set_attr(node, "name", vp + (name or ""))
    return renamed


@dataclass
class RewriteStats:
    rewritten: int = 0
    unchanged: int = 0
    unresolved: List[str] = field(default_factory=list)


_IDENTIFIER_ATTRS = frozenset(IDENTIFIER_ATTRS)


def rewrite_file_references(
    doc: LayoutDocument,
    maps: Sequence[FileReferenceMap],
    predicate: AssetPredicate,
) -> RewriteStats:
    """Point every asset-looking attribute at its canonical output path.

    Values with no match are left as they are; the verifier reports them.
    """
    stats = RewriteStats()
    for node in doc.iter_nodes():
        for attr, value in list(node.attrib.items()):
            if attr in _IDENTIFIER_ATTRS or not predicate(value):
                continue
            hit = lookup(value, maps)
            if hit is None:
                if value not in stats.unresolved:
                    stats.unresolved.append(value)
                continue
            if hit == value:
                stats.unchanged += 1
                continue
            node.set(attr, hit)
            stats.rewritten += 1
    return stats
