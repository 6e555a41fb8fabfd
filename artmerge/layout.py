from __future__ import annotations

import codecs
import copy
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set

from .constants import PREFIXED_DEFINITION_TAGS, VIEW_TAG


_WS_RE = re.compile(r"\s+")
_BETWEEN_TAGS_RE = re.compile(r">\s+<")


class LayoutParseError(ValueError):
    pass


def _strip_bom(data: bytes) -> bytes:
    """Drop a leading byte-order mark and any whitespace before the prolog."""
    for bom, enc in ((codecs.BOM_UTF8, "utf-8"), (codecs.BOM_UTF16_LE, "utf-16-le"), (codecs.BOM_UTF16_BE, "utf-16-be")):
        if data.startswith(bom):
            if enc == "utf-8":
                return data[len(bom):].lstrip()
            # Re-encode UTF-16 input so the parser only ever sees UTF-8.
            text = data[len(bom):].decode(enc)
            text = re.sub(r"^\s*<\?xml[^>]*\?>", "", text.lstrip())
            return text.encode("utf-8").lstrip()
    return data.lstrip()


class LayoutDocument:
    """An attributed tree loaded from (and serialised back to) layout markup."""

    def __init__(self, root: ET.Element, *, source: str = "") -> None:
        self.root = root
        self.source = source

    @classmethod
    def from_bytes(cls, data: bytes, *, source: str = "") -> "LayoutDocument":
        try:
            root = ET.fromstring(_strip_bom(data))
        except ET.ParseError as e:
            raise LayoutParseError(f"Layout parse failed: {source or '<bytes>'}: {e}") from e
        except UnicodeDecodeError as e:
            raise LayoutParseError(f"Layout decode failed: {source or '<bytes>'}: {e}") from e
        return cls(root, source=source)

    @classmethod
    def new(cls, root_tag: str = "mamelayout", attrib: Optional[Dict[str, str]] = None) -> "LayoutDocument":
        return cls(ET.Element(root_tag, dict(attrib if attrib is not None else {"version": "2"})))

    def iter_tag(self, tag: str) -> Iterator[ET.Element]:
        """All nodes named ``tag`` anywhere in the tree (root included)."""
        return self.root.iter(tag)

    def iter_nodes(self) -> Iterator[ET.Element]:
        return self.root.iter()

    def definitions(self, tag: str) -> List[ET.Element]:
        """Top-level children named ``tag`` in document order."""
        return [ch for ch in list(self.root) if ch.tag == tag]

    @staticmethod
    def get_attr(node: ET.Element, name: str) -> Optional[str]:
        return node.attrib.get(name)

    @staticmethod
    def set_attr(node: ET.Element, name: str, value: str) -> None:
        node.set(name, value)

    def import_node(self, node: ET.Element) -> ET.Element:
        """Append a deep copy of ``node`` (full subtree) under the root."""
        clone = copy.deepcopy(node)
        clone.tail = None
        self.root.append(clone)
        return clone

    def to_bytes(self) -> bytes:
        # Avoid mutating the in-memory tree used for further merging.
        root_copy = copy.deepcopy(self.root)
        ET.indent(root_copy, space="  ", level=0)
        data = ET.tostring(root_copy, encoding="UTF-8", xml_declaration=True)
        data = data.replace(b"\r\n", b"\n").replace(b"\r", b"\n")
        if not data.endswith(b"\n"):
            data += b"\n"
        return data


def normalized_signature(node: ET.Element) -> str:
    """Serialise a subtree with all whitespace runs collapsed.

    Two views that only differ in indentation or line breaks share a signature.
    """
    clone = copy.deepcopy(node)
    clone.tail = None
    for el in clone.iter():
        if el.text is not None:
            el.text = _WS_RE.sub(" ", el.text).strip() or None
        if el.tail is not None:
            el.tail = _WS_RE.sub(" ", el.tail).strip() or None
    text = ET.tostring(clone, encoding="unicode")
    text = _BETWEEN_TAGS_RE.sub("><", text)
    return _WS_RE.sub(" ", text).strip()


@dataclass
class MergeCounts:
    definitions: int = 0
    views: int = 0
    duplicate_views: int = 0
    documents: int = 0


class LayoutMerger:
    """Accumulate rewritten layout contributions into one document."""

    def __init__(self, document: Optional[LayoutDocument] = None) -> None:
        self.document = document
        self.counts = MergeCounts()
        self._view_signatures: Set[str] = set()

    def _ensure_document(self, template: Optional[LayoutDocument] = None) -> LayoutDocument:
        if self.document is None:
            if template is not None:
                self.document = LayoutDocument.new(template.root.tag, dict(template.root.attrib))
            else:
                self.document = LayoutDocument.new()
        return self.document

    def add_view(self, node: ET.Element) -> bool:
        """Import a view unless an identical one is already present."""
        doc = self._ensure_document()
        sig = normalized_signature(node)
        if sig in self._view_signatures:
            self.counts.duplicate_views += 1
            return False
        self._view_signatures.add(sig)
        doc.import_node(node)
        self.counts.views += 1
        return True

    def add_contribution(self, contribution: LayoutDocument) -> None:
        doc = self._ensure_document(contribution)
        # elements, then groups, then views
        for tag in PREFIXED_DEFINITION_TAGS:
            for node in contribution.definitions(tag):
                doc.import_node(node)
                self.counts.definitions += 1
        for node in contribution.definitions(VIEW_TAG):
            self.add_view(node)
        self.counts.documents += 1

    def finish(self) -> LayoutDocument:
        return self._ensure_document()
