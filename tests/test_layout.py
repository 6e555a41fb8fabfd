from __future__ import annotations

import codecs
import xml.etree.ElementTree as ET

import pytest

from artmerge.layout import LayoutDocument, LayoutMerger, LayoutParseError, normalized_signature

from tests.conftest import layout_xml


def test_parse_tolerates_bom_and_leading_whitespace() -> None:
    raw = layout_xml().encode("utf-8")
    doc = LayoutDocument.from_bytes(codecs.BOM_UTF8 + b"\n  " + raw)
    assert doc.root.tag == "mamelayout"
    assert [e.get("name") for e in doc.definitions("element")] == ["bezel"]

    utf16 = codecs.BOM_UTF16_LE + layout_xml().encode("utf-16-le")
    doc16 = LayoutDocument.from_bytes(utf16)
    assert [v.get("name") for v in doc16.definitions("view")] == ["Bezel"]


def test_parse_failure_raises_layout_parse_error() -> None:
    with pytest.raises(LayoutParseError) as e:
        LayoutDocument.from_bytes(b"<mamelayout><element name='x'>", source="A:mario.zip/default.lay")
    assert "A:mario.zip/default.lay" in str(e.value)


def test_iter_tag_finds_nested_nodes_and_attrs_roundtrip() -> None:
    doc = LayoutDocument.from_bytes(layout_xml().encode("utf-8"))
    # top-level element definition plus the element instance inside the view
    assert len(list(doc.iter_tag("element"))) == 2
    img = next(doc.iter_tag("image"))
    assert doc.get_attr(img, "file") == "bezel.png"
    doc.set_attr(img, "file", "A/bezel.png")
    assert b'file="A/bezel.png"' in doc.to_bytes()


def test_import_node_copies_full_subtree() -> None:
    src = LayoutDocument.from_bytes(layout_xml().encode("utf-8"))
    dst = LayoutDocument.new()
    node = src.definitions("view")[0]
    clone = dst.import_node(node)

    assert clone is not node
    assert clone.find("element/bounds") is not None
    clone.set("name", "changed")
    assert node.get("name") == "Bezel"


def test_to_bytes_is_deterministic_and_lf_only() -> None:
    doc = LayoutDocument.from_bytes(layout_xml().encode("utf-8"))
    a = doc.to_bytes()
    b = doc.to_bytes()
    assert a == b
    assert a.startswith(b"<?xml")
    assert b"\r" not in a
    assert a.endswith(b"\n")
    # serialising does not disturb the in-memory tree
    assert LayoutDocument.from_bytes(a).to_bytes() == a


def test_normalized_signature_ignores_whitespace() -> None:
    a = ET.fromstring('<view name="V"><element ref="x"><bounds x="0" y="0" /></element></view>')
    b = ET.fromstring('<view name="V">\n   <element ref="x">\n\n      <bounds x="0" y="0"/>\n   </element>\n</view>')
    c = ET.fromstring('<view name="V"><element ref="y"><bounds x="0" y="0" /></element></view>')
    assert normalized_signature(a) == normalized_signature(b)
    assert normalized_signature(a) != normalized_signature(c)


def test_merger_view_dedup_is_idempotent() -> None:
    doc = LayoutDocument.from_bytes(layout_xml().encode("utf-8"))
    view = doc.definitions("view")[0]

    merger = LayoutMerger()
    assert merger.add_view(view) is True
    assert merger.add_view(view) is False
    assert merger.add_view(view) is False

    merged = merger.finish()
    assert len(merged.definitions("view")) == 1
    assert merger.counts.duplicate_views == 2


def test_merger_imports_elements_before_views_and_keeps_root() -> None:
    doc = LayoutDocument.from_bytes(
        layout_xml(extra_elements='  <group name="panel"><element ref="bezel" /></group>').encode("utf-8")
    )
    merger = LayoutMerger()
    merger.add_contribution(doc)
    merged = merger.finish()

    assert merged.root.tag == "mamelayout"
    assert merged.root.get("version") == "2"
    assert [ch.tag for ch in merged.root] == ["element", "group", "view"]
    assert merger.counts.definitions == 2
    assert merger.counts.documents == 1


def test_empty_merger_still_produces_a_document() -> None:
    merged = LayoutMerger().finish()
    assert merged.root.tag == "mamelayout"
    assert len(merged.root) == 0
    assert b"<mamelayout" in merged.to_bytes()
