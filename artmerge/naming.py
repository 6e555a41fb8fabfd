from __future__ import annotations

from typing import List

from .constants import IDENTIFIER_SEPARATOR, VIEW_NAME_SEPARATOR
from .util import leaf_name, relpath_posix, safe_identifier


class UnsafePathError(ValueError):
    pass


def clean_relative_path(name: str) -> str:
    """Normalise an archive member name to a clean forward-slash relative path."""
    p = relpath_posix(name or "").strip()
    while p.startswith("./"):
        p = p[2:]
    p = p.lstrip("/")
    parts = [seg for seg in p.split("/") if seg not in ("", ".")]
    if any(seg == ".." for seg in parts):
        raise UnsafePathError(f"Refusing path that escapes its archive: {name!r}")
    if not parts:
        raise UnsafePathError(f"Empty archive path: {name!r}")
    return "/".join(parts)


def destination_path(label: str, rel_path: str) -> str:
    """Output location of an asset: ``<label>/<relative path>``.

    Labels are unique per run, so destinations from different packs never collide.
    """
    return f"{label}/{clean_relative_path(rel_path)}"


def identifier_prefix(label: str) -> str:
    base = safe_identifier(label) or "pack"
    return f"{base}{IDENTIFIER_SEPARATOR}"


def view_prefix(label: str) -> str:
    return f"{(label or '').strip()}{VIEW_NAME_SEPARATOR}"


def name_variants(rel_path: str, dest: str) -> List[str]:
    """Every spelling a layout document might use to point at one asset.

    Order matters: full paths come before the bare filename forms.
    """
    rel = clean_relative_path(rel_path)
    back = rel.replace("/", "\\")
    leaf = leaf_name(rel)
    out: List[str] = []
    for v in (
        rel,
        back,
        "./" + rel,
        ".\\" + back,
        "/" + rel,
        dest,
        dest.replace("/", "\\"),
        leaf,
        "./" + leaf,
        ".\\" + leaf,
    ):
        if v not in out:
            out.append(v)
    return out
