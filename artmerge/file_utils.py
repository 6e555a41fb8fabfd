from __future__ import annotations

import hashlib
import shutil
from pathlib import Path
from typing import Optional

from .constants import DIGEST_CHOICES


def new_digest(algorithm: str):
    """Return a fresh hashlib object for one of the supported digests."""
    algo = str(algorithm or "").strip().lower()
    if algo not in DIGEST_CHOICES:
        raise ValueError(f"Unsupported digest {algorithm!r} (expected one of {', '.join(DIGEST_CHOICES)})")
    return hashlib.new(algo)


def digest_bytes(data: bytes, algorithm: str = "sha1") -> str:
    h = new_digest(algorithm)
    h.update(data)
    return h.hexdigest()


def remove_tree(path: Optional[Path]) -> bool:
    """Remove a scratch directory; returns True when nothing is left behind."""
    if path is None:
        return True
    p = Path(path)
    if not p.exists():
        return True
    shutil.rmtree(p, ignore_errors=True)
    return not p.exists()


def remove_file(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
