from __future__ import annotations

import threading
from typing import Dict, Tuple

from .constants import DEFAULT_DIGEST, DIGEST_CHOICES
from .file_utils import digest_bytes


class ContentStore:
    """Map content hashes to one canonical output path.

    Once a hash is registered it is never remapped: later files with the same
    bytes are redirected to the first path instead of being copied again.

    Keys are namespaced (normally by output archive) because a canonical path
    is only meaningful inside the archive it was written to. The store itself
    lives for the whole run and is shared by every catalog entry.

    With ``enabled=False`` the store is the identity function and nothing is
    registered.
    """

    def __init__(self, algorithm: str = DEFAULT_DIGEST, *, enabled: bool = True) -> None:
        algo = str(algorithm or "").strip().lower()
        if algo not in DIGEST_CHOICES:
            raise ValueError(f"Unsupported digest {algorithm!r} (expected one of {', '.join(DIGEST_CHOICES)})")
        self.algorithm = algo
        self.enabled = bool(enabled)
        self._paths: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def digest(self, data: bytes) -> str:
        return digest_bytes(data, self.algorithm)

    def resolve(self, content_hash: str, proposed_path: str, namespace: str = "") -> str:
        """Return the canonical path for ``content_hash``.

        Registers ``proposed_path`` when the hash is new. The caller must only
        write the bytes when the returned path equals ``proposed_path``.
        """
        if not self.enabled:
            return proposed_path
        key = (str(namespace), str(content_hash))
        with self._lock:
            existing = self._paths.get(key)
            if existing is not None:
                return existing
            self._paths[key] = proposed_path
            return proposed_path

    def lookup(self, content_hash: str, namespace: str = "") -> str | None:
        with self._lock:
            return self._paths.get((str(namespace), str(content_hash)))

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def __repr__(self) -> str:
        state = "on" if self.enabled else "off"
        return f"ContentStore(algorithm={self.algorithm!r}, dedup={state}, hashes={len(self)})"
