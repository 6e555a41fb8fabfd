from __future__ import annotations

import json
import os
import re
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, cast


_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_]+")


def to_jsonable(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return {k: to_jsonable(v) for k, v in asdict(cast(Any, obj)).items()}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(x) for x in obj]
    return obj


def dumps_pretty(obj: Any) -> str:
    return json.dumps(to_jsonable(obj), indent=2, sort_keys=True, ensure_ascii=False)


def relpath_posix(path: str) -> str:
    # normalize to forward-slash for matching archive member names
    return path.replace("\\", "/")


def leaf_name(path: str) -> str:
    """Return the final path component using either slash convention."""
    return relpath_posix(path).rstrip("/").rsplit("/", 1)[-1]


def safe_identifier(text: str) -> str:
    """Collapse anything outside [A-Za-z0-9_] into single underscores."""
    out = _SAFE_NAME_RE.sub("_", (text or "").strip())
    return out.strip("_")


def env_bool(name: str, default: bool = False) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}
