from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .constants import (
    COMPRESSION_CHOICES,
    DEFAULT_ASSET_EXTENSIONS,
    DEFAULT_COMPRESSION,
    DEFAULT_DIGEST,
    DEFAULT_LAYOUT_NAME,
    DIGEST_CHOICES,
    ERROR_LOG_NAME,
    NESTED_ARCHIVE_EXT,
    RUN_LOG_NAME,
)
from .index import ConfigError, Pack, make_packs
from .util import safe_identifier


_LOG = logging.getLogger("artmerge.config")

__all__ = ["ConfigError", "MergeConfig", "build_config", "load_config_file"]


@dataclass
class MergeConfig:
    packs: List[Path] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
    out_dir: Path = Path("merged")
    scratch_dir: Optional[Path] = None  # None: system temp dir
    max_entries: int = 0  # 0 = unlimited
    overwrite: bool = False
    cleanup_scratch: bool = True
    layout_name: str = DEFAULT_LAYOUT_NAME
    dedup: bool = True
    digest: str = DEFAULT_DIGEST
    compression: str = DEFAULT_COMPRESSION
    asset_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_ASSET_EXTENSIONS))
    nested_ext: str = NESTED_ARCHIVE_EXT
    log_path: Optional[Path] = None
    error_log_path: Optional[Path] = None

    def run_log(self) -> Path:
        return Path(self.log_path) if self.log_path else Path(self.out_dir) / RUN_LOG_NAME

    def error_log(self) -> Path:
        return Path(self.error_log_path) if self.error_log_path else Path(self.out_dir) / ERROR_LOG_NAME

    def validate(self) -> None:
        """Raise ConfigError for anything that must stop the run up front."""
        if len(self.packs) != len(self.labels):
            raise ConfigError(f"Pack/label count mismatch: {len(self.packs)} pack(s) but {len(self.labels)} label(s)")
        if not self.packs:
            raise ConfigError("No packs configured")
        seen: Dict[str, str] = {}
        for lab in self.labels:
            if not str(lab or "").strip():
                raise ConfigError("Pack labels must not be empty")
            if any(ch in str(lab) for ch in "/\\"):
                raise ConfigError(f"Pack label must not contain path separators: {lab!r}")
            key = safe_identifier(str(lab)).casefold()
            if not key:
                raise ConfigError(f"Pack label has no usable characters: {lab!r}")
            if key in seen:
                raise ConfigError(f"Pack labels {seen[key]!r} and {lab!r} are not distinct")
            seen[key] = str(lab)
        for p in self.packs:
            if not Path(p).expanduser().exists():
                raise ConfigError(f"Pack archive does not exist: {p}")
        if self.digest not in DIGEST_CHOICES:
            raise ConfigError(f"Unknown digest {self.digest!r} (expected one of {', '.join(DIGEST_CHOICES)})")
        if self.compression not in COMPRESSION_CHOICES:
            raise ConfigError(f"Unknown compression {self.compression!r}")
        if not str(self.layout_name or "").strip() or "/" in self.layout_name or "\\" in self.layout_name:
            raise ConfigError(f"Layout name must be a root-level file name: {self.layout_name!r}")
        if int(self.max_entries) < 0:
            raise ConfigError("Processing cap must be >= 0")
        if not str(self.nested_ext or "").startswith("."):
            raise ConfigError(f"Nested archive extension must start with '.': {self.nested_ext!r}")

    def make_packs(self) -> List[Pack]:
        return make_packs(self.packs, self.labels)


_PATH_KEYS = {"out_dir", "scratch_dir", "log_path", "error_log_path"}
_BOOL_KEYS = ("overwrite", "cleanup_scratch", "dedup")
_TRUE_WORDS = {"1", "true", "yes", "y", "on"}
_FALSE_WORDS = {"0", "false", "no", "n", "off", ""}


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ConfigError(f"{key} must be true or false: {value!r}")


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a JSON settings file; returns only keys MergeConfig understands."""
    p = Path(path).expanduser()
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {p} must contain a JSON object")

    known = {f.name for f in fields(MergeConfig)}
    out: Dict[str, Any] = {}
    for k, v in raw.items():
        if k not in known:
            _LOG.warning("Ignoring unknown config key %r in %s", k, p)
            continue
        out[k] = v
    return out


def build_config(file_values: Optional[Mapping[str, Any]] = None, overrides: Optional[Mapping[str, Any]] = None) -> MergeConfig:
    """Combine settings-file values with explicit overrides (overrides win).

    ``None`` overrides are ignored so unset CLI options fall through.
    """
    merged: Dict[str, Any] = dict(file_values or {})
    for k, v in (overrides or {}).items():
        if v is None:
            continue
        if isinstance(v, list) and not v and k in merged:
            continue
        merged[k] = v

    cfg = MergeConfig()
    for k, v in merged.items():
        if k in ("packs",):
            v = [Path(x) for x in (v or [])]
        elif k in ("labels", "asset_extensions"):
            v = [str(x) for x in (v or [])]
        elif k in _PATH_KEYS:
            v = Path(v) if v not in (None, "") else None
        elif k == "max_entries":
            try:
                v = int(v)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Processing cap must be an integer: {v!r}") from e
        elif k in _BOOL_KEYS:
            v = _as_bool(k, v)
        elif k in ("digest", "compression"):
            v = str(v).strip().lower()
        setattr(cfg, k, v)
    if cfg.out_dir is None:
        cfg.out_dir = Path("merged")
    return cfg
