from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from .constants import LOG_FORMAT
from .util import env_bool


_LOG = logging.getLogger("artmerge")

# Handlers we attached, so repeated runs (and tests) can detach them cleanly.
_HANDLERS: List[logging.Handler] = []


def _level_from_env(default: str = "INFO") -> int:
    lvl_name = str(os.environ.get("ARTMERGE_LOG_LEVEL", default) or default).upper().strip()
    level = getattr(logging, lvl_name, logging.INFO)
    return level if isinstance(level, int) else logging.INFO


def init_app_logging(
    run_log: Path,
    error_log: Path,
    *,
    level: Optional[int] = None,
    console: Optional[bool] = None,
) -> Tuple[Path, Path]:
    """Attach the two append-only log sinks to the ``artmerge`` logger.

    * run_log: everything at ``level`` (default from ARTMERGE_LOG_LEVEL, else INFO)
    * error_log: ERROR and above only

    Set ARTMERGE_LOG_TO_CONSOLE=1 (or pass console=True) to mirror the run log
    to stdout as well. Calling this again replaces the previous sinks.
    """
    shutdown_app_logging()

    lvl = level if level is not None else _level_from_env()
    fmt = logging.Formatter(LOG_FORMAT)

    run_log = Path(run_log)
    error_log = Path(error_log)
    run_log.parent.mkdir(parents=True, exist_ok=True)
    error_log.parent.mkdir(parents=True, exist_ok=True)

    fh = logging.FileHandler(run_log, mode="a", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(fmt)

    eh = logging.FileHandler(error_log, mode="a", encoding="utf-8")
    eh.setLevel(logging.ERROR)
    eh.setFormatter(fmt)

    handlers: List[logging.Handler] = [fh, eh]

    to_console = console if console is not None else env_bool("ARTMERGE_LOG_TO_CONSOLE")
    if to_console:
        sh = logging.StreamHandler(sys.stdout)
        sh.setLevel(lvl)
        sh.setFormatter(fmt)
        handlers.append(sh)

    _LOG.setLevel(min(lvl, logging.ERROR))
    for h in handlers:
        _LOG.addHandler(h)
        _HANDLERS.append(h)

    from . import __version__
    _LOG.info("=== artmerge %s ===", __version__)
    _LOG.info("cwd=%s", str(Path.cwd()))
    _LOG.info("python=%s", sys.version.replace("\n", " "))
    return run_log, error_log


def shutdown_app_logging() -> None:
    """Detach and close the sinks added by init_app_logging."""
    while _HANDLERS:
        h = _HANDLERS.pop()
        _LOG.removeHandler(h)
        try:
            h.close()
        except OSError:
            pass


def current_log_paths() -> List[Path]:
    out: List[Path] = []
    for h in _HANDLERS:
        if isinstance(h, logging.FileHandler):
            out.append(Path(h.baseFilename))
    return out
