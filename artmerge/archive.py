from __future__ import annotations

import io
import shutil
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Union

from .constants import COMPRESSION_CHOICES, DEFAULT_COMPRESSION, ZIP_FIXED_DATE_TIME
from .util import relpath_posix


class ArchiveError(RuntimeError):
    pass


class DuplicateEntryError(ArchiveError):
    """Raised when the same destination is written twice into one archive."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Archive entry written twice: {name}")
        self.name = name


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    is_dir: bool
    open: Callable[[], BinaryIO]

    def read(self) -> bytes:
        try:
            with self.open() as f:
                return f.read()
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError, RuntimeError) as e:
            raise ArchiveError(f"Cannot read entry {self.name!r}: {e}") from e


def _zipinfo_deterministic(name: str, compress_type: int) -> zipfile.ZipInfo:
    zi = zipfile.ZipInfo(filename=name, date_time=ZIP_FIXED_DATE_TIME)
    zi.compress_type = compress_type
    zi.external_attr = 0o644 << 16
    return zi


class ZipArchiveReader:
    """Read-only random access over a zip archive."""

    def __init__(self, path: Union[Path, str, BinaryIO]) -> None:
        self.path = path if not isinstance(path, str) else Path(path)
        try:
            self._zf = zipfile.ZipFile(self.path, "r")  # type: ignore[arg-type]
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveError(f"Cannot open archive {path}: {e}") from e

    def __enter__(self) -> "ZipArchiveReader":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._zf.close()

    def entries(self) -> Iterator[ArchiveEntry]:
        for info in self._zf.infolist():
            yield ArchiveEntry(
                name=info.filename,
                is_dir=info.is_dir(),
                open=(lambda i=info: self._zf.open(i, "r")),  # type: ignore[misc]
            )

    def names(self) -> List[str]:
        return [i.filename for i in self._zf.infolist() if not i.is_dir()]

    def read(self, name: str) -> bytes:
        try:
            return self._zf.read(name)
        except KeyError as e:
            raise ArchiveError(f"No entry {name!r} in {self.path}") from e
        except (zipfile.BadZipFile, OSError, RuntimeError) as e:
            raise ArchiveError(f"Cannot read {name!r} from {self.path}: {e}") from e

    def extract_member(self, name: str, dest_dir: Path) -> Path:
        """Copy one member out as a flat file under ``dest_dir``."""
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / Path(relpath_posix(name)).name
        try:
            with self._zf.open(name, "r") as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)
        except KeyError as e:
            raise ArchiveError(f"No entry {name!r} in {self.path}") from e
        except (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError) as e:
            raise ArchiveError(f"Cannot extract {name!r} from {self.path}: {e}") from e
        return target


class DirectoryArchiveReader:
    """Expose a plain folder through the archive reader interface."""

    def __init__(self, path: Union[Path, str]) -> None:
        self.path = Path(path)
        if not self.path.is_dir():
            raise ArchiveError(f"Not a directory: {self.path}")

    def __enter__(self) -> "DirectoryArchiveReader":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        pass

    def entries(self) -> Iterator[ArchiveEntry]:
        for p in sorted(self.path.rglob("*")):
            rel = p.relative_to(self.path).as_posix()
            if p.is_dir():
                yield ArchiveEntry(name=rel + "/", is_dir=True, open=(lambda: io.BytesIO(b"")))
            else:
                yield ArchiveEntry(name=rel, is_dir=False, open=(lambda q=p: q.open("rb")))  # type: ignore[misc]

    def names(self) -> List[str]:
        return [e.name for e in self.entries() if not e.is_dir]

    def _member_path(self, name: str) -> Path:
        p = self.path / relpath_posix(name)
        if not p.is_file():
            raise ArchiveError(f"No entry {name!r} in {self.path}")
        return p

    def read(self, name: str) -> bytes:
        return self._member_path(name).read_bytes()

    def extract_member(self, name: str, dest_dir: Path) -> Path:
        src = self._member_path(name)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / src.name
        shutil.copyfile(src, target)
        return target


ArchiveReader = Union[ZipArchiveReader, DirectoryArchiveReader]


def open_archive(path: Union[Path, str]) -> ArchiveReader:
    p = Path(path)
    if p.is_dir():
        return DirectoryArchiveReader(p)
    if not p.exists():
        raise ArchiveError(f"Archive does not exist: {p}")
    return ZipArchiveReader(p)


class ZipArchiveWriter:
    """Create a zip archive and append entries to it one at a time."""

    def __init__(self, path: Union[Path, str], *, compression: str = DEFAULT_COMPRESSION, level: Optional[int] = None) -> None:
        comp = str(compression or "").strip().lower()
        if comp not in COMPRESSION_CHOICES:
            raise ValueError(f"Unsupported compression {compression!r}")
        self.path = Path(path)
        self._compress_type = zipfile.ZIP_DEFLATED if comp == "deflated" else zipfile.ZIP_STORED
        self._level = level
        self._written: Dict[str, int] = {}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._zf = zipfile.ZipFile(self.path, "w", compression=self._compress_type, compresslevel=level)
        except OSError as e:
            raise ArchiveError(f"Cannot create archive {self.path}: {e}") from e

    def __enter__(self) -> "ZipArchiveWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._zf.close()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._written

    def names(self) -> List[str]:
        return list(self._written)

    @property
    def bytes_written(self) -> int:
        return sum(self._written.values())

    def write(self, dest: str, data: bytes) -> None:
        name = relpath_posix(dest).lstrip("/")
        if name in self._written:
            raise DuplicateEntryError(name)
        zi = _zipinfo_deterministic(name, self._compress_type)
        self._zf.writestr(zi, data, compresslevel=self._level)
        self._written[name] = len(data)
