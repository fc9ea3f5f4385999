# modman/install/archive.py
from __future__ import annotations
import logging
import re
import zipfile
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from modman.core.errors import InputError, UnsafeArchiveError

logger = logging.getLogger(__name__)

__all__ = [
    "ArchiveEntry",
    "PackageSource",
    "ZipPackageSource",
    "safeRelativePath",
    "isSafeRelativePath",
    "extractArchive",
]

_DRIVE_RE = re.compile(r"^[A-Za-z]:")



@dataclass(frozen=True, slots=True)
class ArchiveEntry:
    relativePath: str
    data: bytes
    isDir: bool = False



@runtime_checkable
class PackageSource(Protocol):
    def openArchive(self, path: Path) -> Iterator[ArchiveEntry]: ...



class ZipPackageSource:
    """Reads .zip packages with the standard library."""

    def openArchive(self, path: Path) -> Iterator[ArchiveEntry]:
        path = Path(path)
        if not path.is_file():
            raise InputError("archive", f"archive not found: '{path}'")
        try:
            archive = zipfile.ZipFile(path)
        except zipfile.BadZipFile as err:
            raise InputError("archive", f"not a valid zip archive: {err}") from err

        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    yield ArchiveEntry(info.filename, b"", True)
                else:
                    yield ArchiveEntry(info.filename, archive.read(info), False)



def safeRelativePath(raw: str) -> PurePosixPath:
    """
    Normalized relative path for an archive entry or manifest path.

    Raises UnsafeArchiveError for absolute paths, drive-qualified paths
    ("C:/x", "C:x"), and anything that climbs out with "..".
    """
    if raw is None or not str(raw).strip():
        raise UnsafeArchiveError(str(raw), "empty path")

    text = str(raw).replace("\\", "/")
    if text.startswith("/") or _DRIVE_RE.match(text):
        raise UnsafeArchiveError(raw, "absolute path")

    parts: list[str] = []
    for part in text.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise UnsafeArchiveError(raw, "path traversal")
        parts.append(part)

    if not parts:
        raise UnsafeArchiveError(raw, "empty path")
    return PurePosixPath(*parts)



def isSafeRelativePath(raw: str) -> bool:
    try:
        safeRelativePath(raw)
    except UnsafeArchiveError:
        return False
    return True



def extractArchive(
    source: PackageSource,
    archivePath: Path,
    destDir: Path,
    *,
    blockedExtensions: Iterable[str] = (),
) -> list[str]:
    """
    Unpack every entry into `destDir` and return the relative file paths written.

    All entries are read and checked before the first byte is written: one
    unsafe path or blocked extension aborts the whole extraction.
    """
    blocked = {ext.lower() for ext in blockedExtensions}
    destRoot = destDir.resolve()

    planned: list[tuple[PurePosixPath, ArchiveEntry]] = []
    for entry in source.openArchive(archivePath):
        relPath = safeRelativePath(entry.relativePath)
        target = (destRoot / relPath).resolve()
        if target != destRoot and destRoot not in target.parents:
            raise UnsafeArchiveError(entry.relativePath, "path escapes extraction dir")
        if not entry.isDir and relPath.suffix.lower() in blocked:
            raise UnsafeArchiveError(entry.relativePath, f"blocked file type '{relPath.suffix.lower()}'")
        planned.append((relPath, entry))

    if not any(not entry.isDir for _, entry in planned):
        raise InputError("archive", "archive contains no files")

    written: list[str] = []
    for relPath, entry in planned:
        target = destRoot / relPath
        if entry.isDir:
            target.mkdir(parents=True, exist_ok=True)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(entry.data)
        written.append(relPath.as_posix())

    logger.debug("Extracted %d files from '%s' into '%s'", len(written), archivePath, destDir)
    return written
