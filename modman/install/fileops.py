# modman/install/fileops.py
from __future__ import annotations
import logging
import os
import re
import shutil
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from modman.core.errors import FilesystemError
from modman.core.time import backupStamp

logger = logging.getLogger(__name__)

__all__ = [
    "BACKUP_MARKER",
    "BackupInfo",
    "retryIo",
    "atomicWriteText",
    "removePath",
    "movePath",
    "copyFiles",
    "setEntryEnabled",
    "newBackupDir",
    "listBackups",
    "pruneBackups",
]

T = TypeVar("T")

BACKUP_MARKER = ".backup."
_BACKUP_NAME_RE = re.compile(r"^(?P<modId>.+)\.backup\.(?P<stamp>\d{14})(?:-\d+)?$")



def retryIo(fn: Callable[[], T], *, what: str, attempts: int = 3, delayMs: int = 500, path: Path | None = None) -> T:
    """
    Run `fn`, retrying transient OSErrors (locked files, AV scanners).
    FileNotFoundError is not transient. The final failure surfaces as FilesystemError.
    """
    lastError: OSError | None = None
    for attempt in range(1, max(1, attempts) + 1):
        try:
            return fn()
        except FileNotFoundError as err:
            raise FilesystemError(f"{what}: {err}", path=str(path) if path else None) from err
        except OSError as err:
            lastError = err
            if attempt < attempts:
                logger.debug("%s failed (attempt %d/%d): %s", what, attempt, attempts, err)
                time.sleep(delayMs / 1000)
    raise FilesystemError(f"{what}: {lastError}", path=str(path) if path else None) from lastError



def atomicWriteText(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmpPath = path.with_suffix(path.suffix + ".tmp")
    with open(tmpPath, "w", encoding="utf-8") as fl:
        fl.write(text)
        if not text.endswith("\n"):
            fl.write("\n")
        fl.flush()
        os.fsync(fl.fileno())
    os.replace(tmpPath, path)



def removePath(path: Path) -> bool:
    """Delete a file or directory tree. Missing targets are fine; returns whether anything was removed."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False



def movePath(src: Path, dst: Path) -> None:
    """Move `src` to a not-yet-existing `dst` (a rename when both sit on one filesystem)."""
    if dst.exists():
        raise FilesystemError(f"move target already exists: '{dst}'", path=str(dst))
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dst))



def copyFiles(srcRoot: Path, files: Iterable[str], dstRoot: Path) -> int:
    count = 0
    dstRoot.mkdir(parents=True, exist_ok=True)
    for rel in files:
        target = dstRoot / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(srcRoot / rel, target)
        count += 1
    return count



def setEntryEnabled(entryPath: Path, enabled: bool, *, attempts: int = 3, delayMs: int = 500) -> bool:
    """
    Toggle a plugin by renaming `<entry>` <-> `<entry>.disabled`.
    Returns False when the file is already in the wanted state.
    """
    disabledPath = entryPath.with_name(entryPath.name + ".disabled")
    src, dst = (disabledPath, entryPath) if enabled else (entryPath, disabledPath)

    if not src.exists():
        if dst.exists():
            return False
        raise FilesystemError(f"entry file not found: '{entryPath}'", path=str(entryPath))
    if dst.exists():
        raise FilesystemError(f"both '{entryPath.name}' and its disabled twin exist", path=str(dst))

    retryIo(lambda: os.replace(src, dst), what=f"rename '{src.name}' -> '{dst.name}'", attempts=attempts, delayMs=delayMs, path=src)
    logger.debug("Renamed '%s' -> '%s'", src, dst)
    return True



@dataclass(frozen=True, slots=True)
class BackupInfo:
    modId: str
    path: Path
    stamp: str



def newBackupDir(backupsDir: Path, modId: str) -> Path:
    """Fresh `<backupsDir>/<id>.backup.<yyyyMMddHHmmss>` path, suffixed if that second is taken."""
    base = backupsDir / f"{modId}{BACKUP_MARKER}{backupStamp()}"
    candidate = base
    counter = 1
    while candidate.exists():
        candidate = base.with_name(f"{base.name}-{counter}")
        counter += 1
    return candidate



def listBackups(backupsDir: Path, modId: str | None = None) -> list[BackupInfo]:
    """Backups newest first."""
    if not backupsDir.is_dir():
        return []
    out: list[BackupInfo] = []
    for child in backupsDir.iterdir():
        mtch = _BACKUP_NAME_RE.match(child.name)
        if not mtch or not child.is_dir():
            continue
        if modId is not None and mtch.group("modId") != modId:
            continue
        out.append(BackupInfo(modId=mtch.group("modId"), path=child, stamp=mtch.group("stamp")))
    out.sort(key=lambda info: (info.stamp, info.path.name), reverse=True)
    return out



def pruneBackups(backupsDir: Path, keepCount: int, modId: str | None = None) -> list[Path]:
    """Delete all but the newest `keepCount` backups per mod id."""
    removed: list[Path] = []
    perMod: dict[str, int] = {}
    for info in listBackups(backupsDir, modId):
        kept = perMod.get(info.modId, 0)
        if kept < keepCount:
            perMod[info.modId] = kept + 1
            continue
        removePath(info.path)
        removed.append(info.path)
        logger.info("Pruned backup '%s'", info.path)
    return removed
