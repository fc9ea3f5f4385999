# modman/install/probes.py
from __future__ import annotations
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

import psutil

from modman.core.hashing import sha256Bytes, sha256File
from modman.mods.models import PluginMetadata

logger = logging.getLogger(__name__)

__all__ = [
    "ProcessProbe",
    "PsutilProcessProbe",
    "ChecksumProvider",
    "Sha256ChecksumProvider",
    "RuntimeState",
    "RuntimeStatus",
    "RuntimeStatusProvider",
    "FileRuntimeStatusProvider",
    "MetadataExtractor",
    "NullMetadataExtractor",
]



# ---- Host process ---- #

@runtime_checkable
class ProcessProbe(Protocol):
    def isHostProcessRunning(self) -> bool: ...



class PsutilProcessProbe:
    """Looks for the host game among running processes by executable name (case-insensitive, ".exe" optional)."""

    def __init__(self, processNames: Sequence[str]) -> None:
        self._names = {self._stem(name) for name in processNames if name}

    @staticmethod
    def _stem(name: str) -> str:
        name = name.lower()
        return name[:-4] if name.endswith(".exe") else name

    def isHostProcessRunning(self) -> bool:
        if not self._names:
            return False
        for proc in psutil.process_iter(["name"]):
            try:
                name = proc.info.get("name") or ""
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if self._stem(name) in self._names:
                logger.debug("Host process detected: pid=%s name='%s'", proc.pid, name)
                return True
        return False



# ---- Checksums ---- #

@runtime_checkable
class ChecksumProvider(Protocol):
    def digest(self, data: bytes) -> str: ...
    def digestFile(self, path: Path) -> str: ...



class Sha256ChecksumProvider:
    def digest(self, data: bytes) -> str:
        return sha256Bytes(data)

    def digestFile(self, path: Path) -> str:
        return sha256File(path)



# ---- Host framework runtime ---- #

class RuntimeState(str, Enum):
    NOT_INSTALLED = "NotInstalled"
    CORRUPT = "Corrupt"
    INSTALLED = "Installed"



@dataclass(frozen=True)
class RuntimeStatus:
    state: RuntimeState
    version: str | None = None
    problems: tuple[str, ...] = field(default_factory=tuple)

    @property
    def healthy(self) -> bool:
        return self.state is RuntimeState.INSTALLED



@runtime_checkable
class RuntimeStatusProvider(Protocol):
    def status(self) -> RuntimeStatus: ...



class FileRuntimeStatusProvider:
    """
    Host framework health from plain file-existence checks under the game root:
    every `requiredFiles` entry present, at least one of `loaderFiles`, and the
    plugins dir. Nothing present at all means NotInstalled; partial means Corrupt.
    """

    def __init__(
        self,
        gameRoot: Path,
        *,
        pluginsDir: Path,
        requiredFiles: Sequence[str] = (),
        loaderFiles: Sequence[str] = (),
        version: str | None = None,
    ) -> None:
        self.gameRoot = Path(gameRoot)
        self.pluginsDir = Path(pluginsDir)
        self.requiredFiles = tuple(requiredFiles)
        self.loaderFiles = tuple(loaderFiles)
        self.version = version

    def status(self) -> RuntimeStatus:
        problems: list[str] = []
        found = 0

        for rel in self.requiredFiles:
            if (self.gameRoot / rel).is_file():
                found += 1
            else:
                problems.append(f"missing '{rel}'")

        if self.loaderFiles:
            if any((self.gameRoot / rel).is_file() for rel in self.loaderFiles):
                found += 1
            else:
                problems.append(f"missing loader (one of: {', '.join(self.loaderFiles)})")

        if self.pluginsDir.is_dir():
            found += 1
        else:
            problems.append(f"missing plugins dir '{self.pluginsDir}'")

        if not problems:
            return RuntimeStatus(RuntimeState.INSTALLED, self.version)
        if found == 0:
            return RuntimeStatus(RuntimeState.NOT_INSTALLED, None, tuple(problems))
        return RuntimeStatus(RuntimeState.CORRUPT, self.version, tuple(problems))



# ---- Plugin metadata ---- #

@runtime_checkable
class MetadataExtractor(Protocol):
    def extract(self, path: Path) -> PluginMetadata | None: ...



class NullMetadataExtractor:
    """Knows nothing about binaries; loose plugins fall back to filename-derived ids."""

    def extract(self, path: Path) -> PluginMetadata | None:
        return None
