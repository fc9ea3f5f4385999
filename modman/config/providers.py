# modman/config/providers.py
from __future__ import annotations
import copy
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import json5

from modman.core.dictpath import deleteByPath, getByPath, setByPath
from modman.install.fileops import atomicWriteText
from .types import ConfigProvider

logger = logging.getLogger(__name__)

__all__ = ["OverrideProvider", "DefaultsProvider", "FileProvider"]

# ----------------------------------------------
#          OverrideProvider (in-memory)
# ----------------------------------------------

class OverrideProvider(ConfigProvider):
    """
    Volatile, writable, topmost layer (never saved).
    Tests and embedding callers use it to point paths at temp dirs.
    """
    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(data)) if data else {}

    def get(self, key: str) -> Any | None:
        return getByPath(self._data, key, None)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            self.delete(key)
            return
        setByPath(self._data, key, copy.deepcopy(value), createIfMissing=True)

    def delete(self, key: str) -> bool:
        return deleteByPath(self._data, key, pruneEmptyParents=True)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def save(self) -> None:
        return # Nothing to do


# ----------------------------------------------
#       Read-only shipped defaults
# ----------------------------------------------

class DefaultsProvider(ConfigProvider):
    """Shipped defaults (DEFAULT_SETTINGS). Read-only."""
    readOnly = True

    def __init__(self, data: Mapping[str, Any]) -> None:
        if not isinstance(data, Mapping):
            raise TypeError(f"{type(self).__name__}: 'data' must be a Mapping, not '{type(data).__name__}'")
        self.data = data

    def get(self, key: str) -> Any | None:
        return getByPath(self.data, key, None)

    def set(self, key: str, value: Any) -> None:
        raise RuntimeError(f"{type(self).__name__}: is read-only")

    def delete(self, key: str) -> bool:
        raise RuntimeError(f"{type(self).__name__}: is read-only")

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.data))

    def save(self) -> None:
        pass


# ----------------------------------------------
#        User settings file (JSON/JSON5)
# ----------------------------------------------

class FileProvider(ConfigProvider):
    """
    The user's settings file, e.g. `modman.json5` next to the game.

    Missing file reads as empty. A file that fails to parse is logged and
    ignored, so a typo never blocks the manager from starting; a file whose
    top level is not an object is a hard error.
    """
    def __init__(self, path: str | Path, *, readOnly: bool = False) -> None:
        self.path = Path(path)
        self.readOnly = readOnly
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        self._data.clear()
        if not self.path.exists():
            logger.debug("Settings file '%s' not found; using defaults", self.path)
            return
        if not self.path.is_file():
            raise IsADirectoryError(f"{type(self).__name__}: '{self.path}' exists but is not a file")

        try:
            parsed = json5.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as err:
            logger.warning("Ignoring settings file '%s': %s", self.path, err)
            return

        if parsed is None:
            return
        if not isinstance(parsed, Mapping):
            raise TypeError(f"{type(self).__name__}: file content must be a JSON object, not '{type(parsed).__name__}'")
        self._data = dict(parsed)

    def get(self, key: str) -> Any | None:
        return getByPath(self._data, key, None)

    def set(self, key: str, value: Any) -> None:
        if self.readOnly:
            raise RuntimeError(f"{type(self).__name__}({self.path}) is read-only")
        if value is None:
            self.delete(key)
            return
        setByPath(self._data, key, copy.deepcopy(value), createIfMissing=True)

    def delete(self, key: str) -> bool:
        if self.readOnly:
            raise RuntimeError(f"{type(self).__name__}({self.path}) is read-only")
        return deleteByPath(self._data, key, pruneEmptyParents=True)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def save(self) -> None:
        if self.readOnly:
            raise RuntimeError(f"{type(self).__name__}({self.path}) is read-only")
        atomicWriteText(self.path, json5.dumps(self._data, indent=2, quote_keys=True))
        logger.debug("Saved %d settings sections to '%s'", len(self._data), self.path)
