# modman/store/loadorder.py
from __future__ import annotations
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Literal

import json5
from pydantic import BaseModel, ConfigDict, ValidationError

from modman.install.fileops import atomicWriteText

logger = logging.getLogger(__name__)

__all__ = ["LoadOrderEntry", "LoadOrderStore"]



class LoadOrderEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    modId: str
    order: int
    source: Literal["dependency", "manual"] = "dependency"



class LoadOrderStore:
    """The ordered load-order artifact, `<dataDir>/loadorder.json5`."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> list[LoadOrderEntry]:
        if not self.path.is_file():
            return []
        try:
            raw = json5.loads(self.path.read_text(encoding="utf-8"))
            entries = [LoadOrderEntry.model_validate(item) for item in raw.get("entries", [])]
        except (OSError, ValueError, AttributeError, ValidationError) as err:
            logger.warning("Ignoring unreadable load order '%s': %s", self.path, err)
            return []
        return sorted(entries, key=lambda entry: entry.order)

    def modIds(self) -> list[str]:
        return [entry.modId for entry in self.load()]

    def save(self, entries: Sequence[LoadOrderEntry]) -> None:
        payload = {"entries": [entry.model_dump() for entry in entries]}
        atomicWriteText(self.path, json5.dumps(payload, indent=2, quote_keys=True))

    def rewrite(self, resolvedOrder: Sequence[str], installedIds: Iterable[str]) -> list[LoadOrderEntry]:
        """
        Resolved dependency order first. Installed ids it does not cover
        (nothing resolved, or a set that failed to resolve) follow as
        "manual", keeping their previous relative order, new ids sorted last.
        Ids no longer installed are dropped.
        """
        installed = set(installedIds)
        previous = [modId for modId in self.modIds() if modId in installed]

        ordered: list[str] = [modId for modId in resolvedOrder if modId in installed]
        placed = set(ordered)
        sources = {modId: "dependency" for modId in ordered}

        leftovers = [modId for modId in previous if modId not in placed]
        leftovers += sorted(installed - placed - set(leftovers))
        for modId in leftovers:
            ordered.append(modId)
            sources[modId] = "manual"

        entries = [
            LoadOrderEntry(modId=modId, order=idx, source=sources[modId])
            for idx, modId in enumerate(ordered)
        ]
        self.save(entries)
        logger.debug("Load order rewritten: %s", ", ".join(ordered) or "(empty)")
        return entries
