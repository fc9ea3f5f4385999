# modman/store/records.py
from __future__ import annotations
import logging
from pathlib import Path
from threading import RLock

import json5
from pydantic import ValidationError

from modman.install.fileops import atomicWriteText, removePath
from modman.mods.identity import normalizeId
from modman.mods.models import ModRecord

logger = logging.getLogger(__name__)

__all__ = ["ModStore"]



class ModStore:
    """
    One JSON5 file per installed mod: `<recordsDir>/<canonical id>.json5`.
    Writes go through a temp file + os.replace, so a crash leaves either the
    old or the new record, never half of one.
    """

    def __init__(self, recordsDir: Path) -> None:
        self.recordsDir = Path(recordsDir)
        self._lock = RLock()

    def _pathFor(self, modId: str) -> Path:
        return self.recordsDir / f"{normalizeId(modId)}.json5"

    def _read(self, path: Path) -> ModRecord | None:
        try:
            raw = json5.loads(path.read_text(encoding="utf-8"))
            return ModRecord.model_validate(raw)
        except (OSError, ValueError, ValidationError) as err:
            logger.warning("Skipping unreadable mod record '%s': %s", path, err)
            return None

    def loadAll(self) -> list[ModRecord]:
        """Every readable record, sorted by id."""
        with self._lock:
            if not self.recordsDir.is_dir():
                return []
            records: list[ModRecord] = []
            for path in sorted(self.recordsDir.glob("*.json5")):
                record = self._read(path)
                if record is not None:
                    records.append(record)
            return sorted(records, key=lambda rec: rec.id)

    def get(self, modId: str) -> ModRecord | None:
        with self._lock:
            path = self._pathFor(modId)
            if not path.is_file():
                return None
            return self._read(path)

    def has(self, modId: str) -> bool:
        return self._pathFor(modId).is_file()

    def save(self, record: ModRecord) -> None:
        payload = record.model_dump(mode="json", exclude_none=True)
        text = json5.dumps(payload, indent=2, quote_keys=True)
        with self._lock:
            atomicWriteText(self._pathFor(record.id), text)
        logger.debug("Saved record '%s'", record.id)

    def delete(self, modId: str) -> bool:
        with self._lock:
            removed = removePath(self._pathFor(modId))
        if removed:
            logger.debug("Deleted record '%s'", modId)
        return removed

    def replaceAll(self, records: list[ModRecord]) -> None:
        """Make the store hold exactly `records`."""
        with self._lock:
            keep = {normalizeId(rec.id) for rec in records}
            for record in records:
                self.save(record)
            if self.recordsDir.is_dir():
                for path in self.recordsDir.glob("*.json5"):
                    if path.stem not in keep:
                        removePath(path)
