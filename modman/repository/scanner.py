# modman/repository/scanner.py
from __future__ import annotations
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path

from modman.core.errors import InputError
from modman.install.probes import ChecksumProvider, MetadataExtractor
from modman.mods.identity import collapseDuplicates, createIdFromFilename, normalizeId
from modman.mods.manifest import ManifestCodec
from modman.mods.models import DISABLED_SUFFIX, ModIncompatibility, ModRecord

logger = logging.getLogger(__name__)

__all__ = ["PluginScanner"]



def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)



class PluginScanner:
    """
    Rebuilds mod records from what is actually in the plugins dir.

    Each sub-directory is one install. With a manifest the record comes from
    it; otherwise every entry binary inside is a loose plugin described by
    the metadata extractor (or its filename). `<entry>.disabled` means the
    mod is disabled. Files sitting directly in the plugins dir are not managed.
    """

    def __init__(
        self,
        pluginsDir: Path,
        *,
        codec: ManifestCodec,
        checksumProvider: ChecksumProvider,
        metadataExtractor: MetadataExtractor,
        manifestNames: Sequence[str],
        entryExtensions: Sequence[str],
        duplicatePriority: Sequence[str],
    ) -> None:
        self.pluginsDir = Path(pluginsDir)
        self.codec = codec
        self.checksumProvider = checksumProvider
        self.metadataExtractor = metadataExtractor
        self.manifestNames = tuple(manifestNames)
        self.entryExtensions = tuple(ext.lower() for ext in entryExtensions)
        self.duplicatePriority = tuple(duplicatePriority)

    def _entryCandidates(self, installDir: Path) -> list[tuple[str, bool]]:
        """(relative entry path, enabled) for every entry binary, disabled ones included."""
        out: list[tuple[str, bool]] = []
        for path in sorted(installDir.rglob("*")):
            if not path.is_file():
                continue
            name = path.name.lower()
            enabled = True
            if name.endswith(DISABLED_SUFFIX):
                name = name[: -len(DISABLED_SUFFIX)]
                enabled = False
            if Path(name).suffix in self.entryExtensions:
                rel = path.relative_to(installDir).as_posix()
                if not enabled:
                    rel = rel[: -len(DISABLED_SUFFIX)]
                out.append((rel, enabled))
        return out

    def _checksum(self, installDir: Path, entry: str | None, enabled: bool) -> str | None:
        if not entry:
            return None
        path = installDir / (entry if enabled else entry + DISABLED_SUFFIX)
        return self.checksumProvider.digestFile(path) if path.is_file() else None

    def _fromManifest(self, installDir: Path, manifestPath: Path) -> ModRecord | None:
        try:
            manifest = self.codec.parse(manifestPath.read_bytes())
        except (OSError, InputError) as err:
            logger.warning("Unreadable manifest '%s': %s", manifestPath, err)
            return None

        candidates = self._entryCandidates(installDir)
        entry: str | None = manifest.entry.replace("\\", "/") if manifest.entry else None
        if entry is None and len(candidates) == 1:
            entry = candidates[0][0]

        enabled = True
        if entry is not None:
            enabled = not (installDir / (entry + DISABLED_SUFFIX)).is_file()

        return manifest.toRecord(
            installPath=installDir,
            entry=entry,
            checksum=self._checksum(installDir, entry, enabled),
            installedAt=_mtime(manifestPath),
            enabled=enabled,
        )

    def _fromBinaries(self, installDir: Path, knownRecords: Mapping[str, ModRecord]) -> list[ModRecord]:
        records: list[ModRecord] = []
        for entry, enabled in self._entryCandidates(installDir):
            binaryPath = installDir / (entry if enabled else entry + DISABLED_SUFFIX)
            metadata = self.metadataExtractor.extract(binaryPath)
            modId = normalizeId(metadata.guid) if metadata else createIdFromFilename(entry)
            known = knownRecords.get(modId)
            records.append(ModRecord(
                id=modId,
                name=(metadata.name if metadata and metadata.name else Path(entry).stem),
                version=(metadata.version if metadata and metadata.version else "0.0.0"),
                dependencies=[
                    dep.model_copy(update={"id": normalizeId(dep.id)}) for dep in metadata.dependencies
                ] if metadata else [],
                incompatibleWith=[
                    ModIncompatibility(id=normalizeId(otherId)) for otherId in metadata.incompatibleWith
                ] if metadata else [],
                enabled=enabled,
                installPath=str(installDir),
                entry=entry,
                checksum=self._checksum(installDir, entry, enabled),
                installedAt=known.installedAt if known else _mtime(binaryPath),
                metadata=metadata,
            ))
        return records

    def scan(self, knownRecords: Mapping[str, ModRecord] | None = None) -> list[ModRecord]:
        """Records for everything installed, one per canonical id; install dates of known ids are kept."""
        knownRecords = knownRecords or {}
        if not self.pluginsDir.is_dir():
            return []

        records: list[ModRecord] = []
        for child in sorted(self.pluginsDir.iterdir()):
            if not child.is_dir():
                if child.is_file():
                    logger.debug("Ignoring loose file '%s' in the plugins dir", child.name)
                continue

            # Installed packages always carry their manifest at the top of the install dir
            manifestPath = next((child / name for name in self.manifestNames if (child / name).is_file()), None)
            if manifestPath is not None:
                record = self._fromManifest(child, manifestPath)
                if record is not None:
                    known = knownRecords.get(record.id)
                    if known is not None:
                        record = record.model_copy(update={"installedAt": known.installedAt, "updatedAt": known.updatedAt})
                    records.append(record)
                continue

            records.extend(self._fromBinaries(child, knownRecords))

        collapsed = collapseDuplicates(records, self.duplicatePriority)
        logger.info("Scanned '%s': %d mods", self.pluginsDir, len(collapsed))
        return sorted(collapsed, key=lambda rec: rec.id)
