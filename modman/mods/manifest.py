# modman/mods/manifest.py
from __future__ import annotations
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import json5
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from modman.core.errors import ManifestParseError, ManifestValidationError
from modman.core.hashing import isSha256Hex, sha256File
from modman.install.archive import isSafeRelativePath
from modman.mods.identity import MANIFEST_ID_RE, isValidCanonicalId, normalizeId
from modman.mods.models import ModDependency, ModIncompatibility, ModRecord, ModSource
from modman.semver.semver import SEMVER_PATTERN_RE, parseVersionRange

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_HOST_RANGE",
    "InstallationManifest",
    "ManifestCodec",
    "Json5ManifestCodec",
    "ManifestReport",
    "findManifest",
    "validateManifest",
]

DEFAULT_HOST_RANGE = ">=5.4.0"



class InstallationManifest(BaseModel):
    """
    Package descriptor shipped inside an archive.

    Keys on disk follow the package format (`compatible_bepinex`,
    `incompatible_with`, `load_after`, ...); python-side names are camelCase.
    Required fields default to "" so validateManifest() can report them
    field by field instead of failing the decode.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    name: str = ""
    version: str = ""
    author: str | None = None
    description: str | None = None
    entry: str | None = None
    files: list[str] = Field(default_factory=list)
    dependencies: list[ModDependency] = Field(default_factory=list)
    compatibleHost: str = Field(default=DEFAULT_HOST_RANGE, alias="compatible_bepinex")
    checksum: str | None = None
    source: ModSource | None = None
    tags: list[str] = Field(default_factory=list)
    websiteUrl: str | None = Field(default=None, alias="website_url")
    incompatibleWith: list[ModIncompatibility] = Field(default_factory=list, alias="incompatible_with")
    loadAfter: list[str] = Field(default_factory=list, alias="load_after")
    loadBefore: list[str] = Field(default_factory=list, alias="load_before")

    @property
    def canonicalId(self) -> str:
        return normalizeId(self.id)

    def toRecord(
        self,
        *,
        installPath: Path,
        entry: str | None,
        checksum: str | None,
        installedAt: datetime | None = None,
        enabled: bool = True,
    ) -> ModRecord:
        """Persistable record for this manifest installed at `installPath`; ids are canonicalized."""
        values: dict[str, Any] = dict(
            id=self.canonicalId,
            name=self.name,
            version=self.version,
            author=self.author,
            description=self.description,
            dependencies=[dep.model_copy(update={"id": normalizeId(dep.id)}) for dep in self.dependencies],
            incompatibleWith=[inc.model_copy(update={"id": normalizeId(inc.id)}) for inc in self.incompatibleWith],
            loadAfter=[normalizeId(modId) for modId in self.loadAfter],
            loadBefore=[normalizeId(modId) for modId in self.loadBefore],
            enabled=enabled,
            installPath=str(installPath),
            entry=entry,
            checksum=checksum,
            source=self.source,
            tags=list(self.tags),
            websiteUrl=self.websiteUrl,
        )
        if installedAt is not None:
            values["installedAt"] = installedAt
        return ModRecord(**values)



@runtime_checkable
class ManifestCodec(Protocol):
    def parse(self, data: bytes) -> InstallationManifest: ...
    def serialize(self, manifest: InstallationManifest) -> bytes: ...



class Json5ManifestCodec:
    """Reads JSON and JSON5 manifests; writes JSON5 with quoted keys (valid JSON as well)."""

    def parse(self, data: bytes) -> InstallationManifest:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as err:
            raise ManifestParseError(f"manifest is not UTF-8: {err}") from err

        try:
            raw = json5.loads(text)
        except ValueError as err:
            raise ManifestParseError(f"invalid JSON: {err}") from err

        if not isinstance(raw, dict):
            raise ManifestParseError(f"manifest must be a JSON object, not '{type(raw).__name__}'")

        try:
            return InstallationManifest.model_validate(raw)
        except ValidationError as err:
            first = err.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ManifestParseError(f"{location or 'manifest'}: {first.get('msg')}") from err

    def serialize(self, manifest: InstallationManifest) -> bytes:
        payload = manifest.model_dump(by_alias=True, exclude_none=True, mode="json")
        return (json5.dumps(payload, indent=2, quote_keys=True) + "\n").encode("utf-8")



def findManifest(root: Path, names: Sequence[str]) -> Path | None:
    """Manifest at the package root, else one directory down (archives often wrap a folder)."""
    for name in names:
        candidate = root / name
        if candidate.is_file():
            return candidate

    if not root.is_dir():
        return None
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        for name in names:
            candidate = child / name
            if candidate.is_file():
                return candidate
    return None



@dataclass
class ManifestReport:
    issues: list[tuple[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    entry: str | None = None                    # Resolved entry, relative to the package root
    files: list[str] = field(default_factory=list)
    checksum: str | None = None                 # Actual sha256 of the entry file, when present

    @property
    def ok(self) -> bool:
        return not self.issues

    def raiseIfInvalid(self) -> None:
        if self.issues:
            raise ManifestValidationError(self.issues)



def _listPackageFiles(packageRoot: Path, manifestNames: Sequence[str]) -> list[str]:
    files: list[str] = []
    for path in sorted(packageRoot.rglob("*")):
        if path.is_file():
            rel = path.relative_to(packageRoot).as_posix()
            if rel in manifestNames:
                continue
            files.append(rel)
    return files



def _validateFields(manifest: InstallationManifest, report: ManifestReport) -> None:
    issues = report.issues

    for fieldName in ("id", "name", "version"):
        if not getattr(manifest, fieldName).strip():
            issues.append((fieldName, "required field is missing"))

    if manifest.id.strip():
        if not MANIFEST_ID_RE.fullmatch(manifest.id):
            issues.append(("id", f"invalid characters in id {manifest.id!r} (allowed: letters, digits, '_', '.', '-')"))
        elif not isValidCanonicalId(normalizeId(manifest.id)):
            issues.append(("id", f"id {manifest.id!r} does not normalize to a usable id"))

    if manifest.version.strip() and not SEMVER_PATTERN_RE.match(manifest.version.strip()):
        issues.append(("version", f"invalid semantic version {manifest.version!r}"))

    for idx, dep in enumerate(manifest.dependencies):
        if not MANIFEST_ID_RE.fullmatch(dep.id or ""):
            issues.append((f"dependencies[{idx}].id", f"invalid dependency id {dep.id!r}"))
        if dep.minVersion:
            try:
                parseVersionRange(dep.minVersion)
            except ValueError as err:
                issues.append((f"dependencies[{idx}].minVersion", str(err)))

    for idx, inc in enumerate(manifest.incompatibleWith):
        if not MANIFEST_ID_RE.fullmatch(inc.id or ""):
            issues.append((f"incompatible_with[{idx}].id", f"invalid id {inc.id!r}"))

    try:
        parseVersionRange(manifest.compatibleHost)
    except ValueError as err:
        issues.append(("compatible_bepinex", str(err)))

    if manifest.checksum is not None and not isSha256Hex(manifest.checksum):
        issues.append(("checksum", "checksum must be 64 hex characters (sha256)"))

    if manifest.source is not None and manifest.source.type != "local":
        url = manifest.source.url or ""
        if not url.startswith(("http://", "https://")):
            issues.append(("source.url", f"source type '{manifest.source.type}' needs an http(s) url"))



def _validatePackageFiles(
    manifest: InstallationManifest,
    packageRoot: Path,
    report: ManifestReport,
    manifestNames: Sequence[str],
    entryExtensions: Sequence[str],
    digestFile: Callable[[Path], str],
) -> None:
    issues = report.issues
    packageFiles = _listPackageFiles(packageRoot, manifestNames)

    if manifest.files:
        files: list[str] = []
        for idx, rel in enumerate(manifest.files):
            if not isSafeRelativePath(rel):
                issues.append((f"files[{idx}]", f"unsafe path {rel!r}"))
            elif not (packageRoot / rel).is_file():
                issues.append((f"files[{idx}]", f"listed file {rel!r} is not in the package"))
            else:
                files.append(rel.replace("\\", "/"))
    else:
        report.warnings.append("manifest lists no files; installing every file in the package")
        files = packageFiles

    entry = manifest.entry
    if entry:
        if not isSafeRelativePath(entry):
            issues.append(("entry", f"unsafe path {entry!r}"))
            entry = None
        elif not (packageRoot / entry).is_file():
            issues.append(("entry", f"entry file {entry!r} is not in the package"))
            entry = None
        else:
            entry = entry.replace("\\", "/")
    else:
        extensions = {ext.lower() for ext in entryExtensions}
        candidates = [rel for rel in packageFiles if Path(rel).suffix.lower() in extensions]
        if len(candidates) == 1:
            entry = candidates[0]
            report.warnings.append(f"entry point not declared; using '{entry}'")
        else:
            reason = "entry point missing"
            if candidates:
                reason += f" (ambiguous: {', '.join(candidates)})"
            issues.append(("entry", reason))

    if entry and entry not in files:
        files.append(entry)

    report.entry = entry
    report.files = files

    if entry:
        report.checksum = digestFile(packageRoot / entry)
        if manifest.checksum and isSha256Hex(manifest.checksum) and report.checksum != manifest.checksum.lower():
            issues.append(("checksum", f"checksum mismatch for '{entry}'"))



def validateManifest(
    manifest: InstallationManifest,
    *,
    packageRoot: Path | None = None,
    manifestNames: Sequence[str] = ("manifest.json", "manifest.json5"),
    entryExtensions: Sequence[str] = (".dll",),
    digestFile: Callable[[Path], str] = sha256File,
) -> ManifestReport:
    """
    Check a decoded manifest against the package contract.

    Field checks always run. With `packageRoot` the listed files, the entry
    point (auto-detected only when exactly one file has an entry extension)
    and the declared checksum are checked against the unpacked package too.
    Every problem is collected; nothing is raised here.
    """
    report = ManifestReport()
    _validateFields(manifest, report)
    if packageRoot is not None:
        _validatePackageFiles(manifest, packageRoot, report, manifestNames, entryExtensions, digestFile)
    for warning in report.warnings:
        logger.info("Manifest '%s': %s", manifest.id or "?", warning)
    return report
