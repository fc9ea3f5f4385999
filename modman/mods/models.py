# modman/mods/models.py
from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from modman.core.time import utcNow
from modman.mods.identity import normalizeId

__all__ = [
    "SourceType",
    "ModDependency",
    "ModIncompatibility",
    "ModSource",
    "PluginMetadata",
    "ModRecord",
    "DISABLED_SUFFIX",
]

DISABLED_SUFFIX = ".disabled"

SourceType = Literal["thunderstore", "github", "local", "url"]



class ModDependency(BaseModel):
    """Hard dependency on another mod; `minVersion` holds a version range ("1.2.0", ">=1.2 <2", "[1.0,2.0)")."""
    model_config = ConfigDict(extra="forbid")

    id: str
    minVersion: str | None = None
    optional: bool = False

    @model_validator(mode="before")
    @classmethod
    def fromPlainId(cls, data: Any) -> Any:
        # Manifests may list dependencies as bare ids
        if isinstance(data, str):
            return {"id": data}
        return data



class ModIncompatibility(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    reason: str | None = None

    @model_validator(mode="before")
    @classmethod
    def fromPlainId(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"id": data}
        return data



class ModSource(BaseModel):
    """Where the package came from (provenance only, never fetched)."""
    model_config = ConfigDict(extra="forbid")

    type: SourceType = "local"
    url: str | None = None



class PluginMetadata(BaseModel):
    """Plain metadata record produced by a MetadataExtractor for a loose plugin binary."""
    model_config = ConfigDict(extra="forbid")

    guid: str
    name: str | None = None
    version: str | None = None
    dependencies: list[ModDependency] = Field(default_factory=list)
    incompatibleWith: list[str] = Field(default_factory=list)



class ModRecord(BaseModel):
    """Persisted state of one installed mod."""
    model_config = ConfigDict(extra="forbid")

    id: str                                     # Canonical id (normalized, lowercase)
    name: str
    version: str
    author: str | None = None
    description: str | None = None
    dependencies: list[ModDependency] = Field(default_factory=list)
    incompatibleWith: list[ModIncompatibility] = Field(default_factory=list)
    loadAfter: list[str] = Field(default_factory=list)      # Soft ordering hints
    loadBefore: list[str] = Field(default_factory=list)
    enabled: bool = True
    installPath: str                            # Absolute install dir
    entry: str | None = None                    # Entry file, relative to installPath
    checksum: str | None = None                 # sha256 of the entry file
    installedAt: datetime = Field(default_factory=utcNow)
    updatedAt: datetime | None = None
    source: ModSource | None = None
    tags: list[str] = Field(default_factory=list)
    websiteUrl: str | None = None
    metadata: PluginMetadata | None = None

    @property
    def installDir(self) -> Path:
        return Path(self.installPath)

    @property
    def entryPath(self) -> Path | None:
        if not self.entry:
            return None
        return self.installDir / self.entry

    @property
    def disabledEntryPath(self) -> Path | None:
        entryPath = self.entryPath
        if entryPath is None:
            return None
        return entryPath.with_name(entryPath.name + DISABLED_SUFFIX)

    def metadataScore(self) -> int:
        """How much optional metadata the record carries; used to pick between duplicates."""
        score = 0
        for value in (self.author, self.description, self.checksum, self.websiteUrl, self.source, self.metadata):
            if value:
                score += 1
        score += len(self.dependencies) + len(self.tags)
        return score

    def dependsOn(self, modId: str, *, includeOptional: bool = False) -> bool:
        target = normalizeId(modId)
        for dep in self.dependencies:
            if normalizeId(dep.id) == target and (includeOptional or not dep.optional):
                return True
        return False
