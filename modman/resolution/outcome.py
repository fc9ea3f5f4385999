# modman/resolution/outcome.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from modman.semver.semver import VersionConflictType

__all__ = [
    "MissingDependency",
    "VersionConflict",
    "CircularDependency",
    "IncompatibilityPair",
    "ResolutionPolicy",
    "ADVISORY_POLICY",
    "BLOCKING_POLICY",
    "ResolutionOutcome",
]



@dataclass(frozen=True, slots=True)
class MissingDependency:
    modId: str
    dependencyId: str
    requiredRange: str | None = None

    def describe(self) -> str:
        wanted = f" ({self.requiredRange})" if self.requiredRange else ""
        return f"'{self.modId}' requires '{self.dependencyId}'{wanted}, which is not installed"



@dataclass(frozen=True, slots=True)
class VersionConflict:
    modId: str
    dependencyId: str
    requiredRange: str | None
    installedVersion: str
    conflictType: VersionConflictType
    message: str = ""

    def describe(self) -> str:
        if self.conflictType is VersionConflictType.INVALID_FORMAT:
            return f"'{self.modId}' -> '{self.dependencyId}': {self.message}"
        if self.conflictType is VersionConflictType.UNSATISFIABLE_RANGE:
            return f"'{self.modId}' requires '{self.dependencyId}' {self.requiredRange}, which no version can satisfy"
        relation = "too old" if self.conflictType is VersionConflictType.TOO_OLD else "too new"
        return (
            f"'{self.modId}' requires '{self.dependencyId}' {self.requiredRange}, "
            f"installed {self.installedVersion} is {relation}"
        )



@dataclass(frozen=True, slots=True)
class CircularDependency:
    modIds: tuple[str, ...]     # Cycle in edge order, start not repeated
    description: str            # "A -> B -> C -> A"

    def describe(self) -> str:
        return f"circular dependency: {self.description}"



@dataclass(frozen=True, slots=True)
class IncompatibilityPair:
    firstId: str                # firstId < secondId
    secondId: str
    reason: str | None = None

    def describe(self) -> str:
        suffix = f": {self.reason}" if self.reason else ""
        return f"'{self.firstId}' and '{self.secondId}' are incompatible{suffix}"



@dataclass(frozen=True, slots=True)
class ResolutionPolicy:
    """Which advisory findings also make canResolve false."""
    blockOnVersionConflict: bool = False
    blockOnIncompatibility: bool = False



ADVISORY_POLICY = ResolutionPolicy()
BLOCKING_POLICY = ResolutionPolicy(blockOnVersionConflict=True, blockOnIncompatibility=True)



@dataclass(frozen=True)
class ResolutionOutcome:
    loadOrder: tuple[str, ...] = ()
    missing: tuple[MissingDependency, ...] = ()
    versionConflicts: tuple[VersionConflict, ...] = ()
    cycles: tuple[CircularDependency, ...] = ()
    incompatibilities: tuple[IncompatibilityPair, ...] = ()
    canResolve: bool = True
    policy: ResolutionPolicy = field(default=ADVISORY_POLICY)

    @property
    def hasFindings(self) -> bool:
        return bool(self.missing or self.versionConflicts or self.cycles or self.incompatibilities)

    def problems(self) -> list[str]:
        """Human readable line per finding."""
        lines: list[str] = []
        for group in (self.missing, self.versionConflicts, self.cycles, self.incompatibilities):
            lines.extend(item.describe() for item in group)
        return lines

    def involving(self, modId: str) -> "ResolutionOutcome":
        """Findings touching `modId` only; loadOrder and policy are kept."""
        return ResolutionOutcome(
            loadOrder=self.loadOrder,
            missing=tuple(item for item in self.missing if modId in (item.modId, item.dependencyId)),
            versionConflicts=tuple(item for item in self.versionConflicts if modId in (item.modId, item.dependencyId)),
            cycles=tuple(item for item in self.cycles if modId in item.modIds),
            incompatibilities=tuple(
                item for item in self.incompatibilities if modId in (item.firstId, item.secondId)
            ),
            canResolve=self.canResolve,
            policy=self.policy,
        )

    def blocks(self, modId: str) -> bool:
        """
        Whether findings touching `modId` forbid changing it. Problems among
        unrelated mods do not block; missing dependencies and cycles always
        do, advisory findings only under a blocking policy.
        """
        relevant = self.involving(modId)
        if relevant.missing or relevant.cycles:
            return True
        if self.policy.blockOnVersionConflict and relevant.versionConflicts:
            return True
        if self.policy.blockOnIncompatibility and relevant.incompatibilities:
            return True
        return False

    def toDict(self) -> dict[str, Any]:
        return {
            "canResolve": self.canResolve,
            "loadOrder": list(self.loadOrder),
            "missing": [
                {"modId": item.modId, "dependencyId": item.dependencyId, "requiredRange": item.requiredRange}
                for item in self.missing
            ],
            "versionConflicts": [
                {
                    "modId": item.modId,
                    "dependencyId": item.dependencyId,
                    "requiredRange": item.requiredRange,
                    "installedVersion": item.installedVersion,
                    "type": item.conflictType.value,
                    "message": item.message,
                }
                for item in self.versionConflicts
            ],
            "cycles": [{"modIds": list(item.modIds), "path": item.description} for item in self.cycles],
            "incompatibilities": [
                {"firstId": item.firstId, "secondId": item.secondId, "reason": item.reason}
                for item in self.incompatibilities
            ],
        }
