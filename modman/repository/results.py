# modman/repository/results.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from modman.mods.models import ModRecord
from modman.resolution.outcome import ResolutionOutcome

__all__ = ["FailureKind", "OperationResult"]



class FailureKind(str, Enum):
    INPUT = "input"                             # Bad archive, manifest, version or range
    NOT_FOUND = "notFound"
    ALREADY_INSTALLED = "alreadyInstalled"
    DUPLICATE = "duplicate"                     # Id appeared in the store while installing
    DEPENDENCY = "dependency"                   # Resolver gate refused the change
    HAS_DEPENDENTS = "hasDependents"            # Uninstall refused, others need the mod
    HOST_RUNNING = "hostRunning"
    RUNTIME_UNAVAILABLE = "runtimeUnavailable"
    FILESYSTEM = "filesystem"                   # Rolled back after an IO failure
    CANCELLED = "cancelled"



@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of a repository call. Expected refusals come back as
    ok=False with a kind and enough detail to tell the user what to do;
    only InconsistentStateError is ever raised past the repository.
    """
    ok: bool
    operation: str
    modId: str | None = None
    kind: FailureKind | None = None
    message: str = ""
    record: ModRecord | None = None
    resolution: ResolutionOutcome | None = None
    dependents: tuple[str, ...] = ()
    issues: tuple[tuple[str, str], ...] = ()    # (field, reason)
    warnings: tuple[str, ...] = ()
    retryable: bool = False

    @classmethod
    def success(cls, operation: str, modId: str | None, message: str = "", **kwargs: Any) -> "OperationResult":
        return cls(ok=True, operation=operation, modId=modId, message=message, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        modId: str | None,
        kind: FailureKind,
        message: str,
        **kwargs: Any,
    ) -> "OperationResult":
        return cls(ok=False, operation=operation, modId=modId, kind=kind, message=message, **kwargs)

    def toDict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": self.ok,
            "operation": self.operation,
            "modId": self.modId,
            "message": self.message,
        }
        if self.kind is not None:
            out["kind"] = self.kind.value
            out["retryable"] = self.retryable
        if self.record is not None:
            out["record"] = self.record.model_dump(mode="json", exclude_none=True)
        if self.resolution is not None:
            out["resolution"] = self.resolution.toDict()
        if self.dependents:
            out["dependents"] = list(self.dependents)
        if self.issues:
            out["issues"] = [{"field": fld, "reason": reason} for fld, reason in self.issues]
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out
