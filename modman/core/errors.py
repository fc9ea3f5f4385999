# modman/core/errors.py
from __future__ import annotations

__all__ = [
    "ModManagerError",
    "InputError",
    "ManifestParseError",
    "ManifestValidationError",
    "UnsafeArchiveError",
    "FilesystemError",
    "InconsistentStateError",
    "HostProcessRunningError",
    "RuntimeUnavailableError",
    "OperationCancelledError",
]



class ModManagerError(Exception):
    """Base class for every error raised by modman."""



class InputError(ModManagerError):
    """
    Malformed archive, manifest, version or range.

    Always raised before the destination is touched. Carries the offending
    field (dotted path into the manifest, or "archive") and a reason.
    """
    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason



class ManifestParseError(InputError):
    """Raised by ManifestCodec when the descriptor cannot be decoded."""
    def __init__(self, reason: str) -> None:
        super().__init__("manifest", reason)



class ManifestValidationError(InputError):
    """Manifest decoded fine but breaks the package contract; `issues` holds every (field, reason) found."""
    def __init__(self, issues: list[tuple[str, str]]) -> None:
        field, reason = issues[0]
        super().__init__(field, reason)
        self.issues = list(issues)



class UnsafeArchiveError(InputError):
    """Archive entry escapes the extraction dir, is absolute, or is blocked."""
    def __init__(self, entryPath: str, reason: str) -> None:
        super().__init__("archive", f"{reason}: {entryPath!r}")
        self.entryPath = entryPath



class FilesystemError(ModManagerError):
    """Lock, permission or IO failure during copy/move/delete."""
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path



class InconsistentStateError(ModManagerError):
    """
    Rollback itself failed (e.g. the backup could not be moved back).

    The filesystem may be half-applied. Callers must surface this to the user
    and must never retry automatically.
    """
    def __init__(self, message: str, *, modId: str | None = None, backupDir: str | None = None) -> None:
        super().__init__(message)
        self.modId = modId
        self.backupDir = backupDir



class HostProcessRunningError(ModManagerError):
    """The host game is running; destination files may be locked. Retry after closing it."""
    retryable = True



class RuntimeUnavailableError(ModManagerError):
    """Host mod framework missing or broken; nothing can be installed until it is repaired."""
    def __init__(self, message: str, *, problems: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.problems = problems



class OperationCancelledError(ModManagerError):
    """Cooperative cancellation observed between transaction steps."""
