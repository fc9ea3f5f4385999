# modman/install/transaction.py
from __future__ import annotations
import logging
import threading
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from modman.config.settings import ManagerSettings
from modman.core.errors import (
    FilesystemError,
    HostProcessRunningError,
    InconsistentStateError,
    InputError,
    OperationCancelledError,
    RuntimeUnavailableError,
)
from modman.core.logging import logContext
from modman.core.time import utcNow
from modman.install.archive import PackageSource, ZipPackageSource, extractArchive
from modman.install.fileops import copyFiles, movePath, newBackupDir, pruneBackups, removePath, retryIo
from modman.install.probes import ChecksumProvider, ProcessProbe, RuntimeStatusProvider, Sha256ChecksumProvider
from modman.mods.identity import normalizeId
from modman.mods.manifest import (
    InstallationManifest,
    Json5ManifestCodec,
    ManifestCodec,
    ManifestReport,
    findManifest,
    validateManifest,
)
from modman.mods.models import ModRecord
from modman.resolution.outcome import BLOCKING_POLICY, ResolutionOutcome, ResolutionPolicy
from modman.resolution.resolver import mergeCandidates, resolveMods
from modman.semver.semver import RangeStatus, satisfiesRange

logger = logging.getLogger(__name__)

__all__ = [
    "InstallPhase",
    "InstallStatus",
    "CancelToken",
    "TransactionContext",
    "InstallOutcome",
    "InstallTransaction",
]

_ALLOWED: dict[str, set[str]] = {
    "idle": {"extracting"},
    "extracting": {"manifestValidating"},
    "manifestValidating": {"dependencyGating", "refused"},
    "dependencyGating": {"staging", "refused"},
    "staging": {"committing"},
    "committing": {"done"},
    "done": set(),
    "refused": set(),
    "rollingBack": set(),
    "failed": set(),
}



class InstallPhase(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    MANIFEST_VALIDATING = "manifestValidating"
    DEPENDENCY_GATING = "dependencyGating"
    STAGING = "staging"
    COMMITTING = "committing"
    DONE = "done"
    REFUSED = "refused"                         # Already installed or blocked by the dependency gate; nothing written
    ROLLING_BACK = "rollingBack"
    FAILED = "failed"



class InstallStatus(str, Enum):
    INSTALLED = "installed"
    ALREADY_INSTALLED = "alreadyInstalled"
    DEPENDENCY_BLOCKED = "dependencyBlocked"



class CancelToken:
    """Cooperative cancellation flag, checked by the transaction between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def isCancelled(self) -> bool:
        return self._event.is_set()

    def raiseIfCancelled(self, where: str) -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"cancelled before {where}")



@dataclass
class TransactionContext:
    sessionDir: Path
    extractDir: Path
    stagingDir: Path
    targetDir: Path | None = None
    previousDir: Path | None = None             # Existing install that gets backed up on overwrite
    backupDir: Path | None = None
    commitStarted: bool = False
    backupMoved: bool = False
    targetWritten: bool = False



@dataclass
class InstallOutcome:
    status: InstallStatus
    modId: str
    manifest: InstallationManifest
    record: ModRecord | None = None
    resolution: ResolutionOutcome | None = None
    warnings: list[str] = field(default_factory=list)
    backupDir: Path | None = None

    @property
    def installed(self) -> bool:
        return self.status is InstallStatus.INSTALLED



class InstallTransaction:
    """
    One install of one package archive, all or nothing.

        idle -> extracting -> manifestValidating -> dependencyGating
             -> staging -> committing -> done
        manifestValidating | dependencyGating --refusal--> refused
        any step --error--> rollingBack -> failed

    run() returns an InstallOutcome for success and for expected refusals
    (already installed, dependency gate). Anything else rolls back and is
    re-raised; a rollback that cannot clear a partly written destination or
    restore the previous install raises InconsistentStateError instead.
    After a successful run the backup is kept until finalize() (or undone
    by rollback()), so the caller can persist first and still roll back if
    that fails.
    """

    def __init__(
        self,
        settings: ManagerSettings,
        *,
        packageSource: PackageSource | None = None,
        codec: ManifestCodec | None = None,
        processProbe: ProcessProbe | None = None,
        checksumProvider: ChecksumProvider | None = None,
        runtimeStatus: RuntimeStatusProvider | None = None,
        policy: ResolutionPolicy = BLOCKING_POLICY,
        cancelToken: CancelToken | None = None,
        transactionId: str | None = None,
    ) -> None:
        self.settings = settings
        self.packageSource = packageSource or ZipPackageSource()
        self.codec = codec or Json5ManifestCodec()
        self.processProbe = processProbe
        self.checksumProvider = checksumProvider or Sha256ChecksumProvider()
        self.runtimeStatus = runtimeStatus
        self.policy = policy
        self.cancelToken = cancelToken or CancelToken()
        self.transactionId = transactionId or uuid.uuid4().hex[:12]

        self.phase = InstallPhase.IDLE
        self.history: list[InstallPhase] = [InstallPhase.IDLE]
        self.context: TransactionContext | None = None
        self.error: BaseException | None = None
        self._runtimeVersion: str | None = None

    # ----- State machine -----

    def _enter(self, phase: InstallPhase) -> None:
        if phase.value not in _ALLOWED[self.phase.value]:
            raise RuntimeError(f"Illegal transaction transition {self.phase.value} -> {phase.value}")
        logger.debug("Transaction %s: %s -> %s", self.transactionId, self.phase.value, phase.value)
        self.phase = phase
        self.history.append(phase)

    def _io(self, what: str, fn, path: Path | None = None):
        return retryIo(
            fn,
            what=what,
            attempts=self.settings.ioRetries,
            delayMs=self.settings.ioRetryDelayMs,
            path=path,
        )

    def requestCancel(self) -> None:
        self.cancelToken.cancel()

    # ----- Session dir -----

    @contextmanager
    def _session(self) -> Iterator[TransactionContext]:
        sessionDir = self.settings.workDir / "sessions" / self.transactionId
        ctx = TransactionContext(
            sessionDir=sessionDir,
            extractDir=sessionDir / "extract",
            stagingDir=sessionDir / "staging",
        )
        ctx.extractDir.mkdir(parents=True, exist_ok=True)
        self.context = ctx
        try:
            yield ctx
        finally:
            try:
                removePath(sessionDir)
            except OSError:
                logger.warning("Could not remove session dir '%s'", sessionDir, exc_info=True)

    # ----- Steps -----

    def _checkPreconditions(self) -> None:
        if self.processProbe is not None and self.processProbe.isHostProcessRunning():
            raise HostProcessRunningError("The game is running; close it before changing mods")

        if self.runtimeStatus is not None:
            status = self.runtimeStatus.status()
            if not status.healthy:
                raise RuntimeUnavailableError(
                    f"Mod framework is {status.state.value}: {'; '.join(status.problems)}",
                    problems=status.problems,
                )
            self._runtimeVersion = status.version

    def _validate(self, ctx: TransactionContext) -> tuple[InstallationManifest, Path, ManifestReport]:
        manifestPath = findManifest(ctx.extractDir, self.settings.manifestNames)
        if manifestPath is None:
            raise InputError("manifest", f"no {' / '.join(self.settings.manifestNames)} at the package root or one level below")

        manifest = self.codec.parse(manifestPath.read_bytes())
        packageRoot = manifestPath.parent
        report = validateManifest(
            manifest,
            packageRoot=packageRoot,
            manifestNames=self.settings.manifestNames,
            entryExtensions=self.settings.entryExtensions,
            digestFile=self.checksumProvider.digestFile,
        )
        report.raiseIfInvalid()

        if self._runtimeVersion:
            check = satisfiesRange(self._runtimeVersion, manifest.compatibleHost)
            if check.status is not RangeStatus.SATISFIED:
                raise InputError(
                    "compatible_bepinex",
                    f"needs framework {manifest.compatibleHost}, installed {self._runtimeVersion}",
                )
        return manifest, packageRoot, report

    def _commit(self, ctx: TransactionContext, modId: str) -> None:
        assert ctx.targetDir is not None
        ctx.commitStarted = True

        if ctx.previousDir is not None and ctx.previousDir.exists():
            ctx.backupDir = newBackupDir(self.settings.backupsDir, modId)
            backupDir = ctx.backupDir
            previousDir = ctx.previousDir
            self._io("back up existing install", lambda: movePath(previousDir, backupDir), previousDir)
            ctx.backupMoved = True
            logger.info("Backed up '%s' to '%s'", previousDir, backupDir)

        targetDir = ctx.targetDir
        if targetDir.exists():
            raise FilesystemError(f"install target still occupied: '{targetDir}'", path=str(targetDir))

        ctx.targetWritten = True
        self._io("move staged files into place", lambda: movePath(ctx.stagingDir, targetDir), targetDir)

    # ----- Public API -----

    def run(self, archivePath: Path, *, overwrite: bool, installed: Sequence[ModRecord]) -> InstallOutcome:
        archivePath = Path(archivePath)
        with logContext(operation="install", transactionId=self.transactionId):
            try:
                self._checkPreconditions()
                self.cancelToken.raiseIfCancelled("extracting")
                with self._session() as ctx:
                    return self._runSteps(ctx, archivePath, overwrite, list(installed))
            except BaseException as err:
                self.error = err
                logger.warning(
                    "Install of '%s' failed in %s: %s", archivePath.name, self.phase.value, err,
                )
                try:
                    self.rollback()
                except InconsistentStateError as rollbackErr:
                    raise rollbackErr from err
                raise

    def _runSteps(
        self,
        ctx: TransactionContext,
        archivePath: Path,
        overwrite: bool,
        installed: list[ModRecord],
    ) -> InstallOutcome:
        self._enter(InstallPhase.EXTRACTING)
        extractArchive(
            self.packageSource,
            archivePath,
            ctx.extractDir,
            blockedExtensions=self.settings.blockedExtensions,
        )

        self.cancelToken.raiseIfCancelled("manifest validation")
        self._enter(InstallPhase.MANIFEST_VALIDATING)
        manifest, packageRoot, report = self._validate(ctx)
        modId = normalizeId(manifest.id)

        with logContext(modId=modId):
            ctx.targetDir = self.settings.pluginsDir / modId
            existing = next((rec for rec in installed if normalizeId(rec.id) == modId), None)
            alreadyThere = existing is not None or ctx.targetDir.exists()

            if alreadyThere and not overwrite:
                logger.info("'%s' is already installed; overwrite not requested", modId)
                self._enter(InstallPhase.REFUSED)
                return InstallOutcome(InstallStatus.ALREADY_INSTALLED, modId, manifest, warnings=list(report.warnings))

            if existing is not None and Path(existing.installPath).exists():
                ctx.previousDir = Path(existing.installPath)
            elif ctx.targetDir.exists():
                ctx.previousDir = ctx.targetDir

            self.cancelToken.raiseIfCancelled("dependency gating")
            self._enter(InstallPhase.DEPENDENCY_GATING)
            now = utcNow()
            candidate = manifest.toRecord(
                installPath=ctx.targetDir,
                entry=report.entry,
                checksum=report.checksum,
                installedAt=existing.installedAt if existing else now,
            )
            if existing is not None:
                candidate = candidate.model_copy(update={"updatedAt": now})

            resolution = resolveMods(mergeCandidates(installed, [candidate]), self.policy)
            if resolution.blocks(modId):
                logger.info("Install of '%s' blocked by dependencies: %s", modId, "; ".join(resolution.involving(modId).problems()))
                self._enter(InstallPhase.REFUSED)
                return InstallOutcome(
                    InstallStatus.DEPENDENCY_BLOCKED, modId, manifest,
                    resolution=resolution, warnings=list(report.warnings),
                )

            self.cancelToken.raiseIfCancelled("staging")
            self._enter(InstallPhase.STAGING)
            copyFiles(packageRoot, report.files, ctx.stagingDir)
            staged = manifest.model_copy(update={"entry": report.entry, "files": list(report.files)})
            (ctx.stagingDir / "manifest.json").write_bytes(self.codec.serialize(staged))

            self.cancelToken.raiseIfCancelled("commit")
            # No cancellation from here on
            self._enter(InstallPhase.COMMITTING)
            self._commit(ctx, modId)

            self._enter(InstallPhase.DONE)
            logger.info("Installed '%s' %s into '%s'", modId, manifest.version, ctx.targetDir)
            return InstallOutcome(
                InstallStatus.INSTALLED, modId, manifest,
                record=candidate,
                resolution=resolution,
                warnings=list(report.warnings),
                backupDir=ctx.backupDir,
            )

    def rollback(self) -> None:
        """
        Undo whatever this transaction wrote. Safe to call repeatedly and on
        a transaction that never got far; raises InconsistentStateError when
        a partly written destination cannot be removed or a backed-up install
        cannot be put back.
        """
        ctx = self.context
        self.phase = InstallPhase.ROLLING_BACK
        self.history.append(InstallPhase.ROLLING_BACK)

        if ctx is not None:
            if ctx.targetWritten and ctx.targetDir is not None:
                targetDir = ctx.targetDir
                try:
                    self._io("remove partial install", lambda: removePath(targetDir), targetDir)
                except FilesystemError as err:
                    raise InconsistentStateError(
                        f"could not clear partly written install '{targetDir}': {err}",
                        modId=targetDir.name,
                        backupDir=str(ctx.backupDir) if ctx.backupMoved else None,
                    ) from err
                ctx.targetWritten = False

            if ctx.backupMoved and ctx.backupDir is not None and ctx.previousDir is not None:
                backupDir, previousDir = ctx.backupDir, ctx.previousDir
                try:
                    self._io("restore backup", lambda: movePath(backupDir, previousDir), backupDir)
                except FilesystemError as err:
                    raise InconsistentStateError(
                        f"could not restore '{previousDir}' from backup '{backupDir}': {err}",
                        modId=previousDir.name,
                        backupDir=str(backupDir),
                    ) from err
                ctx.backupMoved = False
                ctx.backupDir = None
                logger.info("Restored previous install '%s' from backup", previousDir)

            ctx.commitStarted = False
            removePath(ctx.stagingDir)

        self.phase = InstallPhase.FAILED
        self.history.append(InstallPhase.FAILED)

    def finalize(self) -> None:
        """Drop the backup of a successful overwrite (kept when keepBackupOnSuccess is on) and prune old ones."""
        ctx = self.context
        if self.phase is not InstallPhase.DONE or ctx is None:
            return
        if ctx.backupDir is not None and not self.settings.keepBackupOnSuccess:
            backupDir = ctx.backupDir
            try:
                self._io("delete backup", lambda: removePath(backupDir), backupDir)
                ctx.backupDir = None
            except FilesystemError:
                logger.warning("Backup '%s' left behind", backupDir, exc_info=True)
        ctx.backupMoved = False
        ctx.commitStarted = False
        ctx.targetWritten = False
        if self.settings.keepBackupOnSuccess:
            pruneBackups(self.settings.backupsDir, self.settings.backupKeepCount)
