# modman/repository/repository.py
from __future__ import annotations
import asyncio
import contextvars
import logging
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TypeVar

from modman.config.settings import ManagerSettings
from modman.core.errors import (
    FilesystemError,
    HostProcessRunningError,
    InconsistentStateError,
    InputError,
    ManifestValidationError,
    OperationCancelledError,
    RuntimeUnavailableError,
)
from modman.core.logging import logContext
from modman.core.time import utcNow
from modman.install.archive import PackageSource, ZipPackageSource
from modman.install.fileops import BackupInfo, listBackups, movePath, pruneBackups, removePath, setEntryEnabled
from modman.install.probes import (
    ChecksumProvider,
    FileRuntimeStatusProvider,
    MetadataExtractor,
    NullMetadataExtractor,
    ProcessProbe,
    PsutilProcessProbe,
    RuntimeStatusProvider,
    Sha256ChecksumProvider,
)
from modman.install.transaction import InstallStatus, InstallTransaction
from modman.mods.identity import normalizeId
from modman.mods.manifest import Json5ManifestCodec, ManifestCodec
from modman.mods.models import ModRecord
from modman.repository.results import FailureKind, OperationResult
from modman.repository.scanner import PluginScanner
from modman.resolution.outcome import ADVISORY_POLICY, ResolutionOutcome, ResolutionPolicy
from modman.resolution.resolver import mergeCandidates, resolveMods
from modman.store.loadorder import LoadOrderEntry, LoadOrderStore
from modman.store.records import ModStore

logger = logging.getLogger(__name__)

__all__ = ["ModRepository"]

T = TypeVar("T")



class ModRepository:
    """
    The only writer of the installed mod set.

    Mutating calls (install, setEnabled, uninstall, refresh) are coroutines
    serialised by one asyncio.Lock; their file work runs in a worker thread.
    Each follows: snapshot -> resolve the would-be set -> refuse with an
    OperationResult, or mutate -> persist records and load order.
    """

    def __init__(
        self,
        settings: ManagerSettings,
        *,
        store: ModStore | None = None,
        loadOrderStore: LoadOrderStore | None = None,
        packageSource: PackageSource | None = None,
        codec: ManifestCodec | None = None,
        processProbe: ProcessProbe | None = None,
        checksumProvider: ChecksumProvider | None = None,
        runtimeStatus: RuntimeStatusProvider | None = None,
        metadataExtractor: MetadataExtractor | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or ModStore(settings.recordsDir)
        self.loadOrderStore = loadOrderStore or LoadOrderStore(settings.loadOrderPath)
        self.packageSource = packageSource or ZipPackageSource()
        self.codec = codec or Json5ManifestCodec()
        self.processProbe = processProbe or PsutilProcessProbe(settings.hostProcessNames)
        self.checksumProvider = checksumProvider or Sha256ChecksumProvider()
        self.runtimeStatus = runtimeStatus or FileRuntimeStatusProvider(
            settings.gameRoot,
            pluginsDir=settings.pluginsDir,
            requiredFiles=settings.hostRequiredFiles,
            loaderFiles=settings.hostLoaderFiles,
            version=settings.hostFrameworkVersion,
        )
        self.metadataExtractor = metadataExtractor or NullMetadataExtractor()
        self.gatingPolicy = ResolutionPolicy(
            blockOnVersionConflict=settings.blockOnVersionConflict,
            blockOnIncompatibility=settings.blockOnIncompatibility,
        )
        self._writeLock = asyncio.Lock()

    # ----- Read side -----

    def listInstalled(self) -> list[ModRecord]:
        return self.store.loadAll()

    def getMod(self, modId: str) -> ModRecord | None:
        return self.store.get(normalizeId(modId))

    def loadOrder(self) -> list[LoadOrderEntry]:
        return self.loadOrderStore.load()

    def resolve(
        self,
        candidates: Iterable[ModRecord] | None = None,
        *,
        policy: ResolutionPolicy = ADVISORY_POLICY,
    ) -> ResolutionOutcome:
        """Resolve the installed set with `candidates` swapped in. Pure; nothing is written."""
        return resolveMods(mergeCandidates(self.store.loadAll(), candidates or ()), policy)

    def validateMod(self, modId: str) -> OperationResult:
        """Dependencies satisfied, entry file present, checksum unchanged."""
        modId = normalizeId(modId)
        installed = self.store.loadAll()
        record = next((rec for rec in installed if rec.id == modId), None)
        if record is None:
            return OperationResult.failure("validate", modId, FailureKind.NOT_FOUND, f"'{modId}' is not installed")

        issues: list[tuple[str, str]] = []
        resolution = resolveMods(installed, self.gatingPolicy)
        for line in resolution.involving(modId).problems():
            issues.append(("dependencies", line))

        entryPath = record.entryPath
        if entryPath is None:
            issues.append(("entry", "no entry file recorded"))
        else:
            actualPath = entryPath if record.enabled else record.disabledEntryPath
            if actualPath is None or not actualPath.is_file():
                issues.append(("entry", f"entry file missing: '{actualPath}'"))
            elif record.checksum and self.checksumProvider.digestFile(actualPath) != record.checksum.lower():
                issues.append(("checksum", "entry file changed since install"))

        if issues:
            return OperationResult.failure(
                "validate", modId, FailureKind.INPUT, f"'{modId}' has {len(issues)} problem(s)",
                issues=tuple(issues), resolution=resolution,
            )
        return OperationResult.success("validate", modId, f"'{modId}' looks fine", record=record)

    def listBackups(self, modId: str | None = None) -> list[BackupInfo]:
        return listBackups(self.settings.backupsDir, normalizeId(modId) if modId else None)

    def pruneBackups(self, keepCount: int | None = None) -> list[Path]:
        return pruneBackups(self.settings.backupsDir, self.settings.backupKeepCount if keepCount is None else keepCount)

    # ----- Helpers -----

    async def _inWorker(self, fn: Callable[[], T], onCancel: Callable[[], None] | None = None) -> T:
        """
        Run blocking `fn` in the default executor with the caller's log context.
        On cancellation the worker is asked to stop, awaited (so rollback
        finishes and the write lock is not released early), then
        CancelledError propagates.
        """
        loop = asyncio.get_running_loop()
        ctx = contextvars.copy_context()
        future = loop.run_in_executor(None, ctx.run, fn)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            if onCancel is not None:
                onCancel()
            await asyncio.wait({future})
            raise

    def _hostRunningFailure(self, operation: str, modId: str | None) -> OperationResult | None:
        if self.processProbe.isHostProcessRunning():
            return OperationResult.failure(
                operation, modId, FailureKind.HOST_RUNNING,
                "The game is running; close it and try again", retryable=True,
            )
        return None

    def _writeLoadOrder(self, records: list[ModRecord]) -> ResolutionOutcome:
        outcome = resolveMods(records, ADVISORY_POLICY)
        self.loadOrderStore.rewrite(outcome.loadOrder, [normalizeId(rec.id) for rec in records])
        return outcome

    # ----- Install -----

    def _newTransaction(self) -> InstallTransaction:
        return InstallTransaction(
            self.settings,
            packageSource=self.packageSource,
            codec=self.codec,
            processProbe=self.processProbe,
            checksumProvider=self.checksumProvider,
            runtimeStatus=self.runtimeStatus,
            policy=self.gatingPolicy,
        )

    def _installBlocking(self, tx: InstallTransaction, archivePath: Path, overwrite: bool) -> OperationResult:
        installed = self.store.loadAll()
        try:
            outcome = tx.run(archivePath, overwrite=overwrite, installed=installed)
        except HostProcessRunningError as err:
            return OperationResult.failure("install", None, FailureKind.HOST_RUNNING, str(err), retryable=True)
        except RuntimeUnavailableError as err:
            return OperationResult.failure(
                "install", None, FailureKind.RUNTIME_UNAVAILABLE, str(err),
                issues=tuple(("runtime", problem) for problem in err.problems),
            )
        except ManifestValidationError as err:
            return OperationResult.failure(
                "install", None, FailureKind.INPUT, f"Invalid package: {err}", issues=tuple(err.issues),
            )
        except InputError as err:
            return OperationResult.failure(
                "install", None, FailureKind.INPUT, f"Invalid package: {err}", issues=((err.field, err.reason),),
            )
        except OperationCancelledError as err:
            return OperationResult.failure("install", None, FailureKind.CANCELLED, str(err))
        except (FilesystemError, OSError) as err:
            return OperationResult.failure(
                "install", None, FailureKind.FILESYSTEM, f"Install failed and was rolled back: {err}", retryable=True,
            )

        modId = outcome.modId
        warnings = tuple(outcome.warnings)
        if outcome.status is InstallStatus.ALREADY_INSTALLED:
            return OperationResult.failure(
                "install", modId, FailureKind.ALREADY_INSTALLED,
                f"'{modId}' is already installed", warnings=warnings,
            )
        if outcome.status is InstallStatus.DEPENDENCY_BLOCKED:
            assert outcome.resolution is not None
            return OperationResult.failure(
                "install", modId, FailureKind.DEPENDENCY,
                f"Cannot install '{modId}': " + "; ".join(outcome.resolution.involving(modId).problems()),
                resolution=outcome.resolution, warnings=warnings,
            )

        record = outcome.record
        assert record is not None
        previous = next((rec for rec in installed if normalizeId(rec.id) == modId), None)

        # Something else registered the id while we were busy
        if not overwrite and self.store.has(modId):
            tx.rollback()
            logger.error("Duplicate install of '%s' detected after commit; new files removed", modId)
            return OperationResult.failure(
                "install", modId, FailureKind.DUPLICATE,
                f"'{modId}' was registered by someone else during the install; nothing was changed",
            )

        try:
            self.store.save(record)
            if previous is not None and Path(previous.installPath) != record.installDir:
                logger.info("'%s' moved from '%s' to '%s'", modId, previous.installPath, record.installPath)
            self._writeLoadOrder(mergeCandidates(installed, [record]))
        except (FilesystemError, OSError) as err:
            tx.rollback()
            try:
                if previous is not None:
                    self.store.save(previous)
                else:
                    self.store.delete(modId)
            except (FilesystemError, OSError) as restoreErr:
                raise InconsistentStateError(
                    f"install of '{modId}' was rolled back but its record could not be restored: {restoreErr}",
                    modId=modId,
                ) from err
            return OperationResult.failure(
                "install", modId, FailureKind.FILESYSTEM,
                f"Could not record the install, rolled back: {err}", retryable=True,
            )

        tx.finalize()
        return OperationResult.success(
            "install", modId, f"Installed '{modId}' {record.version}",
            record=record, resolution=outcome.resolution, warnings=warnings,
        )

    async def install(self, archivePath: str | Path, *, overwrite: bool = False) -> OperationResult:
        async with self._writeLock:
            tx = self._newTransaction()
            with logContext(operation="install", transactionId=tx.transactionId):
                logger.info("Installing '%s' (overwrite=%s)", archivePath, overwrite)
                return await self._inWorker(
                    lambda: self._installBlocking(tx, Path(archivePath), overwrite),
                    onCancel=tx.requestCancel,
                )

    # ----- Enable / disable -----

    def _setEnabledBlocking(self, modId: str, enabled: bool) -> OperationResult:
        operation = "enable" if enabled else "disable"
        installed = self.store.loadAll()
        record = next((rec for rec in installed if rec.id == modId), None)
        if record is None:
            return OperationResult.failure(operation, modId, FailureKind.NOT_FOUND, f"'{modId}' is not installed")
        if record.enabled == enabled:
            return OperationResult.success(operation, modId, f"'{modId}' is already {operation}d", record=record)

        failure = self._hostRunningFailure(operation, modId)
        if failure is not None:
            return failure

        warnings: list[str] = []
        updated = record.model_copy(update={"enabled": enabled, "updatedAt": utcNow()})
        resolution: ResolutionOutcome | None = None

        if enabled:
            resolution = resolveMods(mergeCandidates(installed, [updated]), self.gatingPolicy)
            if resolution.blocks(modId):
                return OperationResult.failure(
                    operation, modId, FailureKind.DEPENDENCY,
                    f"Cannot enable '{modId}': " + "; ".join(resolution.involving(modId).problems()),
                    resolution=resolution,
                )
            byId = {rec.id: rec for rec in installed}
            for dep in record.dependencies:
                target = byId.get(normalizeId(dep.id))
                if target is not None and not target.enabled:
                    warnings.append(f"dependency '{target.id}' is installed but disabled")
        else:
            dependents = sorted(rec.id for rec in installed if rec.enabled and rec.id != modId and rec.dependsOn(modId))
            if dependents:
                warnings.append(f"enabled mods depend on '{modId}': {', '.join(dependents)}")

        entryPath = record.entryPath
        if entryPath is None:
            return OperationResult.failure(
                operation, modId, FailureKind.INPUT, f"'{modId}' has no entry file to toggle",
                issues=(("entry", "no entry file recorded"),),
            )

        try:
            setEntryEnabled(
                entryPath, enabled,
                attempts=self.settings.ioRetries, delayMs=self.settings.ioRetryDelayMs,
            )
        except FilesystemError as err:
            return OperationResult.failure(operation, modId, FailureKind.FILESYSTEM, str(err), retryable=True)

        try:
            self.store.save(updated)
            self._writeLoadOrder(mergeCandidates(installed, [updated]))
        except (FilesystemError, OSError) as err:
            try:
                setEntryEnabled(
                    entryPath, record.enabled,
                    attempts=self.settings.ioRetries, delayMs=self.settings.ioRetryDelayMs,
                )
                self.store.save(record)
            except (FilesystemError, OSError) as restoreErr:
                raise InconsistentStateError(
                    f"{operation} of '{modId}' failed and could not be undone: {restoreErr}",
                    modId=modId,
                ) from err
            return OperationResult.failure(
                operation, modId, FailureKind.FILESYSTEM, f"Could not record the change, reverted: {err}", retryable=True,
            )

        for warning in warnings:
            logger.warning("%s '%s': %s", operation, modId, warning)
        logger.info("%sd '%s'", operation.capitalize(), modId)
        return OperationResult.success(
            operation, modId, f"'{modId}' {operation}d",
            record=updated, resolution=resolution, warnings=tuple(warnings),
        )

    async def setEnabled(self, modId: str, enabled: bool) -> OperationResult:
        modId = normalizeId(modId)
        async with self._writeLock:
            with logContext(operation="enable" if enabled else "disable", modId=modId):
                return await self._inWorker(lambda: self._setEnabledBlocking(modId, enabled))

    # ----- Uninstall -----

    def _uninstallBlocking(self, modId: str) -> OperationResult:
        installed = self.store.loadAll()
        record = next((rec for rec in installed if rec.id == modId), None)
        if record is None:
            return OperationResult.failure("uninstall", modId, FailureKind.NOT_FOUND, f"'{modId}' is not installed")

        dependents = tuple(sorted(rec.id for rec in installed if rec.id != modId and rec.dependsOn(modId)))
        if dependents:
            return OperationResult.failure(
                "uninstall", modId, FailureKind.HAS_DEPENDENTS,
                f"'{modId}' is required by: {', '.join(dependents)}",
                dependents=dependents,
            )

        failure = self._hostRunningFailure("uninstall", modId)
        if failure is not None:
            return failure

        installDir = record.installDir
        trashRoot = self.settings.workDir / "sessions" / f"uninstall-{uuid.uuid4().hex[:12]}"
        trashDir = trashRoot / modId
        moved = False
        try:
            if installDir.exists():
                movePath(installDir, trashDir)
                moved = True
            self.store.delete(modId)
            self._writeLoadOrder([rec for rec in installed if rec.id != modId])
        except (FilesystemError, OSError) as err:
            try:
                if moved:
                    movePath(trashDir, installDir)
                self.store.save(record)
            except (FilesystemError, OSError) as restoreErr:
                raise InconsistentStateError(
                    f"uninstall of '{modId}' failed and could not be undone: {restoreErr}",
                    modId=modId,
                    backupDir=str(trashDir),
                ) from err
            return OperationResult.failure(
                "uninstall", modId, FailureKind.FILESYSTEM, f"Uninstall failed, nothing changed: {err}", retryable=True,
            )

        try:
            removePath(trashRoot)
        except OSError:
            logger.warning("Could not delete '%s' after uninstall", trashRoot, exc_info=True)

        logger.info("Uninstalled '%s'", modId)
        return OperationResult.success("uninstall", modId, f"Uninstalled '{modId}'", record=record)

    async def uninstall(self, modId: str) -> OperationResult:
        modId = normalizeId(modId)
        async with self._writeLock:
            with logContext(operation="uninstall", modId=modId):
                return await self._inWorker(lambda: self._uninstallBlocking(modId))

    # ----- Refresh -----

    def _refreshBlocking(self) -> list[ModRecord]:
        known = {rec.id: rec for rec in self.store.loadAll()}
        scanner = PluginScanner(
            self.settings.pluginsDir,
            codec=self.codec,
            checksumProvider=self.checksumProvider,
            metadataExtractor=self.metadataExtractor,
            manifestNames=self.settings.manifestNames,
            entryExtensions=self.settings.entryExtensions,
            duplicatePriority=self.settings.duplicatePriority,
        )
        records = scanner.scan(known)
        self.store.replaceAll(records)
        self._writeLoadOrder(records)
        return records

    async def refresh(self) -> list[ModRecord]:
        """Rebuild the record store and load order from the plugins dir."""
        async with self._writeLock:
            with logContext(operation="refresh"):
                return await self._inWorker(self._refreshBlocking)
