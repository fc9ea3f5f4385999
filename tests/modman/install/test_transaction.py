# tests/modman/install/test_transaction.py
from pathlib import Path

import pytest

import modman.install.transaction as transaction
from modman.config.settings import loadSettings
from modman.core.errors import (
    FilesystemError,
    HostProcessRunningError,
    InconsistentStateError,
    InputError,
    ManifestValidationError,
    OperationCancelledError,
    RuntimeUnavailableError,
    UnsafeArchiveError,
)
from modman.install.archive import ZipPackageSource
from modman.install.fileops import listBackups
from modman.install.probes import RuntimeState
from modman.install.transaction import CancelToken, InstallPhase, InstallStatus, InstallTransaction

FULL_PATH = [
    InstallPhase.IDLE,
    InstallPhase.EXTRACTING,
    InstallPhase.MANIFEST_VALIDATING,
    InstallPhase.DEPENDENCY_GATING,
    InstallPhase.STAGING,
    InstallPhase.COMMITTING,
    InstallPhase.DONE,
]


@pytest.fixture
def newTx(settings, processProbe, runtimeStatus):
    def _new(**kwargs) -> InstallTransaction:
        kwargs.setdefault("processProbe", processProbe)
        kwargs.setdefault("runtimeStatus", runtimeStatus)
        return InstallTransaction(kwargs.pop("settings", settings), **kwargs)
    return _new


def _installV1(newTx, makePackage, manifestOf):
    tx = newTx()
    outcome = tx.run(makePackage(manifestOf("author.mod", "1.0.0"), {"Plugin.dll": b"v1"}), overwrite=False, installed=[])
    tx.finalize()
    return outcome.record


# ---- Happy path ---- #

def test_run_installs_and_walks_every_phase(settings, newTx, makePackage, manifestOf):
    tx = newTx()
    outcome = tx.run(makePackage(manifestOf("Author.Mod")), overwrite=False, installed=[])

    assert outcome.status is InstallStatus.INSTALLED
    assert outcome.modId == "author.mod"
    assert tx.history == FULL_PATH
    target = settings.pluginsDir / "author.mod"
    assert (target / "Plugin.dll").read_bytes() == b"plugin-bytes"
    assert (target / "manifest.json").is_file()
    assert outcome.record.entry == "Plugin.dll"
    assert outcome.record.installPath == str(target)
    assert not (settings.workDir / "sessions" / tx.transactionId).exists()


def test_run_unwraps_single_top_level_folder(settings, newTx, makePackage, manifestOf):
    archive = makePackage(manifestOf("author.mod"), {"Plugin.dll": b"x", "cfg/a.cfg": b"c"}, wrapDir="Mod-1.0.0")
    newTx().run(archive, overwrite=False, installed=[])
    target = settings.pluginsDir / "author.mod"
    assert (target / "Plugin.dll").is_file()
    assert (target / "cfg" / "a.cfg").is_file()


def test_staged_manifest_records_entry_and_files(settings, newTx, makePackage, manifestOf):
    newTx().run(makePackage(manifestOf("author.mod")), overwrite=False, installed=[])
    text = (settings.pluginsDir / "author.mod" / "manifest.json").read_text()
    assert '"entry": "Plugin.dll"' in text
    assert '"files"' in text


# ---- Refusals ---- #

def test_already_installed_leaves_destination_untouched(settings, newTx, makePackage, manifestOf, snapshot):
    _installV1(newTx, makePackage, manifestOf)
    before = snapshot(settings.pluginsDir)

    tx = newTx()
    outcome = tx.run(makePackage(manifestOf("author.mod", "2.0.0"), {"Plugin.dll": b"v2"}), overwrite=False, installed=[])

    assert outcome.status is InstallStatus.ALREADY_INSTALLED
    assert tx.phase is InstallPhase.REFUSED
    assert InstallPhase.DONE not in tx.history
    assert snapshot(settings.pluginsDir) == before


def test_missing_dependency_blocks_install(settings, newTx, makePackage, manifestOf):
    manifest = manifestOf("feature-x", dependencies=[{"id": "libcore", "minVersion": ">=1.0.0"}])
    tx = newTx()
    outcome = tx.run(makePackage(manifest), overwrite=False, installed=[])

    assert outcome.status is InstallStatus.DEPENDENCY_BLOCKED
    assert tx.history[-2:] == [InstallPhase.DEPENDENCY_GATING, InstallPhase.REFUSED]
    assert [m.dependencyId for m in outcome.resolution.missing] == ["libcore"]
    assert not (settings.pluginsDir / "feature-x").exists()


def test_host_running_refused_before_extraction(settings, newTx, processProbe, makePackage, manifestOf, snapshot):
    processProbe.running = True
    before = snapshot(settings.pluginsDir)
    tx = newTx()
    with pytest.raises(HostProcessRunningError):
        tx.run(makePackage(manifestOf("author.mod")), overwrite=False, installed=[])
    assert tx.phase is InstallPhase.FAILED
    assert InstallPhase.EXTRACTING not in tx.history
    assert snapshot(settings.pluginsDir) == before


@pytest.mark.parametrize("state", [RuntimeState.NOT_INSTALLED, RuntimeState.CORRUPT])
def test_unhealthy_runtime_refused(settings, newTx, runtimeStatus, makePackage, manifestOf, state):
    runtimeStatus.state = state
    with pytest.raises(RuntimeUnavailableError) as info:
        newTx().run(makePackage(manifestOf("author.mod")), overwrite=False, installed=[])
    assert info.value.problems
    assert not (settings.pluginsDir / "author.mod").exists()


def test_incompatible_framework_version(settings, newTx, makePackage, manifestOf):
    manifest = manifestOf("author.mod", compatible_bepinex=">=6.0.0")
    with pytest.raises(InputError) as info:
        newTx().run(makePackage(manifest), overwrite=False, installed=[])
    assert info.value.field == "compatible_bepinex"


def test_invalid_manifest_reports_all_issues(settings, newTx, makePackage):
    with pytest.raises(ManifestValidationError) as info:
        newTx().run(makePackage({"id": "author.mod"}), overwrite=False, installed=[])
    assert [fieldName for fieldName, _ in info.value.issues] == ["name", "version"]
    assert not (settings.pluginsDir / "author.mod").exists()


def test_missing_manifest(newTx, makePackage):
    with pytest.raises(InputError) as info:
        newTx().run(makePackage(None), overwrite=False, installed=[])
    assert info.value.field == "manifest"


def test_path_traversal_rejected_and_nothing_written(tmp_path, settings, newTx, makePackage, manifestOf):
    archive = makePackage(manifestOf("author.mod"), rawEntries={"../evil.dll": b"evil"})
    tx = newTx()
    with pytest.raises(UnsafeArchiveError):
        tx.run(archive, overwrite=False, installed=[])
    assert list(tmp_path.rglob("evil.dll")) == []
    assert not (settings.pluginsDir / "author.mod").exists()
    assert tx.phase is InstallPhase.FAILED


# ---- Overwrite, backup and rollback ---- #

def test_overwrite_backs_up_then_finalize_drops_backup(settings, newTx, makePackage, manifestOf):
    record = _installV1(newTx, makePackage, manifestOf)
    tx = newTx()
    outcome = tx.run(makePackage(manifestOf("author.mod", "2.0.0"), {"Plugin.dll": b"v2"}), overwrite=True, installed=[record])

    assert outcome.installed
    assert outcome.record.updatedAt is not None
    assert outcome.record.installedAt == record.installedAt
    assert (outcome.backupDir / "Plugin.dll").read_bytes() == b"v1"
    assert (settings.pluginsDir / "author.mod" / "Plugin.dll").read_bytes() == b"v2"

    tx.finalize()
    assert not outcome.backupDir.exists()
    assert listBackups(settings.backupsDir) == []


def test_finalize_keeps_backups_when_configured(gameRoot, processProbe, runtimeStatus, makePackage, manifestOf):
    settings = loadSettings(overrides={
        "paths": {"gameRoot": str(gameRoot)},
        "install": {"keepBackupOnSuccess": True, "backupKeepCount": 1, "ioRetries": 1, "ioRetryDelayMs": 0},
    })

    def newTx():
        return InstallTransaction(settings, processProbe=processProbe, runtimeStatus=runtimeStatus)

    record = _installV1(newTx, makePackage, manifestOf)
    for version in ("2.0.0", "3.0.0"):
        tx = newTx()
        outcome = tx.run(makePackage(manifestOf("author.mod", version)), overwrite=True, installed=[record])
        tx.finalize()
        record = outcome.record

    backups = listBackups(settings.backupsDir, "author.mod")
    assert len(backups) == 1


def test_rollback_after_success_restores_previous_install(settings, newTx, makePackage, manifestOf, snapshot):
    record = _installV1(newTx, makePackage, manifestOf)
    before = snapshot(settings.pluginsDir)

    tx = newTx()
    tx.run(makePackage(manifestOf("author.mod", "2.0.0"), {"Plugin.dll": b"v2"}), overwrite=True, installed=[record])
    tx.rollback()
    tx.rollback()

    assert tx.phase is InstallPhase.FAILED
    assert snapshot(settings.pluginsDir) == before


def test_commit_move_failure_keeps_previous_install(settings, newTx, makePackage, manifestOf, snapshot, monkeypatch):
    record = _installV1(newTx, makePackage, manifestOf)
    before = snapshot(settings.pluginsDir)
    realMove = transaction.movePath

    def flakyMove(src: Path, dst: Path) -> None:
        if src.name == "staging":
            raise PermissionError("locked")
        realMove(src, dst)

    monkeypatch.setattr(transaction, "movePath", flakyMove)
    tx = newTx()
    with pytest.raises(FilesystemError):
        tx.run(makePackage(manifestOf("author.mod", "2.0.0"), {"Plugin.dll": b"v2"}), overwrite=True, installed=[record])

    assert tx.phase is InstallPhase.FAILED
    assert InstallPhase.ROLLING_BACK in tx.history
    assert snapshot(settings.pluginsDir) == before
    assert listBackups(settings.backupsDir) == []


def test_failed_restore_raises_inconsistent_state(settings, newTx, makePackage, manifestOf, monkeypatch):
    record = _installV1(newTx, makePackage, manifestOf)
    realMove = transaction.movePath

    def brokenMove(src: Path, dst: Path) -> None:
        if src.name == "staging" or ".backup." in src.name:
            raise PermissionError("locked")
        realMove(src, dst)

    monkeypatch.setattr(transaction, "movePath", brokenMove)
    with pytest.raises(InconsistentStateError) as info:
        newTx().run(makePackage(manifestOf("author.mod", "2.0.0")), overwrite=True, installed=[record])

    assert info.value.backupDir
    assert (Path(info.value.backupDir) / "Plugin.dll").read_bytes() == b"v1"
    assert isinstance(info.value.__cause__, FilesystemError)


def test_uncleared_partial_install_raises_inconsistent_state(settings, newTx, makePackage, manifestOf, monkeypatch):
    target = settings.pluginsDir / "author.mod"
    realRemove = transaction.removePath

    def halfMove(src: Path, dst: Path) -> None:
        dst.mkdir(parents=True)
        (dst / "half.dll").write_bytes(b"half")
        raise OSError("disk full")

    def lockedRemove(path: Path) -> bool:
        if path == target:
            raise PermissionError("locked")
        return realRemove(path)

    monkeypatch.setattr(transaction, "movePath", halfMove)
    monkeypatch.setattr(transaction, "removePath", lockedRemove)
    tx = newTx()
    with pytest.raises(InconsistentStateError) as info:
        tx.run(makePackage(manifestOf("author.mod")), overwrite=False, installed=[])

    assert info.value.modId == "author.mod"
    assert info.value.backupDir is None
    assert isinstance(info.value.__cause__, FilesystemError)
    assert (target / "half.dll").is_file()


# ---- Cancellation ---- #

def test_cancel_before_start(settings, newTx, makePackage, manifestOf):
    token = CancelToken()
    token.cancel()
    tx = newTx(cancelToken=token)
    with pytest.raises(OperationCancelledError):
        tx.run(makePackage(manifestOf("author.mod")), overwrite=False, installed=[])
    assert tx.phase is InstallPhase.FAILED
    assert not (settings.pluginsDir / "author.mod").exists()


def test_cancel_during_extraction_rolls_back(settings, newTx, makePackage, manifestOf):
    token = CancelToken()

    class CancellingSource(ZipPackageSource):
        def openArchive(self, path):
            yield from super().openArchive(path)
            token.cancel()

    tx = newTx(cancelToken=token, packageSource=CancellingSource())
    with pytest.raises(OperationCancelledError):
        tx.run(makePackage(manifestOf("author.mod")), overwrite=False, installed=[])

    assert tx.history[:2] == [InstallPhase.IDLE, InstallPhase.EXTRACTING]
    assert InstallPhase.MANIFEST_VALIDATING not in tx.history
    assert not (settings.pluginsDir / "author.mod").exists()
    assert not (settings.workDir / "sessions" / tx.transactionId).exists()
