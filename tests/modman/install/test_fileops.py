# tests/modman/install/test_fileops.py
import pytest

from modman.core.errors import FilesystemError
from modman.install.fileops import (
    atomicWriteText,
    copyFiles,
    listBackups,
    movePath,
    newBackupDir,
    pruneBackups,
    removePath,
    retryIo,
    setEntryEnabled,
)


def test_retryIo_retries_transient_errors():
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise PermissionError("locked")
        return "ok"

    assert retryIo(flaky, what="flaky", attempts=3, delayMs=0) == "ok"
    assert calls["n"] == 3


def test_retryIo_gives_up_with_filesystem_error(tmp_path):
    def locked():
        raise PermissionError("locked")

    with pytest.raises(FilesystemError) as info:
        retryIo(locked, what="write", attempts=2, delayMs=0, path=tmp_path)
    assert info.value.path == str(tmp_path)
    assert isinstance(info.value.__cause__, PermissionError)


def test_retryIo_does_not_retry_missing_files():
    calls = {"n": 0}

    def missing():
        calls["n"] += 1
        raise FileNotFoundError("gone")

    with pytest.raises(FilesystemError):
        retryIo(missing, what="read", attempts=5, delayMs=0)
    assert calls["n"] == 1


def test_atomicWriteText(tmp_path):
    path = tmp_path / "sub" / "f.json5"
    atomicWriteText(path, "{}")
    assert path.read_text() == "{}\n"
    assert not path.with_suffix(".json5.tmp").exists()


def test_move_copy_remove(tmp_path):
    src = tmp_path / "src"
    (src / "a").mkdir(parents=True)
    (src / "a" / "f.txt").write_text("x")
    copyFiles(src, ["a/f.txt"], tmp_path / "copy")
    assert (tmp_path / "copy" / "a" / "f.txt").read_text() == "x"

    movePath(src, tmp_path / "moved")
    assert not src.exists()
    with pytest.raises(FilesystemError):
        movePath(tmp_path / "copy", tmp_path / "moved")

    assert removePath(tmp_path / "moved") is True
    assert removePath(tmp_path / "moved") is False


def test_setEntryEnabled_toggles_by_rename(tmp_path):
    entry = tmp_path / "Mod.dll"
    entry.write_bytes(b"x")

    assert setEntryEnabled(entry, False, attempts=1, delayMs=0) is True
    assert not entry.exists()
    assert (tmp_path / "Mod.dll.disabled").exists()
    assert setEntryEnabled(entry, False, attempts=1, delayMs=0) is False

    assert setEntryEnabled(entry, True, attempts=1, delayMs=0) is True
    assert entry.exists()


def test_setEntryEnabled_errors(tmp_path):
    entry = tmp_path / "Mod.dll"
    with pytest.raises(FilesystemError):
        setEntryEnabled(entry, False)

    entry.write_bytes(b"x")
    (tmp_path / "Mod.dll.disabled").write_bytes(b"y")
    with pytest.raises(FilesystemError):
        setEntryEnabled(entry, False)


def test_backups_listed_newest_first_and_pruned(tmp_path):
    backups = tmp_path / "backups"
    for name in [
        "mod.a.backup.20240101000000",
        "mod.a.backup.20240301000000",
        "mod.a.backup.20240201000000",
        "other.backup.20240101000000",
        "not-a-backup",
    ]:
        (backups / name).mkdir(parents=True)

    infos = listBackups(backups, "mod.a")
    assert [info.stamp for info in infos] == ["20240301000000", "20240201000000", "20240101000000"]
    assert {info.modId for info in listBackups(backups)} == {"mod.a", "other"}

    removed = pruneBackups(backups, 1)
    assert sorted(path.name for path in removed) == ["mod.a.backup.20240101000000", "mod.a.backup.20240201000000"]
    assert sorted(path.name for path in backups.iterdir()) == [
        "mod.a.backup.20240301000000",
        "not-a-backup",
        "other.backup.20240101000000",
    ]


def test_newBackupDir_avoids_collisions(tmp_path):
    first = newBackupDir(tmp_path, "mod")
    first.mkdir()
    second = newBackupDir(tmp_path, "mod")
    assert second != first
    assert second.name.startswith("mod.backup.")
