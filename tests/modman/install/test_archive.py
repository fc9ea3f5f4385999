# tests/modman/install/test_archive.py
import zipfile

import pytest

from modman.core.errors import InputError, UnsafeArchiveError
from modman.install.archive import ArchiveEntry, ZipPackageSource, extractArchive, isSafeRelativePath, safeRelativePath


class ListSource:
    def __init__(self, entries):
        self.entries = entries

    def openArchive(self, path):
        yield from self.entries


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("a/b.dll", "a/b.dll"),
        ("a\\b.dll", "a/b.dll"),
        ("./a//b.dll", "a/b.dll"),
    ],
)
def test_safeRelativePath_normalizes(raw, expected):
    assert safeRelativePath(raw).as_posix() == expected


@pytest.mark.parametrize("raw", ["", "  ", "/etc/passwd", "\\\\server\\share", "C:/x.dll", "C:x.dll", "../x", "a/../../x", "a/.."])
def test_safeRelativePath_rejects(raw):
    assert not isSafeRelativePath(raw)


def test_extractArchive_writes_files_and_dirs(tmp_path):
    source = ListSource([
        ArchiveEntry("Mod/", b"", True),
        ArchiveEntry("Mod/Plugin.dll", b"dll"),
        ArchiveEntry("Mod/cfg/a.cfg", b"cfg"),
    ])
    written = extractArchive(source, tmp_path / "x.zip", tmp_path / "out")
    assert written == ["Mod/Plugin.dll", "Mod/cfg/a.cfg"]
    assert (tmp_path / "out" / "Mod" / "cfg" / "a.cfg").read_bytes() == b"cfg"


def test_extractArchive_checks_every_entry_before_writing(tmp_path):
    source = ListSource([ArchiveEntry("ok.dll", b"ok"), ArchiveEntry("../../escape.dll", b"bad")])
    dest = tmp_path / "out"
    dest.mkdir()
    with pytest.raises(UnsafeArchiveError) as info:
        extractArchive(source, tmp_path / "x.zip", dest)
    assert info.value.field == "archive"
    assert list(dest.iterdir()) == []


def test_extractArchive_blocked_extension(tmp_path):
    source = ListSource([ArchiveEntry("run.EXE", b"mz")])
    with pytest.raises(UnsafeArchiveError):
        extractArchive(source, tmp_path / "x.zip", tmp_path / "out", blockedExtensions=[".exe"])


def test_extractArchive_rejects_empty_archive(tmp_path):
    with pytest.raises(InputError):
        extractArchive(ListSource([ArchiveEntry("dir/", b"", True)]), tmp_path / "x.zip", tmp_path / "out")


def test_zip_source_reads_entries(tmp_path):
    path = tmp_path / "p.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("a/b.txt", b"hello")
    entries = list(ZipPackageSource().openArchive(path))
    assert [(e.relativePath, e.data) for e in entries] == [("a/b.txt", b"hello")]


def test_zip_source_missing_or_corrupt(tmp_path):
    with pytest.raises(InputError):
        list(ZipPackageSource().openArchive(tmp_path / "missing.zip"))
    bad = tmp_path / "bad.zip"
    bad.write_bytes(b"not a zip")
    with pytest.raises(InputError) as info:
        list(ZipPackageSource().openArchive(bad))
    assert "zip" in info.value.reason
