# tests/modman/core/test_dictpath.py
from __future__ import annotations

import pytest

from modman.core.dictpath import deleteByPath, getByPath, hasPath, setByPath

# ----------------------------------------
# getByPath / hasPath
# ----------------------------------------

def test_getByPath_nested_and_default() -> None:
    data = {"install": {"ioRetries": 3, "manifestNames": ["manifest.json"]}}
    assert getByPath(data, "install.ioRetries") == 3
    assert getByPath(data, "install.missing", "dflt") == "dflt"
    assert getByPath(data, "install.ioRetries.deeper", None) is None


def test_getByPath_escaped_dot() -> None:
    data = {"host": {"Aska.exe": True}}
    assert getByPath(data, "host.Aska\\.exe") is True
    assert hasPath(data, "host.Aska\\.exe")
    assert not hasPath(data, "host.Aska")


@pytest.mark.parametrize("path", ["", "a..b", ".a", "a.", "a\\"])
def test_invalid_paths(path: str) -> None:
    assert getByPath({"a": 1}, path, "nope") == "nope"
    with pytest.raises(ValueError):
        setByPath({}, path, 1, createIfMissing=True)


# ----------------------------------------
# setByPath
# ----------------------------------------

def test_setByPath_creates_parents_only_when_asked() -> None:
    data: dict = {}
    with pytest.raises(KeyError):
        setByPath(data, "paths.gameRoot", "/g")
    setByPath(data, "paths.gameRoot", "/g", createIfMissing=True)
    assert data == {"paths": {"gameRoot": "/g"}}


def test_setByPath_refuses_to_write_into_scalar() -> None:
    data = {"paths": "oops"}
    with pytest.raises(TypeError):
        setByPath(data, "paths.gameRoot", "/g")


# ----------------------------------------
# deleteByPath
# ----------------------------------------

def test_deleteByPath_prunes_empty_parents() -> None:
    data = {"a": {"b": {"c": 1}}, "keep": 1}
    assert deleteByPath(data, "a.b.c") is True
    assert data == {"keep": 1}


def test_deleteByPath_without_pruning_and_missing() -> None:
    data = {"a": {"b": {"c": 1, "d": 2}}}
    assert deleteByPath(data, "a.b.c", pruneEmptyParents=False) is True
    assert data == {"a": {"b": {"d": 2}}}
    assert deleteByPath(data, "a.x.y") is False
    assert deleteByPath(data, "a.b.zzz") is False
