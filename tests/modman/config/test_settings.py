# tests/modman/config/test_settings.py
import logging
import logging.handlers
from pathlib import Path

import fastjsonschema
import pytest

from modman.app import createRepository
from modman.config.providers import DefaultsProvider, FileProvider, OverrideProvider
from modman.config.settings import DEFAULT_DUPLICATE_PRIORITY, DEFAULT_SETTINGS, buildSettingsStore, loadSettings
from modman.config.store import ConfigStore, deepMerge


def test_defaults_derive_paths_from_game_root(tmp_path):
    settings = loadSettings(overrides={"paths": {"gameRoot": str(tmp_path)}})
    assert settings.pluginsDir == tmp_path / "BepInEx" / "plugins"
    assert settings.dataDir == tmp_path / "BepInEx" / ".modmanager"
    assert settings.workDir == settings.dataDir / "work"
    assert settings.recordsDir == settings.dataDir / "mods"
    assert settings.loadOrderPath == settings.dataDir / "loadorder.json5"
    assert settings.backupsDir == settings.workDir / "backups"
    assert settings.duplicatePriority == DEFAULT_DUPLICATE_PRIORITY
    assert ".exe" in settings.blockedExtensions
    assert settings.hostFrameworkVersion is None


def test_user_file_layers_under_overrides(tmp_path):
    configFile = tmp_path / "modman.json5"
    configFile.write_text("""{
        // user settings
        paths: {gameRoot: 'from-file', pluginsDir: 'custom/plugins'},
        install: {keepBackupOnSuccess: true, entryExtensions: ['.DLL']},
        policy: {blockOnVersionConflict: false},
    }""")
    settings = loadSettings(configFile=configFile, overrides={"paths": {"gameRoot": str(tmp_path / "game")}})

    assert settings.gameRoot == tmp_path / "game"
    assert settings.pluginsDir == Path("custom/plugins")
    assert settings.keepBackupOnSuccess is True
    assert settings.entryExtensions == (".dll",)
    assert settings.blockOnVersionConflict is False
    assert settings.blockOnIncompatibility is True


def test_invalid_settings_rejected(tmp_path):
    with pytest.raises(fastjsonschema.JsonSchemaException):
        loadSettings(overrides={"install": {"ioRetries": "three"}})
    with pytest.raises(fastjsonschema.JsonSchemaException):
        loadSettings(overrides={"identity": {"duplicatePriority": ["size"]}})


def test_unparsable_user_file_is_ignored(tmp_path):
    configFile = tmp_path / "modman.json5"
    configFile.write_text("{broken")
    settings = loadSettings(configFile=configFile, overrides={"paths": {"gameRoot": str(tmp_path)}})
    assert settings.gameRoot == tmp_path


def test_store_set_validates_and_rolls_back(tmp_path):
    configFile = tmp_path / "modman.json5"
    store = buildSettingsStore(configFile=configFile)

    store.set("install.backupKeepCount", 2, provider=store._providers[1])
    assert store.get("install.backupKeepCount") == 2

    with pytest.raises(fastjsonschema.JsonSchemaException):
        store.set("install.backupKeepCount", -1, provider=store._providers[1])
    assert store.get("install.backupKeepCount") == 2

    store.saveAll()
    assert FileProvider(configFile).get("install.backupKeepCount") == 2
    assert store.snapshot()["layers"] == ["DefaultsProvider", "FileProvider", "OverrideProvider"]


def test_rejected_write_of_new_key_leaves_no_trace(tmp_path):
    configFile = tmp_path / "modman.json5"
    store = buildSettingsStore(configFile=configFile)
    fileLayer = store._providers[1]

    with pytest.raises(fastjsonschema.JsonSchemaException):
        store.set("install.backupKeepCount", -1, provider=fileLayer)

    assert fileLayer.get("install.backupKeepCount") is None
    assert fileLayer.to_dict() == {}
    assert store.get("install.backupKeepCount") == DEFAULT_SETTINGS["install"]["backupKeepCount"]


def test_set_goes_to_topmost_writable_layer():
    defaults = DefaultsProvider({"a": {"b": 1}})
    override = OverrideProvider()
    store = ConfigStore(namespace="test", validator=None, providers=[defaults, override])

    store.set("a.b", 5)
    assert override.get("a.b") == 5
    assert defaults.get("a.b") == 1
    store.set("a.b", None)
    assert store.get("a.b") == 1
    assert override.to_dict() == {}

    with pytest.raises(RuntimeError):
        defaults.set("a.b", 2)
    with pytest.raises(KeyError):
        ConfigStore(namespace="ro", validator=None, providers=[defaults]).set("a.b", 2)


def test_deepMerge():
    base = {"a": {"x": 1, "y": 2}, "list": [1]}
    deepMerge(base, {"a": {"y": 3}, "list": [2]})
    assert base == {"a": {"x": 1, "y": 3}, "list": [2]}


def test_createRepository_wires_settings_and_logging(tmp_path):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        repository = createRepository(overrides={
            "paths": {"gameRoot": str(tmp_path)},
            "logging": {"level": "DEBUG", "json": True},
        })
        assert repository.settings.gameRoot == tmp_path
        assert root.level == logging.DEBUG
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)
        assert repository.listInstalled() == []
    finally:
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)
