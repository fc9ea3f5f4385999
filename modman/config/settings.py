# modman/config/settings.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final
from collections.abc import Mapping

import fastjsonschema

from .providers import DefaultsProvider, FileProvider, OverrideProvider
from .store import ConfigStore
from .types import ConfigProvider

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_SCHEMA",
    "DEFAULT_DUPLICATE_PRIORITY",
    "ManagerSettings",
    "buildSettingsStore",
    "loadSettings",
]

DEFAULT_DUPLICATE_PRIORITY: Final = ("enabled", "metadata", "version", "installedAt")

# Shipped defaults. Empty path strings are derived from paths.gameRoot.
DEFAULT_SETTINGS: Final[dict[str, Any]] = {
    "paths": {
        "gameRoot": ".",
        "pluginsDir": "",
        "dataDir": "",
        "workDir": "",
    },
    "host": {
        "processNames": ["Aska"],
        "requiredFiles": ["BepInEx/core/BepInEx.dll"],
        "loaderFiles": ["winhttp.dll", "doorstop_config.ini"],
        "frameworkVersion": "",
    },
    "install": {
        "manifestNames": ["manifest.json", "manifest.json5"],
        "entryExtensions": [".dll"],
        "blockedExtensions": [".exe", ".bat", ".cmd", ".scr", ".vbs", ".jar"],
        "keepBackupOnSuccess": False,
        "backupKeepCount": 5,
        "ioRetries": 3,
        "ioRetryDelayMs": 500,
    },
    "policy": {
        "blockOnVersionConflict": True,
        "blockOnIncompatibility": True,
    },
    "identity": {
        "duplicatePriority": list(DEFAULT_DUPLICATE_PRIORITY),
    },
    "logging": {
        "level": "INFO",
        "json": False,
        "file": "",
    },
}

_STR_LIST = {"type": "array", "items": {"type": "string"}}

SETTINGS_SCHEMA: Final[dict[str, Any]] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "paths": {
            "type": "object",
            "properties": {
                "gameRoot": {"type": "string", "minLength": 1},
                "pluginsDir": {"type": "string"},
                "dataDir": {"type": "string"},
                "workDir": {"type": "string"},
            },
            "required": ["gameRoot"],
        },
        "host": {
            "type": "object",
            "properties": {
                "processNames": _STR_LIST,
                "requiredFiles": _STR_LIST,
                "loaderFiles": _STR_LIST,
                "frameworkVersion": {"type": "string"},
            },
        },
        "install": {
            "type": "object",
            "properties": {
                "manifestNames": {**_STR_LIST, "minItems": 1},
                "entryExtensions": _STR_LIST,
                "blockedExtensions": _STR_LIST,
                "keepBackupOnSuccess": {"type": "boolean"},
                "backupKeepCount": {"type": "integer", "minimum": 0},
                "ioRetries": {"type": "integer", "minimum": 1},
                "ioRetryDelayMs": {"type": "integer", "minimum": 0},
            },
        },
        "policy": {
            "type": "object",
            "properties": {
                "blockOnVersionConflict": {"type": "boolean"},
                "blockOnIncompatibility": {"type": "boolean"},
            },
        },
        "identity": {
            "type": "object",
            "properties": {
                "duplicatePriority": {
                    "type": "array",
                    "items": {"enum": list(DEFAULT_DUPLICATE_PRIORITY)},
                    "uniqueItems": True,
                },
            },
        },
        "logging": {
            "type": "object",
            "properties": {
                "level": {"enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
                "json": {"type": "boolean"},
                "file": {"type": "string"},
            },
        },
    },
}

_validateSettings = fastjsonschema.compile(SETTINGS_SCHEMA)



@dataclass(frozen=True)
class ManagerSettings:
    """Typed, resolved view of the settings store handed to every component."""
    gameRoot: Path
    pluginsDir: Path
    dataDir: Path
    workDir: Path
    hostProcessNames: tuple[str, ...] = ("Aska",)
    hostRequiredFiles: tuple[str, ...] = ()
    hostLoaderFiles: tuple[str, ...] = ()
    hostFrameworkVersion: str | None = None
    manifestNames: tuple[str, ...] = ("manifest.json", "manifest.json5")
    entryExtensions: tuple[str, ...] = (".dll",)
    blockedExtensions: tuple[str, ...] = ()
    keepBackupOnSuccess: bool = False
    backupKeepCount: int = 5
    ioRetries: int = 3
    ioRetryDelayMs: int = 500
    blockOnVersionConflict: bool = True
    blockOnIncompatibility: bool = True
    duplicatePriority: tuple[str, ...] = DEFAULT_DUPLICATE_PRIORITY
    logLevel: str = "INFO"
    logJson: bool = False
    logFile: Path | None = None

    @property
    def recordsDir(self) -> Path:
        return self.dataDir / "mods"

    @property
    def loadOrderPath(self) -> Path:
        return self.dataDir / "loadorder.json5"

    @property
    def backupsDir(self) -> Path:
        return self.workDir / "backups"

    @classmethod
    def fromMapping(cls, values: Mapping[str, Any]) -> "ManagerSettings":
        _validateSettings(dict(values))
        paths = values.get("paths", {})
        host = values.get("host", {})
        install = values.get("install", {})
        policy = values.get("policy", {})
        identity = values.get("identity", {})
        logCfg = values.get("logging", {})

        gameRoot = Path(paths.get("gameRoot") or ".")
        pluginsDir = Path(paths["pluginsDir"]) if paths.get("pluginsDir") else gameRoot / "BepInEx" / "plugins"
        dataDir = Path(paths["dataDir"]) if paths.get("dataDir") else gameRoot / "BepInEx" / ".modmanager"
        workDir = Path(paths["workDir"]) if paths.get("workDir") else dataDir / "work"
        logFile = Path(logCfg["file"]) if logCfg.get("file") else dataDir / "modman.log"

        return cls(
            gameRoot=gameRoot,
            pluginsDir=pluginsDir,
            dataDir=dataDir,
            workDir=workDir,
            hostProcessNames=tuple(host.get("processNames", ())),
            hostRequiredFiles=tuple(host.get("requiredFiles", ())),
            hostLoaderFiles=tuple(host.get("loaderFiles", ())),
            hostFrameworkVersion=host.get("frameworkVersion") or None,
            manifestNames=tuple(install.get("manifestNames", ("manifest.json",))),
            entryExtensions=tuple(ext.lower() for ext in install.get("entryExtensions", ())),
            blockedExtensions=tuple(ext.lower() for ext in install.get("blockedExtensions", ())),
            keepBackupOnSuccess=bool(install.get("keepBackupOnSuccess", False)),
            backupKeepCount=int(install.get("backupKeepCount", 5)),
            ioRetries=int(install.get("ioRetries", 3)),
            ioRetryDelayMs=int(install.get("ioRetryDelayMs", 500)),
            blockOnVersionConflict=bool(policy.get("blockOnVersionConflict", True)),
            blockOnIncompatibility=bool(policy.get("blockOnIncompatibility", True)),
            duplicatePriority=tuple(identity.get("duplicatePriority", DEFAULT_DUPLICATE_PRIORITY)),
            logLevel=str(logCfg.get("level", "INFO")),
            logJson=bool(logCfg.get("json", False)),
            logFile=logFile,
        )



def buildSettingsStore(
    *,
    configFile: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ConfigStore:
    """
    Layers, bottom to top:
      - shipped DEFAULT_SETTINGS
      - optional user file (json/json5, writable)
      - volatile overrides
    """
    providers: list[ConfigProvider] = [DefaultsProvider(data=DEFAULT_SETTINGS)]
    if configFile is not None:
        providers.append(FileProvider(configFile))
    providers.append(OverrideProvider(overrides))
    return ConfigStore(namespace="config:modman", validator=_validateSettings, providers=providers)



def loadSettings(
    *,
    configFile: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ManagerSettings:
    store = buildSettingsStore(configFile=configFile, overrides=overrides)
    effective = store.validate()
    settings = ManagerSettings.fromMapping(effective)
    logger.debug("Settings loaded: gameRoot='%s', pluginsDir='%s'", settings.gameRoot, settings.pluginsDir)
    return settings
