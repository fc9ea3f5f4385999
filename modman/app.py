# modman/app.py
from __future__ import annotations
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from modman.config.settings import loadSettings
from modman.core.logging import configureLogging
from modman.repository.repository import ModRepository

__all__ = ["createRepository"]



def createRepository(
    *,
    configFile: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    setupLogging: bool = True,
    **collaborators: Any,
) -> ModRepository:
    """
    Process bootstrap: settings -> logging -> repository.

    `collaborators` go straight to ModRepository (processProbe, runtimeStatus,
    packageSource, ...) for callers that replace the defaults.
    """
    settings = loadSettings(configFile=configFile, overrides=overrides)
    if setupLogging:
        configureLogging(settings)

    logger = logging.getLogger(__name__)
    logger.info("modman starting: game root '%s', plugins '%s'", settings.gameRoot, settings.pluginsDir)

    repository = ModRepository(settings, **collaborators)
    status = repository.runtimeStatus.status()
    if not status.healthy:
        logger.warning("Mod framework is %s: %s", status.state.value, "; ".join(status.problems))
    return repository
