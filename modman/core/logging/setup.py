# modman/core/logging/setup.py
from __future__ import annotations
import logging
import logging.handlers
from pathlib import Path
from typing import TYPE_CHECKING

from .formatters import DevFormatter, JsonFormatter

if TYPE_CHECKING:
    from modman.config.settings import ManagerSettings

__all__ = [
    "NO_PROPAGATE",
    "configureLogging",
]



# Noisy third-party loggers kept out of the root handlers
NO_PROPAGATE = [
    "asyncio", "concurrent.futures",
]



def configureLogging(settings: ManagerSettings | None = None) -> None:
    """
    Install the root logging configuration.

      - Console pretty logs (DevFormatter) at `logging.level`
      - Optional rotating JSON file log at `logging.file` when `logging.json` is on

    Safe to call more than once; previously installed root handlers are replaced.
    """
    levelName = str(settings.logLevel if settings else "INFO").upper()
    rootLevel = getattr(logging, levelName, logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    for name in NO_PROPAGATE:
        logging.getLogger(name).propagate = False

    consoleHandler = logging.StreamHandler()
    consoleHandler.setLevel(rootLevel)
    consoleHandler.setFormatter(DevFormatter())
    root.addHandler(consoleHandler)

    if settings is not None and settings.logJson and settings.logFile:
        logPath = Path(settings.logFile)
        logPath.parent.mkdir(parents=True, exist_ok=True)
        fileHandler = logging.handlers.RotatingFileHandler(
            logPath,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        fileHandler.setLevel(rootLevel)
        fileHandler.setFormatter(JsonFormatter())
        root.addHandler(fileHandler)
