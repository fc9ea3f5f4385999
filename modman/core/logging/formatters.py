# modman/core/logging/formatters.py
from __future__ import annotations

import logging

from modman.core.jsonutils import safeJsonDumps, serializeError
from .context import getLogContext

__all__ = ["JsonFormatter", "DevFormatter"]

# Context keys rendered by DevFormatter, in order
_DEV_CONTEXT_KEYS = ("operation", "modId", "transactionId")



class JsonFormatter(logging.Formatter):
    """One-line JSON records for the log file."""
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": int(record.created * 1000),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
            "ctx": getLogContext() or {},
            "proc": {"pid": record.process, "name": record.processName},
            "thread": {"id": record.thread, "name": record.threadName},
        }

        if record.exc_info and record.exc_info[1] is not None:
            base["exc"] = serializeError(record.exc_info[1])

        return safeJsonDumps(base)



class DevFormatter(logging.Formatter):
    """Human-friendly console formatter."""
    def format(self, record: logging.LogRecord) -> str:
        ctx = getLogContext()
        ctxStr = ""
        if ctx:
            md = [str(ctx[key]) for key in _DEV_CONTEXT_KEYS if ctx.get(key)]
            if md:
                ctxStr = " [" + "/".join(md) + "]"
        msg = record.getMessage()
        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        if record.stack_info:
            msg += "\n" + str(record.stack_info)
        return f"{record.levelname}: [{record.name}] {msg}{ctxStr}"
