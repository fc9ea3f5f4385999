# tests/modman/core/test_logging.py
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from modman.core.errors import InputError
from modman.core.jsonutils import safeJsonDumps, serializeError, tryJSONify
from modman.core.logging import getLogContext, logContext, setLogContext
from modman.core.logging.formatters import DevFormatter, JsonFormatter
from modman.mods.models import ModSource


def _record(msg: str = "hello", excInfo=None) -> logging.LogRecord:
    return logging.LogRecord("modman.test", logging.WARNING, __file__, 1, msg, (), excInfo)


def test_logContext_is_scoped():
    assert getLogContext() is None
    with logContext(operation="install", modId="a"):
        with logContext(modId="b", transactionId=None):
            assert getLogContext() == {"operation": "install", "modId": "b"}
        assert getLogContext() == {"operation": "install", "modId": "a"}
    assert getLogContext() is None


def test_dev_formatter_appends_context():
    with logContext(operation="uninstall", modId="libcore"):
        line = DevFormatter().format(_record())
    assert line == "WARNING: [modman.test] hello [uninstall/libcore]"


def test_json_formatter_includes_context_and_error_fields():
    try:
        raise InputError("manifest", "invalid JSON")
    except InputError:
        record = _record("failed", sys.exc_info())

    with logContext(operation="install", transactionId="tx1"):
        payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "failed"
    assert payload["ctx"] == {"operation": "install", "transactionId": "tx1"}
    assert payload["exc"]["type"] == "InputError"
    assert payload["exc"]["field"] == "manifest"
    assert "stack" in payload["exc"]


def test_setLogContext_ignores_none():
    with logContext():
        setLogContext(modId="x", operation=None)
        assert getLogContext() == {"modId": "x"}


def test_serializeError_shapes():
    assert serializeError(None) == {}
    assert serializeError("text") == {"message": "text"}
    data = serializeError(ValueError("bad"))
    assert data["type"] == "ValueError"
    assert data["message"] == "bad"


def test_tryJSONify_and_safeJsonDumps():
    loop: list = []
    loop.append(loop)
    value = tryJSONify({
        "when": datetime(2024, 1, 2, tzinfo=timezone.utc),
        "path": Path("a/b"),
        "raw": b"\x00\x01",
        "source": ModSource(type="local"),
        "loop": loop,
    })
    assert value["when"] == "2024-01-02T00:00:00+00:00"
    assert value["path"] == str(Path("a/b"))
    assert value["raw"] == {"__b64__": "AAE="}
    assert value["source"] == {"type": "local", "url": None}
    assert value["loop"][0].startswith("<circular_ref")

    assert safeJsonDumps({"b": 1, "a": [1, 2]}) == '{"b":1,"a":[1,2]}'
    assert json.loads(safeJsonDumps({"p": Path("x")})) == {"p": "x"}
