# modman/core/jsonutils.py
from __future__ import annotations

import base64
import json
import traceback
from collections import deque
from collections.abc import Mapping, Iterable
from dataclasses import is_dataclass, asdict
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

__all__ = ["safeJsonDumps", "serializeError", "tryJSONify"]

TRACEBACK_CHAR_LIMIT = 4000



# ------------------------------------------------
#                JSON serialization
# ------------------------------------------------

def safeJsonDumps(obj: object) -> str:
    """
    Serializes an object to a compact JSON string.
    Uses deterministic separators (",", ":") and disallows NaN/infinity.
    If direct JSON encoding fails, falls back to tryJSONify (circular/depth-safe) and retries.
    """
    payload: Any = obj
    if hasattr(obj, "model_dump"):
        payload = obj.model_dump(mode="json", by_alias=True)  # type: ignore[union-attr]

    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except Exception:
        safePayload = tryJSONify(payload, _maxDepth=None)
        return json.dumps(safePayload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))



# ------------------------------------------------
#              Error / Exception helpers
# ------------------------------------------------

def serializeError(err: Any, *, limit: int = TRACEBACK_CHAR_LIMIT) -> dict[str, Any]:
    """
    Converts Exception or arbitrary object into a JSON-serializable dict.

    Examples:
        ValueError("bad") -> {"type": "ValueError", "message": "bad", "stack": "..."}
        "error text"      -> {"message": "error text"}
        None              -> {}
    """
    if err is None:
        return {}

    if isinstance(err, str):
        return {"message": err}

    if isinstance(err, BaseException):
        data: dict[str, Any] = {
            "type": err.__class__.__name__,
            "message": str(err),
            "args": [repr(arg) for arg in getattr(err, "args", [])],
        }
        # Structured fields of modman errors (field/reason, path, modId, ...)
        for attr in ("field", "reason", "path", "modId", "backupDir", "entryPath"):
            value = getattr(err, attr, None)
            if value is not None:
                data[attr] = str(value)

        traceBack = getattr(err, "__traceback__", None)
        if traceBack:
            que: deque[str] = deque()
            total = 0
            truncated = False

            # Keep the innermost frames when the stack is too long
            for part in traceback.format_tb(traceBack):
                que.append(part)
                total += len(part)
                while total > limit and que:
                    left = que.popleft()
                    total -= len(left)
                    truncated = True

            text = "".join(que)
            if truncated:
                text += "[TRUNCATED]"
            data["stack"] = text

        return data

    try:
        json.dumps(err)
        return {"value": err}
    except Exception:
        return {"type": type(err).__name__, "repr": repr(err)}



# ------------------------------------------------
#              Generic JSON safety
# ------------------------------------------------

def tryJSONify(obj: Any, *, _seen: set[int] | None = None, _depth: int = 0, _maxDepth: int | None = 10) -> Any:
    """
    Attempts to make any object JSON-serializable.

    Rules:
      • Basic scalars (None, bool, int, float, str) are preserved.
      • Exceptions → serializeError().
      • bytes → base64 {"__b64__":"..."}.
      • date/datetime → ISO8601 string, Path → string, Enum → value.
      • dataclasses and pydantic models → dict.
      • sets/tuples/iterables → list, Mappings → dict with str keys.
      • fallback → repr(obj)
    """
    if _seen is None:
        _seen = set()

    oid = id(obj)
    if oid in _seen:
        return f"<circular_ref {type(obj).__name__}>"
    if isinstance(_maxDepth, int) and _depth > _maxDepth:
        return f"<max_depth_exceeded {type(obj).__name__}>"

    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    _seen.add(oid)
    nextKw = {"_seen": _seen, "_depth": _depth + 1, "_maxDepth": _maxDepth}

    if isinstance(obj, BaseException):
        return serializeError(obj)

    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {"__b64__": base64.b64encode(bytes(obj)).decode("ascii")}

    if isinstance(obj, (date, datetime)):
        return obj.isoformat()

    if isinstance(obj, Enum):
        return tryJSONify(obj.value, **nextKw)

    if is_dataclass(obj) and not isinstance(obj, type):
        return tryJSONify(asdict(obj), **nextKw)

    if hasattr(obj, "model_dump") and not isinstance(obj, type):
        try:
            return tryJSONify(obj.model_dump(mode="json", by_alias=True), **nextKw)
        except Exception:
            return repr(obj)

    if isinstance(obj, Path):
        return str(obj)

    if isinstance(obj, Mapping):
        return {str(key): tryJSONify(value, **nextKw) for key, value in obj.items()}

    if isinstance(obj, Iterable):
        return [tryJSONify(value, **nextKw) for value in obj]

    return repr(obj)
