# modman/config/types.py
from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable
from collections.abc import Mapping

__all__ = ["ConfigProvider", "ValidatorFn"]

# Raises on an invalid document (fastjsonschema compiled validators fit)
ValidatorFn = Callable[[Any], Any]



@runtime_checkable
class ConfigProvider(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...
    def delete(self, key: str) -> bool: ...
    def to_dict(self) -> Mapping[str, Any]: ...
    def save(self) -> None: ...
