# modman/config/store.py
from __future__ import annotations

import logging
from typing import Any
from collections.abc import Mapping

from .types import ConfigProvider, ValidatorFn

logger = logging.getLogger(__name__)

__all__ = ["ConfigStore", "deepMerge"]



def deepMerge(base: dict[str, Any], top: Mapping[str, Any]) -> dict[str, Any]:
    """Merges `top` into `base` in place; nested dicts merge, everything else replaces."""
    for key, value in top.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            deepMerge(current, value)
        else:
            base[key] = value
    return base



class ConfigStore:
    """
    Layered settings:
      - read: first hit from the topmost provider down
      - write: goes to the topmost writable provider (or an explicit one)
      - validate: the *effective* merged document, after every set()
    """

    def __init__(self, *, namespace: str, validator: ValidatorFn | None, providers: list[ConfigProvider]):
        self.namespace = namespace
        self._validator = validator
        self._providers = providers

    def _merged(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        # Bottom to top
        for provider in self._providers:
            deepMerge(merged, provider.to_dict())
        return merged

    def _topWritable(self) -> ConfigProvider:
        for provider in reversed(self._providers):
            if not getattr(provider, "readOnly", False):
                return provider
        raise KeyError(f"No writable provider in {self.namespace}")

    def get(self, key: str, default: Any | None = None) -> Any | None:
        for provider in reversed(self._providers):
            value = provider.get(key)
            if value is not None:
                return value
        return default

    def validate(self) -> dict[str, Any]:
        """Validates the effective document and returns it."""
        effective = self._merged()
        if self._validator is not None:
            self._validator(effective)
        return effective

    def set(self, key: str, value: Any, *, provider: ConfigProvider | None = None) -> None:
        """Write `key`; an invalid result is undone and the validation error re-raised."""
        target = provider or self._topWritable()
        oldLayerValue = target.get(key)
        target.set(key, value)
        try:
            self.validate()
        except Exception:
            if oldLayerValue is None:
                target.delete(key)
            else:
                target.set(key, oldLayerValue)
            raise
        logger.debug("%s: '%s' set on %s", self.namespace, key, type(target).__name__)

    def snapshot(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "values": self._merged(),
            "layers": [provider.__class__.__name__ for provider in self._providers],
        }

    def saveAll(self) -> None:
        for provider in self._providers:
            provider.save()
