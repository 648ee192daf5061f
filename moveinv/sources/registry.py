# moveinv/sources/registry.py
"""Local extractors by their ``dataset.extractor`` configuration name."""
from __future__ import annotations
from typing import Any, Dict, Type
from .interface import LocalExtractor

_REGISTRY: Dict[str, Type[LocalExtractor]] = {}


def _key(name: str) -> str:
    return (name or "").strip().lower()


def register(name: str, cls: Type[LocalExtractor]) -> None:
    key = _key(name)
    if not key:
        raise ValueError("Extractor name must be non-empty")
    if not (isinstance(cls, type) and issubclass(cls, LocalExtractor)):
        raise TypeError(f"Extractor '{key}' must be a LocalExtractor subclass, got {cls!r}")
    current = _REGISTRY.get(key)
    # re-importing a module registers the same class again
    if current is not None and current is not cls:
        raise ValueError(f"Extractor '{key}' is already registered to {current.__module__}.{current.__qualname__}")
    _REGISTRY[key] = cls


def get(name: str) -> Type[LocalExtractor] | None:
    return _REGISTRY.get(_key(name))


def available() -> Dict[str, Type[LocalExtractor]]:
    return dict(_REGISTRY)


def create(dataset: Dict[str, Any]) -> LocalExtractor:
    """Build the extractor a validated ``dataset`` config section names."""
    cls = get(dataset.get("extractor"))
    if cls is None:
        raise ValueError(f"extractor '{dataset.get('extractor')}' not registered; available: {sorted(_REGISTRY)}")
    return cls(dataset["root"], dataset["subdir"], command=dataset.get("command"), timeout_s=dataset.get("timeout_s"))
