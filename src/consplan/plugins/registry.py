
from __future__ import annotations
from typing import Dict, Callable, Any, List

_REGISTRY: Dict[str, Callable[..., Any]] = {}

def register(name: str):
    """Register a solver backend factory under `name`."""
    def _decorator(fn: Callable[..., Any]):
        _REGISTRY[name] = fn
        return fn
    return _decorator

def get(name: str) -> Callable[..., Any]:
    if name not in _REGISTRY:
        raise KeyError(f"No solver backend registered under '{name}'")
    return _REGISTRY[name]

def names() -> List[str]:
    return list(_REGISTRY)
