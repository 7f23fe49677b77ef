"""Worker-pool test harness for smart-contract suites."""

from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import Dict

_MODULES = [
    "artifacts",
    "builder",
    "channel",
    "cli",
    "config",
    "deployment",
    "errors",
    "ledger",
    "logging_utils",
    "orchestrator",
    "plugin",
    "readiness",
    "worker",
]
__all__ = list(_MODULES)

__version__ = "0.1.0"

_CACHE: Dict[str, ModuleType] = {}


def __getattr__(name: str) -> ModuleType:
    # Submodules load on first access.
    if name not in _MODULES:
        raise AttributeError(name)
    if name not in _CACHE:
        _CACHE[name] = import_module(f".{name}", __name__)
    return _CACHE[name]


def __dir__() -> list[str]:
    return sorted(set(__all__ + list(globals().keys())))
