"""Exception taxonomy shared by the orchestrator and its workers."""

from __future__ import annotations


class HarnessError(RuntimeError):
    """Base class for errors raised by the test harness."""


class ConfigurationError(HarnessError):
    """Raised when harness configuration or a deployment request is invalid."""


class BuildError(HarnessError):
    """Raised when contract artifacts cannot be produced.

    Fatal to the whole run: no worker is launched once the build fails.
    """


class DeployError(HarnessError):
    """Raised when a deploy cycle cannot complete."""

    def __init__(self, message: str, *, contract: str | None = None) -> None:
        super().__init__(message)
        self.contract = contract


class UnknownModuleRequest(HarnessError):
    """Raised when test code asks the worker for a binding it cannot provide."""

    def __init__(self, module: str) -> None:
        super().__init__(f"Unknown module {module}")
        self.module = module


class UnresolvedContractName(UserWarning):
    """Emitted when a contract name only resolved through the permissive fallback."""


__all__ = [
    "BuildError",
    "ConfigurationError",
    "DeployError",
    "HarnessError",
    "UnknownModuleRequest",
    "UnresolvedContractName",
]
