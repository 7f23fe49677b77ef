"""Configuration models and loaders for the contract test harness."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError

DEFAULT_CONFIG_FILE = "harness.yaml"
DEFAULT_GAS_LIMIT = 6_000_000

_START_METHODS = {"spawn", "fork", "forkserver"}


class SimulatorConfig(BaseModel):
    node: Optional[str] = Field(None, description="External JSON-RPC endpoint; empty runs an in-process chain")
    request_timeout: float = Field(30.0, gt=0)


class HarnessConfig(BaseModel):
    env: str = "test"
    contracts_dir: Path = Path("contracts")
    artifact_dir: Path = Path(".harness/contracts")
    test_path: str = "test/"
    test_patterns: List[str] = Field(default_factory=lambda: ["test_*.py", "*_test.py"])
    gas_limit: int = Field(DEFAULT_GAS_LIMIT, gt=21_000)
    versions: Dict[str, str] = Field(default_factory=dict)
    solc_binary: str = "solc"
    start_method: str = "spawn"
    ready_timeout: Optional[float] = Field(None, gt=0)
    disable_plugin_autoload: bool = True
    log_level: str = "INFO"
    log_file: Optional[str] = None
    simulator: SimulatorConfig = Field(default_factory=SimulatorConfig)

    @field_validator("start_method")
    @classmethod
    def ensure_start_method(cls, value: str) -> str:
        if value not in _START_METHODS:
            raise ValueError(f"start_method must be one of {sorted(_START_METHODS)}")
        return value

    @field_validator("test_patterns")
    @classmethod
    def ensure_patterns(cls, value: List[str]) -> List[str]:
        cleaned = [pattern.strip() for pattern in value if pattern.strip()]
        if not cleaned:
            raise ValueError("test_patterns must contain at least one pattern")
        return cleaned

    @field_validator("log_level")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def ensure_artifact_dir_is_disposable(self) -> "HarnessConfig":
        # The artifact directory is deleted after every run.
        artifact_dir = self.artifact_dir.resolve()
        contracts_dir = self.contracts_dir.resolve()
        if artifact_dir == contracts_dir or artifact_dir in contracts_dir.parents:
            raise ValueError(
                f"artifact_dir {self.artifact_dir} must not be contracts_dir {self.contracts_dir} or one of its parents"
            )
        return self

    def to_payload(self) -> Dict[str, Any]:
        """Return a JSON-safe mapping suitable for a worker init envelope."""

        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "HarnessConfig":
        return _validate(payload)


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    node = os.getenv("HARNESS_NODE_URL")
    if node:
        overrides.setdefault("simulator", {})["node"] = node
    env = os.getenv("HARNESS_ENV")
    if env:
        overrides["env"] = env
    start_method = os.getenv("HARNESS_START_METHOD")
    if start_method:
        overrides["start_method"] = start_method
    return overrides


def _merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _validate(data: Mapping[str, Any]) -> HarnessConfig:
    try:
        return HarnessConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid harness configuration: {exc}") from exc


def load_config(path: Path | str | None = None) -> HarnessConfig:
    """Load harness configuration.

    An explicit ``path`` must exist. Without one, ``harness.yaml`` in the
    current directory is used when present and defaults apply otherwise.
    Environment overrides are applied last.
    """

    data: Dict[str, Any] = {}
    if path is not None:
        file_path = Path(path)
        if not file_path.is_file():
            raise ConfigurationError(f"Configuration file {file_path} does not exist")
    else:
        file_path = Path(DEFAULT_CONFIG_FILE)

    if file_path.is_file():
        try:
            loaded = yaml.safe_load(file_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Unable to parse {file_path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{file_path} must contain a mapping at the top level")
        data = loaded

    return _validate(_merge(data, _env_overrides()))


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_GAS_LIMIT",
    "HarnessConfig",
    "SimulatorConfig",
    "load_config",
]
