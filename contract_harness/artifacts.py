"""Compiled contract artifacts and the per-worker snapshot built from them."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .errors import BuildError

LOGGER = logging.getLogger(__name__)


def _normalise_bytecode(raw: Any) -> str:
    if isinstance(raw, Mapping):
        # Foundry nests the code under ``object``.
        raw = raw.get("object", "")
    if not isinstance(raw, str):
        return ""
    text = raw.strip()
    if not text:
        return ""
    return text if text.startswith("0x") else f"0x{text}"


def _normalise_abi(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, str):
        # Older solc releases emit the ABI as an embedded JSON string.
        raw = json.loads(raw)
    if not isinstance(raw, list):
        raise ValueError("abi must be a list of ABI entries")
    return raw


@dataclass
class ContractArtifact:
    """ABI, bytecode and (once deployed) address of one compiled contract."""

    name: str
    abi: List[Dict[str, Any]] = field(default_factory=list)
    bytecode: str = ""
    deployed_address: Optional[str] = None

    @property
    def deployable(self) -> bool:
        return len(self.bytecode) > 2

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, name: str | None = None) -> "ContractArtifact":
        contract_name = data.get("contractName") or data.get("name") or name
        if not contract_name:
            raise ValueError("artifact has no contract name")
        bytecode = data.get("bytecode", data.get("bin", ""))
        return cls(
            name=str(contract_name),
            abi=_normalise_abi(data.get("abi", [])),
            bytecode=_normalise_bytecode(bytecode),
            deployed_address=data.get("deployedAddress") or data.get("deployed_address"),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return asdict(self)


class ArtifactSet(Mapping[str, ContractArtifact]):
    """Mapping of contract name to artifact.

    The set produced by the build step is treated as read-only. Workers take a
    :meth:`clone` and only ever mutate their own copy.
    """

    def __init__(self, contracts: Mapping[str, ContractArtifact] | None = None) -> None:
        self._contracts: Dict[str, ContractArtifact] = dict(contracts or {})

    def __getitem__(self, name: str) -> ContractArtifact:
        return self._contracts[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._contracts)

    def __len__(self) -> int:
        return len(self._contracts)

    def __repr__(self) -> str:
        return f"ArtifactSet({sorted(self._contracts)!r})"

    def add(self, artifact: ContractArtifact) -> None:
        self._contracts[artifact.name] = artifact

    def set_address(self, name: str, address: Optional[str]) -> None:
        self._contracts[name].deployed_address = address

    def clone(self) -> "ArtifactSet":
        return ArtifactSet(copy.deepcopy(self._contracts))

    def to_payload(self) -> Dict[str, Dict[str, Any]]:
        return {name: artifact.to_mapping() for name, artifact in self._contracts.items()}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Mapping[str, Any]]) -> "ArtifactSet":
        return cls({name: ContractArtifact.from_mapping(data, name=name) for name, data in payload.items()})

    def write(self, directory: Path) -> List[Path]:
        """Persist one JSON document per contract under ``directory``."""

        directory.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        for name, artifact in self._contracts.items():
            target = directory / f"{name}.json"
            payload = {
                "contractName": name,
                "abi": artifact.abi,
                "bytecode": artifact.bytecode,
                "deployedAddress": artifact.deployed_address,
            }
            target.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
            written.append(target)
        return written


def load_artifacts(directory: Path) -> ArtifactSet:
    """Load precompiled artifacts from ``directory`` (searched recursively).

    Documents without an ``abi`` key (build-info files, metadata) are skipped.
    """

    artifacts = ArtifactSet()
    for path in sorted(directory.rglob("*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise BuildError(f"Unable to read artifact {path}: {exc}") from exc
        if not isinstance(data, dict) or "abi" not in data:
            LOGGER.debug("Skipping %s (not a contract artifact)", path)
            continue
        try:
            artifact = ContractArtifact.from_mapping(data, name=path.stem)
        except (ValueError, json.JSONDecodeError) as exc:
            raise BuildError(f"Malformed artifact {path}: {exc}") from exc
        if artifact.name in artifacts:
            LOGGER.warning("Duplicate artifact for %s in %s; keeping the first one", artifact.name, path)
            continue
        artifacts.add(artifact)
    return artifacts


__all__ = ["ArtifactSet", "ContractArtifact", "load_artifacts"]
