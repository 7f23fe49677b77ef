"""Build step: produce the artifact set once per run."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import List, Protocol

from .artifacts import ArtifactSet, ContractArtifact, load_artifacts
from .config import HarnessConfig
from .errors import BuildError

LOGGER = logging.getLogger(__name__)


class Builder(Protocol):
    """Anything able to produce an :class:`ArtifactSet`."""

    def build(self) -> ArtifactSet:
        """Return the compiled artifacts or raise :class:`BuildError`."""


class ArtifactDirectoryBuilder:
    """Load artifacts another toolchain (forge, hardhat, truffle) already compiled."""

    def __init__(self, contracts_dir: Path) -> None:
        self.contracts_dir = contracts_dir

    def build(self) -> ArtifactSet:
        if not self.contracts_dir.is_dir():
            raise BuildError(f"Contracts directory {self.contracts_dir} does not exist")
        artifacts = load_artifacts(self.contracts_dir)
        if not artifacts:
            raise BuildError(f"No contract artifacts found under {self.contracts_dir}")
        return artifacts


class SolcBuilder:
    """Compile Solidity sources with the ``solc`` binary."""

    def __init__(self, contracts_dir: Path, *, binary: str = "solc") -> None:
        self.contracts_dir = contracts_dir
        self.binary = binary

    def _sources(self) -> List[Path]:
        return sorted(path for path in self.contracts_dir.rglob("*.sol") if "node_modules" not in path.parts)

    def build(self) -> ArtifactSet:
        sources = self._sources()
        if not sources:
            raise BuildError(f"No Solidity sources found under {self.contracts_dir}")
        binary = shutil.which(self.binary) or self.binary
        cmd = [binary, "--combined-json", "abi,bin", *[str(path) for path in sources]]
        LOGGER.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as exc:
            raise BuildError(
                f"Required executable '{self.binary}' is not available on PATH; "
                "install a compiler with solc-select or point solc_binary at one."
            ) from exc
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise BuildError(f"solc exited with {result.returncode}: {stderr or 'no stderr captured'}")
        return self.parse_combined_json(result.stdout)

    @staticmethod
    def parse_combined_json(raw: str) -> ArtifactSet:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise BuildError(f"Unparsable solc output: {exc}") from exc
        artifacts = ArtifactSet()
        for key, data in (payload.get("contracts") or {}).items():
            # Keys look like ``path/to/File.sol:Name``.
            name = key.rsplit(":", 1)[-1]
            try:
                artifacts.add(ContractArtifact.from_mapping(data, name=name))
            except (ValueError, json.JSONDecodeError) as exc:
                raise BuildError(f"Malformed solc output for {key}: {exc}") from exc
        return artifacts


def default_builder(config: HarnessConfig) -> Builder:
    """Pick solc when Solidity sources exist, precompiled artifacts otherwise."""

    contracts_dir = config.contracts_dir
    if not contracts_dir.is_dir():
        raise BuildError(f"Contracts directory {contracts_dir} does not exist")
    if any(contracts_dir.rglob("*.sol")):
        return SolcBuilder(contracts_dir, binary=config.solc_binary)
    return ArtifactDirectoryBuilder(contracts_dir)


def build_artifacts(builder: Builder, artifact_dir: Path) -> ArtifactSet:
    """Run ``builder`` and persist its output to the transient artifact directory."""

    start = time.perf_counter()
    try:
        artifacts = builder.build()
    except BuildError:
        raise
    except Exception as exc:  # noqa: BLE001 - any builder failure aborts the run
        raise BuildError(f"Error while building contracts: {exc}") from exc
    artifacts.write(artifact_dir)
    LOGGER.info(
        "Compiled %d contracts in %.2fs (%s)",
        len(artifacts),
        time.perf_counter() - start,
        ", ".join(sorted(artifacts)) or "none",
    )
    return artifacts


__all__ = [
    "ArtifactDirectoryBuilder",
    "Builder",
    "SolcBuilder",
    "build_artifacts",
    "default_builder",
]
