import json
import subprocess
from pathlib import Path

import pytest

from contract_harness.artifacts import ArtifactSet
from contract_harness.builder import (
    ArtifactDirectoryBuilder,
    SolcBuilder,
    build_artifacts,
    default_builder,
)
from contract_harness.config import HarnessConfig
from contract_harness.errors import BuildError


def _combined_json() -> str:
    return json.dumps(
        {
            "contracts": {
                "contracts/Token.sol:Token": {"abi": "[]", "bin": "6001"},
                "contracts/Token.sol:Token2": {"abi": [], "bin": "6002"},
            },
            "version": "0.8.25",
        }
    )


def test_missing_contracts_directory_is_a_build_error(tmp_path: Path) -> None:
    with pytest.raises(BuildError):
        ArtifactDirectoryBuilder(tmp_path / "missing").build()


def test_empty_artifact_directory_is_a_build_error(tmp_path: Path) -> None:
    with pytest.raises(BuildError, match="No contract artifacts"):
        ArtifactDirectoryBuilder(tmp_path).build()


def test_parse_combined_json_uses_contract_names() -> None:
    artifacts = SolcBuilder.parse_combined_json(_combined_json())
    assert sorted(artifacts) == ["Token", "Token2"]
    assert artifacts["Token"].bytecode == "0x6001"


def test_solc_failure_surfaces_stderr(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "Token.sol").write_text("contract Token {")

    def fake_run(cmd, **_: object) -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="ParserError: expected }")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(BuildError, match="ParserError"):
        SolcBuilder(tmp_path).build()


def test_solc_success_is_parsed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "Token.sol").write_text("contract Token {}")
    seen: list[list[str]] = []

    def fake_run(cmd, **_: object) -> subprocess.CompletedProcess:
        seen.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout=_combined_json(), stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    artifacts = SolcBuilder(tmp_path, binary="solc-0.8.25").build()

    assert "Token2" in artifacts
    assert seen[0][1:3] == ["--combined-json", "abi,bin"]
    assert seen[0][-1].endswith("Token.sol")


def test_missing_solc_binary_is_a_build_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "Token.sol").write_text("contract Token {}")

    def fake_run(cmd, **_: object) -> subprocess.CompletedProcess:
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(BuildError, match="not available on PATH"):
        SolcBuilder(tmp_path, binary="definitely-not-solc").build()


def test_default_builder_prefers_solidity_sources(tmp_path: Path) -> None:
    contracts = tmp_path / "contracts"
    contracts.mkdir()
    (contracts / "Token.json").write_text(json.dumps({"abi": [], "bytecode": "0x6001"}))
    config = HarnessConfig(contracts_dir=contracts)

    assert isinstance(default_builder(config), ArtifactDirectoryBuilder)

    (contracts / "Token.sol").write_text("contract Token {}")
    assert isinstance(default_builder(config), SolcBuilder)


def test_build_artifacts_writes_transient_directory(tmp_path: Path, artifacts: ArtifactSet) -> None:
    class StaticBuilder:
        def build(self) -> ArtifactSet:
            return artifacts

    target = tmp_path / ".harness" / "contracts"
    built = build_artifacts(StaticBuilder(), target)

    assert built is artifacts
    assert sorted(path.stem for path in target.iterdir()) == ["Crowdsale", "Registry", "Token"]


def test_build_artifacts_wraps_unexpected_errors(tmp_path: Path) -> None:
    class BrokenBuilder:
        def build(self) -> ArtifactSet:
            raise KeyError("contracts")

    with pytest.raises(BuildError, match="Error while building contracts"):
        build_artifacts(BrokenBuilder(), tmp_path / "out")
    assert not (tmp_path / "out").exists()
