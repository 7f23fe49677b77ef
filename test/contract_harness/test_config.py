"""Unit tests for contract_harness.config helpers."""

from pathlib import Path

import pytest

from contract_harness.config import DEFAULT_GAS_LIMIT, HarnessConfig, load_config
from contract_harness.errors import ConfigurationError


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert config.test_path == "test/"
    assert config.gas_limit == DEFAULT_GAS_LIMIT
    assert config.start_method == "spawn"
    assert config.ready_timeout is None
    assert config.simulator.node is None


def test_yaml_file_is_loaded(tmp_path: Path) -> None:
    path = tmp_path / "harness.yaml"
    path.write_text(
        "contracts_dir: build/contracts\n"
        "versions:\n"
        "  solc: 0.8.25\n"
        "simulator:\n"
        "  request_timeout: 5\n"
    )
    config = load_config(path)
    assert config.contracts_dir == Path("build/contracts")
    assert config.versions == {"solc": "0.8.25"}
    assert config.simulator.request_timeout == 5


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "harness.yaml"
    path.write_text("simulator:\n  node: http://file:8545\n")
    monkeypatch.setenv("HARNESS_NODE_URL", "http://env:8545")
    monkeypatch.setenv("HARNESS_START_METHOD", "forkserver")
    config = load_config(path)
    assert config.simulator.node == "http://env:8545"
    assert config.start_method == "forkserver"


def test_explicit_missing_file_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "missing.yaml")


def test_invalid_values_raise_configuration_error(tmp_path: Path) -> None:
    path = tmp_path / "harness.yaml"
    path.write_text("start_method: threads\n")
    with pytest.raises(ConfigurationError, match="start_method"):
        load_config(path)


def test_non_mapping_document_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "harness.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError, match="mapping"):
        load_config(path)


def test_payload_survives_the_worker_envelope() -> None:
    config = HarnessConfig(log_level="debug", versions={"solc": "0.8.25"})
    restored = HarnessConfig.from_payload(config.to_payload())
    assert restored == config
    assert restored.log_level == "DEBUG"


@pytest.mark.parametrize("artifact_dir", ["build/contracts", "build", "."])
def test_artifact_dir_may_not_cover_contracts(tmp_path: Path, artifact_dir: str) -> None:
    path = tmp_path / "harness.yaml"
    path.write_text(f"contracts_dir: build/contracts\nartifact_dir: {artifact_dir}\n")
    with pytest.raises(ConfigurationError, match="artifact_dir"):
        load_config(path)


def test_sibling_artifact_dir_is_accepted() -> None:
    config = HarnessConfig(contracts_dir=Path("build/contracts"), artifact_dir=Path("build/.harness"))
    assert config.artifact_dir == Path("build/.harness")
