"""Shared fakes for the harness unit tests."""

from __future__ import annotations

import threading
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence

import pytest

from contract_harness.artifacts import ArtifactSet, ContractArtifact

# Init code that returns a runtime answering 42 to every call.
ANSWER_BYTECODE = "0x600a600c600039600a6000f3602a60005260206000f3"
ANSWER_ABI = [
    {
        "type": "function",
        "name": "answer",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    }
]


class FakeLedger:
    """In-memory ledger recording deployments instead of executing them."""

    def __init__(self, accounts: Optional[List[str]] = None) -> None:
        self._accounts = accounts if accounts is not None else [f"0x{index:040x}" for index in range(1, 4)]
        self.default_account: Optional[str] = None
        self.deployments: List[Dict[str, Any]] = []
        self.failing: set[str] = set()
        self.release: Optional[threading.Event] = None
        self._counter = 0

    def accounts(self) -> List[str]:
        return list(self._accounts)

    def use_account(self, account: str) -> None:
        self.default_account = account

    def deploy(self, abi, bytecode: str, args: Sequence[Any] = (), *, sender: str, gas: int) -> str:
        if self.release is not None:
            self.release.wait(5)
        if bytecode in self.failing:
            raise RuntimeError("out of gas")
        self._counter += 1
        address = f"0x{0xC0DE0000 + self._counter:040x}"
        self.deployments.append(
            {"bytecode": bytecode, "args": list(args), "sender": sender, "gas": gas, "address": address}
        )
        return address

    def contract(self, abi, address: Optional[str]) -> SimpleNamespace:
        return SimpleNamespace(abi=abi, address=address, functions=SimpleNamespace())


def make_artifacts(*names: str) -> ArtifactSet:
    artifacts = ArtifactSet()
    for index, name in enumerate(names, start=1):
        artifacts.add(ContractArtifact(name=name, abi=[], bytecode=f"0x60{index:02x}"))
    return artifacts


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def artifacts() -> ArtifactSet:
    return make_artifacts("Token", "Crowdsale", "Registry")


@pytest.fixture(name="make_artifacts")
def make_artifacts_fixture():
    return make_artifacts


@pytest.fixture
def answer_artifact() -> ContractArtifact:
    return ContractArtifact(name="Answer", abi=ANSWER_ABI, bytecode=ANSWER_BYTECODE)


@pytest.fixture
def ledger_factory():
    return FakeLedger
