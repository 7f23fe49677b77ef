"""Ledger connectivity for workers: an in-process chain or an external node."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from web3 import EthereumTesterProvider, Web3
from web3.contract.contract import Contract

from .config import SimulatorConfig
from .errors import DeployError

LOGGER = logging.getLogger(__name__)


class LedgerClient:
    """A thin wrapper around Web3 exposing what a deploy cycle needs."""

    def __init__(self, web3: Web3) -> None:
        self.web3 = web3

    @classmethod
    def connect(cls, simulator: SimulatorConfig) -> "LedgerClient":
        """Bind to ``simulator.node`` when set, otherwise start a private eth-tester chain."""

        if simulator.node:
            provider = Web3.HTTPProvider(simulator.node, request_kwargs={"timeout": simulator.request_timeout})
            LOGGER.debug("Ledger client bound to external node %s", simulator.node)
        else:
            provider = EthereumTesterProvider()
            LOGGER.debug("Ledger client bound to a private eth-tester chain")
        return cls(Web3(provider))

    @property
    def default_account(self) -> Optional[str]:
        account = self.web3.eth.default_account
        return account if isinstance(account, str) else None

    def accounts(self) -> List[str]:
        return list(self.web3.eth.accounts)

    def use_account(self, account: str) -> None:
        self.web3.eth.default_account = account

    def deploy(
        self,
        abi: List[Dict[str, Any]],
        bytecode: str,
        args: Sequence[Any] = (),
        *,
        sender: str,
        gas: int,
    ) -> str:
        """Deploy ``bytecode`` and return the checksum address of the new contract."""

        factory = self.web3.eth.contract(abi=abi, bytecode=bytecode)
        tx_hash = factory.constructor(*args).transact({"from": sender, "gas": gas})
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt.get("status") == 0:
            raise DeployError(f"Deployment transaction {Web3.to_hex(tx_hash)} reverted")
        address = receipt.get("contractAddress")
        if not address:
            raise DeployError(f"Deployment transaction {Web3.to_hex(tx_hash)} produced no contract address")
        return Web3.to_checksum_address(address)

    def contract(self, abi: List[Dict[str, Any]], address: Optional[str]) -> Contract:
        if address is None:
            return self.web3.eth.contract(abi=abi)
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)


__all__ = ["LedgerClient"]
