"""Deploy-and-bind cycles for a single worker.

Each cycle starts from a fresh clone of the build snapshot, deploys exactly
the contracts a test asked for and rebinds every live
:class:`ContractHandle`. A cycle either completes as a whole or leaves the
previous state untouched.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from web3 import Web3

from .artifacts import ArtifactSet, ContractArtifact
from .config import DEFAULT_GAS_LIMIT
from .errors import ConfigurationError, DeployError, UnknownModuleRequest, UnresolvedContractName

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentRequest:
    """Contracts to deploy for a suite or a single test case."""

    contracts: Mapping[str, Mapping[str, Any]]
    versions: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_options(
        cls,
        options: Mapping[str, Any],
        default_versions: Mapping[str, str] | None = None,
    ) -> "DeploymentRequest":
        if not isinstance(options, Mapping) or "contracts" not in options:
            raise ConfigurationError("No contracts specified in the options")
        contracts = options["contracts"] or {}
        if not isinstance(contracts, Mapping):
            raise ConfigurationError("contracts must map contract names to their options")
        normalised: Dict[str, Mapping[str, Any]] = {}
        for name, settings in contracts.items():
            if settings is None:
                settings = {}
            if not isinstance(settings, Mapping):
                raise ConfigurationError(f"Options for contract {name} must be a mapping")
            normalised[str(name)] = dict(settings)
        versions = dict(default_versions or {})
        versions.update(options.get("versions") or {})
        return cls(contracts=normalised, versions=versions)


@dataclass(frozen=True)
class DeploymentResult:
    """Outcome of one successful deploy cycle."""

    addresses: Mapping[str, str]
    accounts: Tuple[str, ...]
    default_account: str
    versions: Mapping[str, str] = field(default_factory=dict)


class ContractHandle:
    """Live binding of a contract for test code.

    Test modules keep references to handles across deploy cycles, so a cycle
    rebinds the existing object instead of replacing it.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.abi: List[Dict[str, Any]] = []
        self.address: Optional[str] = None
        self.account: Optional[str] = None
        self.gas: int = DEFAULT_GAS_LIMIT
        self._contract: Any = None

    def bind(
        self,
        *,
        abi: List[Dict[str, Any]],
        address: Optional[str],
        account: Optional[str],
        gas: int,
        contract: Any,
    ) -> "ContractHandle":
        self.abi = abi
        self.address = address
        self.account = account
        self.gas = gas
        self._contract = contract
        return self

    @property
    def deployed(self) -> bool:
        return self.address is not None

    @property
    def contract(self) -> Any:
        if not self.deployed:
            raise DeployError(f"Contract {self.name} is not deployed in the current cycle", contract=self.name)
        return self._contract

    @property
    def functions(self) -> Any:
        return self.contract.functions

    @property
    def events(self) -> Any:
        return self.contract.events

    def _tx(self, overrides: Mapping[str, Any]) -> Dict[str, Any]:
        tx: Dict[str, Any] = {"gas": self.gas}
        if self.account:
            tx["from"] = self.account
        tx.update(overrides)
        return tx

    def call(self, function_name: str, *args: Any, **overrides: Any) -> Any:
        function = getattr(self.functions, function_name)
        return function(*args).call(self._tx(overrides))

    def transact(self, function_name: str, *args: Any, **overrides: Any) -> str:
        function = getattr(self.functions, function_name)
        tx_hash = function(*args).transact(self._tx(overrides))
        return Web3.to_hex(tx_hash)

    def __repr__(self) -> str:
        return f"ContractHandle({self.name!r}, address={self.address!r})"


def best_effort_resolve(name: str, known: Sequence[str]) -> Optional[str]:
    """Map a requested contract name onto a known artifact name.

    Exact match first, then the first known name contained in ``name`` (a
    request for ``Token2`` matches ``Token``), then the first known name at
    all. The last step is a guess: it warns, and the next deploy cycle may
    rebind the handle. Returns ``None`` only when nothing is known.
    """

    if name in known:
        return name
    for candidate in known:
        if candidate and candidate in name:
            return candidate
    if not known:
        return None
    fallback = known[0]
    LOGGER.warning('Could not recognize the contract name "%s"', name)
    LOGGER.warning("If it is an instance of another contract, it will be reassigned on deploy")
    LOGGER.warning("Otherwise, you can rename the contract to contain the parent contract in the name eg: Token2 for Token")
    warnings.warn(
        f'Contract name "{name}" is unknown; bound to "{fallback}" until the next deploy',
        UnresolvedContractName,
        stacklevel=3,
    )
    return fallback


class DeploymentController:
    """Own a worker's artifact clone, deploy cycles and contract handles."""

    def __init__(self, ledger: Any, snapshot: ArtifactSet, *, gas_limit: int = DEFAULT_GAS_LIMIT) -> None:
        self.ledger = ledger
        self._snapshot = snapshot
        self.gas_limit = gas_limit
        self.artifacts: ArtifactSet = snapshot.clone()
        self.contracts_config: Dict[str, Any] = {"contracts": {}, "versions": {}}
        self.handles: Dict[str, ContractHandle] = {}
        self.current: Optional[DeploymentResult] = None

    def reset(self) -> None:
        """Discard any deployed state and start again from the build snapshot."""

        self.artifacts = self._snapshot.clone()

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        working = self._snapshot.clone()
        config = {"contracts": dict(request.contracts), "versions": dict(request.versions)}
        try:
            addresses = self._deploy_contracts(working, request)
            accounts = self._resolve_accounts()
            bindings = self._build_bindings(working, accounts[0])
        except DeployError:
            LOGGER.error("terminating due to error")
            raise
        except Exception as exc:  # noqa: BLE001 - ledger errors surface as deploy errors
            LOGGER.error("terminating due to error")
            raise DeployError(f"Deployment failed: {exc}") from exc

        self.contracts_config = config
        self.artifacts = working
        self.ledger.use_account(accounts[0])
        for name, binding in bindings.items():
            self.handles.setdefault(name, ContractHandle(name)).bind(**binding)
        self.current = DeploymentResult(
            addresses=MappingProxyType(dict(addresses)),
            accounts=tuple(accounts),
            default_account=accounts[0],
            versions=MappingProxyType(dict(request.versions)),
        )
        LOGGER.info(
            "Deployed %s",
            ", ".join(f"{name}@{address}" for name, address in addresses.items()) or "no contracts",
        )
        return self.current

    def _sender(self) -> str:
        sender = self.ledger.default_account
        if sender:
            return sender
        accounts = self.ledger.accounts()
        if not accounts:
            raise DeployError("The ledger exposes no accounts to deploy from")
        return accounts[0]

    def _deploy_contracts(self, working: ArtifactSet, request: DeploymentRequest) -> Dict[str, str]:
        addresses: Dict[str, str] = {}
        sender: Optional[str] = None
        for name, settings in request.contracts.items():
            artifact = self._artifact_for(working, name, settings)
            if settings.get("deploy") is False:
                LOGGER.debug("Skipping %s (deploy disabled)", name)
                continue
            if settings.get("address"):
                address = str(settings["address"])
            else:
                if not artifact.deployable:
                    raise DeployError(f"Contract {name} has no bytecode to deploy", contract=name)
                if sender is None:
                    sender = self._sender()
                args = self._resolve_args(name, settings.get("args") or [], addresses)
                try:
                    address = self.ledger.deploy(artifact.abi, artifact.bytecode, args, sender=sender, gas=self.gas_limit)
                except DeployError:
                    raise
                except Exception as exc:  # noqa: BLE001 - any ledger failure is fatal to the cycle
                    raise DeployError(f"Error deploying {name}: {exc}", contract=name) from exc
            working.set_address(name, address)
            addresses[name] = address
        return addresses

    def _artifact_for(self, working: ArtifactSet, name: str, settings: Mapping[str, Any]) -> ContractArtifact:
        parent = settings.get("instanceOf")
        if parent:
            if parent not in working:
                raise DeployError(f"Contract {name} is an instance of unknown contract {parent}", contract=name)
            source = working[parent]
            working.add(ContractArtifact(name=name, abi=list(source.abi), bytecode=source.bytecode))
        if name not in working:
            raise DeployError(f"Contract {name} was requested but not compiled", contract=name)
        return working[name]

    @staticmethod
    def _resolve_args(name: str, args: Sequence[Any], addresses: Mapping[str, str]) -> List[Any]:
        resolved: List[Any] = []
        for arg in args:
            if isinstance(arg, str) and arg.startswith("$"):
                reference = arg[1:]
                if reference not in addresses:
                    raise DeployError(
                        f"Contract {name} references {reference}, which is not deployed earlier in this cycle",
                        contract=name,
                    )
                resolved.append(addresses[reference])
            else:
                resolved.append(arg)
        return resolved

    def _resolve_accounts(self) -> List[str]:
        accounts = self.ledger.accounts()
        if not accounts:
            raise DeployError("The ledger exposes no accounts")
        return accounts

    def _build_bindings(self, working: ArtifactSet, account: str) -> Dict[str, Dict[str, Any]]:
        bindings: Dict[str, Dict[str, Any]] = {}
        for name, artifact in working.items():
            bindings[name] = self._binding(artifact, account)
        known = list(working)
        for alias in self.handles:
            if alias in bindings:
                continue
            target = best_effort_resolve(alias, known)
            if target is not None:
                bindings[alias] = bindings[target]
        return bindings

    def _binding(self, artifact: ContractArtifact, account: Optional[str]) -> Dict[str, Any]:
        return {
            "abi": artifact.abi,
            "address": artifact.deployed_address,
            "account": account,
            "gas": self.gas_limit,
            "contract": self.ledger.contract(artifact.abi, artifact.deployed_address),
        }

    def resolve_contract(self, name: str) -> ContractHandle:
        """Return the memoized handle for ``name``, creating it on first use."""

        handle = self.handles.get(name)
        if handle is not None:
            return handle
        target = best_effort_resolve(name, list(self.artifacts))
        if target is None:
            raise UnknownModuleRequest(f"contracts/{name}")
        account = self.current.default_account if self.current else self.ledger.default_account
        handle = ContractHandle(name).bind(**self._binding(self.artifacts[target], account))
        self.handles[name] = handle
        return handle


__all__ = [
    "ContractHandle",
    "DeploymentController",
    "DeploymentRequest",
    "DeploymentResult",
    "best_effort_resolve",
]
