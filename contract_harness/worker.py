"""Worker process: one test file against its own chain and deployment state."""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent import futures
from concurrent.futures import Future, ThreadPoolExecutor
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import pytest

from .artifacts import ArtifactSet
from .config import HarnessConfig
from .deployment import ContractHandle, DeploymentController, DeploymentRequest
from .errors import DeployError, UnknownModuleRequest
from .ledger import LedgerClient
from .logging_utils import configure_logging
from .plugin import HarnessPlugin
from .readiness import ReadinessGate

LOGGER = logging.getLogger(__name__)

CONTRACTS_MODULE_PREFIX = "contracts/"

Callback = Callable[[Optional[Exception], Optional[List[str]]], None]


class Worker:
    """Run a single test file in isolation.

    The worker owns a private ledger, a deployment controller seeded with its
    own clone of the build snapshot, and a readiness gate. Deploy cycles run
    one at a time on a dedicated thread; test steps wait on the gate.
    """

    def __init__(
        self,
        snapshot: ArtifactSet,
        test_file: Path | str,
        config: HarnessConfig | None = None,
        *,
        ledger: Any = None,
    ) -> None:
        self.config = config or HarnessConfig()
        self.test_file = Path(test_file)
        started = time.perf_counter()
        self.ledger = ledger or LedgerClient.connect(self.config.simulator)
        LOGGER.debug("%s: ledger ready in %.3fs", self.test_file.name, time.perf_counter() - started)
        self.controller = DeploymentController(self.ledger, snapshot.clone(), gas_limit=self.config.gas_limit)
        self.gate = ReadinessGate(ready=True)
        self.plugin = HarnessPlugin(self)
        self._deployer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deploy")
        self._in_flight: Optional[Future] = None
        self._deploy_thread: Optional[threading.Thread] = None
        self._last_error: Optional[DeployError] = None
        LOGGER.debug("%s: worker initialised in %.3fs", self.test_file.name, time.perf_counter() - started)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "Worker":
        """Build a worker from the ``options`` of an ``init`` envelope."""

        config = HarnessConfig.from_payload(options.get("config") or {})
        snapshot = ArtifactSet.from_payload(options.get("snapshot") or {})
        return cls(snapshot, options["file"], config)

    @property
    def ready(self) -> bool:
        return self.gate.ready

    @property
    def web3(self) -> Any:
        return getattr(self.ledger, "web3", None)

    @property
    def accounts(self) -> List[str]:
        current = self.controller.current
        return list(current.accounts) if current else []

    @property
    def contracts(self) -> Dict[str, ContractHandle]:
        return self.controller.handles

    def configure(self, options: Mapping[str, Any], callback: Callback | None = None) -> Future:
        """Redeploy the requested contracts from a clean snapshot.

        Readiness drops immediately and comes back only when the cycle
        succeeds. ``callback`` receives ``(None, accounts)`` or ``(error, None)``;
        the returned future resolves to the accounts or raises the error.
        """

        request = DeploymentRequest.from_options(options, self.config.versions)
        self.gate.close()
        self.controller.reset()
        self._in_flight = self._deployer.submit(self._run_cycle, request, callback)
        return self._in_flight

    def _run_cycle(self, request: DeploymentRequest, callback: Callback | None) -> List[str]:
        self._deploy_thread = threading.current_thread()
        try:
            result = self.controller.deploy(request)
        except DeployError as exc:
            self._last_error = exc
            LOGGER.error("%s: %s", self.test_file.name, exc)
            if callback is not None:
                callback(exc, None)
            raise
        self._last_error = None
        accounts = list(result.accounts)
        self.gate.open()
        if callback is not None:
            callback(None, accounts)
        return accounts

    def wait_until_ready(self, timeout: float | None = None) -> None:
        """Block until contracts are deployed.

        Raises:
            DeployError: the latest cycle failed and none is in flight.
            TimeoutError: ``timeout`` (default ``ready_timeout``) elapsed.
        """

        if self.gate.ready:
            return
        if timeout is None:
            timeout = self.config.ready_timeout
        in_flight = self._in_flight
        # A configure callback runs inside the cycle it reports on.
        if in_flight is not None and not in_flight.done() and threading.current_thread() is not self._deploy_thread:
            _, pending = futures.wait([in_flight], timeout=timeout)
            if pending:
                raise TimeoutError(f"Deployment did not finish within {timeout}s")
        if self.gate.ready:
            return
        if self._last_error is not None:
            raise DeployError(f"Contracts are unavailable, the last deploy failed: {self._last_error}") from self._last_error
        self.gate.wait(timeout)

    def require(self, module: str) -> ContractHandle:
        """Resolve ``contracts/<Name>`` to a live handle."""

        if module.startswith(CONTRACTS_MODULE_PREFIX):
            return self.controller.resolve_contract(module[len(CONTRACTS_MODULE_PREFIX):])
        raise UnknownModuleRequest(module)

    def contract(self, name: str) -> ContractHandle:
        return self.require(f"{CONTRACTS_MODULE_PREFIX}{name}")

    def start(self) -> int:
        """Run the test file and return the number of failed tests."""

        if self.config.disable_plugin_autoload:
            os.environ.setdefault("PYTEST_DISABLE_PLUGIN_AUTOLOAD", "1")
        args = [str(self.test_file), "-p", "no:cacheprovider"]
        LOGGER.debug("Running pytest %s", " ".join(args))
        exit_code = pytest.main(args, plugins=[self.plugin])
        failures = self.plugin.failures
        if exit_code not in (pytest.ExitCode.OK, pytest.ExitCode.TESTS_FAILED, pytest.ExitCode.NO_TESTS_COLLECTED):
            LOGGER.error("%s: pytest exited with %s", self.test_file.name, exit_code)
            failures = max(failures, 1)
        return failures

    def shutdown(self) -> None:
        self._deployer.shutdown(wait=True)


def worker_main(conn: Connection) -> None:
    """Process entry point: handle ``init``, run the suite, report ``done``."""

    message = conn.recv()
    if not isinstance(message, dict) or message.get("action") != "init":
        conn.close()
        raise SystemExit(f"Unexpected first message {message!r}")
    options = message.get("options") or {}
    config = HarnessConfig.from_payload(options.get("config") or {})
    configure_logging(config.log_file, level=config.log_level, test_file=options.get("file"))

    worker = Worker.from_options(options)
    conn.send({"result": "initiated"})
    try:
        failures = worker.start()
    finally:
        worker.shutdown()
    conn.send({"result": "done", "failures": failures})
    conn.close()


__all__ = ["CONTRACTS_MODULE_PREFIX", "Worker", "worker_main"]
