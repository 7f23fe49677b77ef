"""Pytest plugin that exposes a worker to the single test file it runs.

Test code reaches the worker through fixtures rather than globals::

    pytestmark = pytest.mark.contracts({"SimpleStorage": {"args": [100]}})

    def test_get(contracts):
        assert contracts["SimpleStorage"].call("get") == 100

A ``contracts`` marker on a module or class deploys once for that scope; on a
test function it deploys afresh before that test. Tests may also call
``harness.configure(...)`` themselves, typically from a fixture.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Set

import pytest

from .errors import DeployError

if TYPE_CHECKING:  # pragma: no cover
    from .worker import Worker

LOGGER = logging.getLogger(__name__)

MARKER = "contracts"


class HarnessPlugin:
    """Fixtures, deploy markers, the readiness wait and failure counting."""

    def __init__(self, worker: "Worker") -> None:
        self.worker = worker
        self.failed: Set[str] = set()
        self._scope_key: Optional[str] = None
        self._scope_error: Optional[DeployError] = None

    @property
    def failures(self) -> int:
        return len(self.failed)

    def pytest_configure(self, config: pytest.Config) -> None:
        config.addinivalue_line(
            "markers",
            f"{MARKER}(contracts, versions=None): deploy the given contracts before the test or scope",
        )

    @pytest.fixture
    def harness(self) -> "Worker":
        return self.worker

    @pytest.fixture
    def contracts(self) -> Dict[str, Any]:
        return self.worker.contracts

    @pytest.fixture
    def accounts(self) -> list:
        return self.worker.accounts

    @pytest.fixture
    def web3(self) -> Any:
        return self.worker.web3

    def _marker_scope(self, item: pytest.Item) -> Optional[tuple[str, pytest.Mark]]:
        for node in reversed(item.listchain()):
            for mark in node.own_markers:
                if mark.name == MARKER:
                    return node.nodeid, mark
        return None

    def _apply_marker(self, item: pytest.Item) -> None:
        found = self._marker_scope(item)
        if found is None:
            return
        key, mark = found
        per_test = key == item.nodeid
        if not per_test and key == self._scope_key:
            if self._scope_error is not None:
                raise self._scope_error
            return

        options: Dict[str, Any] = {"contracts": mark.args[0] if mark.args else mark.kwargs.get("contracts", {})}
        if mark.kwargs.get("versions"):
            options["versions"] = mark.kwargs["versions"]
        LOGGER.debug("Deploying for %s", key)
        self._scope_key = None if per_test else key
        self._scope_error = None
        try:
            self.worker.configure(options).result()
        except DeployError as exc:
            if not per_test:
                self._scope_error = exc
            raise

    @pytest.hookimpl(wrapper=True)
    def pytest_runtest_setup(self, item: pytest.Item):
        self._apply_marker(item)
        result = yield
        # Fixtures may have started a deploy of their own.
        self.worker.wait_until_ready()
        return result

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        if report.failed:
            self.failed.add(report.nodeid)

    def pytest_collectreport(self, report: pytest.CollectReport) -> None:
        if report.failed:
            self.failed.add(report.nodeid or "<collection>")


__all__ = ["HarnessPlugin", "MARKER"]
