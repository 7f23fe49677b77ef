"""Repository-wide pytest configuration.

Pins the import path so ``contract_harness`` resolves regardless of the
invocation directory, and keeps harness environment variables from leaking
between tests. Worker processes started with ``spawn`` inherit this
``sys.path``.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("PYTHONPATH", str(ROOT))
# Globally installed plugins (the web3 pytest tools among them) must not load
# inside worker-run test sessions either.
os.environ.setdefault("PYTEST_DISABLE_PLUGIN_AUTOLOAD", "1")


@pytest.fixture(autouse=True)
def _clear_harness_env(monkeypatch: pytest.MonkeyPatch):
    """Drop overrides that would change how configuration is loaded."""

    for key in [
        "HARNESS_NODE_URL",
        "HARNESS_ENV",
        "HARNESS_START_METHOD",
        "IS_TEST",
    ]:
        monkeypatch.delenv(key, raising=False)
    yield
