"""Build once, fan test files out to worker processes, aggregate the failures."""

from __future__ import annotations

import contextlib
import fnmatch
import logging
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

from .artifacts import ArtifactSet
from .builder import Builder, build_artifacts, default_builder
from .channel import Message, WorkerChannel
from .config import HarnessConfig
from .errors import BuildError
from .worker import worker_main

LOGGER = logging.getLogger(__name__)

TEST_MODE_ENV = "IS_TEST"
CRASHED_WORKER_FAILURES = 1


@dataclass(frozen=True)
class WorkerResult:
    file: Path
    failures: int
    exit_code: int
    crashed: bool = False
    duration: float = 0.0


@dataclass
class AggregateResult:
    results: List[WorkerResult] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return sum(result.failures for result in self.results)

    @property
    def crashed(self) -> List[WorkerResult]:
        return [result for result in self.results if result.crashed]


def pool_size() -> int:
    """Number of workers allowed to run at once: one per processing core."""

    return os.cpu_count() or 1


def exit_status(aggregate: AggregateResult) -> int:
    return aggregate.failures


def discover_test_files(path: Path | str, patterns: Sequence[str] = ("test_*.py", "*_test.py")) -> List[Path]:
    """Return the test files to run for ``path``.

    A file yields itself. A directory yields its direct children matching any
    of ``patterns``, in sorted listing order.
    """

    target = Path(path)
    if target.is_file():
        return [target]
    if not target.is_dir():
        raise FileNotFoundError(f"Test path {target} does not exist")
    return [
        entry
        for entry in sorted(target.iterdir())
        if entry.is_file() and any(fnmatch.fnmatch(entry.name, pattern) for pattern in patterns)
    ]


@contextlib.contextmanager
def mark_test_mode() -> Iterator[None]:
    """Flag the process environment as running tests; workers inherit it."""

    previous = os.environ.get(TEST_MODE_ENV)
    os.environ[TEST_MODE_ENV] = "1"
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop(TEST_MODE_ENV, None)
        else:
            os.environ[TEST_MODE_ENV] = previous


class Orchestrator:
    """Drive a complete run: build, discovery, the worker pool and cleanup."""

    def __init__(
        self,
        config: HarnessConfig | None = None,
        *,
        builder: Builder | None = None,
        worker_target: Callable[[Connection], None] = worker_main,
    ) -> None:
        self.config = config or HarnessConfig()
        self._builder = builder
        self._worker_target = worker_target

    def build(self) -> ArtifactSet:
        LOGGER.info("Compiling contracts")
        builder = self._builder or default_builder(self.config)
        return build_artifacts(builder, self.config.artifact_dir)

    def _run_file(self, file: Path, artifacts: ArtifactSet) -> WorkerResult:
        channel = WorkerChannel(
            self._worker_target,
            name=f"worker:{file.name}",
            start_method=self.config.start_method,
        )
        done: List[Message] = []
        channel.once("initiated", lambda _message: LOGGER.debug("Worker for %s initiated", file))
        channel.once("done", done.append)

        start = time.perf_counter()
        LOGGER.info("Starting process for %s", file)
        channel.start()
        try:
            try:
                channel.send(
                    {
                        "action": "init",
                        "options": {
                            "snapshot": artifacts.to_payload(),
                            "file": str(file),
                            "config": self.config.to_payload(),
                        },
                    }
                )
            except OSError as exc:
                # The child died before reading its init envelope.
                LOGGER.error("Could not hand %s to its test process: %s", file, exc)
            exit_code = channel.run_until_exit()
        finally:
            channel.close()
        duration = time.perf_counter() - start

        if not done:
            LOGGER.error(
                "Test process for %s ended with code %s before reporting a result; counting %d failure",
                file,
                exit_code,
                CRASHED_WORKER_FAILURES,
            )
            return WorkerResult(file, CRASHED_WORKER_FAILURES, exit_code, crashed=True, duration=duration)

        failures = int(done[0].get("failures") or 0)
        if exit_code != 0:
            LOGGER.warning("Test process for %s ended with code %s", file, exit_code)
        LOGGER.info(
            "Done %s (%d failures, %.2fs)",
            file,
            failures,
            duration,
            extra={"event": "worker.done", "failures": failures, "duration": round(duration, 3)},
        )
        return WorkerResult(file, failures, exit_code, duration=duration)

    def run(self, files: Sequence[Path], artifacts: ArtifactSet) -> AggregateResult:
        """Run every file in its own worker, at most :func:`pool_size` at a time."""

        if not files:
            return AggregateResult()
        with ThreadPoolExecutor(max_workers=min(pool_size(), len(files)), thread_name_prefix="worker") as pool:
            results = list(pool.map(lambda file: self._run_file(file, artifacts), files))
        return AggregateResult(results)

    def cleanup(self) -> None:
        """Remove the transient artifact directory for the next run."""

        shutil.rmtree(self.config.artifact_dir, ignore_errors=True)

    def execute(self, path: Path | str | None = None) -> Optional[AggregateResult]:
        """Run the suite under ``path`` and return the aggregate.

        Returns ``None`` when the build failed (no worker is launched).
        """

        target = path if path is not None else self.config.test_path
        with mark_test_mode():
            try:
                try:
                    artifacts = self.build()
                except BuildError as exc:
                    LOGGER.error("Error while building contracts: %s", exc)
                    return None
                files = discover_test_files(target, self.config.test_patterns)
                LOGGER.info("Running %d test files with up to %d workers", len(files), pool_size())
                return self.run(files, artifacts)
            finally:
                self.cleanup()


__all__ = [
    "AggregateResult",
    "CRASHED_WORKER_FAILURES",
    "Orchestrator",
    "TEST_MODE_ENV",
    "WorkerResult",
    "discover_test_files",
    "exit_status",
    "mark_test_mode",
    "pool_size",
]
