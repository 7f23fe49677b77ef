"""Duplex message channel to one worker process."""

from __future__ import annotations

import logging
import multiprocessing
from collections import defaultdict
from multiprocessing.connection import Connection
from typing import Any, Callable, Dict, List, Mapping, Optional

LOGGER = logging.getLogger(__name__)

Message = Dict[str, Any]
Handler = Callable[[Message], None]

_POLL_INTERVAL = 0.1


class WorkerChannel:
    """Send commands to a child process and dispatch the events it sends back.

    Handlers are one-shot and keyed by the ``result`` tag of incoming
    messages. Abnormal termination is detected through the child's exit code
    once the pipe is drained.
    """

    def __init__(
        self,
        target: Callable[[Connection], None],
        *,
        name: str,
        start_method: str = "spawn",
    ) -> None:
        context = multiprocessing.get_context(start_method)
        self._conn, child_conn = context.Pipe(duplex=True)
        self._child_conn = child_conn
        self._process = context.Process(target=target, args=(child_conn,), name=name)
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self.name = name
        self.received: List[Message] = []

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def exitcode(self) -> Optional[int]:
        return self._process.exitcode

    def start(self) -> None:
        self._process.start()
        # The child owns its end from here on.
        self._child_conn.close()

    def send(self, message: Mapping[str, Any]) -> None:
        self._conn.send(dict(message))

    def once(self, result: str, handler: Handler) -> None:
        self._handlers[result].append(handler)

    def _dispatch(self, message: Message) -> None:
        self.received.append(message)
        tag = message.get("result")
        handlers = self._handlers.pop(tag, []) if isinstance(tag, str) else []
        if not handlers:
            LOGGER.debug("%s: unhandled message %s", self.name, message)
        for handler in handlers:
            handler(message)

    def run_until_exit(self) -> int:
        """Dispatch messages until the child exits; return its exit code."""

        while True:
            try:
                if self._conn.poll(_POLL_INTERVAL):
                    self._dispatch(self._conn.recv())
                    continue
            except (EOFError, OSError):
                break
            if not self._process.is_alive():
                # Drain whatever the child wrote before exiting.
                try:
                    while self._conn.poll():
                        self._dispatch(self._conn.recv())
                except (EOFError, OSError):
                    pass
                break
        self._process.join()
        return self._process.exitcode if self._process.exitcode is not None else -1

    def close(self) -> None:
        if self._process.is_alive():
            self._process.terminate()
            self._process.join()
        self._conn.close()


__all__ = ["Message", "WorkerChannel"]
