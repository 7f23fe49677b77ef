import multiprocessing
import os

import pytest

from contract_harness.channel import WorkerChannel

pytestmark = pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(),
    reason="fork start method unavailable",
)


def echo_target(conn) -> None:
    message = conn.recv()
    conn.send({"result": "initiated"})
    conn.send({"result": "progress"})
    conn.send({"result": "done", "failures": message["options"]["failures"]})
    conn.close()


def crash_target(conn) -> None:
    conn.recv()
    conn.send({"result": "initiated"})
    os._exit(3)


def test_handlers_fire_once_per_tag() -> None:
    channel = WorkerChannel(echo_target, name="worker:echo", start_method="fork")
    seen = []
    channel.once("initiated", lambda message: seen.append(message["result"]))
    channel.once("done", lambda message: seen.append(message["failures"]))

    channel.start()
    channel.send({"action": "init", "options": {"failures": 4}})
    exit_code = channel.run_until_exit()
    channel.close()

    assert exit_code == 0
    assert seen == ["initiated", 4]
    assert [message["result"] for message in channel.received] == ["initiated", "progress", "done"]


def test_abnormal_exit_is_reported() -> None:
    channel = WorkerChannel(crash_target, name="worker:crash", start_method="fork")
    done = []
    channel.once("done", done.append)

    channel.start()
    channel.send({"action": "init", "options": {}})
    exit_code = channel.run_until_exit()
    channel.close()

    assert exit_code == 3
    assert done == []
    assert channel.received == [{"result": "initiated"}]
