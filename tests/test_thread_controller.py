from __future__ import annotations

import concurrent.futures
import threading

import pytest

from exr_inspector.core.cancellation import CancellationToken
from exr_inspector.core.threading import ThreadController


def test_submit_runs_callback_with_future() -> None:
    controller = ThreadController(max_workers=1, name="test")
    done = threading.Event()
    results = []

    def _collect(future: concurrent.futures.Future) -> None:
        results.append(future.result())
        done.set()

    controller.submit(lambda a, b: a + b, 2, 3, callback=_collect)
    assert done.wait(2.0)
    controller.shutdown()

    assert results == [5]
    assert controller.pending_count() == 0


def test_cancelled_token_skips_work() -> None:
    controller = ThreadController(max_workers=1, name="test")
    gate = threading.Event()
    ran = []
    token = CancellationToken()

    blocker = controller.submit(gate.wait, 2.0)
    queued = controller.submit(ran.append, "ran", cancel_token=token)
    token.cancel()
    gate.set()
    blocker.result(timeout=2.0)
    controller.shutdown()

    assert queued.cancelled() or isinstance(queued.exception(timeout=2.0), concurrent.futures.CancelledError)
    assert ran == []


def test_submit_after_shutdown_raises() -> None:
    controller = ThreadController(max_workers=1, name="test")
    controller.shutdown()
    with pytest.raises(RuntimeError):
        controller.submit(lambda: None)


def test_shutdown_can_let_queued_work_finish() -> None:
    controller = ThreadController(max_workers=1, name="test")
    gate = threading.Event()
    ran = []

    controller.submit(gate.wait, 2.0)
    queued = controller.submit(ran.append, "queued")
    controller.shutdown(wait=False, cancel_pending=False)
    gate.set()

    queued.result(timeout=2.0)
    assert ran == ["queued"]
    with pytest.raises(RuntimeError):
        controller.submit(ran.append, "late")
