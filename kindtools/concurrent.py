"""Run callables concurrently and collect the errors they raise."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterable

from kindtools.errors import new_aggregate


def _run(func: Callable[[], object], results: queue.SimpleQueue) -> None:
    try:
        func()
    except Exception as exc:  # noqa: BLE001 - every failure is reported
        results.put(exc)
    else:
        results.put(None)


def _start(funcs: list[Callable[[], object]], results: queue.SimpleQueue) -> list[threading.Thread]:
    threads = [
        threading.Thread(target=_run, args=(func, results), daemon=True) for func in funcs
    ]
    for thread in threads:
        thread.start()
    return threads


def until_error_concurrent(funcs: Iterable[Callable[[], object]]) -> None:
    """Run every callable in its own thread and raise the first error to arrive.

    Returns as soon as an error is seen, without waiting for the others.
    """
    funcs = list(funcs)
    results: queue.SimpleQueue = queue.SimpleQueue()
    _start(funcs, results)
    for _ in funcs:
        err = results.get()
        if err is not None:
            raise err


def aggregate_concurrent(funcs: Iterable[Callable[[], object]]) -> None:
    """Run every callable concurrently and wait for all of them.

    A single failure is raised as is; several are raised together as an
    aggregate.
    """
    funcs = list(funcs)
    results: queue.SimpleQueue = queue.SimpleQueue()
    for thread in _start(funcs, results):
        thread.join()
    errs = []
    while not results.empty():
        err = results.get()
        if err is not None:
            errs.append(err)
    if len(errs) > 1:
        raise new_aggregate(errs)
    if errs:
        raise errs[0]