# Copyright 2025 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Bounded parallel fan-out with fail-fast cancellation."""

from collections.abc import Callable, Iterable
import concurrent.futures
import threading
from typing import Optional, TypeVar


_T = TypeVar("_T")
_R = TypeVar("_R")


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """Raises `CancelledError` if `cancel_event` is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise concurrent.futures.CancelledError()


def run_all(
    func: Callable[[_T, threading.Event], _R],
    items: Iterable[_T],
    *,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> list[_R]:
    """Runs `func` over all `items` in parallel and collects the results.

    Each call receives the item and the cancellation event of the stage. The
    stage event is set as soon as one call fails or `cancel_event` is set.
    Calls that have not started by then are skipped and the first error is
    raised. No partial results are returned.

    Results are collected on the calling thread, in completion order, not in
    the order of `items`.

    Args:
        func: The unit of work.
        items: The inputs of the stage.
        max_workers: Maximum number of workers to use in parallel. Default
          is to defer to the `concurrent.futures` library.
        cancel_event: Optional cancellation event of the caller.

    Returns:
        The results of all calls.

    Raises:
        concurrent.futures.CancelledError: `cancel_event` was set.
        Exception: The first error raised by `func`.
    """
    items = list(items)
    check_cancelled(cancel_event)
    if not items:
        return []

    stage_event = threading.Event()

    def _run(item: _T) -> _R:
        if cancel_event is not None and cancel_event.is_set():
            stage_event.set()
        check_cancelled(stage_event)
        return func(item, stage_event)

    results = []
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers
    ) as tpe:
        futures = [tpe.submit(_run, item) for item in items]
        try:
            for future in concurrent.futures.as_completed(futures):
                results.append(future.result())
        except BaseException:
            stage_event.set()
            for future in futures:
                future.cancel()
            raise

    return results
