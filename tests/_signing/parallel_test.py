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

import concurrent.futures
import threading
import time

import pytest

from image_signing._signing import parallel


class TestRunAll:
    def test_collects_all_results(self):
        results = parallel.run_all(lambda item, _: item * 2, [1, 2, 3])
        assert sorted(results) == [2, 4, 6]

    def test_empty_items(self):
        calls = []
        assert parallel.run_all(lambda i, _: calls.append(i), []) == []
        assert calls == []

    def test_passes_stage_event(self):
        (event,) = parallel.run_all(lambda _, event: event, ["item"])
        assert isinstance(event, threading.Event)
        assert not event.is_set()

    def test_first_error_raised(self):
        def func(item, _):
            if item == 2:
                raise RuntimeError("failed on 2")
            return item

        with pytest.raises(RuntimeError, match="failed on 2"):
            parallel.run_all(func, [1, 2, 3], max_workers=2)

    def test_failure_skips_pending_items(self):
        started = []
        lock = threading.Lock()

        def func(item, _):
            with lock:
                started.append(item)
            if item == 0:
                raise RuntimeError("failed on 0")
            time.sleep(0.05)
            return item

        with pytest.raises(RuntimeError):
            parallel.run_all(func, range(20), max_workers=1)

        assert len(started) < 20

    def test_failure_sets_stage_event(self):
        events = []
        release = threading.Event()

        def func(item, event):
            if item == "fail":
                release.wait(5)
                raise RuntimeError("failed")
            events.append(event)
            release.set()
            return item

        with pytest.raises(RuntimeError):
            parallel.run_all(func, ["ok", "fail"], max_workers=2)

        (event,) = events
        assert event.is_set()

    def test_cancelled_before_start(self):
        calls = []
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(concurrent.futures.CancelledError):
            parallel.run_all(
                lambda i, _: calls.append(i), [1, 2], cancel_event=cancel_event
            )

        assert calls == []

    def test_cancelled_while_running(self):
        cancel_event = threading.Event()

        def func(item, _):
            cancel_event.set()
            return item

        with pytest.raises(concurrent.futures.CancelledError):
            parallel.run_all(
                func, range(10), max_workers=1, cancel_event=cancel_event
            )


class TestCheckCancelled:
    def test_no_event(self):
        parallel.check_cancelled(None)

    def test_event_not_set(self):
        parallel.check_cancelled(threading.Event())

    def test_event_set(self):
        event = threading.Event()
        event.set()
        with pytest.raises(concurrent.futures.CancelledError):
            parallel.check_cancelled(event)
