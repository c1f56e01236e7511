"""Tests for tasks.py - task groups and abandonable tasks."""

import logging
import threading
import time

import pytest

from tasks import Task, TaskGroup, TaskGroupError, run_with_timeout


class TestTaskGroup:
    """Bounded groups with a joint wait."""

    def test_wait_returns_results_in_order(self):
        group = TaskGroup('test')
        group.go(lambda: time.sleep(0.05) or 'slow')
        group.go(lambda: 'fast')
        assert group.wait() == ['slow', 'fast']

    def test_empty_group(self):
        assert TaskGroup('empty').wait() == []

    def test_aggregates_every_failure(self):
        """wait() should raise once with all failures, after all tasks resolve."""
        done = threading.Event()

        def fail(msg):
            raise ValueError(msg)

        def slow_ok():
            time.sleep(0.1)
            done.set()
            return 'ok'

        group = TaskGroup('test')
        group.go(fail, 'first', name='a')
        group.go(slow_ok, name='b')
        group.go(fail, 'second', name='c')

        with pytest.raises(TaskGroupError) as exc_info:
            group.wait()

        assert done.is_set()
        assert [f.name for f in exc_info.value.failures] == ['a', 'c']
        assert [str(e) for e in exc_info.value.errors] == ['first', 'second']

    def test_concurrency_bound(self):
        running = []
        peak = []
        guard = threading.Lock()

        def work():
            with guard:
                running.append(1)
                peak.append(len(running))
            time.sleep(0.05)
            with guard:
                running.pop()

        group = TaskGroup('bounded', concurrency=2)
        for _ in range(6):
            group.go(work)
        group.wait()

        assert max(peak) <= 2
        assert len(group) == 6

    def test_wait_twice(self):
        group = TaskGroup('test')
        group.go(lambda: 1)
        assert group.wait() == [1]
        group.go(lambda: 2)
        assert group.wait() == [1, 2]

    def test_close_releases_pool(self):
        with TaskGroup('test') as group:
            group.go(lambda: 1)
            assert group.wait() == [1]
        with pytest.raises(RuntimeError):
            group.go(lambda: 2)


class TestTask:
    """Abandonable single tasks."""

    def test_result(self):
        assert run_with_timeout(lambda x: x * 2, 1, 21) == 42

    def test_error_propagates(self):
        def boom():
            raise RuntimeError('boom')

        with pytest.raises(RuntimeError, match='boom'):
            run_with_timeout(boom, 1)

    def test_timeout_sets_cancel_token(self):
        """Timeout cancels the token and leaves the thread running."""
        release = threading.Event()
        task = Task(release.wait, 5, name='slow').start()

        with pytest.raises(TimeoutError):
            task.result(timeout=0.1)

        assert task.cancel_token.is_set()
        assert task.abandoned
        release.set()
        task.future.result(timeout=1)
        assert not task.abandoned

    def test_token_passed_when_requested(self):
        def cooperative(cancel):
            return cancel.wait(5)

        task = Task(cooperative, name='coop', pass_token=True).start()
        with pytest.raises(TimeoutError):
            task.result(timeout=0.1)
        assert task.future.result(timeout=1) is True

    def test_own_timeout_error_passes_through(self, caplog):
        """A TimeoutError raised by the call is not mistaken for the wait timing out."""
        def handshake():
            raise TimeoutError('ssh handshake timed out')

        task = Task(handshake, name='create').start()
        with caplog.at_level(logging.WARNING):
            with pytest.raises(TimeoutError, match='ssh handshake timed out'):
                task.result(timeout=30)

        assert not task.cancel_token.is_set()
        assert 'abandoned' not in caplog.text
