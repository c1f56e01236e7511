"""Background task primitives.

TaskGroup: a bounded pool of units of work with a joint wait barrier.
Task: a single abandonable unit of work with a cancellation token, used to
race a slow call against a timeout.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4


@dataclass
class TaskFailure:
    """A task that raised."""
    name: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.name}: {self.error}"


class TaskGroupError(Exception):
    """One or more tasks in a group failed."""

    def __init__(self, group: str, failures: list[TaskFailure]):
        self.group = group
        self.failures = failures
        summary = '; '.join(str(f) for f in failures)
        super().__init__(f"{len(failures)} task(s) failed in {group}: {summary}")

    @property
    def errors(self) -> list[BaseException]:
        return [f.error for f in self.failures]


class TaskGroup:
    """Bounded-concurrency group of background tasks.

    Tasks start as soon as they are enqueued and are never cancelled; `wait()`
    is the only point where the caller rejoins them.
    """

    def __init__(self, name: str, concurrency: int = DEFAULT_CONCURRENCY):
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=name)
        self._futures: list[tuple[str, Future]] = []
        self._lock = threading.Lock()

    def go(self, fn: Callable[..., Any], *args, name: Optional[str] = None, **kwargs) -> Future:
        """Enqueue fn(*args, **kwargs) and return its future."""
        task_name = name or getattr(fn, '__name__', 'task')
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._futures.append((task_name, future))
        logger.debug(f"[{self.name}] enqueued {task_name}")
        return future

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)

    def close(self) -> None:
        """Release idle pool threads; tasks already enqueued still run."""
        self._executor.shutdown(wait=False)

    def __enter__(self) -> 'TaskGroup':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def wait(self) -> list[Any]:
        """Block until every task has resolved.

        Returns:
            Results of successful tasks, in enqueue order

        Raises:
            TaskGroupError: With every failure, after all tasks have resolved
        """
        with self._lock:
            futures = list(self._futures)

        results = []
        failures = []
        for task_name, future in futures:
            error = future.exception()
            if error is not None:
                failures.append(TaskFailure(task_name, error))
            else:
                results.append(future.result())

        if failures:
            raise TaskGroupError(self.name, failures)
        return results


class Task:
    """A unit of work on a daemon thread, with a cancellation token.

    The function receives the token as its `cancel` keyword argument when
    `pass_token` is set. Cancelling only sets the token; a running call is
    never interrupted, so after a timeout the work may still complete in the
    background.
    """

    def __init__(self, fn: Callable[..., Any], *args, name: str = 'task',
                 pass_token: bool = False, **kwargs):
        self.name = name
        self.cancel_token = threading.Event()
        self.future: Future = Future()
        if pass_token:
            kwargs['cancel'] = self.cancel_token
        self._thread = threading.Thread(
            target=self._run, args=(fn, args, kwargs), name=name, daemon=True,
        )

    def _run(self, fn, args, kwargs) -> None:
        if not self.future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:  # noqa: B036 - delivered to the waiting caller
            self.future.set_exception(e)
        else:
            self.future.set_result(result)

    def start(self) -> 'Task':
        self._thread.start()
        return self

    def cancel(self) -> None:
        self.cancel_token.set()

    @property
    def abandoned(self) -> bool:
        return self.cancel_token.is_set() and not self.future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        """Wait for the result.

        Raises:
            TimeoutError: If the task did not finish within timeout (the
                task is cancelled and left running)
        """
        done, _ = wait_futures([self.future], timeout=timeout)
        if not done:
            self.cancel()
            logger.warning(f"[{self.name}] abandoned after {timeout}s; it may still complete in the background")
            raise TimeoutError(f"{self.name} did not finish within {timeout}s")
        # Errors raised by the call itself, a TimeoutError included, pass through unchanged
        return self.future.result()


def run_with_timeout(fn: Callable[..., Any], timeout: float, *args, name: str = 'task', **kwargs) -> Any:
    """Run fn on a daemon thread and wait at most `timeout` seconds for it."""
    return Task(fn, *args, name=name, **kwargs).start().result(timeout=timeout)
