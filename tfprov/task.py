from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, Iterator, TypeVar

from tfprov.logging_config import redaction_scope
from tfprov.models import ProgressReport, ProvisioningPhase

logger = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")


class _BroadcastLog(Generic[V]):
    """Append-only, closable log with independent reader cursors.

    Publishing never waits on readers: every reader walks the same list at its own pace,
    so items are seen in publish order by every reader, including late ones.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._items: list[V] = []
        self._closed = False
        self._cond = threading.Condition()

    def publish(self, item: V) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError(f"{self._name} stream is closed")
            self._items.append(item)
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[V]:
        index = 0
        while True:
            with self._cond:
                while index >= len(self._items) and not self._closed:
                    self._cond.wait()
                if index >= len(self._items):
                    return
                item = self._items[index]
            index += 1
            yield item

    def subscribe(self, callback: Callable[[V], None]) -> threading.Thread:
        def _dispatch() -> None:
            for item in self:
                try:
                    callback(item)
                except Exception:
                    logger.exception("%s subscriber raised; dropping subscription", self._name)
                    return

        thread = threading.Thread(target=_dispatch, name=f"{self._name}-subscriber", daemon=True)
        thread.start()
        return thread


class TaskContext:
    """Producer-side handle passed to the operation body."""

    def __init__(self, progress: _BroadcastLog[ProgressReport], interactive: _BroadcastLog[bool]) -> None:
        self._progress = progress
        self._interactive = interactive

    def report(self, message: str, phase: ProvisioningPhase) -> None:
        logger.debug("progress [%s] %s", phase.value, message)
        self._progress.publish(ProgressReport(message=message, phase=phase))

    def set_interactive(self, interactive: bool) -> None:
        self._interactive.publish(interactive)


class AsyncProvisioningTask(Generic[T]):
    """Runs one operation on a worker thread and exposes its progress and outcome.

    The progress and interactivity streams end exactly once, when the operation
    terminates, before `result()` unblocks. Consumers can iterate them from any thread,
    at any time; nothing they do (or fail to do) can stall the worker. Failure is only
    reported through `result()` / `exception()`.
    """

    def __init__(self, operation: Callable[[TaskContext], T], *, name: str = "provisioning") -> None:
        self._name = name
        self._operation = operation
        self._progress: _BroadcastLog[ProgressReport] = _BroadcastLog(f"{name}-progress")
        self._interactive: _BroadcastLog[bool] = _BroadcastLog(f"{name}-interactive")
        self._done = threading.Event()
        self._value: T | None = None
        self._error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, name=f"{name}-worker", daemon=True)

    @classmethod
    def run(cls, operation: Callable[[TaskContext], T], *, name: str = "provisioning") -> AsyncProvisioningTask[T]:
        task = cls(operation, name=name)
        task._thread.start()
        return task

    def _run(self) -> None:
        context = TaskContext(self._progress, self._interactive)
        with redaction_scope():
            try:
                self._value = self._operation(context)
                logger.info("Task '%s' completed", self._name)
            except Exception as exc:
                logger.warning("Task '%s' failed: %s", self._name, exc)
                self._error = exc
            finally:
                self._progress.close()
                self._interactive.close()
                self._done.set()

    def progress(self) -> Iterator[ProgressReport]:
        return iter(self._progress)

    def interactive(self) -> Iterator[bool]:
        return iter(self._interactive)

    def subscribe_progress(self, callback: Callable[[ProgressReport], None]) -> threading.Thread:
        return self._progress.subscribe(callback)

    def subscribe_interactive(self, callback: Callable[[bool], None]) -> threading.Thread:
        return self._interactive.subscribe(callback)

    def done(self) -> bool:
        return self._done.is_set()

    def _wait(self, timeout: float | None) -> None:
        if not self._done.wait(timeout):
            raise TimeoutError(f"Task '{self._name}' did not complete within {timeout}s")

    def result(self, timeout: float | None = None) -> T:
        self._wait(timeout)
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def exception(self, timeout: float | None = None) -> BaseException | None:
        self._wait(timeout)
        return self._error

    def wait_outcome(self, timeout: float | None = None) -> tuple[T | None, BaseException | None]:
        self._wait(timeout)
        return self._value, self._error
