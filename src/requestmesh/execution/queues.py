"""Execution contexts used to deliver callbacks and schedule retries."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class DispatchQueue(Protocol):
    """Something that runs a callable later, off the caller's stack."""

    def dispatch(self, fn: Callable[..., Any], *args: Any) -> None: ...


class _ExecutorQueue:
    def __init__(self, max_workers: int, name: str):
        self.name = name
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def dispatch(self, fn: Callable[..., Any], *args: Any) -> None:
        self._executor.submit(self._run, fn, *args)

    def _run(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Unhandled error in work item on %s", self.name)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class SerialQueue(_ExecutorQueue):
    """Runs work items one at a time, in submission order."""

    def __init__(self, name: str = "requestmesh-main"):
        super().__init__(max_workers=1, name=name)


class ConcurrentQueue(_ExecutorQueue):
    """Runs work items on a pool of worker threads."""

    def __init__(self, max_workers: int = 4, name: str = "requestmesh-interpret"):
        super().__init__(max_workers=max_workers, name=name)


class ScheduledCall:
    """Handle for a call scheduled on a ``TimerScheduler``."""

    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class TimerScheduler:
    """Schedules a callable to run after a delay on a timer thread."""

    def __init__(self):
        self._pending: set[threading.Timer] = set()
        self._lock = threading.Lock()

    def schedule(self, delay: float, fn: Callable[[], Any]) -> ScheduledCall:
        timer: threading.Timer

        def fire() -> None:
            with self._lock:
                self._pending.discard(timer)
            try:
                fn()
            except Exception:
                logger.exception("Unhandled error in scheduled call")

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._lock:
            self._pending.add(timer)
        timer.start()
        return ScheduledCall(timer)

    def cancel_all(self) -> None:
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        for timer in pending:
            timer.cancel()
