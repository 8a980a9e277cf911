"""Pytest configuration and shared fixtures."""

import threading
from typing import Any, Callable

import pytest
from pydantic import BaseModel

from requestmesh.core.client import RequestMeshClient
from requestmesh.core.models import ClientConfig, RequestDescriptor, Result
from requestmesh.core.notifications import NetworkingNotification, Notification, NotificationCenter
from requestmesh.execution.dispatcher import Dispatcher
from requestmesh.execution.response_cache import InMemoryResponseCache
from requestmesh.execution.transport import MockTransport


class Video(BaseModel):
    """Model used as the mapped type in tests."""

    uri: str
    name: str
    duration: int = 0


class ImmediateQueue:
    """Queue that runs work on the dispatching thread."""

    def __init__(self):
        self.dispatched = 0

    def dispatch(self, fn: Callable[..., Any], *args: Any) -> None:
        self.dispatched += 1
        fn(*args)


class RecordingScheduler:
    """Scheduler that records delayed calls and runs them on demand."""

    def __init__(self):
        self.scheduled: list[tuple[float, Callable[[], Any]]] = []
        self.delays: list[float] = []

    def schedule(self, delay: float, fn: Callable[[], Any]) -> None:
        self.scheduled.append((delay, fn))
        self.delays.append(delay)

    def run_pending(self) -> int:
        """Run scheduled calls, including ones they schedule in turn."""
        ran = 0
        while self.scheduled:
            _, fn = self.scheduled.pop(0)
            fn()
            ran += 1
        return ran

    def cancel_all(self) -> None:
        self.scheduled.clear()


class NotificationRecorder:
    """Observer that records every notification it receives."""

    def __init__(self, center: NotificationCenter, *names: NetworkingNotification):
        self.received: list[Notification] = []
        self._lock = threading.Lock()
        for name in names or tuple(NetworkingNotification):
            center.add_observer(name, self._record)

    def _record(self, notification: Notification) -> None:
        with self._lock:
            self.received.append(notification)

    def names(self) -> list[NetworkingNotification]:
        with self._lock:
            return [n.name for n in self.received]


class ResultCollector:
    """Callback that records every result it receives."""

    def __init__(self):
        self.results: list[Result] = []
        self.event = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, result: Result) -> None:
        with self._lock:
            self.results.append(result)
        self.event.set()

    def wait(self, timeout: float = 5.0) -> bool:
        return self.event.wait(timeout)

    @property
    def successes(self) -> list:
        return [r.value for r in self.results if r.is_success]

    @property
    def failures(self) -> list[BaseException]:
        return [r.error for r in self.results if not r.is_success]


@pytest.fixture
def video_payload() -> dict:
    """A single video response."""
    return {"uri": "/videos/1", "name": "Launch", "duration": 42}


@pytest.fixture
def paged_payload() -> dict:
    """A paged list response."""
    return {
        "total": 40,
        "page": 2,
        "per_page": 20,
        "paging": {
            "next": "/me/videos?page=3",
            "previous": "/me/videos?page=1",
            "first": None,
            "last": None,
        },
        "data": [
            {"uri": "/videos/21", "name": "Twenty-one"},
            {"uri": "/videos/22", "name": "Twenty-two"},
        ],
    }


@pytest.fixture
def video_request() -> RequestDescriptor:
    return RequestDescriptor(path="/videos/1", model_type=Video)


@pytest.fixture
def notification_center() -> NotificationCenter:
    return NotificationCenter()


@pytest.fixture
def recorder(notification_center) -> NotificationRecorder:
    return NotificationRecorder(notification_center)


@pytest.fixture
def make_recorder() -> Callable[..., NotificationRecorder]:
    return NotificationRecorder


@pytest.fixture
def queue() -> ImmediateQueue:
    return ImmediateQueue()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def cache(queue) -> InMemoryResponseCache:
    return InMemoryResponseCache(queue=queue)


@pytest.fixture
def mock_transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def dispatcher(mock_transport, cache, notification_center, queue, scheduler) -> Dispatcher:
    """Dispatcher whose queues all run inline, for deterministic tests."""
    return Dispatcher(
        transport=mock_transport,
        cache=cache,
        notification_center=notification_center,
        completion_queue=queue,
        interpretation_queue=queue,
        scheduler=scheduler,
    )


@pytest.fixture
def client(mock_transport, cache, notification_center, queue, scheduler) -> RequestMeshClient:
    """Client wired to the mock transport with inline queues."""
    return RequestMeshClient(
        config=ClientConfig(base_url="https://api.test.com"),
        transport=mock_transport,
        cache=cache,
        notification_center=notification_center,
        completion_queue=queue,
        interpretation_queue=queue,
        scheduler=scheduler,
    )


@pytest.fixture
def video_model() -> type[Video]:
    return Video


@pytest.fixture
def collector() -> ResultCollector:
    return ResultCollector()


@pytest.fixture
def make_collector() -> Callable[[], ResultCollector]:
    return ResultCollector
