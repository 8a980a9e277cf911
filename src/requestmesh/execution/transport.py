"""Transport adapters that execute single network calls."""

import base64
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from requestmesh.core.models import Account, ClientConfig, RequestDescriptor, Result
from requestmesh.utils.exceptions import RequestCancelledError, TransportError

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"
ERROR_CODE_HEADER = "X-Error-Code"
BODY_METHODS = {"POST", "PUT", "PATCH"}
QUERY_METHODS = {"GET", "DELETE", "HEAD"}


@dataclass(frozen=True)
class OutgoingRequest:
    """The request as it was sent, kept for header inspection."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class TransportResult:
    """Raw result of one network call."""

    result: Result[Any]
    request: OutgoingRequest | None = None


TransportCallback = Callable[[TransportResult], None]


class Task(ABC):
    """Handle to a single network call."""

    def __init__(self, outgoing: OutgoingRequest, callback: TransportCallback):
        self.outgoing = outgoing
        self._callback = callback
        self._lock = threading.Lock()
        self._started = False
        self._cancelled = False
        self._finished = False

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def is_finished(self) -> bool:
        with self._lock:
            return self._finished

    @abstractmethod
    def resume(self) -> None:
        """Start the call. Calling it again has no effect."""
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Abort the call if it has not produced a result yet."""
        pass

    def _finish(self, result: Result[Any]) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
        self._callback(TransportResult(result=result, request=self.outgoing))


class Transport(ABC):
    """Abstract base class for transport adapters."""

    @abstractmethod
    def request(
        self,
        descriptor: RequestDescriptor,
        parameters: dict[str, Any] | list[Any] | None,
        callback: TransportCallback,
    ) -> Task | None:
        """Create a task for ``descriptor``.

        Returns:
            A task that has not started yet, or None if no task could be built
        """
        pass

    @abstractmethod
    def client_did_authenticate(self, account: Account) -> None:
        pass

    @abstractmethod
    def client_did_clear_account(self) -> None:
        pass

    @abstractmethod
    def invalidate(self, cancel_pending: bool = False) -> None:
        """Stop accepting new tasks, optionally cancelling tasks in flight."""
        pass


class HttpxTask(Task):
    """Task that sends one request through an ``HttpxTransport``."""

    def __init__(
        self,
        transport: "HttpxTransport",
        request: httpx.Request,
        callback: TransportCallback,
    ):
        super().__init__(
            OutgoingRequest(
                method=request.method,
                url=str(request.url),
                headers=dict(request.headers),
            ),
            callback,
        )
        self._transport = transport
        self._request = request
        self._future: Future | None = None

    def resume(self) -> None:
        with self._lock:
            if self._started or self._cancelled:
                return
            self._started = True

        try:
            future = self._transport._submit(self._run)
        except RuntimeError:
            self._transport._forget(self)
            self._finish(Result.failure(TransportError("Transport has been closed")))
            return

        with self._lock:
            self._future = future

    def cancel(self) -> None:
        with self._lock:
            if self._finished or self._cancelled:
                return
            self._cancelled = True
            future = self._future
            started = self._started

        if not started or (future is not None and future.cancel()):
            self._transport._forget(self)
            self._finish(Result.failure(RequestCancelledError()))

    def _run(self) -> None:
        try:
            response = self._transport._send(self._request)
        except httpx.HTTPError as e:
            result: Result[Any] = Result.failure(TransportError(str(e) or type(e).__name__))
        except Exception as e:
            result = Result.failure(TransportError(f"Unexpected error: {e}"))
        else:
            result = self._transport._interpret(response)
        finally:
            self._transport._forget(self)

        if self.is_cancelled:
            result = Result.failure(RequestCancelledError())
        self._finish(result)


class HttpxTransport(Transport):
    """Transport backed by an ``httpx.Client``.

    Calls run on a worker pool so ``resume`` never blocks the caller.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        client: httpx.Client | None = None,
    ):
        """Initialize the transport.

        Args:
            config: Client configuration (base URL, timeout, headers)
            client: Optional preconfigured httpx client, e.g. one built on
                ``httpx.MockTransport`` for testing
        """
        self.config = config or ClientConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self._client = client
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.transport_workers,
            thread_name_prefix="requestmesh-transport",
        )
        self._lock = threading.Lock()
        self._tasks: set[HttpxTask] = set()
        self._invalidated = False
        self._released = False
        self._authorization = self._client_credentials_header()

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(timeout=self.config.timeout)
            return self._client

    @property
    def authorization(self) -> str | None:
        with self._lock:
            return self._authorization

    def request(
        self,
        descriptor: RequestDescriptor,
        parameters: dict[str, Any] | list[Any] | None,
        callback: TransportCallback,
    ) -> Task | None:
        with self._lock:
            if self._invalidated:
                logger.warning("Request for %s on an invalidated transport", descriptor.path)
                return None

        http_request = self._build_request(descriptor, parameters)
        if http_request is None:
            return None

        task = HttpxTask(self, http_request, callback)
        with self._lock:
            if self._invalidated:
                return None
            self._tasks.add(task)
        return task

    def client_did_authenticate(self, account: Account) -> None:
        with self._lock:
            if account.access_token:
                self._authorization = f"Bearer {account.access_token}"
            else:
                self._authorization = self._client_credentials_header()

    def client_did_clear_account(self) -> None:
        with self._lock:
            self._authorization = self._client_credentials_header()

    def invalidate(self, cancel_pending: bool = False) -> None:
        """Refuse new requests; tasks already created may still be resumed.

        The worker pool and client are released once every created task has
        finished or been cancelled.
        """
        with self._lock:
            if self._invalidated:
                return
            self._invalidated = True
            tasks = list(self._tasks)
            drained = not tasks

        if cancel_pending:
            for task in tasks:
                task.cancel()

        if drained:
            self._release()

    def close(self) -> None:
        """Invalidate and wait for in-flight calls before closing the client."""
        self.invalidate()
        self._executor.shutdown(wait=True)
        self._release()

    def _release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            client, self._client = self._client, None
        self._executor.shutdown(wait=False)
        if client is not None:
            client.close()
        logger.debug("Transport for %s released", self.base_url)

    def _build_request(
        self,
        descriptor: RequestDescriptor,
        parameters: dict[str, Any] | list[Any] | None,
    ) -> httpx.Request | None:
        method = descriptor.method.upper()
        url = self._build_url(descriptor.path)
        headers = {
            "Accept": self.config.accept,
            "User-Agent": self.config.user_agent,
        }
        authorization = self.authorization
        if authorization:
            headers[AUTHORIZATION_HEADER] = authorization

        if method in QUERY_METHODS:
            if isinstance(parameters, list):
                logger.warning("Positional parameters are not supported for %s %s", method, url)
                return None
            return self.client.build_request(method, url, params=parameters, headers=headers)
        if method in BODY_METHODS:
            return self.client.build_request(method, url, json=parameters, headers=headers)

        logger.warning("Unsupported HTTP method: %s", method)
        return None

    def _build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _client_credentials_header(self) -> str | None:
        if not (self.config.client_identifier and self.config.client_secret):
            return None
        raw = f"{self.config.client_identifier}:{self.config.client_secret}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"

    def _submit(self, fn: Callable[[], None]) -> Future:
        return self._executor.submit(fn)

    def _forget(self, task: HttpxTask) -> None:
        with self._lock:
            self._tasks.discard(task)
            drained = self._invalidated and not self._tasks
        if drained:
            self._release()

    def _send(self, request: httpx.Request) -> httpx.Response:
        return self.client.send(request)

    def _interpret(self, response: httpx.Response) -> Result[Any]:
        """Turn an HTTP response into a payload or a classified error."""
        if 200 <= response.status_code < 300:
            if not response.content:
                return Result.success({})
            try:
                return Result.success(response.json())
            except ValueError as e:
                return Result.failure(
                    TransportError(
                        f"Response is not valid JSON: {e}",
                        status_code=response.status_code,
                    )
                )

        body: dict[str, Any] = {}
        try:
            decoded = response.json()
            if isinstance(decoded, dict):
                body = decoded
        except ValueError:
            pass

        message = body.get("error") or body.get("message") or f"HTTP {response.status_code}"
        return Result.failure(
            TransportError(
                str(message),
                status_code=response.status_code,
                server_error_code=_server_error_code(body, response.headers),
                response_body=body,
            )
        )


def _server_error_code(body: dict[str, Any], headers: httpx.Headers) -> int | None:
    raw = body.get("error_code", headers.get(ERROR_CODE_HEADER))
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


class MockTask(Task):
    """Task that completes with a canned result when resumed."""

    def __init__(self, outgoing: OutgoingRequest, result: Result[Any], callback: TransportCallback):
        super().__init__(outgoing, callback)
        self._result = result

    def resume(self) -> None:
        with self._lock:
            if self._started or self._cancelled:
                return
            self._started = True
        self._finish(self._result)

    def cancel(self) -> None:
        with self._lock:
            if self._finished or self._cancelled:
                return
            self._cancelled = True
        self._finish(Result.failure(RequestCancelledError()))


class MockTransport(Transport):
    """Transport returning canned results, for testing.

    ``responses`` maps a path to a payload, ``None`` (empty body), an
    exception (failure), or a list of those consumed one per call.
    """

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        default: Any = None,
        produce_tasks: bool = True,
    ):
        self.responses = dict(responses or {})
        self.default = default
        self.produce_tasks = produce_tasks
        self.call_history: list[dict[str, Any]] = []
        self.auth_events: list[tuple[str, Account | None]] = []
        self.authorization: str | None = None
        self.invalidated = False
        self.tasks: list[MockTask] = []
        self._lock = threading.Lock()

    def request(
        self,
        descriptor: RequestDescriptor,
        parameters: dict[str, Any] | list[Any] | None,
        callback: TransportCallback,
    ) -> Task | None:
        with self._lock:
            self.call_history.append({
                "path": descriptor.path,
                "method": descriptor.method,
                "parameters": parameters,
                "retry_policy": descriptor.retry_policy,
            })
            if not self.produce_tasks:
                return None
            result = self._next_result(descriptor.path)

        headers = {AUTHORIZATION_HEADER: self.authorization} if self.authorization else {}
        task = MockTask(
            OutgoingRequest(method=descriptor.method, url=descriptor.path, headers=headers),
            result,
            callback,
        )
        self.tasks.append(task)
        return task

    def _next_result(self, path: str) -> Result[Any]:
        value = self.responses.get(path, self.default)
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else (value[0] if value else None)
        if isinstance(value, BaseException):
            return Result.failure(value)
        return Result.success(value)

    def client_did_authenticate(self, account: Account) -> None:
        self.auth_events.append(("authenticated", account))
        self.authorization = f"Bearer {account.access_token}" if account.access_token else None

    def client_did_clear_account(self) -> None:
        self.auth_events.append(("cleared", None))
        self.authorization = None

    def invalidate(self, cancel_pending: bool = False) -> None:
        self.invalidated = True
        if cancel_pending:
            for task in self.tasks:
                task.cancel()

    @property
    def paths(self) -> list[str]:
        return [call["path"] for call in self.call_history]
