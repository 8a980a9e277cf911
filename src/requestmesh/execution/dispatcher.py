"""Request execution pipeline.

The dispatcher decides, per request, whether to serve from the response cache
or the network, interprets raw payloads into typed ``Response`` objects,
builds follow-up page requests, posts notifications for globally relevant
errors and schedules retries with exponential backoff.

Threading model:

* transport and cache callbacks hand their raw result to the interpretation
  queue, so mapping large payloads never runs on transport threads;
* terminal results are delivered on the caller's completion queue, never
  inline;
* retries are re-issued from the scheduler after the policy's delay.
"""

import logging
import threading
from typing import Any, Callable

from requestmesh.core.models import NullResponse, RequestDescriptor, Response, Result
from requestmesh.core.notifications import NetworkingNotification, NotificationCenter
from requestmesh.execution.mapping import ModelMapper, decode_paging
from requestmesh.execution.queues import ConcurrentQueue, DispatchQueue, SerialQueue, TimerScheduler
from requestmesh.execution.response_cache import ResponseCache
from requestmesh.execution.transport import (
    AUTHORIZATION_HEADER,
    OutgoingRequest,
    Task,
    Transport,
    TransportResult,
)
from requestmesh.utils.exceptions import ClientError, ErrorClass, ModelMappingError, classify

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

ResultCallback = Callable[[Result[Response[Any]]], None]


class RequestToken:
    """Handle to a dispatched request.

    Cache-path requests carry no task; resuming or cancelling them does
    nothing. Once the terminal result has been delivered or ``cancel`` has
    been called, the token is inert.
    """

    def __init__(self, path: str, task: Task | None = None):
        self.path = path
        self.task = task
        self._lock = threading.Lock()
        self._inert = False

    @property
    def is_inert(self) -> bool:
        with self._lock:
            return self._inert

    def resume(self) -> None:
        if self.task is not None and not self.is_inert:
            self.task.resume()

    def cancel(self) -> None:
        with self._lock:
            if self._inert:
                return
            self._inert = True
        if self.task is not None:
            self.task.cancel()

    def _complete(self) -> None:
        with self._lock:
            self._inert = True

    def __repr__(self) -> str:
        return f"RequestToken(path={self.path!r}, live={self.task is not None})"


class Dispatcher:
    """Executes request descriptors against the cache or the transport."""

    def __init__(
        self,
        transport: Transport,
        cache: ResponseCache,
        notification_center: NotificationCenter,
        mapper: ModelMapper | None = None,
        completion_queue: DispatchQueue | None = None,
        interpretation_queue: DispatchQueue | None = None,
        scheduler: TimerScheduler | None = None,
        strict_paging: bool = False,
        interpretation_workers: int = 4,
    ):
        """Initialize the dispatcher.

        Args:
            transport: Adapter executing network calls
            cache: Response cache shared by all requests
            notification_center: Bus for service-unavailable / invalid-token events
            mapper: Model mapper (defaults to a fresh ModelMapper)
            completion_queue: Default queue for terminal callbacks
            interpretation_queue: Queue for mapping and caching work
            scheduler: Scheduler used for delayed retries
            strict_paging: Reject ill-typed paging metadata
            interpretation_workers: Pool size of the default interpretation queue
        """
        self._transport = transport
        self._transport_lock = threading.Lock()
        self.cache = cache
        self.notification_center = notification_center
        self.mapper = mapper or ModelMapper()
        self.strict_paging = strict_paging

        self._owned_queues: list[SerialQueue | ConcurrentQueue] = []
        if completion_queue is None:
            completion_queue = SerialQueue()
            self._owned_queues.append(completion_queue)
        if interpretation_queue is None:
            interpretation_queue = ConcurrentQueue(max_workers=interpretation_workers)
            self._owned_queues.append(interpretation_queue)

        self.completion_queue = completion_queue
        self.interpretation_queue = interpretation_queue
        self.scheduler = scheduler or TimerScheduler()

    @property
    def transport(self) -> Transport:
        with self._transport_lock:
            return self._transport

    def swap_transport(self, transport: Transport) -> Transport:
        """Install a new transport, returning the previous one."""
        with self._transport_lock:
            previous, self._transport = self._transport, transport
        return previous

    def execute(
        self,
        descriptor: RequestDescriptor,
        callback: ResultCallback,
        start_immediately: bool = True,
        completion_queue: DispatchQueue | None = None,
    ) -> RequestToken:
        """Execute a request.

        Args:
            descriptor: Request to execute
            callback: Receives one terminal result per attempt
            start_immediately: Resume the network task before returning
            completion_queue: Queue the callback runs on

        Returns:
            RequestToken for the request
        """
        if not descriptor.path:
            raise ValueError("Request path must not be empty")

        queue = completion_queue or self.completion_queue

        if descriptor.use_cache:
            logger.debug("Serving %s from cache", descriptor.path)
            return self._execute_cached(descriptor, queue, callback)

        token = self._execute_network(descriptor, queue, callback)
        if start_immediately:
            token.resume()
        return token

    # Cache path

    def _execute_cached(
        self,
        descriptor: RequestDescriptor,
        queue: DispatchQueue,
        callback: ResultCallback,
    ) -> RequestToken:
        token = RequestToken(descriptor.path)

        def on_lookup(result: Result[dict[str, Any] | None]) -> None:
            self.interpretation_queue.dispatch(
                self._handle_cache_result, descriptor, token, result, queue, callback
            )

        self.cache.lookup(descriptor.cache_key, on_lookup)
        return token

    def _handle_cache_result(
        self,
        descriptor: RequestDescriptor,
        token: RequestToken,
        result: Result[dict[str, Any] | None],
        queue: DispatchQueue,
        callback: ResultCallback,
    ) -> None:
        if not result.is_success:
            self._handle_failure(descriptor, token, None, result.error, queue, callback, retry=False)
            return

        if result.value is None:
            error = ClientError.cached_response_not_found()
            self._handle_failure(descriptor, token, None, error, queue, callback, retry=False)
            return

        self._handle_success(
            descriptor, token, None, result.value, queue, callback, is_cached_response=True
        )

    # Network path

    def _execute_network(
        self,
        descriptor: RequestDescriptor,
        queue: DispatchQueue,
        callback: ResultCallback,
    ) -> RequestToken:
        token = RequestToken(descriptor.path)

        def on_complete(transport_result: TransportResult) -> None:
            self.interpretation_queue.dispatch(
                self._handle_transport_result, descriptor, token, transport_result, queue, callback
            )

        task = self.transport.request(descriptor, descriptor.transport_parameters(), on_complete)
        if task is None:
            logger.warning("Transport produced no task for %s", descriptor.path)
            error = ClientError.request_malformed()
            self._handle_failure(descriptor, token, None, error, queue, callback, retry=False)
            return token

        token.task = task
        return token

    def _handle_transport_result(
        self,
        descriptor: RequestDescriptor,
        token: RequestToken,
        transport_result: TransportResult,
        queue: DispatchQueue,
        callback: ResultCallback,
    ) -> None:
        result = transport_result.result
        if result.is_success:
            self._handle_success(
                descriptor, token, transport_result.request, result.value, queue, callback
            )
        else:
            self._handle_failure(
                descriptor, token, transport_result.request, result.error, queue, callback, retry=True
            )

    # Direct model path

    def execute_model(
        self,
        descriptor: RequestDescriptor,
        model_type: Any,
        callback: Callable[[Result[Any]], None],
        start_immediately: bool = True,
        completion_queue: DispatchQueue | None = None,
    ) -> RequestToken:
        """Send a request straight to the transport and decode the payload.

        The cache, paging and retry policy are bypassed and no notifications
        are posted. The callback receives the decoded model or the error.
        """
        if not descriptor.path:
            raise ValueError("Request path must not be empty")

        queue = completion_queue or self.completion_queue
        token = RequestToken(descriptor.path)

        def on_complete(transport_result: TransportResult) -> None:
            self.interpretation_queue.dispatch(
                self._decode_model, descriptor, model_type, token, transport_result, queue, callback
            )

        task = self.transport.request(descriptor, descriptor.transport_parameters(), on_complete)
        if task is None:
            logger.warning("Transport produced no task for %s", descriptor.path)
            token._complete()
            queue.dispatch(callback, Result.failure(ClientError.request_malformed()))
            return token

        token.task = task
        if start_immediately:
            token.resume()
        return token

    def _decode_model(
        self,
        descriptor: RequestDescriptor,
        model_type: Any,
        token: RequestToken,
        transport_result: TransportResult,
        queue: DispatchQueue,
        callback: Callable[[Result[Any]], None],
    ) -> None:
        result = transport_result.result
        if not result.is_success:
            if classify(result.error) is ErrorClass.CANCELLED:
                token._complete()
                return
            outcome: Result[Any] = result
        else:
            try:
                outcome = Result.success(
                    self.mapper.map(result.value, model_type, descriptor.model_key_path)
                )
            except ModelMappingError as e:
                logger.warning("Decoding %s as %r failed: %s", descriptor.path, model_type, e)
                outcome = Result.failure(e)

        token._complete()
        queue.dispatch(callback, outcome)

    # Interpretation

    def _handle_success(
        self,
        descriptor: RequestDescriptor,
        token: RequestToken,
        outgoing: OutgoingRequest | None,
        payload: Any,
        queue: DispatchQueue,
        callback: ResultCallback,
        is_cached_response: bool = False,
    ) -> None:
        if not isinstance(payload, dict) or not payload:
            if descriptor.model_type is NullResponse:
                response = Response(
                    model=NullResponse(), json={}, is_cached_response=is_cached_response
                )
                self._deliver(token, queue, callback, Result.success(response))
                return

            logger.warning("Request %s succeeded with an invalid or absent dictionary", descriptor.path)
            error = ClientError.invalid_response_dictionary()
            self._handle_failure(descriptor, token, outgoing, error, queue, callback, retry=False)
            return

        try:
            model = self.mapper.map(payload, descriptor.model_type, descriptor.model_key_path)
            paging = decode_paging(payload, strict=self.strict_paging)
        except ModelMappingError as e:
            # Never leave a payload in the cache that cannot be mapped.
            logger.warning("Mapping failed for %s, removing cached entry: %s", descriptor.path, e)
            self._evict(descriptor.cache_key)
            self._handle_failure(descriptor, token, outgoing, e, queue, callback, retry=False)
            return

        response: Response[Any] = Response(
            model=model, json=payload, is_cached_response=is_cached_response
        )
        if paging is not None:
            links = paging.paging
            response.total_count = paging.total
            response.page = paging.page
            response.items_per_page = paging.per_page
            response.next_page_request = _page_request(descriptor, links.next)
            response.previous_page_request = _page_request(descriptor, links.previous)
            response.first_page_request = _page_request(descriptor, links.first)
            response.last_page_request = _page_request(descriptor, links.last)

        if descriptor.cache_response:
            self._store(descriptor.cache_key, payload)

        self._deliver(token, queue, callback, Result.success(response))

    def _store(self, key: str, payload: dict[str, Any]) -> None:
        # A cache write failure never costs the caller a mapped response.
        try:
            self.cache.store(key, payload)
        except Exception:
            logger.exception("Failed to cache response for %s", key)

    def _evict(self, key: str) -> None:
        try:
            self.cache.remove(key)
        except Exception:
            logger.exception("Failed to remove cached response for %s", key)

    # Failure handling

    def _handle_failure(
        self,
        descriptor: RequestDescriptor,
        token: RequestToken,
        outgoing: OutgoingRequest | None,
        error: BaseException | None,
        queue: DispatchQueue,
        callback: ResultCallback,
        retry: bool,
    ) -> None:
        if error is None:
            error = ClientError.invalid_response_dictionary("Failure without an error")

        error_class = classify(error)
        if error_class is ErrorClass.CANCELLED:
            # The callback is not invoked for cancelled requests.
            logger.debug("Request %s was cancelled", descriptor.path)
            token._complete()
            return

        logger.warning("Request %s failed: %s", descriptor.path, error)
        self._notify(error_class, outgoing)

        retry_scheduled = retry and self._schedule_retry(descriptor, queue, callback)
        self._deliver(token, queue, callback, Result.failure(error, retry_scheduled=retry_scheduled))

    def _notify(self, error_class: ErrorClass, outgoing: OutgoingRequest | None) -> None:
        if error_class is ErrorClass.SERVICE_UNAVAILABLE:
            self.notification_center.post(NetworkingNotification.SERVICE_UNAVAILABLE)
        elif error_class is ErrorClass.INVALID_TOKEN:
            self.notification_center.post(
                NetworkingNotification.INVALID_TOKEN, obj=bearer_token(outgoing)
            )

    def _schedule_retry(
        self,
        descriptor: RequestDescriptor,
        queue: DispatchQueue,
        callback: ResultCallback,
    ) -> bool:
        policy = descriptor.retry_policy
        if not policy.should_retry:
            return False

        retry_descriptor = descriptor.with_retry_policy(policy.next_attempt())
        logger.info(
            "Retrying %s in %.2fs (%d attempt(s) left)",
            descriptor.path,
            policy.initial_delay,
            policy.attempt_count - 1,
        )
        self.scheduler.schedule(
            policy.initial_delay,
            lambda: self.execute(retry_descriptor, callback, completion_queue=queue),
        )
        return True

    def _deliver(
        self,
        token: RequestToken,
        queue: DispatchQueue,
        callback: ResultCallback,
        result: Result[Response[Any]],
    ) -> None:
        token._complete()
        queue.dispatch(callback, result)

    def shutdown(self, wait: bool = True) -> None:
        """Stop owned queues and pending retries."""
        self.scheduler.cancel_all()
        for queue in self._owned_queues:
            queue.shutdown(wait=wait)


def _page_request(descriptor: RequestDescriptor, link: str | None) -> RequestDescriptor | None:
    if link is None:
        return None
    return descriptor.associated_page_request(link)


def bearer_token(outgoing: OutgoingRequest | None) -> str | None:
    """Extract the bearer token from a request's Authorization header."""
    if outgoing is None:
        return None
    header = outgoing.header(AUTHORIZATION_HEADER)
    if not header or BEARER_PREFIX not in header:
        return None
    return header.replace(BEARER_PREFIX, "", 1)
