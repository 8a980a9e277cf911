"""Client facade tying together transport, cache and dispatch."""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable

from requestmesh.core.models import Account, ClientConfig, RequestDescriptor, Response, Result
from requestmesh.core.notifications import (
    NO_PREVIOUS_ACCOUNT,
    PREVIOUS_ACCOUNT_KEY,
    NetworkingNotification,
    NotificationCenter,
)
from requestmesh.core.reachability import ReachabilityMonitor, ReachabilityProvider
from requestmesh.execution.dispatcher import Dispatcher, RequestToken, ResultCallback
from requestmesh.execution.mapping import ModelMapper
from requestmesh.execution.queues import DispatchQueue, TimerScheduler
from requestmesh.execution.response_cache import InMemoryResponseCache, ResponseCache
from requestmesh.execution.transport import HttpxTransport, Transport

logger = logging.getLogger(__name__)


class RequestMeshClient:
    """Executes requests, tracks the authenticated account and broadcasts events.

    A client owns one transport at a time, a response cache and a dispatcher.
    Build ``RequestDescriptor`` instances and pass them to ``request`` (callback
    style) or ``request_future``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: Transport | None = None,
        cache: ResponseCache | None = None,
        reachability: ReachabilityProvider | None = None,
        notification_center: NotificationCenter | None = None,
        mapper: ModelMapper | None = None,
        completion_queue: DispatchQueue | None = None,
        interpretation_queue: DispatchQueue | None = None,
        scheduler: TimerScheduler | None = None,
    ):
        """Initialize the client.

        Args:
            config: Client configuration (defaults to ClientConfig())
            transport: Transport adapter (defaults to an HttpxTransport for config)
            cache: Response cache (defaults to InMemoryResponseCache)
            reachability: Reachability provider (defaults to a ReachabilityMonitor)
            notification_center: Bus for client-wide events
            mapper: Model mapper used to decode responses
            completion_queue: Default queue for request callbacks
            interpretation_queue: Queue for response mapping
            scheduler: Scheduler for delayed retries
        """
        self.config = config or ClientConfig()
        self.notification_center = notification_center or NotificationCenter()
        self.cache = cache or InMemoryResponseCache()
        self.reachability = reachability or ReachabilityMonitor(self.notification_center)

        self._account_lock = threading.RLock()
        self._current_account: Account | None = None

        self.dispatcher = Dispatcher(
            transport=transport or HttpxTransport(self.config),
            cache=self.cache,
            notification_center=self.notification_center,
            mapper=mapper,
            completion_queue=completion_queue,
            interpretation_queue=interpretation_queue,
            scheduler=scheduler,
            strict_paging=self.config.strict_paging,
            interpretation_workers=self.config.interpretation_workers,
        )

    @property
    def transport(self) -> Transport:
        return self.dispatcher.transport

    @property
    def mapper(self) -> ModelMapper:
        return self.dispatcher.mapper

    # Configuration

    def configure(
        self,
        config: ClientConfig,
        reachability: ReachabilityProvider | None = None,
        transport: Transport | None = None,
    ) -> None:
        """Replace the transport and reachability provider.

        The previous transport is invalidated without cancelling its tasks, so
        tokens already issued keep running against it until they complete.
        The current account, if any, is handed to the new transport.
        """
        new_transport = transport or HttpxTransport(config)
        with self._account_lock:
            account = self._current_account
            if account is not None:
                new_transport.client_did_authenticate(account)
            previous = self.dispatcher.swap_transport(new_transport)

        previous.invalidate(cancel_pending=False)
        self.config = config
        self.dispatcher.strict_paging = config.strict_paging
        self.reachability = reachability or ReachabilityMonitor(self.notification_center)
        logger.info("Client reconfigured for %s", config.base_url)

    # Authentication

    @property
    def current_account(self) -> Account | None:
        with self._account_lock:
            return self._current_account

    @current_account.setter
    def current_account(self, account: Account | None) -> None:
        with self._account_lock:
            previous = self._current_account
            self._current_account = account

            if previous is None and account is not None:
                logger.info("Client authenticated")
                self.transport.client_did_authenticate(account)
            else:
                # Switching accounts clears; the caller sets the new account again.
                logger.info("Client account cleared")
                self.transport.client_did_clear_account()

            self.notification_center.post(
                NetworkingNotification.ACCOUNT_CHANGED,
                obj=account,
                user_info={
                    PREVIOUS_ACCOUNT_KEY: previous if previous is not None else NO_PREVIOUS_ACCOUNT
                },
            )

    # Requests

    def request(
        self,
        descriptor: RequestDescriptor,
        callback: ResultCallback,
        start_immediately: bool = True,
        completion_queue: DispatchQueue | None = None,
    ) -> RequestToken:
        """Execute a request.

        Args:
            descriptor: Request to execute
            callback: Called once per attempt with a terminal Result
            start_immediately: Resume the network task before returning
            completion_queue: Queue the callback runs on

        Returns:
            RequestToken for the in-flight request
        """
        return self.dispatcher.execute(
            descriptor,
            callback,
            start_immediately=start_immediately,
            completion_queue=completion_queue,
        )

    def request_future(
        self,
        descriptor: RequestDescriptor,
        completion_queue: DispatchQueue | None = None,
    ) -> "Future[Response[Any]]":
        """Execute a request and return a future for its final outcome.

        Failures followed by a scheduled retry are skipped, so the future
        holds the first successful Response or raises the last error.
        """
        future: Future[Response[Any]] = Future()

        def resolve(result: Result[Response[Any]]) -> None:
            if future.done() or result.retry_scheduled:
                return
            if result.is_success:
                future.set_result(result.value)
            else:
                future.set_exception(result.error)

        self.request(descriptor, resolve, completion_queue=completion_queue)
        return future

    def request_model(
        self,
        descriptor: RequestDescriptor,
        model_type: Any,
        callback: Callable[[Result[Any]], None],
        start_immediately: bool = True,
        completion_queue: DispatchQueue | None = None,
    ) -> RequestToken:
        """Execute a request and decode its payload into ``model_type``.

        Unlike ``request``, this skips the cache, paging metadata and the
        retry policy. Decoders registered on ``mapper`` take precedence over
        pydantic validation.

        Args:
            descriptor: Request to execute
            model_type: Type the payload is decoded into
            callback: Called once with the decoded model or the error
            start_immediately: Resume the network task before returning
            completion_queue: Queue the callback runs on

        Returns:
            RequestToken for the in-flight request
        """
        return self.dispatcher.execute_model(
            descriptor,
            model_type,
            callback,
            start_immediately=start_immediately,
            completion_queue=completion_queue,
        )

    def remove_cached_response(self, key: str) -> None:
        """Remove the cached response stored under ``key``."""
        self.cache.remove(key)

    def remove_all_cached_responses(self) -> None:
        self.cache.clear()

    # Lifecycle

    def shutdown(self, wait: bool = True) -> None:
        """Stop queues and invalidate the transport."""
        self.dispatcher.shutdown(wait=wait)
        self.transport.invalidate(cancel_pending=False)
        if isinstance(self.cache, InMemoryResponseCache):
            self.cache.shutdown()

    def __enter__(self) -> "RequestMeshClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()
