"""Fire-and-forget notification bus for client-wide events."""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class NetworkingNotification(str, Enum):
    """Names of the events broadcast by the client."""

    REACHABILITY_CHANGED = "ReachabilityChanged"
    ACCOUNT_CHANGED = "AccountChanged"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    INVALID_TOKEN = "InvalidToken"


class _NoPreviousAccount:
    """Marker posted when there was no account before a change."""

    def __repr__(self) -> str:
        return "NO_PREVIOUS_ACCOUNT"

    def __bool__(self) -> bool:
        return False


NO_PREVIOUS_ACCOUNT = _NoPreviousAccount()

PREVIOUS_ACCOUNT_KEY = "previous_account"


@dataclass(frozen=True)
class Notification:
    """A posted event."""

    name: NetworkingNotification
    obj: Any = None
    user_info: dict[str, Any] = field(default_factory=dict)


NotificationHandler = Callable[[Notification], None]


class NotificationCenter:
    """Delivers posted notifications to registered observers.

    Delivery is synchronous on the posting thread. An observer that raises
    is logged and skipped; the remaining observers still run.
    """

    def __init__(self):
        self._observers: dict[int, tuple[NetworkingNotification, NotificationHandler]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add_observer(self, name: NetworkingNotification, handler: NotificationHandler) -> int:
        """Register a handler for a notification name.

        Returns:
            Token to pass to ``remove_observer``
        """
        with self._lock:
            token = next(self._ids)
            self._observers[token] = (name, handler)
        return token

    def remove_observer(self, token: int) -> bool:
        with self._lock:
            return self._observers.pop(token, None) is not None

    def post(
        self,
        name: NetworkingNotification,
        obj: Any = None,
        user_info: dict[str, Any] | None = None,
    ) -> None:
        """Broadcast a notification to every observer of ``name``."""
        notification = Notification(name=name, obj=obj, user_info=user_info or {})

        with self._lock:
            handlers = [h for n, h in self._observers.values() if n == name]

        logger.debug("Posting %s to %d observer(s)", name.value, len(handlers))
        for handler in handlers:
            try:
                handler(notification)
            except Exception:
                logger.exception("Observer for %s raised", name.value)

