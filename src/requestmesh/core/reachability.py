"""Network reachability tracking."""

import logging
import threading
from enum import Enum
from typing import Callable, Protocol, runtime_checkable

from requestmesh.core.notifications import NetworkingNotification, NotificationCenter

logger = logging.getLogger(__name__)


class ReachabilityStatus(str, Enum):
    UNKNOWN = "unknown"
    NOT_REACHABLE = "not_reachable"
    REACHABLE_VIA_CELLULAR = "reachable_via_cellular"
    REACHABLE_VIA_WIFI = "reachable_via_wifi"


@runtime_checkable
class ReachabilityProvider(Protocol):
    """What the client needs to know about network reachability."""

    def is_reachable(self) -> bool: ...

    def is_reachable_via_cellular(self) -> bool: ...

    def is_reachable_via_wifi(self) -> bool: ...


class ReachabilityState:
    """Holds the last known reachability status.

    Shared by reference with whichever monitor deduplicates change events.
    """

    def __init__(self, status: ReachabilityStatus = ReachabilityStatus.UNKNOWN):
        self._status = status
        self._lock = threading.Lock()

    @property
    def status(self) -> ReachabilityStatus:
        with self._lock:
            return self._status

    def swap(self, status: ReachabilityStatus) -> bool:
        """Store ``status``; return True if it differs from the previous value."""
        with self._lock:
            if self._status == status:
                return False
            self._status = status
            return True


class ReachabilityMonitor:
    """Reachability provider fed by status updates from a platform monitor.

    Repeated identical statuses are dropped; each real change posts
    ``ReachabilityChanged`` and runs the registered change handlers.
    """

    def __init__(
        self,
        notification_center: NotificationCenter,
        state: ReachabilityState | None = None,
    ):
        self.notification_center = notification_center
        self.state = state or ReachabilityState()
        self._handlers: list[Callable[[ReachabilityStatus], None]] = []

    @property
    def status(self) -> ReachabilityStatus:
        return self.state.status

    def is_reachable(self) -> bool:
        return self.status in (
            ReachabilityStatus.REACHABLE_VIA_CELLULAR,
            ReachabilityStatus.REACHABLE_VIA_WIFI,
        )

    def is_reachable_via_cellular(self) -> bool:
        return self.status == ReachabilityStatus.REACHABLE_VIA_CELLULAR

    def is_reachable_via_wifi(self) -> bool:
        return self.status == ReachabilityStatus.REACHABLE_VIA_WIFI

    def add_change_handler(self, handler: Callable[[ReachabilityStatus], None]) -> None:
        self._handlers.append(handler)

    def update_status(self, status: ReachabilityStatus) -> bool:
        """Record a status reported by the platform.

        Returns:
            True if the status changed and a notification was posted
        """
        if not self.state.swap(status):
            return False

        logger.info("Reachability changed to %s", status.value)
        self.notification_center.post(NetworkingNotification.REACHABILITY_CHANGED)
        for handler in list(self._handlers):
            handler(status)
        return True
