"""requestmesh - request execution pipeline for JSON API clients."""

import logging

from requestmesh.core.client import RequestMeshClient
from requestmesh.core.models import (
    Account,
    ClientConfig,
    MultipleAttempts,
    NullResponse,
    RequestDescriptor,
    Response,
    Result,
    SingleAttempt,
    multiple_attempts,
    single_attempt,
    try_three_times,
)
from requestmesh.core.notifications import NetworkingNotification, NotificationCenter
from requestmesh.execution.dispatcher import RequestToken

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "RequestMeshClient",
    "ClientConfig",
    "RequestDescriptor",
    "RequestToken",
    "Response",
    "Result",
    "Account",
    "NullResponse",
    "SingleAttempt",
    "MultipleAttempts",
    "single_attempt",
    "multiple_attempts",
    "try_three_times",
    "NetworkingNotification",
    "NotificationCenter",
]
