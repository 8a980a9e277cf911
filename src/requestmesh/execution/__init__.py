"""Execution modules for requestmesh."""

from requestmesh.execution.dispatcher import Dispatcher, RequestToken
from requestmesh.execution.response_cache import InMemoryResponseCache, ResponseCache
from requestmesh.execution.transport import HttpxTransport, MockTransport, Transport

__all__ = [
    "Dispatcher",
    "RequestToken",
    "ResponseCache",
    "InMemoryResponseCache",
    "Transport",
    "HttpxTransport",
    "MockTransport",
]
