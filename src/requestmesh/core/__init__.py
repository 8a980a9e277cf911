"""Core client, models and client-wide services."""

from requestmesh.core.client import RequestMeshClient
from requestmesh.core.config import load_config
from requestmesh.core.models import ClientConfig, RequestDescriptor, Response
from requestmesh.core.notifications import NetworkingNotification, NotificationCenter
from requestmesh.core.reachability import ReachabilityMonitor, ReachabilityState, ReachabilityStatus

__all__ = [
    "RequestMeshClient",
    "ClientConfig",
    "RequestDescriptor",
    "Response",
    "NetworkingNotification",
    "NotificationCenter",
    "ReachabilityMonitor",
    "ReachabilityState",
    "ReachabilityStatus",
    "load_config",
]
