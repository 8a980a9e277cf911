"""Custom exceptions for requestmesh.

Every error delivered to a request callback belongs to a single error domain
and carries a numeric code. Local codes are defined by ``LocalErrorCode``;
transport and storage errors pass their own codes through.
"""

from enum import Enum, IntEnum
from typing import Any

ERROR_DOMAIN = "RequestMeshClientErrorDomain"

# Server-side error code reported alongside an expired or revoked token.
INVALID_TOKEN_SERVER_CODE = 8003


class LocalErrorCode(IntEnum):
    """Codes for errors raised by the client itself."""

    REQUEST_MALFORMED = 9999
    INVALID_RESPONSE_DICTIONARY = 9998
    CACHED_RESPONSE_NOT_FOUND = 9997


class ErrorClass(str, Enum):
    """Coarse classification used to decide which notifications to post."""

    SERVICE_UNAVAILABLE = "service_unavailable"
    INVALID_TOKEN = "invalid_token"
    CANCELLED = "cancelled"
    UNCLASSIFIED = "unclassified"


class RequestMeshError(Exception):
    """Base exception for requestmesh errors."""

    domain: str = ERROR_DOMAIN
    code: int = 0

    def __init__(self, message: str = "", code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ClientError(RequestMeshError):
    """Error produced by the client for a local failure."""

    def __init__(self, code: LocalErrorCode, message: str):
        super().__init__(message, code=int(code))

    @property
    def local_code(self) -> LocalErrorCode:
        return LocalErrorCode(self.code)

    @classmethod
    def request_malformed(cls, message: str = "Transport did not return a task") -> "ClientError":
        return cls(LocalErrorCode.REQUEST_MALFORMED, message)

    @classmethod
    def invalid_response_dictionary(
        cls, message: str = "Request succeeded with an invalid or absent response dictionary"
    ) -> "ClientError":
        return cls(LocalErrorCode.INVALID_RESPONSE_DICTIONARY, message)

    @classmethod
    def cached_response_not_found(cls, message: str = "Cached response not found") -> "ClientError":
        return cls(LocalErrorCode.CACHED_RESPONSE_NOT_FOUND, message)


class TransportError(RequestMeshError):
    """Error reported by the transport for a failed network call."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        server_error_code: int | None = None,
        response_body: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=status_code)
        self.status_code = status_code
        self.server_error_code = server_error_code
        self.response_body = response_body or {}

    @property
    def is_service_unavailable(self) -> bool:
        return self.status_code == 503

    @property
    def is_invalid_token(self) -> bool:
        return (
            self.status_code == 401
            or self.server_error_code == INVALID_TOKEN_SERVER_CODE
        )

    @property
    def is_cancelled(self) -> bool:
        return False


class RequestCancelledError(TransportError):
    """The transport task was cancelled before it completed."""

    # Mirrors the conventional "request cancelled" URL error code.
    CANCELLED_CODE = -999

    def __init__(self, message: str = "Request was cancelled"):
        super().__init__(message, status_code=self.CANCELLED_CODE)

    @property
    def is_cancelled(self) -> bool:
        return True


class CacheStorageError(RequestMeshError):
    """Error reading from or writing to the response cache."""

    pass


class ModelMappingError(RequestMeshError):
    """Error mapping a response payload into a model."""

    pass


class PagingSchemaError(ModelMappingError):
    """The paging section of a response does not have the expected shape."""

    pass


def classify(error: BaseException) -> ErrorClass:
    """Classify a terminal error for notification purposes."""
    if isinstance(error, TransportError):
        if error.is_cancelled:
            return ErrorClass.CANCELLED
        if error.is_service_unavailable:
            return ErrorClass.SERVICE_UNAVAILABLE
        if error.is_invalid_token:
            return ErrorClass.INVALID_TOKEN
    return ErrorClass.UNCLASSIFIED
