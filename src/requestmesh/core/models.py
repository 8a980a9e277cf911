"""Pydantic models for requestmesh."""

import copy
import hashlib
import json
from dataclasses import dataclass
from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")
ModelT = TypeVar("ModelT")


class ClientConfig(BaseModel):
    """Configuration for a RequestMeshClient."""

    base_url: str = Field(default="https://api.example.com", description="Base URL for API calls")
    timeout: float = Field(default=30.0, gt=0, description="Timeout for API calls in seconds")
    client_identifier: str = Field(default="", description="Application client identifier")
    client_secret: str | None = Field(default=None, description="Application client secret")
    user_agent: str = Field(default="requestmesh/0.1.0", min_length=1, description="User-Agent header")
    accept: str = Field(default="application/json", description="Accept header sent with every request")
    interpretation_workers: int = Field(
        default=4, ge=1, le=64, description="Worker threads used to map responses"
    )
    transport_workers: int = Field(
        default=8, ge=1, le=256, description="Worker threads used to run transport tasks"
    )
    strict_paging: bool = Field(
        default=False,
        description="Reject ill-typed paging metadata instead of defaulting it to 0",
    )


class SingleAttempt(BaseModel):
    """Retry policy that never retries."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["single"] = "single"

    @property
    def should_retry(self) -> bool:
        return False


class MultipleAttempts(BaseModel):
    """Retry policy with a bounded attempt count and exponential backoff.

    ``attempt_count`` counts the attempts still allowed, including the one
    about to run. A retry is scheduled only while more than one remains.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["multiple"] = "multiple"
    attempt_count: int = Field(..., ge=0, description="Attempts remaining, including the current one")
    initial_delay: float = Field(..., gt=0, description="Seconds to wait before the next attempt")

    @property
    def should_retry(self) -> bool:
        return self.attempt_count > 1

    def next_attempt(self) -> "MultipleAttempts":
        """Return the policy for the following attempt."""
        return MultipleAttempts(
            attempt_count=self.attempt_count - 1,
            initial_delay=self.initial_delay * 2,
        )


RetryPolicy = Annotated[Union[SingleAttempt, MultipleAttempts], Field(discriminator="kind")]


def single_attempt() -> SingleAttempt:
    return SingleAttempt()


def multiple_attempts(attempt_count: int, initial_delay: float) -> MultipleAttempts:
    return MultipleAttempts(attempt_count=attempt_count, initial_delay=initial_delay)


def try_three_times() -> MultipleAttempts:
    return MultipleAttempts(attempt_count=3, initial_delay=1.0)


class NullResponse(BaseModel):
    """Model type for endpoints that return no content."""

    pass


class RequestDescriptor(BaseModel):
    """Description of a single logical API call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, protected_namespaces=())

    path: str = Field(..., min_length=1, description="API path, relative to the base URL")
    method: str = Field(default="GET", description="HTTP method")
    parameters: dict[str, Any] | list[Any] | None = Field(
        default=None, description="Keyed or positional request parameters"
    )
    use_cache: bool = Field(default=False, description="Serve this request from the cache only")
    cache_response: bool = Field(default=True, description="Store a mapped response in the cache")
    retry_policy: RetryPolicy = Field(default_factory=SingleAttempt)
    model_type: Any = Field(default=dict, description="Type the response payload is mapped to")
    model_key_path: str | None = Field(
        default=None, description="Dot-separated path of the model object in the payload"
    )

    @property
    def cache_key(self) -> str:
        """Stable key for identical path and parameters."""
        encoded = json.dumps(
            self.parameters, sort_keys=True, default=str, separators=(",", ":")
        )
        digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
        return f"cached{self.path}.{digest}"

    def transport_parameters(self) -> dict[str, Any] | list[Any] | None:
        """Parameters handed to the transport, detached from this descriptor."""
        return copy.deepcopy(self.parameters)

    def associated_page_request(self, new_path: str) -> "RequestDescriptor":
        """Copy of this request pointing at another page."""
        return self.model_copy(update={"path": new_path})

    def with_retry_policy(self, policy: SingleAttempt | MultipleAttempts) -> "RequestDescriptor":
        return self.model_copy(update={"retry_policy": policy})


class PagingLinks(BaseModel):
    """Continuation links found in a paged response."""

    next: str | None = None
    previous: str | None = None
    first: str | None = None
    last: str | None = None


class PagingEnvelope(BaseModel):
    """Paging metadata decoded from a response payload."""

    total: int = 0
    page: int = 0
    per_page: int = 0
    paging: PagingLinks = Field(default_factory=PagingLinks)


class Account(BaseModel):
    """An authenticated account."""

    access_token: str | None = Field(default=None, description="OAuth access token")
    token_type: str = Field(default="bearer", description="Token type")
    scope: str | None = Field(default=None, description="Granted scopes")
    user: dict[str, Any] | None = Field(default=None, description="Authenticated user payload")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation: exactly one of ``value`` or ``error``."""

    value: T | None = None
    error: BaseException | None = None
    # Set on a failed attempt when another attempt has already been scheduled.
    retry_scheduled: bool = False

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException, retry_scheduled: bool = False) -> "Result[T]":
        return cls(error=error, retry_scheduled=retry_scheduled)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the error for a failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass
class Response(Generic[ModelT]):
    """A successfully mapped response."""

    model: ModelT
    json: dict[str, Any]
    is_cached_response: bool = False
    total_count: int = 0
    page: int = 0
    items_per_page: int = 0
    next_page_request: RequestDescriptor | None = None
    previous_page_request: RequestDescriptor | None = None
    first_page_request: RequestDescriptor | None = None
    last_page_request: RequestDescriptor | None = None

    @property
    def has_pagination(self) -> bool:
        return any(
            request is not None
            for request in (
                self.next_page_request,
                self.previous_page_request,
                self.first_page_request,
                self.last_page_request,
            )
        )
