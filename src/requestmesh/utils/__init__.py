"""Utility modules for requestmesh."""

from requestmesh.utils.exceptions import (
    CacheStorageError,
    ClientError,
    ErrorClass,
    LocalErrorCode,
    ModelMappingError,
    PagingSchemaError,
    RequestCancelledError,
    RequestMeshError,
    TransportError,
    classify,
)

__all__ = [
    "RequestMeshError",
    "ClientError",
    "TransportError",
    "RequestCancelledError",
    "CacheStorageError",
    "ModelMappingError",
    "PagingSchemaError",
    "LocalErrorCode",
    "ErrorClass",
    "classify",
]
