"""Mapping response payloads into typed models."""

import threading
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from requestmesh.core.models import PagingEnvelope, PagingLinks
from requestmesh.utils.exceptions import ModelMappingError, PagingSchemaError

Decoder = Callable[[Any], Any]

PAGING_KEY = "paging"
COUNT_KEYS = ("total", "page", "per_page")
LINK_KEYS = ("next", "previous", "first", "last")


class ModelMapper:
    """Maps payloads to models using a decoder bound per model type.

    Types without a registered decoder are decoded with a pydantic
    ``TypeAdapter``, which covers ``BaseModel`` subclasses, builtin
    containers and generics such as ``list[Video]``.
    """

    def __init__(self):
        self._decoders: dict[Any, Decoder] = {}
        self._adapters: dict[Any, TypeAdapter] = {}
        self._lock = threading.Lock()

    def register(self, model_type: Any, decoder: Decoder) -> None:
        """Bind an explicit decode function to ``model_type``."""
        with self._lock:
            self._decoders[model_type] = decoder

    def decoder_for(self, model_type: Any) -> Decoder:
        with self._lock:
            decoder = self._decoders.get(model_type)
            if decoder is not None:
                return decoder

            adapter = self._adapters.get(model_type)
            if adapter is None:
                try:
                    adapter = TypeAdapter(model_type)
                except Exception as e:
                    raise ModelMappingError(f"No decoder available for {model_type!r}: {e}") from e
                self._adapters[model_type] = adapter
            return adapter.validate_python

    def map(
        self,
        payload: dict[str, Any],
        model_type: Any,
        model_key_path: str | None = None,
    ) -> Any:
        """Decode the object at ``model_key_path`` in ``payload``.

        Raises:
            ModelMappingError: If the key path is missing or decoding fails
        """
        target = extract_key_path(payload, model_key_path)
        decoder = self.decoder_for(model_type)

        try:
            return decoder(target)
        except ModelMappingError:
            raise
        except ValidationError as e:
            raise ModelMappingError(
                f"Payload does not match {_type_name(model_type)}: {e.error_count()} error(s)"
            ) from e
        except Exception as e:
            raise ModelMappingError(f"Could not decode {_type_name(model_type)}: {e}") from e


def extract_key_path(payload: dict[str, Any], model_key_path: str | None) -> Any:
    """Walk a dot-separated key path into a payload."""
    if not model_key_path:
        return payload

    current: Any = payload
    for part in model_key_path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            raise ModelMappingError(f"Key path '{model_key_path}' not found in response")
    return current


def decode_paging(payload: dict[str, Any], strict: bool = False) -> PagingEnvelope | None:
    """Decode paging metadata, or return None when the payload is not paged.

    In lenient mode counts that are absent or not integers become 0 and links
    that are not strings are ignored. In strict mode such values raise
    ``PagingSchemaError``; absent values still default.
    """
    paging = payload.get(PAGING_KEY)
    if paging is None:
        return None

    if strict:
        data: dict[str, Any] = {key: payload[key] for key in COUNT_KEYS if key in payload}
        try:
            data[PAGING_KEY] = PagingLinks.model_validate(paging, strict=True)
            return PagingEnvelope.model_validate(data, strict=True)
        except ValidationError as e:
            raise PagingSchemaError(f"Invalid paging metadata: {e.error_count()} error(s)") from e

    if not isinstance(paging, dict):
        return None

    counts = {key: _int_or_zero(payload.get(key)) for key in COUNT_KEYS}
    links = PagingLinks(
        **{key: paging[key] for key in LINK_KEYS if isinstance(paging.get(key), str)}
    )
    return PagingEnvelope(paging=links, **counts)


def _int_or_zero(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _type_name(model_type: Any) -> str:
    return getattr(model_type, "__name__", repr(model_type))
