"""
Base provider protocol for vendor transcoding.

Every vendor provider converts between the canonical Messages dialect and its
own native dialect. The transforms are synchronous, side-effect free and do no
I/O; transport, retries and routing live outside this package.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Union

import httpx

from ..errors import MalformedInputError
from ..streaming import StreamState

JSONInput = Union[bytes, bytearray, str, Mapping[str, Any]]

HeadersInput = Union[httpx.Headers, Mapping[str, Any]]


def load_json_object(payload: JSONInput, what: str = "payload") -> dict[str, Any]:
    """
    Decode a JSON document into a fresh dict.

    Raises:
        MalformedInputError: If the payload is not valid JSON or not an object
    """
    if isinstance(payload, Mapping):
        # Round-trip through JSON so the caller's document is never aliased.
        try:
            return json.loads(json.dumps(payload))
        except (TypeError, ValueError) as e:
            raise MalformedInputError(f"{what} is not JSON-serializable: {e}") from e

    try:
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
        raise MalformedInputError(f"{what} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedInputError(f"{what} must be a JSON object, got {type(data).__name__}")
    return data


def _normalize_headers(headers: HeadersInput) -> httpx.Headers:
    if isinstance(headers, httpx.Headers):
        return headers
    items = []
    for key, value in headers.items():
        if isinstance(value, (list, tuple)):
            items.extend((key, str(v)) for v in value)
        else:
            items.append((key, str(value)))
    return httpx.Headers(items)


class BaseProvider(ABC):
    """
    Abstract base class for vendor providers.

    - transform_request: canonical request -> vendor request
    - transform_response: vendor response -> canonical response
    - transform_stream_chunk: vendor chunk -> canonical SSE events
    """

    name: str = ""
    supports_streaming: bool = True

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key

    @property
    def api_key(self) -> str | None:
        return self._api_key

    def set_api_key(self, key: str) -> None:
        """Store the credential the transport layer will send upstream."""
        self._api_key = key

    def auth_headers(self) -> dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    def is_streaming(self, headers: HeadersInput) -> bool:
        """True if upstream response headers announce an event stream."""
        normalized = _normalize_headers(headers)
        content_type = ",".join(normalized.get_list("content-type")).lower()
        transfer_encoding = ",".join(normalized.get_list("transfer-encoding")).lower()
        return "text/event-stream" in content_type or "chunked" in transfer_encoding

    def new_stream_state(self, model: str = "") -> StreamState:
        return StreamState(model=model)

    @abstractmethod
    def transform_request(self, payload: JSONInput) -> dict[str, Any]:
        """
        Convert a canonical Messages request to the vendor request.

        Args:
            payload: Canonical request as JSON bytes/str or a decoded dict

        Returns:
            A new vendor request document
        """
        ...

    @abstractmethod
    def transform_response(
        self,
        payload: JSONInput,
        *,
        status_code: int | None = None,
    ) -> dict[str, Any]:
        """
        Convert a full vendor response to the canonical response.

        Vendor error bodies become a canonical error envelope and are returned,
        not raised.
        """
        ...

    @abstractmethod
    def transform_stream_chunk(self, chunk: JSONInput, state: StreamState) -> bytes:
        """
        Convert one vendor stream chunk to zero or more canonical SSE events.

        Args:
            chunk: One vendor chunk (the ``data:`` payload)
            state: The connection's stream state, mutated in place

        Returns:
            SSE-framed events, ``b""`` when the chunk produced none
        """
        ...

    @abstractmethod
    def finish_stream(self, state: StreamState) -> bytes:
        """Close a stream that ended without a finish chunk."""
        ...
