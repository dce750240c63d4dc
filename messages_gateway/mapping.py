"""
Pure lookup helpers translating vendor enumerations into canonical ones.

Every function here is stateless and total: unknown input falls back to a
documented default instead of raising, so the response path and the stream
path always agree for the same input.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError

from .types import Usage
from .vendor_types import VendorUsage

logger = logging.getLogger(__name__)

CANONICAL_TOOL_ID_PREFIX = "toolu_"
VENDOR_TOOL_ID_PREFIX = "call_"

DEFAULT_STOP_REASON = "end_turn"
DEFAULT_ERROR_TYPE = "api_error"

STOP_REASON_MAP = {
    "stop": "end_turn",
    "length": "max_tokens",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "content_filter": "stop_sequence",
}

ERROR_TYPE_MAP = {
    "invalid_request_error": "invalid_request_error",
    "authentication_error": "authentication_error",
    "permission_error": "permission_error",
    "not_found_error": "not_found_error",
    "rate_limit_error": "rate_limit_error",
    "api_error": "api_error",
    "overloaded_error": "overloaded_error",
    "insufficient_quota_error": "billing_error",
}

# Used only when the vendor body names no error type at all.
STATUS_ERROR_TYPE_MAP = {
    400: "invalid_request_error",
    401: "authentication_error",
    402: "billing_error",
    403: "permission_error",
    404: "not_found_error",
    413: "request_too_large",
    429: "rate_limit_error",
    503: "overloaded_error",
    529: "overloaded_error",
}


def convert_stop_reason(finish_reason: str | None) -> str:
    """Map a vendor finish_reason to a canonical stop_reason (case-sensitive)."""
    if not finish_reason:
        return DEFAULT_STOP_REASON
    return STOP_REASON_MAP.get(finish_reason, DEFAULT_STOP_REASON)


def map_vendor_error_type(vendor_type: str | None) -> str:
    """Map a vendor error type to a canonical error type, ``api_error`` if unknown."""
    if not vendor_type:
        return DEFAULT_ERROR_TYPE
    return ERROR_TYPE_MAP.get(vendor_type, DEFAULT_ERROR_TYPE)


def error_type_for_status(status_code: int | None) -> str:
    if status_code is None:
        return DEFAULT_ERROR_TYPE
    return STATUS_ERROR_TYPE_MAP.get(status_code, DEFAULT_ERROR_TYPE)


def convert_tool_call_id(vendor_id: str) -> str:
    """
    Rewrite a vendor tool-call id into the canonical namespace.

    Examples:
        convert_tool_call_id("call_abc") -> "toolu_abc"
        convert_tool_call_id("toolu_abc") -> "toolu_abc"
        convert_tool_call_id("abc") -> "toolu_abc"
    """
    if vendor_id.startswith(CANONICAL_TOOL_ID_PREFIX):
        return vendor_id
    if vendor_id.startswith(VENDOR_TOOL_ID_PREFIX):
        vendor_id = vendor_id[len(VENDOR_TOOL_ID_PREFIX):]
    return CANONICAL_TOOL_ID_PREFIX + vendor_id


def convert_usage(usage: VendorUsage | Mapping[str, Any] | None) -> Usage:
    """Flatten vendor token accounting into the canonical usage record.

    Missing or mistyped fields count as zero; this never raises.
    """
    if usage is None:
        return Usage()
    if not isinstance(usage, VendorUsage):
        usage = _usage_from_mapping(usage)

    cached_tokens = 0
    if usage.prompt_tokens_details and usage.prompt_tokens_details.cached_tokens:
        cached_tokens = usage.prompt_tokens_details.cached_tokens

    return Usage(
        input_tokens=usage.prompt_tokens or 0,
        output_tokens=usage.completion_tokens or 0,
        cache_read_input_tokens=cached_tokens,
        cache_creation_input_tokens=usage.cache_creation_input_tokens or 0,
    )


def _token_count(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _usage_from_mapping(usage: Mapping[str, Any]) -> VendorUsage:
    try:
        return VendorUsage.model_validate(dict(usage))
    except ValidationError as e:
        logger.warning(f"Ignoring malformed usage fields: {e.error_count()} invalid in {dict(usage)!r}")

    # Keep the well-typed counters, zero the rest.
    fields = {
        name: _token_count(usage.get(name))
        for name in ("prompt_tokens", "completion_tokens", "total_tokens", "cache_creation_input_tokens")
    }
    details = usage.get("prompt_tokens_details")
    if isinstance(details, Mapping):
        fields["prompt_tokens_details"] = {"cached_tokens": _token_count(details.get("cached_tokens"))}
    return VendorUsage.model_validate(fields)


def merge_usage(current: VendorUsage | None, update: VendorUsage | None) -> VendorUsage | None:
    """Overlay the fields present in ``update`` on top of ``current``."""
    if update is None:
        return current
    if current is None:
        return update.model_copy(deep=True)
    merged = current.model_dump(exclude_none=True)
    merged.update(update.model_dump(exclude_none=True))
    return VendorUsage.model_validate(merged)
