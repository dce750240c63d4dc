"""
Error taxonomy for the transcoding core.

Transform failures are local and synchronous: they are raised to the caller
and never retried here. Upstream errors reported inside a vendor body are not
exceptions, they become a canonical error envelope (see ``types.ErrorResponse``).
"""

from .types import ErrorDetail, ErrorResponse


class TranscodeError(Exception):
    """Base class for every local transform failure."""

    error_type = "invalid_request_error"


class MalformedInputError(TranscodeError):
    """Input is not decodable structured data or lacks a required field."""


class InvalidToolArgumentsError(TranscodeError):
    """A tool call's arguments string does not parse as a JSON object."""

    error_type = "api_error"

    def __init__(self, message: str, *, tool_call_id: str = "", tool_name: str = ""):
        super().__init__(message)
        self.tool_call_id = tool_call_id
        self.tool_name = tool_name


def error_envelope(exc: Exception) -> dict:
    """Build a canonical error body for a local failure, ready to send to the client."""
    error_type = getattr(exc, "error_type", "api_error")
    return ErrorResponse(error=ErrorDetail(type=error_type, message=str(exc))).model_dump()
