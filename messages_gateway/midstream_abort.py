"""
Mid-stream abort handling for upstream failures reported inside a stream.

When the vendor reports an error after the canonical stream has started, the
real API behaviour is to drop the connection. The transcoder raises this
exception instead of inventing an event outside the canonical vocabulary; the
transport layer closes the client connection, which triggers client retries.
"""


class MidStreamAbortError(Exception):
    """
    Raised to abort a streaming response mid-stream.

    Usage:
        # Inside a chunk transform, when the vendor sends an error chunk:
        raise MidStreamAbortError("upstream rate_limit_error: slow down")

    ``error_type`` carries the canonical error type so the transport can log
    or report it before dropping the connection.
    """

    def __init__(self, message: str, error_type: str = "api_error"):
        super().__init__(message)
        self.error_type = error_type
