"""
Messages Gateway - the translation core of a multi-vendor LLM API gateway.

Converts requests, responses and streaming events between the canonical
Messages dialect and vendor-native OpenAI-compatible chat completions.
"""

__version__ = "0.1.0"

from .config import Config, setup_logging
from .errors import InvalidToolArgumentsError, MalformedInputError, TranscodeError, error_envelope
from .midstream_abort import MidStreamAbortError
from .providers import BaseProvider, NvidiaProvider, OpenAICompatibleProvider, get_provider
from .streaming import StreamState, transcode_stream

__all__ = [
    "Config",
    "setup_logging",
    "BaseProvider",
    "NvidiaProvider",
    "OpenAICompatibleProvider",
    "get_provider",
    "StreamState",
    "transcode_stream",
    "TranscodeError",
    "MalformedInputError",
    "InvalidToolArgumentsError",
    "MidStreamAbortError",
    "error_envelope",
]
