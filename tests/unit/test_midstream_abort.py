"""
Tests for mid-stream abort behavior.

Ensures that when the vendor reports an error inside a stream, the transcoder
raises instead of emitting an event outside the canonical vocabulary, so the
transport drops the connection like the real API does.
"""

import json

import pytest

from messages_gateway.midstream_abort import MidStreamAbortError
from messages_gateway.providers import NvidiaProvider
from messages_gateway.streaming import parse_sse_events, transcode_stream


class TestMidStreamAbortBehavior:
    """Tests that mid-stream errors abort the connection (like real API)."""

    @pytest.fixture
    def provider(self):
        return NvidiaProvider()

    def test_error_attributes(self):
        exc = MidStreamAbortError("upstream overloaded_error: busy", error_type="overloaded_error")
        assert str(exc) == "upstream overloaded_error: busy"
        assert exc.error_type == "overloaded_error"

    def test_default_error_type(self):
        assert MidStreamAbortError("boom").error_type == "api_error"

    @pytest.mark.parametrize(
        "error,expected_type",
        [
            ({"message": "slow down", "type": "rate_limit_error"}, "rate_limit_error"),
            ({"message": "no credits", "type": "insufficient_quota_error"}, "billing_error"),
            ({"message": "odd", "type": "weird_error"}, "api_error"),
            ("plain string failure", "api_error"),
            ({"message": None, "type": "rate_limit_error"}, "rate_limit_error"),
            ({"message": {"detail": "x"}, "type": "overloaded_error"}, "overloaded_error"),
        ],
    )
    def test_error_chunk_types(self, provider, error, expected_type):
        state = provider.new_stream_state()

        with pytest.raises(MidStreamAbortError) as exc_info:
            provider.transform_stream_chunk({"error": error}, state)

        assert exc_info.value.error_type == expected_type
        assert state.message_start_sent is False

    def test_error_chunk_after_finish_still_aborts(self, provider):
        state = provider.new_stream_state()
        provider.transform_stream_chunk(
            {"id": "c", "choices": [{"index": 0, "delta": {"content": "x"}, "finish_reason": "stop"}]},
            state,
        )

        with pytest.raises(MidStreamAbortError):
            provider.transform_stream_chunk({"error": {"message": "late"}}, state)

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self, provider):
        """Transport errors from the upstream iterator are not swallowed."""

        async def failing_stream():
            yield 'data: {"id": "c", "choices": [{"index": 0, "delta": {"content": "hi"}}]}\n\n'
            raise ConnectionError("Connection reset by peer")

        received = []
        with pytest.raises(ConnectionError):
            async for events in transcode_stream(provider, failing_stream()):
                received.append(events)

        assert [name for name, _ in parse_sse_events(b"".join(received))] == [
            "message_start",
            "content_block_start",
            "content_block_delta",
        ]

    @pytest.mark.asyncio
    async def test_normal_streaming_works(self, provider):
        """Normal streaming without errors should work normally."""
        chunks = [
            {"id": "c", "choices": [{"index": 0, "delta": {"role": "assistant"}}]},
            {"id": "c", "choices": [{"index": 0, "delta": {"content": "Hello"}}]},
            {"id": "c", "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
        ]

        async def good_stream():
            for chunk in chunks:
                yield f"data: {json.dumps(chunk)}\n\n"
            yield "data: [DONE]\n\n"

        received = []
        async for events in transcode_stream(provider, good_stream()):
            received.append(events)

        assert b"message_stop" in b"".join(received)
