"""
Tests for the per-chunk stream transformer and its StreamState accumulator.

Covers:
- message_start emitted exactly once
- text and tool_use block life-cycles
- multiple tool calls in one chunk
- finish handling, usage and ordering of closing events
- malformed and error chunks leaving state untouched
"""

import copy
import json

import pytest

from messages_gateway.errors import MalformedInputError
from messages_gateway.midstream_abort import MidStreamAbortError
from messages_gateway.providers import NvidiaProvider
from messages_gateway.streaming import StreamState, parse_sse_events

CHUNK_ID = "chatcmpl-nvidia-123"
MODEL = "nvidia/llama-3.1-nemotron-70b-instruct"


def make_chunk(delta=None, finish_reason=None, usage=None, choices=True):
    """Create a vendor stream chunk for testing."""
    chunk = {"id": CHUNK_ID, "model": MODEL, "choices": []}
    if choices:
        choice = {"index": 0, "delta": delta if delta is not None else {}}
        if finish_reason is not None:
            choice["finish_reason"] = finish_reason
        chunk["choices"].append(choice)
    if usage is not None:
        chunk["usage"] = usage
    return json.dumps(chunk).encode()


def tool_delta(index, id=None, name=None, arguments=None):
    function = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    call = {"index": index, "function": function}
    if id is not None:
        call["id"] = id
        call["type"] = "function"
    return call


def event_names(payload):
    return [name for name, _ in parse_sse_events(payload)]


@pytest.fixture
def provider():
    return NvidiaProvider()


@pytest.fixture
def state():
    return StreamState()


class TestMessageStart:
    def test_role_chunk_emits_message_start(self, provider, state):
        events = provider.transform_stream_chunk(make_chunk({"role": "assistant"}), state)

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == ["message_start"]
        message = parsed[0][1]["message"]
        assert message["id"] == CHUNK_ID
        assert message["model"] == MODEL
        assert message["role"] == "assistant"
        assert message["type"] == "message"
        assert message["content"] == []
        assert state.message_start_sent is True

    def test_message_start_only_once(self, provider, state):
        chunk = make_chunk({"role": "assistant"})
        provider.transform_stream_chunk(chunk, state)

        events = provider.transform_stream_chunk(chunk, state)

        assert events == b""
        assert state.message_start_sent is True

    def test_wire_framing(self, provider, state):
        events = provider.transform_stream_chunk(make_chunk({"role": "assistant"}), state)
        text = events.decode()
        assert text.startswith("event: message_start\ndata: {")
        assert text.endswith("}\n\n")

    def test_message_start_precedes_content_in_first_chunk(self, provider, state):
        events = provider.transform_stream_chunk(make_chunk({"content": "Hi"}), state)
        assert event_names(events) == ["message_start", "content_block_start", "content_block_delta"]


class TestTextStreaming:
    def test_first_text_opens_block(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"role": "assistant"}), state)

        events = provider.transform_stream_chunk(make_chunk({"content": "Hello!"}), state)

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == ["content_block_start", "content_block_delta"]
        assert parsed[0][1] == {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "text", "text": ""},
        }
        assert parsed[1][1]["delta"] == {"type": "text_delta", "text": "Hello!"}
        assert state.content_blocks[0].started is True
        assert state.content_blocks[0].kind == "text"

    def test_subsequent_text_only_deltas(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"content": "Hel"}), state)

        events = provider.transform_stream_chunk(make_chunk({"content": "lo"}), state)

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == ["content_block_delta"]
        assert parsed[0][1]["index"] == 0
        assert parsed[0][1]["delta"]["text"] == "lo"
        assert len(state.content_blocks) == 1

    def test_empty_keepalive_delta_returns_empty_buffer(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"role": "assistant", "content": ""}), state)
        assert provider.transform_stream_chunk(make_chunk({}), state) == b""
        assert provider.transform_stream_chunk(make_chunk({"content": ""}), state) == b""
        assert state.content_blocks == []


class TestToolCallStreaming:
    def test_tool_call_start_then_arguments(self, provider, state):
        start = make_chunk({"tool_calls": [tool_delta(0, id="call_nvidia123", name="ls", arguments="")]})

        events = provider.transform_stream_chunk(start, state)

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == ["message_start", "content_block_start"]
        assert parsed[1][1]["content_block"] == {
            "type": "tool_use",
            "id": "toolu_nvidia123",
            "name": "ls",
            "input": {},
        }
        block = state.content_blocks[0]
        assert block.tool_call_id == "toolu_nvidia123"
        assert block.tool_name == "ls"

        fragment = '{"path":"/home"}'
        events = provider.transform_stream_chunk(
            make_chunk({"tool_calls": [tool_delta(0, arguments=fragment)]}), state
        )

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == ["content_block_delta"]
        assert parsed[0][1]["index"] == 0
        assert parsed[0][1]["delta"] == {"type": "input_json_delta", "partial_json": fragment}
        assert "/home" in events.decode()

    def test_partial_fragments_forwarded_verbatim(self, provider, state):
        provider.transform_stream_chunk(
            make_chunk({"tool_calls": [tool_delta(0, id="call_x", name="ls")]}), state
        )

        fragments = ['{"pa', 'th": "/ho', 'me"}']
        forwarded = []
        for fragment in fragments:
            events = provider.transform_stream_chunk(
                make_chunk({"tool_calls": [tool_delta(0, arguments=fragment)]}), state
            )
            forwarded.extend(data["delta"]["partial_json"] for _, data in parse_sse_events(events))

        assert forwarded == fragments
        assert state.content_blocks[0].argument_buffer == '{"path": "/home"}'

    def test_start_with_arguments_in_same_delta(self, provider, state):
        events = provider.transform_stream_chunk(
            make_chunk({"tool_calls": [tool_delta(0, id="call_x", name="ls", arguments="{}")]}), state
        )
        assert event_names(events) == ["message_start", "content_block_start", "content_block_delta"]

    def test_text_then_tool_closes_text_block(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"content": "Let me check."}), state)

        events = provider.transform_stream_chunk(
            make_chunk({"tool_calls": [tool_delta(0, id="call_x", name="ls")]}), state
        )

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == ["content_block_stop", "content_block_start"]
        assert parsed[0][1]["index"] == 0
        assert parsed[1][1]["index"] == 1
        assert state.content_blocks[0].closed is True

    def test_multiple_tool_calls_in_one_chunk(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"role": "assistant"}), state)

        events = provider.transform_stream_chunk(
            make_chunk(
                {
                    "tool_calls": [
                        tool_delta(0, id="call_a", name="first", arguments='{"a": 1}'),
                        tool_delta(1, id="call_b", name="second", arguments='{"b": 2}'),
                    ]
                }
            ),
            state,
        )

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == [
            "content_block_start",
            "content_block_delta",
            "content_block_stop",
            "content_block_start",
            "content_block_delta",
        ]
        assert [data["index"] for _, data in parsed] == [0, 0, 0, 1, 1]
        assert parsed[3][1]["content_block"]["id"] == "toolu_b"

    def test_tool_call_without_id_gets_generated_id(self, provider, state):
        events = provider.transform_stream_chunk(
            make_chunk({"tool_calls": [tool_delta(0, name="ls")]}), state
        )
        start = parse_sse_events(events)[1][1]
        assert start["content_block"]["id"].startswith("toolu_")
        assert start["content_block"]["name"] == "ls"

    def test_indices_never_reused(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"content": "a"}), state)
        provider.transform_stream_chunk(make_chunk({"tool_calls": [tool_delta(0, id="call_x", name="ls")]}), state)

        events = provider.transform_stream_chunk(make_chunk({"content": "b"}), state)

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == [
            "content_block_stop",
            "content_block_start",
            "content_block_delta",
        ]
        assert [data["index"] for _, data in parsed] == [1, 2, 2]
        assert [block.index for block in state.content_blocks] == [0, 1, 2]

    def test_late_arguments_for_closed_tool_are_not_emitted(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"tool_calls": [tool_delta(0, id="call_a", name="a")]}), state)
        provider.transform_stream_chunk(make_chunk({"tool_calls": [tool_delta(1, id="call_b", name="b")]}), state)

        events = provider.transform_stream_chunk(
            make_chunk({"tool_calls": [tool_delta(0, arguments="{}")]}), state
        )

        assert events == b""
        assert state.content_blocks[0].argument_buffer == "{}"


class TestFinish:
    def test_finish_chunk(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"role": "assistant"}), state)
        provider.transform_stream_chunk(make_chunk({"content": "Hello!"}), state)

        events = provider.transform_stream_chunk(
            make_chunk({}, finish_reason="stop", usage={"completion_tokens": 5}), state
        )

        parsed = parse_sse_events(events)
        assert [name for name, _ in parsed] == ["content_block_stop", "message_delta", "message_stop"]
        assert parsed[0][1] == {"type": "content_block_stop", "index": 0}
        assert parsed[1][1]["delta"]["stop_reason"] == "end_turn"
        assert parsed[1][1]["usage"]["output_tokens"] == 5
        assert parsed[2][1] == {"type": "message_stop"}
        assert "end_turn" in events.decode()
        assert state.finished is True

    def test_tool_calls_finish_reason(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"tool_calls": [tool_delta(0, id="call_a", name="a")]}), state)

        events = provider.transform_stream_chunk(make_chunk({}, finish_reason="tool_calls"), state)

        parsed = parse_sse_events(events)
        assert parsed[1][1]["delta"]["stop_reason"] == "tool_use"

    def test_finish_with_no_blocks(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"role": "assistant"}), state)

        events = provider.transform_stream_chunk(make_chunk({}, finish_reason="stop"), state)

        assert event_names(events) == ["message_delta", "message_stop"]

    def test_every_block_closed_exactly_once(self, provider, state):
        chunks = [
            make_chunk({"role": "assistant"}),
            make_chunk({"content": "Checking."}),
            make_chunk({"tool_calls": [tool_delta(0, id="call_a", name="a", arguments="{}")]}),
            make_chunk({"tool_calls": [tool_delta(1, id="call_b", name="b", arguments="{}")]}),
            make_chunk({}, finish_reason="tool_calls"),
        ]
        stream = b"".join(provider.transform_stream_chunk(chunk, state) for chunk in chunks)

        parsed = parse_sse_events(stream)
        starts = [data["index"] for name, data in parsed if name == "content_block_start"]
        stops = [data["index"] for name, data in parsed if name == "content_block_stop"]
        assert starts == [0, 1, 2]
        assert stops == [0, 1, 2]
        assert [name for name, _ in parsed].count("message_start") == 1
        assert [name for name, _ in parsed][-2:] == ["message_delta", "message_stop"]

    def test_usage_accumulates_across_chunks(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"role": "assistant"}, usage={"prompt_tokens": 40}), state)

        events = provider.transform_stream_chunk(
            make_chunk(
                {},
                finish_reason="length",
                usage={"completion_tokens": 7, "prompt_tokens_details": {"cached_tokens": 8}},
            ),
            state,
        )

        message_delta = parse_sse_events(events)[0][1]
        assert message_delta["delta"]["stop_reason"] == "max_tokens"
        assert message_delta["usage"] == {
            "input_tokens": 40,
            "output_tokens": 7,
            "cache_read_input_tokens": 8,
            "cache_creation_input_tokens": 0,
        }

    def test_null_choices_usage_trailer_is_merged(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"content": "Hi"}), state)
        trailer = json.dumps({"id": CHUNK_ID, "choices": None, "usage": {"completion_tokens": 3}})

        assert provider.transform_stream_chunk(trailer, state) == b""
        assert state.usage.completion_tokens == 3

        events = provider.transform_stream_chunk(make_chunk({}, finish_reason="stop"), state)

        message_delta = parse_sse_events(events)[1][1]
        assert message_delta["usage"]["output_tokens"] == 3

    def test_chunks_after_finish_are_ignored(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"content": "x"}, finish_reason="stop"), state)

        events = provider.transform_stream_chunk(make_chunk(choices=False, usage={"completion_tokens": 3}), state)

        assert events == b""


class TestChunkErrors:
    @pytest.mark.parametrize("chunk", [b"{truncated", b"[]", b'{"choices": "nope"}'])
    def test_malformed_chunk_leaves_state_untouched(self, provider, state, chunk):
        provider.transform_stream_chunk(make_chunk({"content": "Hello"}), state)
        before = copy.deepcopy(state)

        with pytest.raises(MalformedInputError):
            provider.transform_stream_chunk(chunk, state)

        assert state == before

    def test_malformed_first_chunk_does_not_start_message(self, provider, state):
        with pytest.raises(MalformedInputError):
            provider.transform_stream_chunk(b"not json", state)
        assert state.message_start_sent is False

    def test_error_chunk_aborts_stream(self, provider, state):
        provider.transform_stream_chunk(make_chunk({"content": "Hello"}), state)
        before = copy.deepcopy(state)
        chunk = json.dumps({"error": {"message": "Rate limit exceeded", "type": "rate_limit_error"}})

        with pytest.raises(MidStreamAbortError) as exc_info:
            provider.transform_stream_chunk(chunk, state)

        assert exc_info.value.error_type == "rate_limit_error"
        assert "Rate limit exceeded" in str(exc_info.value)
        assert state == before


class TestStateIsolation:
    def test_independent_connections(self, provider):
        first, second = StreamState(), StreamState()

        provider.transform_stream_chunk(make_chunk({"content": "a"}), first)

        events = provider.transform_stream_chunk(make_chunk({"role": "assistant"}), second)

        assert event_names(events) == ["message_start"]
        assert len(first.content_blocks) == 1
        assert second.content_blocks == []
