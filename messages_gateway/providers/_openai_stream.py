"""
OpenAI-dialect stream accumulator.

Applies validated vendor chunks to a ``StreamState`` and renders the canonical
block life-cycle (start/delta/stop) the vendor dialect does not have.
"""

from __future__ import annotations

import logging
from typing import Any

from ..mapping import convert_stop_reason, convert_tool_call_id, convert_usage, merge_usage
from ..streaming import (
    EVENT_CONTENT_BLOCK_DELTA,
    EVENT_CONTENT_BLOCK_START,
    EVENT_CONTENT_BLOCK_STOP,
    EVENT_MESSAGE_DELTA,
    EVENT_MESSAGE_START,
    EVENT_MESSAGE_STOP,
    ContentBlockState,
    StreamState,
    format_sse_event,
)
from ..types import generate_unique_id
from ..vendor_types import (
    TextFragment,
    ToolCallFragment,
    VendorChunk,
    iter_delta_fragments,
)

logger = logging.getLogger(__name__)


class StreamAccumulator:
    """Renders canonical events for one chunk against a connection's state.

    A new accumulator is built per call; all persistent state lives on
    ``StreamState``. Chunks must already be validated so that nothing below can
    fail half way through mutating the state.
    """

    def __init__(self, state: StreamState):
        self.state = state
        self.events: list[str] = []

    def _emit(self, event_name: str, data: dict[str, Any]) -> None:
        self.events.append(format_sse_event(event_name, data))
        logger.debug(f"STREAMING_EVENT: {event_name} - {data.get('index', '')}")

    def render(self) -> bytes:
        return "".join(self.events).encode("utf-8")

    def _send_message_start(self, chunk: VendorChunk) -> None:
        state = self.state
        state.message_id = chunk.id or generate_unique_id("msg")
        if chunk.model:
            state.model = chunk.model

        input_tokens = 0
        if chunk.usage and chunk.usage.prompt_tokens:
            input_tokens = chunk.usage.prompt_tokens

        self._emit(
            EVENT_MESSAGE_START,
            {
                "type": EVENT_MESSAGE_START,
                "message": {
                    "id": state.message_id,
                    "type": "message",
                    "role": "assistant",
                    "model": state.model,
                    "content": [],
                    "stop_reason": None,
                    "stop_sequence": None,
                    "usage": {"input_tokens": input_tokens, "output_tokens": 0},
                },
            },
        )
        state.message_start_sent = True

    def _close_block(self, block: ContentBlockState) -> None:
        block.closed = True
        self._emit(
            EVENT_CONTENT_BLOCK_STOP,
            {"type": EVENT_CONTENT_BLOCK_STOP, "index": block.index},
        )

    def _close_open_blocks(self) -> None:
        for block in self.state.open_blocks():
            self._close_block(block)

    def _open_block(self, block: ContentBlockState, content_block: dict[str, Any]) -> None:
        # Canonical blocks never interleave: whatever is open ends here.
        self._close_open_blocks()
        self.state.content_blocks.append(block)
        block.started = True
        self._emit(
            EVENT_CONTENT_BLOCK_START,
            {
                "type": EVENT_CONTENT_BLOCK_START,
                "index": block.index,
                "content_block": content_block,
            },
        )

    def _send_delta(self, block: ContentBlockState, delta: dict[str, Any]) -> None:
        self._emit(
            EVENT_CONTENT_BLOCK_DELTA,
            {"type": EVENT_CONTENT_BLOCK_DELTA, "index": block.index, "delta": delta},
        )

    def _handle_text(self, fragment: TextFragment) -> None:
        key = ("text", fragment.index)
        block = self.state.block_for(key)
        if block is None or block.closed:
            block = ContentBlockState(
                index=self.state.next_block_index(), kind="text", key=key
            )
            self._open_block(block, {"type": "text", "text": ""})

        block.text_length += len(fragment.text)
        self._send_delta(block, {"type": "text_delta", "text": fragment.text})

    def _handle_tool_call(self, fragment: ToolCallFragment) -> None:
        key = ("tool_use", fragment.index)
        block = self.state.block_for(key)

        if block is None:
            tool_call_id = (
                convert_tool_call_id(fragment.id) if fragment.id else generate_unique_id("toolu")
            )
            block = ContentBlockState(
                index=self.state.next_block_index(),
                kind="tool_use",
                key=key,
                tool_call_id=tool_call_id,
                tool_name=fragment.name or "",
            )
            self._open_block(
                block,
                {"type": "tool_use", "id": tool_call_id, "name": block.tool_name, "input": {}},
            )
        elif block.closed:
            block.argument_buffer += fragment.arguments
            if fragment.arguments:
                logger.warning(
                    f"🔧 Dropping argument fragment for closed tool block {block.index} "
                    f"({block.tool_name})"
                )
            return

        if fragment.arguments:
            # Fragments are only valid JSON once concatenated; forward verbatim.
            block.argument_buffer += fragment.arguments
            self._send_delta(
                block, {"type": "input_json_delta", "partial_json": fragment.arguments}
            )

    def _finish(self, stop_reason: str) -> None:
        state = self.state
        self._close_open_blocks()

        usage = convert_usage(state.usage)
        self._emit(
            EVENT_MESSAGE_DELTA,
            {
                "type": EVENT_MESSAGE_DELTA,
                "delta": {"stop_reason": stop_reason, "stop_sequence": None},
                "usage": usage.model_dump(),
            },
        )
        self._emit(EVENT_MESSAGE_STOP, {"type": EVENT_MESSAGE_STOP})

        state.stop_reason = stop_reason
        state.finished = True
        log_stream_summary(state)

    def process_chunk(self, chunk: VendorChunk) -> None:
        state = self.state
        state.chunks_received += 1

        if not state.message_start_sent:
            self._send_message_start(chunk)

        state.usage = merge_usage(state.usage, chunk.usage)

        finish_reason = None
        for choice in chunk.choices:
            if choice.index != 0:
                logger.debug(f"Ignoring stream choice with index {choice.index}")
                continue
            for fragment in iter_delta_fragments(choice):
                if isinstance(fragment, TextFragment):
                    self._handle_text(fragment)
                elif isinstance(fragment, ToolCallFragment):
                    self._handle_tool_call(fragment)
                else:
                    raise TypeError(f"Unhandled delta fragment: {fragment!r}")
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        if finish_reason:
            self._finish(convert_stop_reason(finish_reason))

    def finish_without_reason(self) -> None:
        """Close a stream whose vendor never sent a finish_reason."""
        if not self.state.message_start_sent:
            self._send_message_start(VendorChunk())
        stop_reason = "tool_use" if self.state.has_tool_use() else "end_turn"
        self._finish(stop_reason)


def log_stream_summary(state: StreamState) -> None:
    """Log a summary of a finished stream."""
    text_blocks = [block for block in state.content_blocks if block.kind == "text"]
    tool_blocks = [block for block in state.content_blocks if block.kind == "tool_use"]
    usage = convert_usage(state.usage)

    if tool_blocks:
        logger.info(f"🔧 STREAMING_TOOL_CALLS: {len(tool_blocks)} tool calls")
        for block in tool_blocks:
            logger.info(f"🔧   Tool: {block.tool_name} (id: {block.tool_call_id})")
    logger.info(
        f"🌊 STREAMING_COMPLETE: Model={state.model}, "
        f"Text={sum(block.text_length for block in text_blocks)} chars, "
        f"Blocks={len(state.content_blocks)}, StopReason={state.stop_reason}, "
        f"OutputTokens={usage.output_tokens}"
    )
