"""
Streaming state and SSE framing for the canonical event stream.

One ``StreamState`` belongs to exactly one streaming connection. Chunks for a
connection must be fed strictly in arrival order; there is no locking, so a
state must never be shared between concurrent calls.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from .errors import MalformedInputError
from .midstream_abort import MidStreamAbortError
from .vendor_types import VendorUsage

if TYPE_CHECKING:
    from .providers.base import BaseProvider

logger = logging.getLogger(__name__)

EVENT_MESSAGE_START = "message_start"
EVENT_CONTENT_BLOCK_START = "content_block_start"
EVENT_CONTENT_BLOCK_DELTA = "content_block_delta"
EVENT_CONTENT_BLOCK_STOP = "content_block_stop"
EVENT_MESSAGE_DELTA = "message_delta"
EVENT_MESSAGE_STOP = "message_stop"

DONE_SENTINEL = "[DONE]"

BlockKind = Literal["text", "tool_use"]


@dataclass
class ContentBlockState:
    """One canonical content block opened on this connection."""

    index: int
    kind: BlockKind
    # Vendor routing key: ("text", choice index) or ("tool_use", tool call index).
    key: tuple[str, int]
    started: bool = False
    closed: bool = False
    tool_call_id: str = ""
    tool_name: str = ""
    argument_buffer: str = ""
    text_length: int = 0


@dataclass
class StreamState:
    """Per-connection accumulator state.

    Block indices are assigned in first-seen order and never reused. Only the
    provider's chunk transform writes to this object.
    """

    model: str = ""
    message_id: str = ""
    message_start_sent: bool = False
    content_blocks: list[ContentBlockState] = field(default_factory=list)
    usage: VendorUsage | None = None
    stop_reason: str | None = None
    finished: bool = False
    chunks_received: int = 0

    def block_for(self, key: tuple[str, int]) -> ContentBlockState | None:
        """Return the most recent block opened for a vendor key."""
        for block in reversed(self.content_blocks):
            if block.key == key:
                return block
        return None

    def open_blocks(self) -> list[ContentBlockState]:
        return sorted(
            (block for block in self.content_blocks if block.started and not block.closed),
            key=lambda block: block.index,
        )

    def next_block_index(self) -> int:
        return len(self.content_blocks)

    def has_tool_use(self) -> bool:
        return any(block.kind == "tool_use" for block in self.content_blocks)


def format_sse_event(event_name: str, data: dict[str, Any]) -> str:
    """Frame one event as ``event: <name>\\ndata: <json>\\n\\n``."""
    return f"event: {event_name}\ndata: {json.dumps(data)}\n\n"


def parse_sse_events(payload: bytes | str) -> list[tuple[str, dict[str, Any]]]:
    """Split a buffer of canonical SSE events into ``(name, data)`` pairs."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")

    events = []
    for block in payload.split("\n\n"):
        if not block.strip():
            continue
        event_name = ""
        data_lines = []
        for line in block.split("\n"):
            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].strip())
        if data_lines:
            events.append((event_name, json.loads("\n".join(data_lines))))
    return events


def iter_sse_data(raw: bytes | str) -> list[str]:
    """Extract the ``data:`` payloads from a piece of a vendor SSE stream."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    payloads = []
    for line in raw.splitlines():
        line = line.strip()
        if not line.startswith("data:"):
            # event names, comments and keep-alive blank lines carry nothing
            continue
        payloads.append(line[len("data:"):].strip())
    return payloads


async def transcode_stream(
    provider: BaseProvider,
    lines: AsyncIterator[bytes | str],
    state: StreamState | None = None,
    *,
    max_consecutive_errors: int = 5,
) -> AsyncIterator[bytes]:
    """
    Drive a provider's chunk transform over a vendor SSE stream.

    Args:
        provider: Provider whose dialect the upstream speaks
        lines: Async iterator of raw vendor SSE lines or blocks
        state: Connection state; a fresh one is created when omitted
        max_consecutive_errors: Malformed chunks tolerated in a row before aborting

    Yields:
        Canonical SSE byte blocks, skipping calls that produced no events
    """
    if state is None:
        state = provider.new_stream_state()

    consecutive_errors = 0
    chunk_count = 0
    done = False

    async for raw in lines:
        for data in iter_sse_data(raw):
            if data == DONE_SENTINEL:
                done = True
                break
            if not data:
                continue

            chunk_count += 1
            try:
                events = provider.transform_stream_chunk(data, state)
            except MalformedInputError as e:
                consecutive_errors += 1
                logger.error(f"🌊 ERROR_PROCESSING_CHUNK #{chunk_count}: {e}")
                if consecutive_errors >= max_consecutive_errors:
                    raise MidStreamAbortError(
                        f"too many consecutive malformed chunks ({consecutive_errors})"
                    ) from e
                continue

            consecutive_errors = 0
            if events:
                yield events
        if done:
            break

    if not state.finished:
        logger.debug("Stream ended without finish_reason, performing cleanup")
        events = provider.finish_stream(state)
        if events:
            yield events
