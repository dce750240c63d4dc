"""
Canonical Messages <-> OpenAI-compatible chat completions provider.

Most hosted model vendors speak the chat completions dialect; a vendor
provider only needs to set its name and endpoint on top of this class.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Union

from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam
from pydantic import ValidationError

from ..errors import InvalidToolArgumentsError, MalformedInputError
from ..mapping import (
    convert_stop_reason,
    convert_tool_call_id,
    convert_usage,
    error_type_for_status,
    map_vendor_error_type,
)
from ..midstream_abort import MidStreamAbortError
from ..streaming import StreamState
from ..types import (
    ContentBlockImage,
    ContentBlockImageBase64Source,
    ContentBlockText,
    ContentBlockToolResult,
    ContentBlockToolUse,
    ErrorDetail,
    ErrorResponse,
    Message,
    MessagesRequest,
    MessagesResponse,
    Tool,
    generate_unique_id,
)
from ..vendor_types import VendorChunk, VendorError, VendorResponse, VendorToolCall
from ._openai_stream import StreamAccumulator
from .base import BaseProvider, JSONInput, load_json_object

logger = logging.getLogger(__name__)


def _convert_tool(tool: Tool) -> ChatCompletionToolParam:
    function: dict[str, Any] = {"name": tool.name}
    if tool.description is not None:
        function["description"] = tool.description
    function["parameters"] = tool.input_schema
    return {"type": "function", "function": function}


def _image_url(block: ContentBlockImage) -> str:
    source = block.source
    if isinstance(source, ContentBlockImageBase64Source):
        return f"data:{source.media_type};base64,{source.data}"
    return source.url


def _convert_assistant_message(message: Message) -> ChatCompletionMessageParam:
    text_parts: list[str] = []
    tool_calls: list[dict[str, Any]] = []

    for block in message.content:
        if isinstance(block, ContentBlockText):
            text_parts.append(block.text)
        elif isinstance(block, ContentBlockToolUse):
            tool_calls.append(
                {
                    "id": block.id,
                    "type": "function",
                    "function": {
                        "name": block.name,
                        "arguments": json.dumps(block.input, ensure_ascii=False),
                    },
                }
            )
        else:
            logger.debug(f"Dropping {block.type} block from assistant history")

    converted: dict[str, Any] = {
        "role": "assistant",
        "content": "".join(text_parts) if text_parts else None,
    }
    if tool_calls:
        converted["tool_calls"] = tool_calls
    return converted


def _convert_content_message(message: Message) -> list[ChatCompletionMessageParam]:
    """Convert a user/system message; tool results become separate tool messages."""
    tool_messages: list[dict[str, Any]] = []
    parts: list[dict[str, Any]] = []

    for block in message.content:
        if isinstance(block, ContentBlockToolResult):
            tool_messages.append(
                {"role": "tool", "tool_call_id": block.tool_use_id, "content": block.text()}
            )
        elif isinstance(block, ContentBlockText):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ContentBlockImage):
            parts.append({"type": "image_url", "image_url": {"url": _image_url(block)}})
        else:
            logger.debug(f"Dropping {block.type} block from {message.role} message")

    converted: list[ChatCompletionMessageParam] = list(tool_messages)
    if parts:
        if len(parts) == 1 and parts[0]["type"] == "text":
            content: Union[str, list[dict[str, Any]]] = parts[0]["text"]
        else:
            content = parts
        converted.append({"role": message.role, "content": content})
    elif not tool_messages:
        # Keep the turn so message order and count survive.
        logger.debug(f"Empty {message.role} message forwarded with empty content")
        converted.append({"role": message.role, "content": ""})
    return converted


def convert_messages(request: MessagesRequest) -> list[ChatCompletionMessageParam]:
    messages: list[ChatCompletionMessageParam] = []

    system_text = request.system_text()
    if system_text is not None:
        messages.append({"role": "system", "content": system_text})

    for message in request.messages:
        if isinstance(message.content, str):
            messages.append({"role": message.role, "content": message.content})
        elif message.role == "assistant":
            messages.append(_convert_assistant_message(message))
        else:
            messages.extend(_convert_content_message(message))
    return messages


def parse_tool_arguments(tool_call: VendorToolCall, tool_call_id: str) -> dict[str, Any]:
    """Parse a complete tool call's arguments into the canonical input object."""
    name = tool_call.function.name or ""
    arguments = tool_call.function.arguments
    if isinstance(arguments, dict):
        return arguments
    if arguments is None or not arguments.strip():
        return {}

    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        logger.error(f"🔧 Failed to parse tool arguments for {name}: {arguments!r}, error: {e}")
        raise InvalidToolArgumentsError(
            f"tool call {tool_call_id} ({name}) has unparseable arguments: {e}",
            tool_call_id=tool_call_id,
            tool_name=name,
        ) from e

    if not isinstance(parsed, dict):
        raise InvalidToolArgumentsError(
            f"tool call {tool_call_id} ({name}) arguments must be a JSON object, "
            f"got {type(parsed).__name__}",
            tool_call_id=tool_call_id,
            tool_name=name,
        )
    return parsed


def convert_error(error: Any, status_code: int | None = None) -> ErrorResponse:
    """Translate a vendor error object into the canonical error envelope."""
    if isinstance(error, VendorError):
        vendor_error = error
    elif isinstance(error, dict):
        vendor_error = VendorError.model_validate(error)
    else:
        vendor_error = VendorError(message=str(error))

    if vendor_error.type:
        error_type = map_vendor_error_type(vendor_error.type)
    else:
        error_type = error_type_for_status(status_code)

    return ErrorResponse(error=ErrorDetail(type=error_type, message=vendor_error.message))


class OpenAICompatibleProvider(BaseProvider):
    """Transcoder for vendors speaking the OpenAI chat completions dialect."""

    name = "openai"
    default_api_base = "https://api.openai.com/v1"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        name: str | None = None,
        api_base: str | None = None,
    ):
        super().__init__(api_key)
        if name:
            self.name = name
        self.api_base = api_base or self.default_api_base

    @property
    def chat_completions_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/chat/completions"

    def transform_request(self, payload: JSONInput) -> dict[str, Any]:
        data = load_json_object(payload, "request")
        if not data.get("model"):
            raise MalformedInputError("request is missing the model field")

        try:
            request = MessagesRequest.model_validate(data)
        except ValidationError as e:
            raise MalformedInputError(f"invalid request: {e}") from e

        vendor_request: dict[str, Any] = {
            "model": request.model,
            "messages": convert_messages(request),
        }
        if request.max_tokens is not None:
            vendor_request["max_completion_tokens"] = request.max_tokens
        if request.tools:
            vendor_request["tools"] = [_convert_tool(tool) for tool in request.tools]
        if data.get("tool_choice") is not None:
            vendor_request["tool_choice"] = data["tool_choice"]
        if request.temperature is not None:
            vendor_request["temperature"] = request.temperature
        if request.top_p is not None:
            vendor_request["top_p"] = request.top_p
        if request.stop_sequences:
            vendor_request["stop"] = request.stop_sequences
        if request.stream is not None:
            vendor_request["stream"] = request.stream
            if request.stream:
                vendor_request["stream_options"] = {"include_usage": True}

        logger.debug(
            f"[{self.name}] request model={request.model}, "
            f"messages={len(vendor_request['messages'])}, tools={len(request.tools or [])}"
        )
        return vendor_request

    def transform_response(
        self,
        payload: JSONInput,
        *,
        status_code: int | None = None,
    ) -> dict[str, Any]:
        data = load_json_object(payload, "vendor response")

        if data.get("error"):
            envelope = convert_error(data["error"], status_code)
            logger.warning(
                f"[{self.name}] upstream error relayed: {envelope.error.type}: {envelope.error.message}"
            )
            return envelope.model_dump()

        try:
            response = VendorResponse.model_validate(data)
        except ValidationError as e:
            raise MalformedInputError(f"invalid vendor response: {e}") from e

        if not response.choices:
            raise MalformedInputError("vendor response has no choices")
        if len(response.choices) > 1:
            logger.debug(f"[{self.name}] ignoring {len(response.choices) - 1} extra choices")

        choice = response.choices[0]
        message = choice.message

        content: list[Union[ContentBlockText, ContentBlockToolUse]] = []
        text = message.text()
        if text:
            content.append(ContentBlockText(text=text))

        for tool_call in message.tool_calls or []:
            tool_call_id = (
                convert_tool_call_id(tool_call.id) if tool_call.id else generate_unique_id("toolu")
            )
            content.append(
                ContentBlockToolUse(
                    id=tool_call_id,
                    name=tool_call.function.name or "",
                    input=parse_tool_arguments(tool_call, tool_call_id),
                )
            )

        converted = MessagesResponse(
            id=response.id or generate_unique_id("msg"),
            model=response.model or "",
            content=content,
            stop_reason=convert_stop_reason(choice.finish_reason),
            usage=convert_usage(response.usage),
        )
        return converted.model_dump()

    def transform_stream_chunk(self, chunk: JSONInput, state: StreamState) -> bytes:
        # Validate everything before touching the state.
        data = load_json_object(chunk, "stream chunk")
        try:
            vendor_chunk = VendorChunk.model_validate(data)
        except ValidationError as e:
            raise MalformedInputError(f"invalid stream chunk: {e}") from e

        if vendor_chunk.error:
            envelope = convert_error(vendor_chunk.error)
            raise MidStreamAbortError(
                f"upstream {envelope.error.type}: {envelope.error.message}",
                error_type=envelope.error.type,
            )

        if state.finished:
            logger.debug(f"[{self.name}] chunk after finish ignored")
            return b""

        accumulator = StreamAccumulator(state)
        accumulator.process_chunk(vendor_chunk)
        return accumulator.render()

    def finish_stream(self, state: StreamState) -> bytes:
        if state.finished:
            return b""
        accumulator = StreamAccumulator(state)
        accumulator.finish_without_reason()
        return accumulator.render()
