"""
Vendor (OpenAI-compatible chat completions) wire models.

Upstreams differ in which optional fields they send, so every model tolerates
missing keys and keeps unknown ones. Streaming deltas are split into tagged
fragments so the accumulator can match on them exhaustively.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VendorPromptTokensDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    cached_tokens: int | None = None


class VendorUsage(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    prompt_tokens_details: VendorPromptTokensDetails | None = None
    cache_creation_input_tokens: int | None = None


class VendorError(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str = ""
    type: str | None = None
    code: Any = None

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, value: Any) -> Any:
        # Some upstreams send null or a nested object here.
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return str(value)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class VendorFunction(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    # Usually a JSON string; some upstreams send the decoded object.
    arguments: Union[str, dict[str, Any], None] = None


class VendorToolCall(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    type: str | None = "function"
    function: VendorFunction = Field(default_factory=VendorFunction)


class VendorMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str | None = "assistant"
    content: Union[str, list[dict[str, Any]], None] = None
    tool_calls: list[VendorToolCall] | None = None

    def text(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.get("text") or "" for part in self.content if part.get("type") == "text")


class VendorChoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: int = 0
    message: VendorMessage = Field(default_factory=VendorMessage)
    finish_reason: str | None = None


class VendorResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    object: str | None = None
    created: int | None = None
    model: str | None = None
    choices: list[VendorChoice] | None = None
    usage: VendorUsage | None = None


class VendorFunctionDelta(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    arguments: str | None = None


class VendorToolCallDelta(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: int = 0
    id: str | None = None
    type: str | None = None
    function: VendorFunctionDelta | None = None


class VendorDelta(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str | None = None
    content: str | None = None
    tool_calls: list[VendorToolCallDelta] | None = None

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _coerce_tool_calls(cls, value: Any) -> Any:
        # A few upstreams send a single object instead of a list.
        if isinstance(value, dict):
            return [value]
        return value


class VendorChunkChoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: int = 0
    delta: VendorDelta = Field(default_factory=VendorDelta)
    finish_reason: str | None = None


class VendorChunk(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    object: str | None = None
    created: int | None = None
    model: str | None = None
    choices: list[VendorChunkChoice] = Field(default_factory=list)
    usage: VendorUsage | None = None
    error: Union[VendorError, str, None] = None

    @field_validator("choices", mode="before")
    @classmethod
    def _coerce_choices(cls, value: Any) -> Any:
        # Usage-only trailers may carry "choices": null.
        if value is None:
            return []
        return value


@dataclass(frozen=True)
class TextFragment:
    index: int
    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    index: int
    id: str | None
    name: str | None
    arguments: str


DeltaFragment = Union[TextFragment, ToolCallFragment]


def iter_delta_fragments(choice: VendorChunkChoice) -> Iterator[DeltaFragment]:
    """Split one choice delta into fragments, in the order the vendor listed them."""
    delta = choice.delta
    if delta.content:
        yield TextFragment(index=choice.index, text=delta.content)
    for tool_call in delta.tool_calls or []:
        function = tool_call.function or VendorFunctionDelta()
        yield ToolCallFragment(
            index=tool_call.index,
            id=tool_call.id or None,
            name=function.name or None,
            arguments=function.arguments or "",
        )
