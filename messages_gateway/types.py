"""
Canonical (Messages API) wire models.

These models describe what gateway clients send and receive. They are lenient
on unknown keys so newer client fields survive a round trip through the
gateway untouched.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt


def generate_unique_id(prefix: str) -> str:
    """Generate a unique id with the given prefix, e.g. ``toolu_1f3a...``."""
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


class ContentBlockText(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = "text"
    text: str = ""


class ContentBlockImageBase64Source(BaseModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class ContentBlockImageURLSource(BaseModel):
    type: Literal["url"] = "url"
    url: str


class ContentBlockImage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["image"] = "image"
    source: Annotated[
        Union[ContentBlockImageBase64Source, ContentBlockImageURLSource],
        Field(discriminator="type"),
    ]


class ContentBlockToolUse(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ContentBlockToolResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, list[dict[str, Any]], None] = None
    is_error: bool | None = None

    def text(self) -> str:
        """Flatten the result content to plain text."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.get("text", "") for part in self.content if part.get("type") == "text"
        )


# Thinking blocks appear in assistant history and have no vendor counterpart.
class ContentBlockThinking(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str | None = None


class ContentBlockRedactedThinking(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str = ""


RequestContentBlock = Annotated[
    Union[
        ContentBlockText,
        ContentBlockImage,
        ContentBlockToolUse,
        ContentBlockToolResult,
        ContentBlockThinking,
        ContentBlockRedactedThinking,
    ],
    Field(discriminator="type"),
]

# Assistant output is restricted to text runs and tool invocations.
ResponseContentBlock = Annotated[
    Union[ContentBlockText, ContentBlockToolUse],
    Field(discriminator="type"),
]


class Message(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["user", "assistant", "system"]
    content: Union[str, list[RequestContentBlock]]


class Tool(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    description: str | None = None
    # Opaque JSON schema, passed through verbatim.
    input_schema: dict[str, Any] = Field(default_factory=dict)


class SystemContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = "text"
    text: str


class MessagesRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str = Field(min_length=1)
    # Forwarded verbatim; strings and floats are rejected.
    max_tokens: StrictInt | None = None
    messages: list[Message] = Field(default_factory=list)
    system: Union[str, list[SystemContent], None] = None
    tools: list[Tool] | None = None
    # Either a plain string or a vendor-shaped object; forwarded as given.
    tool_choice: Any = None
    temperature: float | None = None
    top_p: float | None = None
    stop_sequences: list[str] | None = None
    stream: bool | None = None

    def system_text(self) -> str | None:
        if self.system is None:
            return None
        if isinstance(self.system, str):
            return self.system
        return "\n".join(block.text for block in self.system)


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0


class MessagesResponse(BaseModel):
    id: str
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    model: str
    content: list[ResponseContentBlock] = Field(default_factory=list)
    stop_reason: str | None = "end_turn"
    stop_sequence: str | None = None
    usage: Usage = Field(default_factory=Usage)


class ErrorDetail(BaseModel):
    type: str = "api_error"
    message: str = ""


class ErrorResponse(BaseModel):
    """Canonical error envelope relayed to the client."""

    type: Literal["error"] = "error"
    error: ErrorDetail
