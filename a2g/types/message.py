from __future__ import annotations

import typing as t

import pydantic as pydt

from a2g.types import BaseModel

Role: t.TypeAlias = t.Literal["system", "user", "assistant", "tool"]


class ToolCallRequest(t.NamedTuple):
    """Tool call requested by the backend.

    Attributes:
        id: Identifier of the call, unique within one backend response. The
            matching tool result message carries it as `tool_call_id`.
        name: Name of the tool to invoke.
        arguments: JSON-serialized argument payload, exactly as the backend
            produced it.
    """

    id: str
    name: str
    arguments: str


class Message(BaseModel):
    """Single conversation message.

    Messages are immutable. A conversation is an ordered sequence of them.
    Structural rules are checked on construction:

    - `tool` messages must carry the `tool_call_id` they answer.
    - Only `assistant` messages may carry `tool_calls`.
    - `content` may be None only for an assistant message that issues
      tool calls.

    Example:
        ```python
        history = [
            Message.system("You are a helpful assistant."),
            Message.user("What is in README.md?"),
        ]
        ```
    """

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] | None = None
    tool_call_id: str | None = None

    @pydt.model_validator(mode="after")
    def val_structure(self) -> t.Self:
        if self.role == "tool" and self.tool_call_id is None:
            raise ValueError("Tool messages must carry a tool_call_id")
        if self.tool_calls and self.role != "assistant":
            raise ValueError(f"Only assistant messages may carry tool calls, got {self.role!r}")
        if self.content is None and not (self.role == "assistant" and self.tool_calls):
            raise ValueError(f"Content is required for {self.role!r} messages")
        return self

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls, content: str | None, tool_calls: t.Sequence[ToolCallRequest] | None = None
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


Conversation: t.TypeAlias = t.Sequence[Message]
"""Ordered sequence of messages."""
