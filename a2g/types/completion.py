from __future__ import annotations

import typing as t

from a2g.types.message import Message
from a2g.types.message import ToolCallRequest

FinishReason: t.TypeAlias = t.Literal["stop", "length", "tool_calls", "content_filter"]


class Usage(t.NamedTuple):
    """Token usage statistics for one backend response.

    Attributes:
        prompt_tokens: Number of tokens in the input prompt.
        completion_tokens: Number of tokens generated in the completion.
        total_tokens: Sum of prompt_tokens and completion_tokens.
    """

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class BackendResponse(t.NamedTuple):
    """Single structured reply from the chat backend.

    Attributes:
        content: Text content, None when the reply only requests tools.
        tool_calls: Tool calls requested by the backend, in the order
            listed. Empty for plain answers.
        finish_reason: Why the backend stopped generating.
        usage: Token usage, when the backend reports it.
    """

    content: str | None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    finish_reason: FinishReason = "stop"
    usage: Usage | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> Message:
        """Convert to the assistant message that goes back into history."""
        return Message.assistant(self.content, self.tool_calls or None)


class ToolInvocationRecord(t.NamedTuple):
    """Audit entry for one executed (or refused) tool call.

    Attributes:
        tool: Requested tool name.
        args: Validated arguments the tool ran with, or the raw payload
            when it could not be decoded.
        result: Text handed back to the backend, either the tool output or
            a description of the failure.
    """

    tool: str
    args: dict[str, t.Any] | str
    result: str


class ConversationResult(t.NamedTuple):
    """Outcome of a tool conversation run.

    Attributes:
        final_text: The backend's final plain-text answer.
        invocations: Every tool invocation, in call order across rounds.
        messages: Full transcript, including tool rounds and the final
            assistant message.
        rounds: Number of backend requests made.
    """

    final_text: str
    invocations: tuple[ToolInvocationRecord, ...]
    messages: tuple[Message, ...]
    rounds: int
