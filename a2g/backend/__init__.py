from __future__ import annotations

import abc
import typing as t

from a2g.tools import BaseToolType
from a2g.types.completion import BackendResponse
from a2g.types.message import Message
from a2g.types.stream import AsyncStream
from a2g.utils import AsyncContextMixin


class ConnectionCheck(t.NamedTuple):
    """Outcome of a backend connection test.

    Attributes:
        ok: Whether the backend answered a minimal request.
        error: One-line, human-readable reason when `ok` is False.
    """

    ok: bool
    error: str | None = None


class ChatBackend(AsyncContextMixin, abc.ABC):
    """Abstract chat-completion backend.

    A backend performs exactly one request per call and never loops over
    tool calls itself; multi-round tool handling belongs to
    `ToolConversationEngine`. Every transport problem (unreachable host,
    non-2xx status, timeout, malformed response) surfaces as
    `TransportError`, and nothing is retried beyond what the underlying
    client is configured to do.

    Implementations may hold connections; use them as async context managers
    or call `init`/`close` explicitly.

    Example:
        ```python
        async with OpenAIBackend(endpoint) as backend:
            reply = await backend.complete(
                [Message.user("Hello")],
                system_prompt="You are terse.",
            )
            print(reply.content)

            stream = await backend.stream([Message.user("Tell me a story")])
            async for fragment in stream:
                print(fragment, end="", flush=True)
        ```
    """

    @abc.abstractmethod
    async def complete(
        self,
        messages: t.Sequence[Message],
        *,
        tools: t.Sequence[BaseToolType] = (),
        system_prompt: str | None = None,
    ) -> BackendResponse:
        """Request one structured completion.

        Args:
            messages: Conversation to complete.
            tools: Tool catalog to declare to the backend. Empty for none.
            system_prompt: Prepended as a system message when given.

        Returns:
            The backend's single reply: text, tool calls, or both.

        Raises:
            TransportError: If the request fails or the reply is malformed.
        """

    @abc.abstractmethod
    async def stream(
        self,
        messages: t.Sequence[Message],
        *,
        system_prompt: str | None = None,
    ) -> AsyncStream[str]:
        """Request a streaming completion.

        Returns:
            Stream of text fragments (`delta.content`) in arrival order. It
            ends with the backend stream; a failure mid-stream is raised from
            iteration as `TransportError`.

        Raises:
            TransportError: If the request cannot be started.
        """


def with_system_prompt(
    messages: t.Sequence[Message], system_prompt: str | None
) -> list[Message]:
    """Prefix a conversation with a system message when a prompt is given."""
    if system_prompt:
        return [Message.system(system_prompt), *messages]
    return list(messages)
