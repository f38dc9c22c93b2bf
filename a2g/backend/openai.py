from __future__ import annotations

import logging
import typing as t

import httpx
import openai
import openai.resources.chat as chat_rc
import openai.types.chat as chat_t
import openai.types.chat.chat_completion_message_function_tool_call_param as fn_param

from a2g.backend import ChatBackend
from a2g.backend import ConnectionCheck
from a2g.backend import with_system_prompt
from a2g.exceptions import TransportError
from a2g.tools import BaseToolType
from a2g.types.completion import BackendResponse
from a2g.types.completion import FinishReason
from a2g.types.completion import Usage
from a2g.types.message import Message
from a2g.types.message import ToolCallRequest
from a2g.types.stream import AsyncStream
from a2g.utils import UNSET
from a2g.utils import Unset
from a2g.utils import filter_kwargs
from a2g.utils import preview

logger = logging.getLogger("a2g.backend.openai")


def map_finish_reason(
    reason: t.Literal["stop", "length", "tool_calls", "content_filter", "function_call"] | None,
) -> FinishReason:
    """Map OpenAI finish reasons to the reasons BackendResponse reports.

    Args:
        reason: OpenAI finish reason.

    Returns:
        Normalized finish reason (function_call mapped to tool_calls,
        missing mapped to stop).
    """
    if reason == "function_call":
        return "tool_calls"
    if reason in ("stop", "length", "tool_calls", "content_filter"):
        return t.cast(FinishReason, reason)
    return "stop"


def describe_api_error(exc: openai.APIError, base_url: str) -> str:
    """One-line description of an SDK error, suitable for a CLI."""
    if isinstance(exc, openai.APITimeoutError):
        return f"Request to {base_url} timed out; check the endpoint or raise its timeout"
    if isinstance(exc, openai.APIConnectionError):
        return f"Cannot reach backend at {base_url}: {exc.message}"
    if isinstance(exc, openai.AuthenticationError):
        return f"Backend rejected the API key (HTTP {exc.status_code}); check the endpoint api_key"
    if isinstance(exc, openai.APIStatusError):
        return f"Backend returned HTTP {exc.status_code}: {exc.message}"
    return f"Malformed backend response: {exc.message}"


class OpenAIConfig(t.NamedTuple):
    """Configuration for the OpenAI-compatible client."""

    api_key: str
    """Opaque API key, passed through as a bearer token."""

    model: str
    """Model identifier for completions."""

    base_url: str
    """API endpoint base URL."""

    timeout: float | None = None
    """Request timeout in seconds."""

    max_retries: int = 2
    """Retry attempts performed by the SDK itself."""

    default_headers: t.Mapping[str, str] | None = None
    """Additional headers for all requests."""


class OpenAIBackend(ChatBackend):
    """Chat backend for OpenAI-compatible APIs.

    Performs one `chat.completions.create` call per request. Tool calls in
    the reply are returned as ToolCallRequest values for the engine to run;
    streaming yields `delta.content` fragments. Backends that report
    reasoning in a separate `reasoning_content` field have it wrapped in
    `<think>...</think>` so the stream segmenter treats both styles alike.

    Attributes:
        model: Model identifier sent with every request.
        base_url: Endpoint base URL, used in error messages.
        client: Configured AsyncOpenAI client instance.

    Args:
        openai_config: Client configuration.
        temperature: Sampling temperature.
        top_p: Nucleus sampling threshold.
        max_completion_tokens: Generation limit per request.
        http_client: Optional preconfigured httpx client (proxies, tests).
        **create_kwargs: Extra `chat.completions.create` parameters; unknown
            names are dropped.

    Example:
        ```python
        backend = OpenAIBackend(
            openai_config=OpenAIConfig(
                api_key="sk-...",
                model="gemini-2.0-flash",
                base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
                timeout=60.0,
            ),
            temperature=0.2,
        )
        async with backend:
            reply = await backend.complete([Message.user("2+2?")])
        ```
    """

    def __init__(
        self,
        *,
        openai_config: OpenAIConfig,
        temperature: float | Unset = UNSET,
        top_p: float | Unset = UNSET,
        max_completion_tokens: int | Unset = UNSET,
        http_client: httpx.AsyncClient | None = None,
        **create_kwargs: t.Any,
    ):
        super().__init__()
        self.model = openai_config.model
        self.base_url = openai_config.base_url
        logger.debug(
            "Initializing OpenAIBackend with model=%s, base_url=%s",
            self.model,
            self.base_url,
        )

        self.client = openai.AsyncOpenAI(
            # The SDK refuses an empty key, local servers often need none.
            api_key=openai_config.api_key or "none",
            base_url=openai_config.base_url,
            timeout=openai_config.timeout,
            max_retries=openai_config.max_retries,
            default_headers=openai_config.default_headers,
            http_client=http_client,
        )
        self.temperature = openai.omit if isinstance(temperature, Unset) else temperature
        self.top_p = openai.omit if isinstance(top_p, Unset) else top_p
        self.max_completion_tokens = (
            openai.omit if isinstance(max_completion_tokens, Unset) else max_completion_tokens
        )
        self.create_kwargs = filter_kwargs(chat_rc.AsyncCompletions.create, create_kwargs)

        logger.debug(
            "OpenAI client initialized with timeout=%s, max_retries=%s",
            openai_config.timeout,
            openai_config.max_retries,
        )

    async def close(self) -> None:
        await self.client.close()

    async def complete(
        self,
        messages: t.Sequence[Message],
        *,
        tools: t.Sequence[BaseToolType] = (),
        system_prompt: str | None = None,
    ) -> BackendResponse:
        message_list = self._build_msgs(with_system_prompt(messages, system_prompt))
        tool_list = (
            [t.cast(chat_t.ChatCompletionFunctionToolParam, tool.schema_dict) for tool in tools]
            if tools
            else openai.omit
        )

        logger.debug(
            "Requesting completion: messages=%s, tools=%s",
            len(message_list),
            [tool.__function_name__ for tool in tools],
        )

        try:
            completion = await self.client.chat.completions.create(
                messages=message_list,
                model=self.model,
                stream=False,
                tools=tool_list,
                parallel_tool_calls=True if tools else openai.omit,
                max_completion_tokens=self.max_completion_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
                **self.create_kwargs,
            )  # type: chat_t.ChatCompletion
        except openai.APIError as e:
            logger.error("Completion request failed: %s", e)
            raise TransportError(describe_api_error(e, self.base_url)) from e

        if not getattr(completion, "choices", None) or completion.choices[0].message is None:
            raise TransportError(f"Malformed backend response from {self.base_url}: no choices")

        choice = completion.choices[0]
        tool_calls = []  # type: t.List[ToolCallRequest]
        for i, tool_call in enumerate(choice.message.tool_calls or ()):
            if not isinstance(tool_call, chat_t.ChatCompletionMessageFunctionToolCall):
                logger.debug("Skipping non-function tool call at index %s", i)
                continue
            call_id = tool_call.id
            if not call_id or any(call.id == call_id for call in tool_calls):
                # Some compatible servers send empty or repeated ids.
                call_id = f"call_{i}"
                logger.debug("Tool call %s has no usable id, using %s", i, call_id)
            tool_calls.append(
                ToolCallRequest(
                    id=call_id,
                    name=tool_call.function.name,
                    arguments=tool_call.function.arguments or "",
                )
            )

        logger.debug(
            "OpenAI response: finish_reason=%s, content_length=%s, tool_calls_count=%s",
            choice.finish_reason,
            len(choice.message.content or ""),
            len(tool_calls),
        )

        usage_info = None
        if completion.usage:
            usage_info = Usage(
                prompt_tokens=completion.usage.prompt_tokens,
                completion_tokens=completion.usage.completion_tokens,
                total_tokens=completion.usage.total_tokens,
            )

        content = choice.message.content
        reasoning = getattr(choice.message, "reasoning_content", None)
        if reasoning:
            content = f"<think>{reasoning}</think>{content or ''}"

        return BackendResponse(
            content=content,
            tool_calls=tuple(tool_calls),
            finish_reason=map_finish_reason(choice.finish_reason),
            usage=usage_info,
        )

    async def stream(
        self,
        messages: t.Sequence[Message],
        *,
        system_prompt: str | None = None,
    ) -> AsyncStream[str]:
        message_list = self._build_msgs(with_system_prompt(messages, system_prompt))
        logger.debug("Requesting stream: messages=%s", len(message_list))

        try:
            completion = await self.client.chat.completions.create(
                messages=message_list,
                model=self.model,
                stream=True,
                max_completion_tokens=self.max_completion_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
                **self.create_kwargs,
            )
        except openai.APIError as e:
            logger.error("Stream request failed: %s", e)
            raise TransportError(describe_api_error(e, self.base_url)) from e

        async def _stream_gen() -> t.AsyncGenerator[str, None]:
            chunk_count = 0
            reasoning_open = False
            try:
                async for chunk in completion:
                    chunk_count += 1
                    choice = chunk.choices[0] if chunk.choices else None
                    if not choice or choice.delta is None:
                        logger.debug("Chunk %s: no choice data", chunk_count)
                        continue

                    delta = choice.delta
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning:
                        if not reasoning_open:
                            reasoning_open = True
                            yield "<think>"
                        yield reasoning
                    if delta.content:
                        if reasoning_open:
                            reasoning_open = False
                            yield "</think>"
                        yield delta.content

                    if choice.finish_reason:
                        logger.debug("Stream finished with reason: %s", choice.finish_reason)
            except openai.APIError as e:
                logger.error("Stream failed after %s chunks: %s", chunk_count, e)
                raise TransportError(describe_api_error(e, self.base_url)) from e
            except httpx.HTTPError as e:
                logger.error("Stream interrupted after %s chunks: %s", chunk_count, e)
                raise TransportError(f"Stream from {self.base_url} interrupted: {e}") from e
            finally:
                await completion.close()

            if reasoning_open:
                yield "</think>"
            logger.debug("Stream completed after %s chunks", chunk_count)

        return AsyncStream(_stream_gen())

    @staticmethod
    def _build_msgs(messages: t.Sequence[Message]) -> list[chat_t.ChatCompletionMessageParam]:
        """Build OpenAI message params from Message objects."""
        msgs = []  # type: t.List[chat_t.ChatCompletionMessageParam]

        for i, msg in enumerate(messages):
            if msg.role == "system":
                msgs.append(
                    chat_t.ChatCompletionSystemMessageParam(role="system", content=msg.content or "")
                )
            elif msg.role == "user":
                msgs.append(
                    chat_t.ChatCompletionUserMessageParam(role="user", content=msg.content or "")
                )
            elif msg.role == "assistant":
                param = chat_t.ChatCompletionAssistantMessageParam(
                    role="assistant", content=msg.content
                )
                if msg.tool_calls:
                    param["tool_calls"] = [
                        chat_t.ChatCompletionMessageFunctionToolCallParam(
                            id=call.id,
                            function=fn_param.Function(name=call.name, arguments=call.arguments),
                            type="function",
                        )
                        for call in msg.tool_calls
                    ]
                msgs.append(param)
            elif msg.role == "tool":
                msgs.append(
                    chat_t.ChatCompletionToolMessageParam(
                        role="tool", content=msg.content or "", tool_call_id=msg.tool_call_id or ""
                    )
                )
            logger.debug("Built %s message %s: %s", msg.role, i, preview(msg.content))

        return msgs


async def check_connection(
    base_url: str,
    api_key: str | None,
    model: str,
    *,
    timeout: float = 15.0,
    http_client: httpx.AsyncClient | None = None,
) -> ConnectionCheck:
    """Send a minimal completion request to verify an endpoint.

    Used at setup time only. Transport problems are reported in the result
    instead of being raised.

    Args:
        base_url: Endpoint base URL.
        api_key: API key, None or empty for keyless servers.
        model: Model identifier to test.
        timeout: Request timeout in seconds.
        http_client: Optional preconfigured httpx client.

    Returns:
        ConnectionCheck with `ok` and, on failure, a one-line error.
    """
    backend = OpenAIBackend(
        openai_config=OpenAIConfig(
            api_key=api_key or "",
            model=model,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        ),
        max_completion_tokens=16,
        http_client=http_client,
    )
    async with backend:
        try:
            await backend.complete([Message.user("ping")])
        except TransportError as e:
            logger.debug("Connection test against %s failed: %s", base_url, e)
            return ConnectionCheck(ok=False, error=str(e))
    logger.debug("Connection test against %s succeeded", base_url)
    return ConnectionCheck(ok=True)
