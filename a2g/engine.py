from __future__ import annotations

import asyncio
import logging
import time
import typing as t

from a2g.backend import ChatBackend
from a2g.exceptions import RoundLimitExceeded
from a2g.exceptions import ToolArgumentError
from a2g.exceptions import ToolCallError
from a2g.tools import BaseToolType
from a2g.tools import Toolset
from a2g.tools import format_result
from a2g.types.completion import ConversationResult
from a2g.types.completion import ToolInvocationRecord
from a2g.types.message import Message
from a2g.types.message import ToolCallRequest
from a2g.utils import preview

logger = logging.getLogger("a2g.engine")

DEFAULT_MAX_ROUNDS = 8


class ToolConversationEngine:
    """Bounded tool-calling loop on top of a ChatBackend.

    Each round sends the conversation and the tool catalog to the backend:

    1. A reply without tool calls is the final answer and ends the run.
    2. Otherwise every requested call is resolved in the order listed. Known
       tools get their arguments decoded, validated and executed. Unknown
       tools get a "not available" result. Any tool failure is converted to
       a result string, so a single tool never aborts the run.
    3. The assistant tool-call message and one `tool` message per call (in
       call order) are appended, and the next round starts.

    After `max_rounds` backend requests without a plain answer the run
    raises RoundLimitExceeded. Tool calls requested by that last response
    are not executed, since their results could not be sent back. The
    backend cannot force unbounded local execution. Transport failures propagate unchanged as TransportError.

    The engine keeps no state between runs; each run works on its own copy
    of the conversation.

    Args:
        backend: Backend used for every round.
        max_rounds: Maximum number of backend requests per run.
        parallel_tools: Run the calls of one reply concurrently. Results are
            still appended and recorded in call order.

    Example:
        ```python
        engine = ToolConversationEngine(backend, max_rounds=6)
        result = await engine.run(
            [Message.user("How many TODOs are in src/?")],
            default_toolset("."),
            system_prompt="You can read files in the workspace.",
        )
        print(result.final_text)
        for record in result.invocations:
            print(record.tool, record.args, record.result[:80])
        ```
    """

    def __init__(
        self,
        backend: ChatBackend,
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        parallel_tools: bool = False,
    ):
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be at least 1, got {max_rounds}")
        self.backend = backend
        self.max_rounds = max_rounds
        self.parallel_tools = parallel_tools

    async def run(
        self,
        conversation: t.Sequence[Message],
        tools: Toolset | t.Iterable[BaseToolType] = (),
        system_prompt: str | None = None,
        *,
        on_invocation: t.Callable[[ToolInvocationRecord], None] | None = None,
    ) -> ConversationResult:
        """Run the conversation until the backend answers in plain text.

        Args:
            conversation: Messages so far. Not mutated.
            tools: Tool catalog offered to the backend.
            system_prompt: Prepended as a system message on every round.
            on_invocation: Called with each invocation record as soon as
                its tool finishes, for progress display.

        Returns:
            Final answer, invocation audit trail and full transcript.

        Raises:
            RoundLimitExceeded: If no plain answer arrives within
                `max_rounds` requests.
            TransportError: If a backend request fails.
        """
        toolset = tools if isinstance(tools, Toolset) else Toolset(tools)
        msgs = list(conversation)
        invocations = []  # type: t.List[ToolInvocationRecord]

        logger.debug(
            "Run started: messages=%s, tools=%s, max_rounds=%s",
            len(msgs),
            list(toolset),
            self.max_rounds,
        )

        for round_no in range(1, self.max_rounds + 1):
            logger.debug("--- Round %s ---", round_no)
            response = await self.backend.complete(
                msgs, tools=list(toolset.values()), system_prompt=system_prompt
            )

            if not response.has_tool_calls:
                final_text = response.content or ""
                msgs.append(Message.assistant(final_text))
                logger.debug(
                    "Answered after %s rounds, %s tool invocations", round_no, len(invocations)
                )
                return ConversationResult(
                    final_text=final_text,
                    invocations=tuple(invocations),
                    messages=tuple(msgs),
                    rounds=round_no,
                )

            if round_no == self.max_rounds:
                # Results of this batch could never be sent back.
                logger.error(
                    "Round limit of %s reached, skipping %s requested tool calls",
                    self.max_rounds,
                    len(response.tool_calls),
                )
                break

            logger.debug("Processing %s tool calls", len(response.tool_calls))
            msgs.append(response.to_message())

            records = await self._execute_all(response.tool_calls, toolset, on_invocation)
            for call, record in zip(response.tool_calls, records):
                msgs.append(Message.tool_result(call.id, record.result))
                invocations.append(record)

            logger.debug("Continuing to next round with %s total messages", len(msgs))

        raise RoundLimitExceeded(self.max_rounds)

    async def _execute_all(
        self,
        calls: t.Sequence[ToolCallRequest],
        toolset: Toolset,
        on_invocation: t.Callable[[ToolInvocationRecord], None] | None,
    ) -> list[ToolInvocationRecord]:
        async def _one(call: ToolCallRequest) -> ToolInvocationRecord:
            record = await self._execute(call, toolset)
            if on_invocation is not None:
                on_invocation(record)
            return record

        if self.parallel_tools and len(calls) > 1:
            # gather() returns results in argument order, not completion order.
            return list(await asyncio.gather(*(_one(call) for call in calls)))
        return [await _one(call) for call in calls]

    @staticmethod
    async def _execute(call: ToolCallRequest, toolset: Toolset) -> ToolInvocationRecord:
        """Resolve one tool call into an invocation record. Never raises
        for tool-side problems."""
        logger.debug("Tool call %s: %s(%s)", call.id, call.name, preview(call.arguments))

        tool = toolset.get(call.name)
        if tool is None:
            logger.debug("Tool %s not found in available tools", call.name)
            return ToolInvocationRecord(
                tool=call.name, args=call.arguments, result=f"Tool {call.name} not available"
            )

        args = call.arguments  # type: dict[str, t.Any] | str
        start_time = time.time()
        try:
            decoded = tool.decode_arguments(call.arguments)
            args = decoded
            args = tool.validate_arguments(decoded)
            result = tool(**args)
            if isinstance(result, t.Awaitable):
                result = await result
            result_str = format_result(result)
        except ToolArgumentError as e:
            logger.error("Rejected arguments for tool %s: %s", call.name, e)
            result_str = f"Error: {e}"
        except ToolCallError as e:
            logger.error("Error executing tool %s: %s", call.name, e)
            result_str = f"Error executing tool {call.name}: {e}"
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.exception("Unexpected failure in tool %s", call.name)
            result_str = f"Error executing tool {call.name}: {type(e).__name__}: {e}"

        logger.debug(
            "Tool %s finished in %.3fs: %s", call.name, time.time() - start_time, preview(result_str)
        )
        return ToolInvocationRecord(tool=call.name, args=args, result=result_str)
