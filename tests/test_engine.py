import asyncio
import json
import typing as t

import pytest

from a2g.backend import ChatBackend
from a2g.engine import ToolConversationEngine
from a2g.exceptions import RoundLimitExceeded
from a2g.exceptions import ToolCallError
from a2g.exceptions import TransportError
from a2g.tools import BaseToolType
from a2g.tools import FunctionTool
from a2g.tools import Toolset
from a2g.types.completion import BackendResponse
from a2g.types.completion import ToolInvocationRecord
from a2g.types.message import Message
from a2g.types.message import ToolCallRequest
from a2g.types.stream import AsyncStream


class ScriptedBackend(ChatBackend):
    """Replays canned responses and records every request."""

    def __init__(self, responses: t.Iterable[BackendResponse | Exception]):
        super().__init__()
        self.responses = list(responses)
        self.requests = []  # type: t.List[t.Tuple[t.List[Message], t.List[str], str | None]]

    async def complete(
        self,
        messages: t.Sequence[Message],
        *,
        tools: t.Sequence[BaseToolType] = (),
        system_prompt: str | None = None,
    ) -> BackendResponse:
        self.requests.append(
            (list(messages), [tool.__function_name__ for tool in tools], system_prompt)
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def stream(
        self, messages: t.Sequence[Message], *, system_prompt: str | None = None
    ) -> AsyncStream[str]:
        raise NotImplementedError


class LoopingBackend(ScriptedBackend):
    """Requests the same tool forever."""

    def __init__(self) -> None:
        super().__init__([])

    async def complete(self, messages, *, tools=(), system_prompt=None):  # type: ignore[no-untyped-def]
        self.requests.append((list(messages), [], system_prompt))
        call_id = f"call_{len(self.requests)}"
        return BackendResponse(
            content=None,
            tool_calls=(ToolCallRequest(call_id, "x", '{"a": 1}'),),
            finish_reason="tool_calls",
        )


def _calls(*calls: tuple[str, str, t.Any]) -> BackendResponse:
    return BackendResponse(
        content=None,
        tool_calls=tuple(
            ToolCallRequest(call_id, name, args if isinstance(args, str) else json.dumps(args))
            for call_id, name, args in calls
        ),
        finish_reason="tool_calls",
    )


def _answer(text: str) -> BackendResponse:
    return BackendResponse(content=text)


def x(a: int) -> str:
    """Answer the question."""
    return "42" if a == 1 else "?"


def broken(path: str) -> str:
    """Always fails."""
    raise RuntimeError(f"disk on fire while reading {path}")


def refusing(path: str) -> str:
    """Fails the expected way."""
    raise ToolCallError(f"File not found: {path}")


@pytest.fixture
def conversation() -> list[Message]:
    return [Message.user("What is the answer?")]


@pytest.mark.asyncio
async def test_single_tool_round(conversation: list[Message]) -> None:
    backend = ScriptedBackend([_calls(("call_1", "x", {"a": 1})), _answer("done")])
    engine = ToolConversationEngine(backend)

    result = await engine.run(conversation, [FunctionTool(x)])

    assert result.final_text == "done"
    assert result.invocations == (ToolInvocationRecord(tool="x", args={"a": 1}, result="42"),)
    assert result.rounds == 2

    second_request = backend.requests[1][0]
    assert [msg.role for msg in second_request] == ["user", "assistant", "tool"]
    assert second_request[1].tool_calls == (ToolCallRequest("call_1", "x", '{"a": 1}'),)
    assert second_request[1].content is None
    assert second_request[2] == Message.tool_result("call_1", "42")

    assert [msg.role for msg in result.messages] == ["user", "assistant", "tool", "assistant"]
    assert result.messages[-1] == Message.assistant("done")


@pytest.mark.asyncio
async def test_plain_answer_needs_one_round(conversation: list[Message]) -> None:
    backend = ScriptedBackend([_answer("hello")])
    result = await ToolConversationEngine(backend).run(conversation)
    assert result.final_text == "hello"
    assert result.invocations == ()
    assert result.rounds == 1


@pytest.mark.asyncio
async def test_conversation_is_not_mutated(conversation: list[Message]) -> None:
    backend = ScriptedBackend([_calls(("call_1", "x", {"a": 1})), _answer("done")])
    await ToolConversationEngine(backend).run(conversation, [FunctionTool(x)])
    assert conversation == [Message.user("What is the answer?")]


@pytest.mark.asyncio
async def test_system_prompt_and_catalog_sent_every_round(conversation: list[Message]) -> None:
    backend = ScriptedBackend([_calls(("call_1", "x", {"a": 1})), _answer("done")])
    await ToolConversationEngine(backend).run(conversation, [FunctionTool(x)], "Be brief.")
    for _, tool_names, system_prompt in backend.requests:
        assert tool_names == ["x"]
        assert system_prompt == "Be brief."


@pytest.mark.asyncio
async def test_executor_failure_is_recovered(conversation: list[Message]) -> None:
    backend = ScriptedBackend(
        [_calls(("c1", "broken", {"path": "a.txt"}), ("c2", "refusing", {"path": "b.txt"})),
         _answer("sorry")]
    )  # fmt: skip
    result = await ToolConversationEngine(backend).run(
        conversation, [FunctionTool(broken), FunctionTool(refusing)]
    )

    assert result.final_text == "sorry"
    first, second = result.invocations
    assert first.tool == "broken"
    assert first.args == {"path": "a.txt"}
    assert first.result == "Error executing tool broken: RuntimeError: disk on fire while reading a.txt"
    assert second.result == "Error executing tool refusing: File not found: b.txt"

    tool_messages = [msg for msg in backend.requests[1][0] if msg.role == "tool"]
    assert [msg.content for msg in tool_messages] == [first.result, second.result]


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_back(conversation: list[Message]) -> None:
    backend = ScriptedBackend([_calls(("c1", "missing", {"q": 1})), _answer("ok")])
    result = await ToolConversationEngine(backend).run(conversation, [FunctionTool(x)])

    assert result.invocations == (
        ToolInvocationRecord(tool="missing", args='{"q": 1}', result="Tool missing not available"),
    )
    assert backend.requests[1][0][-1] == Message.tool_result("c1", "Tool missing not available")


@pytest.mark.asyncio
async def test_invalid_arguments_are_recovered(conversation: list[Message]) -> None:
    backend = ScriptedBackend(
        [_calls(("c1", "x", "{not json"), ("c2", "x", {"a": "many"}), ("c3", "x", {"b": 1})),
         _answer("ok")]
    )  # fmt: skip
    result = await ToolConversationEngine(backend).run(conversation, [FunctionTool(x)])

    bad_json, bad_type, bad_name = result.invocations
    assert bad_json.args == "{not json"
    assert bad_json.result.startswith("Error: Arguments are not valid JSON")
    assert bad_type.args == {"a": "many"}
    assert bad_type.result.startswith("Error: Invalid arguments for x: a:")
    assert "b: Extra inputs are not permitted" in bad_name.result


@pytest.mark.asyncio
async def test_round_limit(conversation: list[Message]) -> None:
    backend = LoopingBackend()
    engine = ToolConversationEngine(backend, max_rounds=3)

    with pytest.raises(RoundLimitExceeded) as exc_info:
        await engine.run(conversation, [FunctionTool(x)])

    assert exc_info.value.rounds == 3
    assert len(backend.requests) == 3
    assert "3 rounds" in str(exc_info.value)
    assert not isinstance(exc_info.value, TransportError)


def test_max_rounds_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ToolConversationEngine(ScriptedBackend([]), max_rounds=0)


@pytest.mark.asyncio
async def test_transport_error_propagates(conversation: list[Message]) -> None:
    backend = ScriptedBackend([TransportError("Cannot reach backend at http://nowhere")])
    with pytest.raises(TransportError, match="Cannot reach backend"):
        await ToolConversationEngine(backend).run(conversation)


@pytest.mark.asyncio
@pytest.mark.parametrize("parallel", [False, True])
async def test_results_follow_call_order(conversation: list[Message], parallel: bool) -> None:
    async def wait(delay: float, label: str) -> str:
        """Sleep, then echo the label."""
        await asyncio.sleep(delay)
        return label

    backend = ScriptedBackend(
        [_calls(("c1", "wait", {"delay": 0.05, "label": "slow"}),
                ("c2", "wait", {"delay": 0.0, "label": "fast"}),
                ("c3", "wait", {"delay": 0.02, "label": "medium"})),
         _answer("done")]
    )  # fmt: skip
    seen = []  # type: t.List[str]
    result = await ToolConversationEngine(backend, parallel_tools=parallel).run(
        conversation,
        Toolset([FunctionTool(wait)]),
        on_invocation=lambda record: seen.append(record.result),
    )

    assert [record.result for record in result.invocations] == ["slow", "fast", "medium"]
    tool_messages = [msg for msg in result.messages if msg.role == "tool"]
    assert [msg.tool_call_id for msg in tool_messages] == ["c1", "c2", "c3"]
    assert [msg.content for msg in tool_messages] == ["slow", "fast", "medium"]
    if parallel:
        assert seen == ["fast", "medium", "slow"]
    else:
        assert seen == ["slow", "fast", "medium"]


@pytest.mark.asyncio
async def test_structured_results_are_serialized(conversation: list[Message]) -> None:
    def stats(name: str) -> dict[str, t.Any]:
        """Return file stats."""
        return {"name": name, "lines": 3}

    backend = ScriptedBackend([_calls(("c1", "stats", {"name": "a.py"})), _answer("3 lines")])
    result = await ToolConversationEngine(backend).run(conversation, [FunctionTool(stats)])
    assert json.loads(result.invocations[0].result) == {"name": "a.py", "lines": 3}


@pytest.mark.asyncio
async def test_last_round_tool_calls_are_not_executed(conversation: list[Message]) -> None:
    executed = []  # type: t.List[int]

    def counted(a: int) -> str:
        """Count executions."""
        executed.append(a)
        return "ok"

    backend = LoopingBackend()
    seen = []  # type: t.List[ToolInvocationRecord]
    with pytest.raises(RoundLimitExceeded):
        await ToolConversationEngine(backend, max_rounds=3).run(
            conversation, [FunctionTool(counted, name="x")], on_invocation=seen.append
        )

    assert len(backend.requests) == 3
    assert executed == [1, 1]
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_single_round_limit_runs_no_tools(conversation: list[Message]) -> None:
    executed = []  # type: t.List[int]

    def counted(a: int) -> str:
        """Count executions."""
        executed.append(a)
        return "ok"

    with pytest.raises(RoundLimitExceeded):
        await ToolConversationEngine(LoopingBackend(), max_rounds=1).run(
            conversation, [FunctionTool(counted, name="x")]
        )
    assert executed == []
