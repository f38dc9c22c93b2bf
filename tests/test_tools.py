import typing as t

import pytest

from a2g.exceptions import ToolArgumentError
from a2g.tools import BaseTool
from a2g.tools import FunctionTool
from a2g.tools import Property
from a2g.tools import Toolset
from a2g.tools import format_result


class CountWords(BaseTool):
    __function_description__ = "Count words in a text"

    def __call__(
        self,
        text: t.Annotated[str, Property(description="Text to count", min_length=1)],
        unit: t.Literal["words", "chars"] = "words",
        limit: t.Annotated[int, Property(description="Upper bound", minimum=1, maximum=10)] = 5,
        tags: list[str] | None = None,
    ) -> str:
        count = len(text.split()) if unit == "words" else len(text)
        return str(min(count, limit))


def test_function_name_from_class() -> None:
    assert CountWords().__function_name__ == "count_words"


def test_schema_dict() -> None:
    schema = CountWords().schema_dict
    assert schema["type"] == "function"
    function = schema["function"]
    assert function["name"] == "count_words"
    assert function["description"] == "Count words in a text"

    parameters = function["parameters"]
    assert parameters["required"] == ["text"]
    properties = parameters["properties"]
    assert properties["text"] == {"type": "string", "description": "Text to count", "minLength": 1}
    assert properties["unit"] == {"type": "string", "enum": ["words", "chars"]}
    assert properties["limit"]["type"] == "integer"
    assert properties["limit"]["minimum"] == 1
    assert properties["limit"]["maximum"] == 10
    assert properties["tags"] == {"type": "array", "items": {"type": "string"}}


def test_schema_without_parameters() -> None:
    def now() -> str:
        """Current time."""
        return "noon"

    schema = FunctionTool(now).schema_dict
    assert schema["function"] == {"name": "now", "description": "Current time."}


def test_decode_arguments() -> None:
    assert BaseTool.decode_arguments("") == {}
    assert BaseTool.decode_arguments("  ") == {}
    assert BaseTool.decode_arguments('{"text": "hi"}') == {"text": "hi"}
    with pytest.raises(ToolArgumentError, match="not valid JSON"):
        BaseTool.decode_arguments("{oops")
    with pytest.raises(ToolArgumentError, match="JSON object, got list"):
        BaseTool.decode_arguments("[1, 2]")


def test_validate_arguments_keeps_defaults_out() -> None:
    tool = CountWords()
    assert tool.validate_arguments({"text": "a b c"}) == {"text": "a b c"}
    assert tool.validate_arguments({"text": "a b c", "limit": 2}) == {"text": "a b c", "limit": 2}


@pytest.mark.parametrize(
    ("args", "fragment"),
    [
        ({}, "text: Field required"),
        ({"text": ""}, "text: String should have at least 1 character"),
        ({"text": "a", "limit": 11}, "limit: Input should be less than or equal to 10"),
        ({"text": "a", "unit": "lines"}, "unit: Input should be 'words' or 'chars'"),
        ({"text": "a", "extra": True}, "extra: Extra inputs are not permitted"),
    ],
)
def test_validate_arguments_rejects(args: dict[str, t.Any], fragment: str) -> None:
    with pytest.raises(ToolArgumentError) as exc_info:
        CountWords().validate_arguments(args)
    assert str(exc_info.value).startswith("Invalid arguments for count_words: ")
    assert fragment in str(exc_info.value)


def test_tool_call() -> None:
    tool = CountWords()
    assert tool(**tool.validate_arguments({"text": "one two three four five six"})) == "5"


def test_function_tool_overrides() -> None:
    def add(a: int, b: int = 0) -> str:
        """Add two integers.

        Longer explanation that is not part of the description.
        """
        return str(a + b)

    tool = FunctionTool(add, name="plus")
    assert tool.__function_name__ == "plus"
    assert tool.__function_description__ == "Add two integers."
    assert tool(a=1, b=2) == "3"
    assert repr(tool) == "FunctionTool('plus')"

    described = FunctionTool(add, description="Sum")
    assert described.schema.function.description == "Sum"


def test_toolset() -> None:
    def ping() -> str:
        """Ping."""
        return "pong"

    tools = Toolset([CountWords(), FunctionTool(ping)])
    assert list(tools) == ["count_words", "ping"]
    assert len(tools) == 2
    assert tools.get("ping") is not None
    assert tools.get("nope") is None
    assert [schema["function"]["name"] for schema in tools.schemas] == ["count_words", "ping"]

    with pytest.raises(ValueError, match="Duplicate tool name"):
        tools.add(FunctionTool(ping))


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, ""),
        ("plain", "plain"),
        (["a", "b"], "a\nb"),
        ([{"x": 1}, "y"], '{"x": 1}\ny'),
        ({"name": "ü"}, '{"name": "ü"}'),
        (3, "3"),
    ],
)
def test_format_result(value: t.Any, expected: str) -> None:
    assert format_result(value) == expected
