from __future__ import annotations

import abc
import functools as ft
import inspect
import json
import re
import types
import typing as t

import pydantic as pydt

from a2g.exceptions import ToolArgumentError

# JSON serializable types
JsonPrimitive = str | int | float | bool | None
JsonValue = JsonPrimitive | t.Mapping[str, t.Any] | t.Sequence[t.Any]
JsonObject = JsonValue | t.Mapping[str, JsonValue]

# JSON Schema types
JsonSchemaType = t.Literal["string", "integer", "number", "boolean", "array", "object"]


# ruff: noqa: N815
class PropertySchema(pydt.BaseModel):
    """JSON Schema definition of a single tool parameter."""

    type: JsonSchemaType
    description: str | None = None
    enum: list[JsonValue] | None = None
    items: dict[str, JsonValue] | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    minLength: int | None = None
    maxLength: int | None = None
    pattern: str | None = None
    default: JsonValue | None = None
    examples: list[JsonValue] | None = None

    model_config = pydt.ConfigDict(extra="allow")


class ParameterSchema(pydt.BaseModel):
    """Schema for tool function parameters."""

    type: t.Literal["object"] = "object"
    """Always "object" for function parameters."""

    properties: dict[str, PropertySchema]
    """Dictionary mapping parameter names to their schemas."""

    required: list[str] = pydt.Field(default_factory=list)
    """List of required parameter names."""


class FunctionSchema(pydt.BaseModel):
    """Function part of a tool declaration."""

    name: t.Annotated[
        str,
        pydt.Field(
            min_length=1,
            max_length=64,
            pattern=r"^[a-zA-Z0-9_-]+$",
            description="The name of the function to be called by the tool.",
            examples=["read_file", "search_text"],
        ),
    ]
    """Function name (1-64 characters, used in tool calls)."""

    description: str
    """Description of what the function does."""

    parameters: ParameterSchema | None = None
    """Schema defining the function's input parameters."""


class ToolSchema(pydt.BaseModel):
    """Tool declaration sent to the backend, in OpenAI function-calling
    format."""

    type: t.Literal["function"] = "function"
    """Always "function" for function-based tools."""

    function: FunctionSchema
    """The function declaration."""


# pylint: disable=too-few-public-methods
class Property:
    """Parameter metadata for tool arguments.

    Attach it with `typing.Annotated`. It documents the parameter in the
    generated schema, and numeric or string constraints are also enforced
    when backend-supplied arguments are validated.

    Example:
        ```python
        class ReadFile(BaseTool):
            __function_description__ = "Read a text file"

            def __call__(
                self,
                path: t.Annotated[str, Property(description="Relative file path", min_length=1)],
                max_bytes: t.Annotated[int, Property(minimum=1)] = 65536,
            ) -> str: ...
        ```
    """

    __slots__ = (
        "default",
        "description",
        "enums",
        "examples",
        "extra",
        "max_length",
        "maximum",
        "min_length",
        "minimum",
        "pattern",
    )

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        *,
        description: str | None = None,
        enums: list[JsonValue] | None = None,
        minimum: int | float | None = None,
        maximum: int | float | None = None,
        min_length: int | None = None,
        max_length: int | None = None,
        pattern: str | None = None,
        default: JsonValue | None = None,
        examples: list[JsonValue] | None = None,
        **kwargs: JsonValue,
    ):
        self.description = description
        self.enums = enums
        self.minimum = minimum
        self.maximum = maximum
        self.min_length = min_length
        self.max_length = max_length
        self.pattern = pattern
        self.default = default
        self.examples = examples
        self.extra = kwargs

    def constraints(self) -> dict[str, t.Any]:
        """Pydantic field constraints declared by this property."""
        declared = {
            "ge": self.minimum,
            "le": self.maximum,
            "min_length": self.min_length,
            "max_length": self.max_length,
            "pattern": self.pattern,
        }
        return {key: value for key, value in declared.items() if value is not None}


def _get_json_schema_type(python_type: t.Any) -> JsonSchemaType:
    """Map Python type to JSON Schema type."""
    origin = t.get_origin(python_type)
    args = t.get_args(python_type)

    result: JsonSchemaType

    if origin in (t.Union, types.UnionType):
        non_none_types = [arg for arg in args if arg is not type(None)]
        target = non_none_types[0] if non_none_types else str
        result = _get_json_schema_type(target)

    elif origin is list or python_type is list:
        result = "array"

    elif origin is dict or python_type is dict:
        result = "object"

    elif origin is t.Literal:
        first_arg = args[0]
        if isinstance(first_arg, bool):
            result = "boolean"
        elif isinstance(first_arg, int):
            result = "integer"
        elif isinstance(first_arg, float):
            result = "number"
        else:
            result = "string"

    else:
        type_mapping: dict[t.Any, JsonSchemaType] = {
            str: "string",
            int: "integer",
            float: "number",
            bool: "boolean",
            dict: "object",
            list: "array",
        }
        result = type_mapping.get(python_type, "string")

    return result


def _get_array_items_schema(python_type: t.Any) -> dict[str, JsonValue] | None:
    origin = t.get_origin(python_type)
    args = t.get_args(python_type)

    if origin in (t.Union, types.UnionType):
        non_none_types = [arg for arg in args if arg is not type(None)]
        return _get_array_items_schema(non_none_types[0]) if non_none_types else None

    if origin is list and args:
        return {"type": _get_json_schema_type(args[0])}

    return None


def _get_literal_enum_values(python_type: t.Any) -> list[JsonValue] | None:
    if t.get_origin(python_type) is t.Literal:
        return list(t.get_args(python_type))

    return None


def _extract_property_from_annotation(
    annotation: t.Any,
) -> tuple[t.Any, Property | None]:
    """Split an annotation into its actual type and Property descriptor.

    Returns:
        Tuple of (actual_type, property_descriptor). Property is None if not
        annotated with Property.
    """
    if t.get_origin(annotation) is t.Annotated:
        args = t.get_args(annotation)
        actual_type = args[0]

        for metadata in args[1:]:
            if isinstance(metadata, Property):
                return actual_type, metadata

        return actual_type, None

    return annotation, None


_ReturnType: t.TypeAlias = str | JsonObject | t.Sequence[JsonObject] | None
ReturnType: t.TypeAlias = _ReturnType | t.Awaitable[_ReturnType]
P = t.ParamSpec("P")
R = t.TypeVar("R", bound=ReturnType)


class BaseTool(t.Generic[P, R], abc.ABC):
    """Abstract base class for tools the backend may invoke.

    A tool is a class with a typed `__call__`. Its name, parameter schema and
    argument validator are all derived from that signature:

    - `__function_name__` is the snake_case class name unless overridden.
    - `schema` is the OpenAI function-calling declaration.
    - `decode_arguments` / `validate_arguments` turn the backend's JSON
      payload into keyword arguments, raising ToolArgumentError when the
      payload does not fit the signature.

    `__call__` may be sync or async and may return text, JSON-serialisable
    data or None. Raise ToolCallError for expected failures.

    Example:
        ```python
        class CountLines(BaseTool):
            __function_description__ = "Count the lines of a text file"

            def __call__(
                self,
                path: t.Annotated[str, Property(description="File path")],
            ) -> str:
                return str(len(pathlib.Path(path).read_text().splitlines()))


        tool = CountLines()
        tool.__function_name__  # "count_lines"
        kwargs = tool.validate_arguments(tool.decode_arguments('{"path": "a.txt"}'))
        tool(**kwargs)
        ```
    """

    __function_description__: t.ClassVar[str]

    @abc.abstractmethod
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        """Execute the tool with validated keyword arguments."""

    @property
    def _target(self) -> t.Callable[..., t.Any]:
        """Callable whose signature describes the tool parameters."""
        return self.__call__

    @ft.cached_property
    def __function_name__(self) -> str:
        """Snake_case function name generated from the class name.

        Converts class name like "ReadFile" to "read_file".
        """
        cls_name = self.__class__.__name__
        s1 = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", cls_name)
        s2 = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", s1)
        return s2.lower().replace(" ", "_").replace("-", "_")

    def _parameters(self) -> t.Iterator[tuple[str, inspect.Parameter, t.Any, Property | None]]:
        sig = inspect.signature(self._target)
        type_hints = t.get_type_hints(self._target, include_extras=True)
        for param_name, param in sig.parameters.items():
            if param_name == "self" or param.kind in (
                inspect.Parameter.VAR_POSITIONAL,
                inspect.Parameter.VAR_KEYWORD,
            ):
                continue
            actual_type, prop_desc = _extract_property_from_annotation(
                type_hints.get(param_name, t.Any)
            )
            yield param_name, param, actual_type, prop_desc

    @ft.cached_property
    def schema(self) -> ToolSchema:
        """Tool declaration generated from the `__call__` signature."""
        properties: dict[str, PropertySchema] = {}
        required: list[str] = []

        for param_name, param, actual_type, prop_desc in self._parameters():
            property_schema = PropertySchema(
                type=_get_json_schema_type(actual_type),
                description=prop_desc.description if prop_desc else None,
                enum=(
                    prop_desc.enums
                    if prop_desc and prop_desc.enums
                    else _get_literal_enum_values(actual_type)
                ),
                items=_get_array_items_schema(actual_type),
                minimum=prop_desc.minimum if prop_desc else None,
                maximum=prop_desc.maximum if prop_desc else None,
                minLength=prop_desc.min_length if prop_desc else None,
                maxLength=prop_desc.max_length if prop_desc else None,
                pattern=prop_desc.pattern if prop_desc else None,
                default=prop_desc.default if prop_desc else None,
                examples=prop_desc.examples if prop_desc else None,
            )

            if prop_desc and prop_desc.extra:
                for key, value in prop_desc.extra.items():
                    setattr(property_schema, key, value)

            properties[param_name] = property_schema

            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        return ToolSchema(
            function=FunctionSchema(
                name=self.__function_name__,
                description=self.__function_description__,
                parameters=(
                    ParameterSchema(properties=properties, required=required)
                    if properties
                    else None
                ),
            )
        )

    @property
    def schema_dict(self) -> dict[str, JsonValue]:
        """Schema as dictionary, suitable for the `tools` request field."""
        return self.schema.model_dump(exclude_none=True, mode="json")

    @property
    def schema_json(self) -> str:
        """Schema as a pretty-printed JSON string."""
        return self.schema.model_dump_json(indent=2, exclude_none=True)

    @ft.cached_property
    def arguments_model(self) -> type[pydt.BaseModel]:
        """Pydantic model mirroring the tool signature, used to validate
        backend-supplied arguments."""
        fields: dict[str, t.Any] = {}
        for param_name, param, actual_type, prop_desc in self._parameters():
            annotation = actual_type
            if prop_desc and prop_desc.constraints():
                annotation = t.Annotated[actual_type, pydt.Field(**prop_desc.constraints())]
            default = ... if param.default is inspect.Parameter.empty else param.default
            fields[param_name] = (annotation, default)

        model_name = "".join(part.title() for part in self.__function_name__.split("_"))
        return pydt.create_model(
            f"{model_name}Arguments",
            __config__=pydt.ConfigDict(extra="forbid"),
            **fields,
        )

    @staticmethod
    def decode_arguments(args: str) -> dict[str, JsonValue]:
        """Parse the backend's JSON argument string.

        An empty payload means no arguments.

        Raises:
            ToolArgumentError: If the payload is not a JSON object.
        """
        if not args or not args.strip():
            return {}
        try:
            decoded = json.loads(args)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"Arguments are not valid JSON: {args[:200]}") from e
        if not isinstance(decoded, dict):
            raise ToolArgumentError(
                f"Arguments must be a JSON object, got {type(decoded).__name__}"
            )
        return t.cast(dict[str, JsonValue], decoded)

    def validate_arguments(self, args: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        """Validate decoded arguments against the tool signature.

        Returns:
            Keyword arguments to call the tool with. Parameters the backend
            omitted are left out so Python defaults apply.

        Raises:
            ToolArgumentError: If arguments are missing, unexpected or of
                the wrong type.
        """
        try:
            validated = self.arguments_model.model_validate(dict(args))
        except pydt.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolArgumentError(
                f"Invalid arguments for {self.__function_name__}: {problems}"
            ) from e
        return {name: getattr(validated, name) for name in validated.model_fields_set}

    def __hash__(self) -> int:
        return hash(self.__function_name__)


BaseToolType: t.TypeAlias = BaseTool[t.Any, ReturnType]


class FunctionTool(BaseTool[..., ReturnType]):
    """Tool backed by a plain (sync or async) function.

    Args:
        fn: Executor. Its signature defines the tool parameters.
        name: Tool name, defaults to the function name.
        description: Tool description, defaults to the first docstring line.

    Example:
        ```python
        def add(a: int, b: int) -> str:
            \"\"\"Add two integers.\"\"\"
            return str(a + b)


        tool = FunctionTool(add)
        tool.__function_name__  # "add"
        ```
    """

    def __init__(
        self,
        fn: t.Callable[..., ReturnType],
        *,
        name: str | None = None,
        description: str | None = None,
    ):
        self.fn = fn
        self.__function_name__ = name or fn.__name__
        doc = inspect.getdoc(fn) or ""
        self.__function_description__ = description or (doc.splitlines()[0] if doc else "")

    @property
    def _target(self) -> t.Callable[..., t.Any]:
        return self.fn

    def __call__(self, *args: t.Any, **kwargs: t.Any) -> ReturnType:
        return self.fn(*args, **kwargs)

    def __repr__(self) -> str:
        return f"FunctionTool({self.__function_name__!r})"


class Toolset(t.Mapping[str, BaseToolType]):
    """Name-keyed registry of the tools offered to the backend.

    Raises:
        ValueError: If two tools share a name.
    """

    def __init__(self, tools: t.Iterable[BaseToolType] = ()):
        self._tools = {}  # type: t.Dict[str, BaseToolType]
        for tool in tools:
            self.add(tool)

    def add(self, tool: BaseToolType) -> None:
        name = tool.__function_name__
        if name in self._tools:
            raise ValueError(f"Duplicate tool name: {name!r}")
        self._tools[name] = tool

    def __getitem__(self, name: str) -> BaseToolType:
        return self._tools[name]

    def __iter__(self) -> t.Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def schemas(self) -> list[dict[str, JsonValue]]:
        """Tool declarations in registration order."""
        return [tool.schema_dict for tool in self._tools.values()]


def format_result(result: t.Any) -> str:
    """Render a tool return value as the text sent back to the backend."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, (list, tuple)):
        return "\n".join(
            item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
            for item in result
        )
    return json.dumps(result, ensure_ascii=False)
