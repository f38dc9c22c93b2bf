from __future__ import annotations

import logging
import typing as t

import jinja2 as j2

from a2g.tools import Toolset
from a2g.types import PathLikes

logger = logging.getLogger("a2g.prompts")

DEFAULT_SYSTEM_PROMPT = """\
You are A2G, a coding assistant running in the user's terminal.
Answer concisely and use Markdown for code.
{% if tools %}
You can use these tools on the workspace at {{ workspace }}:
{% for name, description in tools %}
- {{ name }}: {{ description }}
{% endfor %}
Call a tool whenever the answer depends on file contents instead of guessing.
Paths are relative to the workspace root.
{% endif %}"""


@t.runtime_checkable
class Template(t.Protocol):
    """Protocol for prompt templates."""

    def render(self, *args: t.Any, **kwargs: t.Any) -> str: ...


class J2Template(Template):
    """Jinja2 template compiled from a string.

    Example:
        ```python
        template = J2Template("Hello {{ name }}")
        template.render(name="Alice")  # "Hello Alice"
        ```
    """

    def __init__(self, source: str):
        self.template = j2.Template(source, trim_blocks=True, lstrip_blocks=True)

    def render(self, *args: t.Any, **kwargs: t.Any) -> str:
        return self.template.render(*args, **kwargs).strip()


def build_system_prompt(
    toolset: Toolset | None = None,
    *,
    workspace: PathLikes = ".",
    template: Template | str | None = None,
) -> str:
    """Render the system prompt for a chat session.

    Args:
        toolset: Tools offered in this session, None or empty for plain chat.
        workspace: Workspace root shown to the model.
        template: Custom template or template source; defaults to the
            built-in prompt.
    """
    if template is None:
        template = J2Template(DEFAULT_SYSTEM_PROMPT)
    elif isinstance(template, str):
        template = J2Template(template)

    tools = [
        (name, tool.__function_description__) for name, tool in (toolset or {}).items()
    ]
    prompt = template.render(tools=tools, workspace=str(workspace))
    logger.debug("Rendered system prompt (%s chars, %s tools)", len(prompt), len(tools))
    return prompt
