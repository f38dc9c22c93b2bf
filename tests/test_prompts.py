import pathlib as pl

from a2g.prompts import J2Template
from a2g.prompts import build_system_prompt
from a2g.tools.filesystem import default_toolset


def test_default_prompt_without_tools() -> None:
    prompt = build_system_prompt()
    assert prompt.startswith("You are A2G")
    assert "read_file" not in prompt
    assert "workspace" not in prompt


def test_default_prompt_lists_tools(tmp_path: pl.Path) -> None:
    prompt = build_system_prompt(default_toolset(tmp_path, writable=False), workspace=tmp_path)
    assert f"workspace at {tmp_path}" in prompt
    assert "- read_file: Read a text file from the workspace." in prompt
    assert "- write_file" not in prompt
    assert "- search_text:" in prompt


def test_custom_template_source(tmp_path: pl.Path) -> None:
    prompt = build_system_prompt(
        default_toolset(tmp_path),
        workspace="/repo",
        template="Tools: {{ tools | map('first') | join(', ') }} in {{ workspace }}",
    )
    assert prompt == "Tools: read_file, write_file, list_files, find_files, search_text in /repo"


def test_j2_template_strips_output() -> None:
    assert J2Template("  Hello {{ name }}  \n").render(name="Alice") == "Hello Alice"
