from __future__ import annotations

import logging
import pathlib as pl
import typing as t

import typing_extensions as te

from a2g.exceptions import ToolCallError
from a2g.tools import BaseTool
from a2g.tools import Property
from a2g.tools import Toolset
from a2g.types import PathLikes

logger = logging.getLogger("a2g.tools.filesystem")

SUPPORTED_TEXT_EXTENSIONS = frozenset(
    {
        ".txt", ".md", ".json", ".js", ".ts", ".jsx", ".tsx", ".py", ".java",
        ".cpp", ".c", ".h", ".hpp", ".css", ".scss", ".html", ".xml", ".yaml",
        ".yml", ".toml", ".ini", ".conf", ".sh", ".bash", ".zsh", ".cfg", ".rst",
    }
)  # fmt: skip
"""File extensions the file tools treat as readable text."""

MAX_LIST_ENTRIES = 500
MAX_SEARCH_MATCHES = 100


class FileEntry(te.TypedDict):
    """Directory listing entry."""

    path: str
    """Path relative to the workspace, with `/` separators."""

    type: t.Literal["file", "dir"]

    size: te.NotRequired[int]
    """Size in bytes, files only."""


class WorkspaceTool(BaseTool[..., t.Any]):
    """Base for tools confined to a workspace directory.

    Every path argument is resolved against the workspace root. Paths that
    resolve outside it (absolute paths elsewhere, `..` traversal, symlinks
    pointing out) are refused with ToolCallError.

    Args:
        root: Workspace directory.
    """

    def __init__(self, root: PathLikes):
        self.root = pl.Path(root).expanduser().resolve()

    def resolve(self, path: str) -> pl.Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise ToolCallError(f"Path {path!r} is outside the workspace {self.root}")
        return target

    def relative(self, path: pl.Path) -> str:
        return path.relative_to(self.root).as_posix() or "."


def _is_text_file(path: pl.Path) -> bool:
    return path.suffix.lower() in SUPPORTED_TEXT_EXTENSIONS


class ReadFile(WorkspaceTool):
    __function_description__ = (
        "Read a text file from the workspace. Returns the file content, truncated to "
        "max_bytes."
    )

    def __call__(
        self,
        path: t.Annotated[
            str,
            Property(
                description="File path relative to the workspace root.",
                examples=["README.md", "src/main.py"],
                min_length=1,
            ),
        ],
        max_bytes: t.Annotated[
            int,
            Property(description="Maximum number of bytes to return.", minimum=1),
        ] = 65536,
    ) -> str:
        target = self.resolve(path)
        if not target.is_file():
            raise ToolCallError(f"File not found: {path}")
        if not _is_text_file(target):
            raise ToolCallError(f"Unsupported file type {target.suffix or '(none)'!r}: {path}")

        try:
            data = target.read_bytes()
        except OSError as exc:
            raise ToolCallError(f"Cannot read {path}: {exc.strerror or exc}") from exc

        logger.debug("Read %s bytes from %s", len(data), target)
        text = data[:max_bytes].decode("utf-8", errors="replace")
        if len(data) > max_bytes:
            text += f"\n... [truncated, {len(data) - max_bytes} more bytes]"
        return text


class WriteFile(WorkspaceTool):
    __function_description__ = (
        "Write text to a file in the workspace, creating parent directories and "
        "replacing existing content."
    )

    def __call__(
        self,
        path: t.Annotated[
            str,
            Property(description="File path relative to the workspace root.", min_length=1),
        ],
        content: t.Annotated[str, Property(description="Full new file content.")],
    ) -> str:
        target = self.resolve(path)
        if target.is_dir():
            raise ToolCallError(f"Cannot write {path}: it is a directory")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise ToolCallError(f"Cannot write {path}: {exc.strerror or exc}") from exc

        logger.info("Wrote %s chars to %s", len(content), target)
        return f"Wrote {len(content)} characters to {self.relative(target)}"


class ListFiles(WorkspaceTool):
    __function_description__ = "List files and directories under a workspace directory."

    def __call__(
        self,
        path: t.Annotated[
            str, Property(description="Directory relative to the workspace root.")
        ] = ".",
        recursive: t.Annotated[
            bool, Property(description="Whether to descend into subdirectories.")
        ] = False,
    ) -> list[FileEntry]:
        target = self.resolve(path)
        if not target.is_dir():
            raise ToolCallError(f"Directory not found: {path}")

        children = target.rglob("*") if recursive else target.iterdir()
        entries = []  # type: t.List[FileEntry]
        for child in sorted(children):
            if any(part.startswith(".") for part in child.relative_to(target).parts):
                continue
            if child.is_dir():
                entries.append(FileEntry(path=self.relative(child), type="dir"))
            else:
                entries.append(
                    FileEntry(path=self.relative(child), type="file", size=child.stat().st_size)
                )
            if len(entries) >= MAX_LIST_ENTRIES:
                logger.debug("Listing of %s capped at %s entries", target, MAX_LIST_ENTRIES)
                break
        return entries


class FindFiles(WorkspaceTool):
    __function_description__ = "Find workspace files whose path matches a glob pattern."

    def __call__(
        self,
        pattern: t.Annotated[
            str,
            Property(
                description="Glob pattern relative to the workspace root.",
                examples=["**/*.py", "docs/*.md"],
                min_length=1,
            ),
        ],
    ) -> str:
        matches = []  # type: t.List[str]
        for match in sorted(self.root.glob(pattern)):
            if match.is_file() and self.root in match.resolve().parents:
                matches.append(self.relative(match))
            if len(matches) >= MAX_LIST_ENTRIES:
                break
        if not matches:
            return f"No files match {pattern}"
        return "\n".join(matches)


class SearchText(WorkspaceTool):
    __function_description__ = (
        "Search text files in the workspace for a case-insensitive substring. "
        "Returns matching lines as path:line: text."
    )

    def __call__(
        self,
        query: t.Annotated[str, Property(description="Text to look for.", min_length=1)],
        pattern: t.Annotated[
            str, Property(description="Glob pattern restricting which files are searched.")
        ] = "**/*",
    ) -> str:
        needle = query.lower()
        matches = []  # type: t.List[str]
        for candidate in sorted(self.root.glob(pattern)):
            if not candidate.is_file() or not _is_text_file(candidate):
                continue
            if any(part.startswith(".") for part in candidate.relative_to(self.root).parts):
                continue
            try:
                lines = candidate.read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError as exc:
                logger.debug("Skipping unreadable file %s: %s", candidate, exc)
                continue
            for lineno, line in enumerate(lines, start=1):
                if needle in line.lower():
                    matches.append(f"{self.relative(candidate)}:{lineno}: {line.strip()}")
                    if len(matches) >= MAX_SEARCH_MATCHES:
                        matches.append(f"... [stopped after {MAX_SEARCH_MATCHES} matches]")
                        return "\n".join(matches)
        if not matches:
            return f"No matches for {query!r}"
        return "\n".join(matches)


def default_toolset(root: PathLikes, *, writable: bool = True) -> Toolset:
    """Build the built-in file tool catalog for a workspace.

    Args:
        root: Workspace directory the tools are confined to.
        writable: Include `write_file`.
    """
    tools = [ReadFile(root), ListFiles(root), FindFiles(root), SearchText(root)]
    if writable:
        tools.insert(1, WriteFile(root))
    return Toolset(tools)
