from __future__ import annotations


class A2GError(Exception):
    """Base exception for A2G-CLI errors."""

    def __init__(self, msg: str, /):
        super().__init__(msg)
        self.message = msg

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class TransportError(A2GError):
    """Exception raised when the chat backend cannot be reached or answers
    with an error or a malformed response."""


class ToolCallError(A2GError):
    """Exception raised for errors during tool calls."""


class ToolArgumentError(ToolCallError):
    """Exception raised when tool call arguments cannot be decoded or do
    not match the tool's parameter schema."""


class RoundLimitExceeded(A2GError):
    """Exception raised when the backend keeps requesting tools past the
    round limit without producing an answer."""

    def __init__(self, rounds: int, /):
        super().__init__(
            f"No final answer after {rounds} rounds of tool calls; "
            "raise settings.max_tool_rounds or rephrase the request"
        )
        self.rounds = rounds


class ConfigError(A2GError):
    """Exception raised for missing or invalid configuration."""
