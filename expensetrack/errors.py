"""Exception hierarchy shared by the assistant, the store and the HTTP layer."""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for every error raised by :mod:`expensetrack`."""


class ConfigError(AssistantError, ValueError):
    pass


class AuthError(AssistantError):
    pass


class ToolArgumentsError(AssistantError):
    """A tool call named an unknown tool or carried arguments that failed validation."""

    def __init__(self, tool: str, detail: str) -> None:
        super().__init__(f"Invalid call to '{tool}': {detail}")
        self.tool = tool
        self.detail = detail


class UpstreamError(AssistantError):
    """The language model provider failed or returned an unusable response."""


class TurnLimitError(AssistantError):
    pass


__all__ = [
    "AssistantError",
    "AuthError",
    "ConfigError",
    "ToolArgumentsError",
    "TurnLimitError",
    "UpstreamError",
]
