"""Exception types shared across the shell.

Only cancellation is allowed to escape a turn; everything here is caught at a
call site and turned into a user-visible string.
"""

from __future__ import annotations

from typing import List


class CogShellError(Exception):
    """Base class for shell errors."""


class BackendError(CogShellError):
    """A generation backend (or the network behind a token) failed transiently."""


class PipelineSyntaxError(CogShellError):
    def __init__(self, segment: str):
        super().__init__(f"Invalid pipeline syntax: {segment!r}")
        self.segment = segment


class UnknownTokenError(CogShellError):
    def __init__(self, name: str, suggestions: List[str]):
        super().__init__(f"Unknown token: {name}")
        self.name = name
        self.suggestions = list(suggestions)


class ToolError(CogShellError):
    """A dynamic tool rejected its input or failed while running."""
