from __future__ import annotations

from typing import Optional


class ElaraError(RuntimeError):
    """Base class for errors raised by this package."""


class BackendError(ElaraError):
    """Raised when the recommendation backend is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class LLMError(ElaraError):
    """Raised when the language-model provider returns an error or malformed response."""


class ToolError(ElaraError):
    """Raised for unknown tools or tool arguments that fail validation."""
