#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unified error taxonomy for tool execution.

Tool handlers raise ordinary Python exceptions; the dispatcher turns them into
a ``ToolError`` so the retry controller and the pipeline can decide whether a
failure is worth another attempt.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

# Case-insensitive substrings that mark an error as terminal
TERMINAL_ERROR_PATTERNS = (
    "unknown tool",
    "not found",
    "permission denied",
    "invalid parameters",
    "syntax error",
)


class ToolErrorType(Enum):
    """Standardized error categories for tool execution failures."""

    # Retryable transient errors
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    NETWORK = "network"

    # Non-retryable caller/environment issues
    UNKNOWN_TOOL = "unknown_tool"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    SYNTAX_ERROR = "syntax_error"
    VALIDATION_ERROR = "validation_error"

    CONFLICT = "conflict"
    UNKNOWN = "unknown"

    @property
    def is_retryable(self) -> bool:
        return self not in {
            ToolErrorType.UNKNOWN_TOOL,
            ToolErrorType.NOT_FOUND,
            ToolErrorType.PERMISSION_DENIED,
            ToolErrorType.SYNTAX_ERROR,
            ToolErrorType.VALIDATION_ERROR,
        }


class ToolValidationError(ValueError):
    """Raised when a tool call is rejected before execution."""

    error_type = ToolErrorType.VALIDATION_ERROR

    def __init__(self, message: str):
        if not message.lower().startswith(("invalid parameters", "unknown tool")):
            message = f"Invalid parameters: {message}"
        super().__init__(message)


class UnknownToolError(ToolValidationError):
    error_type = ToolErrorType.UNKNOWN_TOOL

    def __init__(self, name: str):
        self.tool_name = name
        super().__init__(f"Unknown tool: {name}")


class PathOutsideRootError(ToolValidationError):
    """A path parameter resolved outside the project root."""

    def __init__(self, path: str, root: Any):
        self.path = path
        self.root = str(root)
        super().__init__(f"path '{path}' resolves outside the project root {self.root}")


class ToolExecutionError(RuntimeError):
    """Raised by a handler when the operation ran but did not succeed."""

    def __init__(self, message: str, error_type: ToolErrorType = ToolErrorType.TRANSIENT,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.error_type = error_type
        self.context = context or {}


def is_terminal_message(message: Optional[str]) -> bool:
    """Whether an error text falls into one of the terminal categories."""
    if not message:
        return False
    lowered = message.lower()
    return any(pattern in lowered for pattern in TERMINAL_ERROR_PATTERNS)


@dataclass
class ToolError:
    """Structured representation of a tool failure."""

    error_type: ToolErrorType
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    original_error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.error_type.is_retryable and not is_terminal_message(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_type": self.error_type.value,
            "retryable": self.retryable,
            "context": self.context,
            "original_error": self.original_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolError":
        try:
            error_type = ToolErrorType(data.get("error_type", "unknown"))
        except ValueError:
            error_type = ToolErrorType.UNKNOWN
        return cls(
            error_type=error_type,
            message=data.get("error", data.get("message", "Unknown error")),
            context=data.get("context", {}),
            original_error=data.get("original_error"),
        )

    @classmethod
    def from_exception(cls, exc: BaseException, tool_name: str) -> "ToolError":
        error_type = getattr(exc, "error_type", None) or classify_exception(exc)
        context = {"exception_type": type(exc).__name__, "tool": tool_name}
        context.update(getattr(exc, "context", {}) or {})
        return cls(
            error_type=error_type,
            message=str(exc) or type(exc).__name__,
            context=context,
            original_error=repr(exc),
        )


def classify_exception(exc: BaseException) -> ToolErrorType:
    """Map a Python exception onto a ToolErrorType."""
    exc_msg = str(exc).lower()

    if isinstance(exc, FileNotFoundError) or "no such file" in exc_msg:
        return ToolErrorType.NOT_FOUND
    if isinstance(exc, PermissionError) or "permission denied" in exc_msg:
        return ToolErrorType.PERMISSION_DENIED
    if isinstance(exc, FileExistsError) or "already exists" in exc_msg:
        return ToolErrorType.CONFLICT
    if isinstance(exc, TimeoutError) or "timed out" in exc_msg or "timeout" in exc_msg:
        return ToolErrorType.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ToolErrorType.NETWORK
    if isinstance(exc, SyntaxError):
        return ToolErrorType.SYNTAX_ERROR
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return ToolErrorType.VALIDATION_ERROR
    if isinstance(exc, OSError):
        return ToolErrorType.TRANSIENT
    return ToolErrorType.UNKNOWN
