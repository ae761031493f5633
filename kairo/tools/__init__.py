#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Tool catalogue, dispatcher and error taxonomy."""

from kairo.tools.dispatcher import ToolDispatcher, ToolResult
from kairo.tools.errors import (
    PathOutsideRootError,
    ToolError,
    ToolErrorType,
    ToolExecutionError,
    ToolValidationError,
    UnknownToolError,
    is_terminal_message,
)
from kairo.tools.registry import ToolRegistry, ToolSpec, build_default_registry

__all__ = [
    "ToolDispatcher",
    "ToolResult",
    "PathOutsideRootError",
    "ToolError",
    "ToolErrorType",
    "ToolExecutionError",
    "ToolValidationError",
    "UnknownToolError",
    "is_terminal_message",
    "ToolRegistry",
    "ToolSpec",
    "build_default_registry",
]
