#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""kairo - plan, decompose and execute coding requests against a project."""

from kairo._version import KAIRO_VERSION

__version__ = KAIRO_VERSION

# Core models
from kairo.models import (
    Message,
    MessageRole,
    MessageType,
    Objective,
    ObjectiveStatus,
    Session,
    SessionStatus,
    SubtaskEntry,
    SubtaskGroup,
    SubtaskStatus,
)

# Tools
from kairo.tools import (
    ToolDispatcher,
    ToolRegistry,
    ToolResult,
    build_default_registry,
)

# Completion service
from kairo.llm import CompletionClient, CompletionError, get_client

# State
from kairo.state import StateStore

# Execution
from kairo.execution import (
    Decomposer,
    ExecutionPipeline,
    PipelineConfig,
    Planner,
    ProjectModeler,
    RetryController,
    RunResult,
    SingleLoopAgent,
)

__all__ = [
    "__version__",
    "Message",
    "MessageRole",
    "MessageType",
    "Objective",
    "ObjectiveStatus",
    "Session",
    "SessionStatus",
    "SubtaskEntry",
    "SubtaskGroup",
    "SubtaskStatus",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolResult",
    "build_default_registry",
    "CompletionClient",
    "CompletionError",
    "get_client",
    "StateStore",
    "Decomposer",
    "ExecutionPipeline",
    "PipelineConfig",
    "Planner",
    "ProjectModeler",
    "RetryController",
    "RunResult",
    "SingleLoopAgent",
]
