"""
Execution package: planning, decomposition and tool execution.

This package contains:
- Project modeling: cached structural summary of the target project
- Planning: ordered objectives for one request
- Decomposition: validated, tool-bound subtasks per objective
- Execution: the two-level pipeline and the single-loop agent
"""

from kairo.execution.decomposer import DecompositionError, Decomposer
from kairo.execution.events import EventStream
from kairo.execution.pipeline import ExecutionPipeline, PipelineConfig, RunCancelled, RunResult
from kairo.execution.planner import FALLBACK_PLAN, Plan, Planner
from kairo.execution.project_modeler import ProjectModeler
from kairo.execution.retry import RetryController, RetryOutcome
from kairo.execution.single_loop import LoopResult, SingleLoopAgent

__all__ = [
    # Modeling and planning
    "ProjectModeler",
    "Planner",
    "Plan",
    "FALLBACK_PLAN",
    # Decomposition
    "Decomposer",
    "DecompositionError",
    # Execution
    "ExecutionPipeline",
    "PipelineConfig",
    "RunResult",
    "RunCancelled",
    "SingleLoopAgent",
    "LoopResult",
    "RetryController",
    "RetryOutcome",
    "EventStream",
]
