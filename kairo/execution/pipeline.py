#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Execution pipeline.

Walks a session's plan strictly in order:

    for each objective:      pending -> running -> done | failed
        decompose it
        for each subtask:    pending -> running [-> running] -> done | skipped

A subtask runs through the retry controller; if that pass fails it gets one
more complete pass before it is marked skipped. An objective is done only
when all of its subtasks are done. Failed objectives do not stop the plan.
A stop signal is honoured between subtasks and before each objective. Every
status change is persisted and then emitted as one event, and each run ends
with exactly one ``run-complete`` or ``run-error`` event.
"""

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from kairo import config
from kairo.debug_logger import get_logger
from kairo.execution import events as ev
from kairo.execution.decomposer import DecompositionError, Decomposer
from kairo.execution.events import EventSink, EventStream
from kairo.execution.planner import Planner
from kairo.execution.project_modeler import ProjectModeler
from kairo.execution.retry import RetryController
from kairo.llm.client import CompletionClient, CompletionError
from kairo.models import (
    Message,
    MessageRole,
    MessageType,
    Objective,
    ObjectiveStatus,
    SessionStatus,
    SubtaskEntry,
    SubtaskGroup,
    SubtaskStatus,
)
from kairo.state.store import StateStore, StateStoreError
from kairo.tools.dispatcher import ToolDispatcher
from kairo.tools.registry import ToolRegistry

CANCELLED_REASON = "cancelled"
RESULT_PREVIEW_CHARS = 2000

SUMMARY_PROMPT = """You report on finished automation runs.
Given the request and the ordered status history, write a short plain-text
summary for the user: what was done, what failed or was skipped, and what
they may want to check. No JSON, no code fences."""


class RunCancelled(Exception):
    """The session's stop signal was observed mid-run."""

    def __init__(self, objective_id: str):
        self.objective_id = objective_id
        super().__init__(f"Run cancelled at objective {objective_id}")


@dataclass
class PipelineConfig:
    """Per-pipeline execution settings."""

    max_attempts: int = config.MAX_TOOL_ATTEMPTS
    backoff_base: float = config.RETRY_BACKOFF_BASE
    passes: int = 2
    summarize_with_completion: bool = True


@dataclass
class RunResult:
    session_id: str
    success: bool
    summary: str = ""
    cancelled: bool = False
    error: Optional[str] = None
    objectives: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "success": self.success,
            "summary": self.summary,
            "cancelled": self.cancelled,
            "error": self.error,
            "objectives": self.objectives,
        }


@dataclass
class _RunContext:
    session_id: str
    request: str
    root: Path
    events: EventStream
    dispatcher: ToolDispatcher
    stop_event: Optional[threading.Event]
    summary: Dict[str, Any] = field(default_factory=dict)
    plan_message: Optional[Message] = None
    objectives: List[Objective] = field(default_factory=list)

    @property
    def stopped(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()


def _preview(data: Any) -> Any:
    """Keep persisted tool results small."""
    text = json.dumps(data, default=str)
    if len(text) <= RESULT_PREVIEW_CHARS:
        return data
    return text[:RESULT_PREVIEW_CHARS] + "...[truncated]"


class ExecutionPipeline:
    """Plan, decompose and execute one request for one session."""

    def __init__(
        self,
        client: CompletionClient,
        registry: ToolRegistry,
        store: StateStore,
        config: Optional[PipelineConfig] = None,
        emit: Optional[EventSink] = None,
        sleep: Callable[[float], None] = time.sleep,
        modeler: Optional[ProjectModeler] = None,
        planner: Optional[Planner] = None,
        decomposer: Optional[Decomposer] = None,
    ):
        self.client = client
        self.registry = registry
        self.store = store
        self.config = config or PipelineConfig()
        self.emit = emit
        self._sleep = sleep
        self.modeler = modeler or ProjectModeler(client)
        self.planner = planner or Planner(client, store)
        self.decomposer = decomposer or Decomposer(client, registry)
        self.logger = get_logger()

    # ---------- entry point ----------

    def run(self, session_id: str, request: str, project_root: Path,
            stop_event: Optional[threading.Event] = None) -> RunResult:
        root = Path(project_root).resolve()
        ctx = _RunContext(
            session_id=session_id,
            request=request,
            root=root,
            events=EventStream(session_id, self.emit),
            dispatcher=ToolDispatcher(self.registry, root, store=self.store, session_id=session_id),
            stop_event=stop_event,
        )
        self.logger.log("pipeline", "RUN_START", {
            "session_id": session_id, "request": request, "root": str(root),
        }, "INFO")

        try:
            return self._run(ctx)
        except Exception as e:
            return self._fail_run(ctx, e)

    def _run(self, ctx: _RunContext) -> RunResult:
        self.store.add_message(ctx.session_id, MessageRole.USER, MessageType.TEXT, {"text": ctx.request})
        self.store.update_session(ctx.session_id, status=SessionStatus.RUNNING)

        ctx.summary = self.modeler.summarize(ctx.root, ctx.request)
        plan = self.planner.create_plan(ctx.session_id, ctx.request, ctx.summary)
        ctx.plan_message = plan.message
        ctx.objectives = plan.objectives
        ctx.events.emit(
            ev.PLAN_CREATED,
            objectives=[o.to_dict() for o in plan.objectives],
            fallback=plan.used_fallback,
            messageId=plan.message.id,
        )

        success = True
        completed: List[str] = []
        try:
            for objective in ctx.objectives:
                self._check_stop(ctx, objective)
                if self._run_objective(ctx, objective, completed) is ObjectiveStatus.DONE:
                    completed.append(objective.text)
                else:
                    success = False
        except RunCancelled as e:
            self.logger.log("pipeline", "RUN_CANCELLED", {"objective_id": e.objective_id}, "INFO")
            return self._complete_run(ctx, False, True)

        return self._complete_run(ctx, success, False)

    def _check_stop(self, ctx: _RunContext, objective: Objective) -> None:
        """Fail ``objective`` as cancelled and raise when the stop signal is set."""
        if ctx.stopped:
            self._set_objective(ctx, objective, ObjectiveStatus.FAILED, CANCELLED_REASON)
            raise RunCancelled(objective.id)

    # ---------- objectives ----------

    def _run_objective(self, ctx: _RunContext, objective: Objective, completed: List[str]) -> ObjectiveStatus:
        self._set_objective(ctx, objective, ObjectiveStatus.RUNNING)

        try:
            entries = self.decomposer.decompose(ctx.request, ctx.summary, objective, ctx.root, completed)
        except DecompositionError as e:
            self._set_objective(ctx, objective, ObjectiveStatus.FAILED, str(e))
            return ObjectiveStatus.FAILED

        group = SubtaskGroup(objective.id, entries)
        self.store.save_group(ctx.session_id, group, objective)

        for position, entry in group.positions().items():
            self._check_stop(ctx, objective)
            self._run_entry(ctx, objective, group, position, entry)

        if group.all_done:
            self._set_objective(ctx, objective, ObjectiveStatus.DONE)
            return ObjectiveStatus.DONE

        skipped = sum(1 for e in group.entries if e.status is SubtaskStatus.SKIPPED)
        self._set_objective(ctx, objective, ObjectiveStatus.FAILED, f"{skipped} subtask(s) skipped")
        return ObjectiveStatus.FAILED

    def _set_objective(self, ctx: _RunContext, objective: Objective, status: ObjectiveStatus,
                       reason: Optional[str] = None) -> None:
        objective.advance(status, reason)
        self.store.save_objective(objective)
        if ctx.plan_message is not None:
            self.store.update_message_payload(ctx.session_id, ctx.plan_message.id, {
                "objectives": [
                    {"id": o.id, "order": o.order, "text": o.text, "status": o.status.value}
                    for o in ctx.objectives
                ],
            })
        self.logger.log_task_status("objective", objective.id, status.value, {"reason": reason} if reason else None)
        ctx.events.emit(
            ev.OBJECTIVE_STATUS,
            objectiveId=objective.id,
            order=objective.order,
            text=objective.text,
            status=status.value,
            reason=reason,
        )

    # ---------- subtasks ----------

    def _run_entry(self, ctx: _RunContext, objective: Objective, group: SubtaskGroup,
                   position: int, entry: SubtaskEntry) -> None:
        step = self.store.add_message(ctx.session_id, MessageRole.AGENT, MessageType.STEP, {
            "objectiveId": objective.id,
            "position": position,
            "subtask": entry.name,
            "tool": entry.tool,
            "parameters": entry.parameters,
            "status": entry.status.value,
        })

        for pass_number in range(1, self.config.passes + 1):
            self._set_subtask(ctx, objective, group, position, entry, SubtaskStatus.RUNNING, pass_number)

            def notify(attempt: int, error: str, _pass: int = pass_number) -> None:
                ctx.events.emit(
                    ev.TOOL_RETRY,
                    objectiveId=objective.id,
                    position=position,
                    tool=entry.tool,
                    attempt=attempt,
                    maxAttempts=self.config.max_attempts,
                    error=error,
                    **{"pass": _pass},
                )

            controller = RetryController(
                max_attempts=self.config.max_attempts,
                backoff_base=self.config.backoff_base,
                sleep=self._sleep,
                on_retry=notify,
            )
            outcome = controller.run(ctx.dispatcher, entry.tool, entry.parameters)
            entry.attempts += outcome.attempts

            if outcome.success:
                entry.result = _preview(outcome.result.data)
                entry.error = None
                self._set_subtask(ctx, objective, group, position, entry, SubtaskStatus.DONE, pass_number)
                break
            entry.error = outcome.result.error
        else:
            self._set_subtask(ctx, objective, group, position, entry, SubtaskStatus.SKIPPED, self.config.passes)

        self.store.update_message_payload(ctx.session_id, step.id, {
            "status": entry.status.value,
            "attempts": entry.attempts,
            "result": entry.result,
            "error": entry.error,
        })

    def _set_subtask(self, ctx: _RunContext, objective: Objective, group: SubtaskGroup, position: int,
                     entry: SubtaskEntry, status: SubtaskStatus, pass_number: int) -> None:
        entry.advance(status)
        self.store.save_group(ctx.session_id, group)
        self.logger.log_task_status("subtask", f"{group.id}:{position}", status.value, {
            "tool": entry.tool, "pass": pass_number, "error": entry.error,
        })
        ctx.events.emit(
            ev.SUBTASK_STATUS,
            objectiveId=objective.id,
            groupId=group.id,
            position=position,
            name=entry.name,
            tool=entry.tool,
            status=status.value,
            error=entry.error if status is SubtaskStatus.SKIPPED else None,
            **{"pass": pass_number},
        )

    # ---------- completion ----------

    def _complete_run(self, ctx: _RunContext, success: bool, cancelled: bool) -> RunResult:
        summary = self._summarize(ctx, success, cancelled)
        self.store.add_message(ctx.session_id, MessageRole.ASSISTANT, MessageType.SUMMARY, {
            "text": summary,
            "success": success,
            "cancelled": cancelled,
        })
        self.store.update_session(
            ctx.session_id,
            status=SessionStatus.STOPPED if cancelled else SessionStatus.IDLE,
        )
        objectives = [o.to_dict() for o in ctx.objectives]
        ctx.events.emit(ev.RUN_COMPLETE, success=success, cancelled=cancelled, summary=summary,
                        objectives=objectives)
        self.logger.log("pipeline", "RUN_COMPLETE", {
            "session_id": ctx.session_id, "success": success, "cancelled": cancelled,
        }, "INFO")
        return RunResult(ctx.session_id, success, summary, cancelled, None, objectives, list(ctx.events.history))

    def _summarize(self, ctx: _RunContext, success: bool, cancelled: bool) -> str:
        fallback = self.fallback_summary(ctx.objectives, success, cancelled)
        if not self.config.summarize_with_completion:
            return fallback
        history = [
            {k: v for k, v in event.items() if k not in {"session", "timestamp", "objectives"}}
            for event in ctx.events.history
        ]
        prompt = (
            f"Request: {ctx.request}\n"
            f"Outcome: {'success' if success else 'incomplete'}{' (stopped by user)' if cancelled else ''}\n"
            f"History:\n{json.dumps(history, indent=1, default=str)[:12000]}"
        )
        try:
            text = self.client.complete(SUMMARY_PROMPT, [{"role": "user", "content": prompt}])
        except CompletionError as e:
            self.logger.log("pipeline", "SUMMARY_FAILED", {"error": str(e)}, "WARNING")
            return fallback
        return text.strip() or fallback

    @staticmethod
    def fallback_summary(objectives: List[Objective], success: bool, cancelled: bool) -> str:
        done = sum(1 for o in objectives if o.status is ObjectiveStatus.DONE)
        failed = [o for o in objectives if o.status is ObjectiveStatus.FAILED]
        pending = sum(1 for o in objectives if o.status is ObjectiveStatus.PENDING)
        lines = [f"Completed {done} of {len(objectives)} objectives."]
        for objective in failed:
            lines.append(f"- Failed: {objective.text} ({objective.reason or 'failed'})")
        if pending:
            lines.append(f"- Not started: {pending}")
        if cancelled:
            lines.append("Run was stopped before finishing.")
        elif success:
            lines.append("All objectives finished successfully.")
        return "\n".join(lines)

    def _fail_run(self, ctx: _RunContext, error: Exception) -> RunResult:
        self.logger.log_error("pipeline", error, {"session_id": ctx.session_id})
        message = f"{type(error).__name__}: {error}"
        try:
            self.store.add_message(ctx.session_id, MessageRole.AGENT, MessageType.ERROR, {"error": message})
            self.store.update_session(ctx.session_id, status=SessionStatus.IDLE)
        except StateStoreError as store_error:
            self.logger.log_error("pipeline", store_error, {"stage": "record_run_error"})
        if not ctx.events.finished:
            ctx.events.emit(ev.RUN_ERROR, error=message)
        return RunResult(
            ctx.session_id, False, "", False, message,
            [o.to_dict() for o in ctx.objectives], list(ctx.events.history),
        )
