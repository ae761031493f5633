#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Single-loop agent.

The lighter execution mode: no plan and no decomposition. Each iteration
asks the completion service for exactly one action, runs it and feeds the
result back into the transcript, until the model reports completion or the
iteration cap is reached.
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
from kairo.execution.events import EventSink, EventStream
from kairo.execution.retry import RetryController
from kairo.llm.client import CompletionClient
from kairo.llm.payload import PayloadExtractionError, extract_with_cleanup
from kairo.models import MessageRole, MessageType, SessionStatus
from kairo.state.store import StateStore, StateStoreError
from kairo.tools.dispatcher import ToolDispatcher
from kairo.tools.registry import ToolRegistry

FEEDBACK_CHARS = 6000

NO_TOOLS_CORRECTION = (
    "You reported completion without running any tool successfully. "
    "Inspect or change the project with a tool call first, then report completion."
)


def _system_prompt(registry: ToolRegistry) -> str:
    return f"""You are an autonomous coding agent working inside one project directory.
Each reply is exactly ONE JSON object and nothing else.

To run a tool:
{{"tool": "<name>", "explanation": "<why>", "parameters": {{...}}}}

When the request is fully handled:
{{"complete": true, "summary": "<what you did>"}}

Available tools:
{registry.describe()}

Paths are relative to the project root. You will see each tool result before
choosing the next action."""


@dataclass
class LoopResult:
    session_id: str
    success: bool
    summary: str = ""
    iterations: int = 0
    tools_used: int = 0
    cancelled: bool = False
    error: Optional[str] = None
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "success": self.success,
            "summary": self.summary,
            "iterations": self.iterations,
            "tools_used": self.tools_used,
            "cancelled": self.cancelled,
            "error": self.error,
        }


class SingleLoopAgent:
    """Propose one tool call, execute it, feed the result back. Repeat."""

    def __init__(
        self,
        client: CompletionClient,
        registry: ToolRegistry,
        store: StateStore,
        max_iterations: int = config.MAX_LOOP_ITERATIONS,
        emit: Optional[EventSink] = None,
        max_parse_corrections: int = config.MAX_PARSE_CORRECTIONS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.registry = registry
        self.store = store
        self.max_iterations = max_iterations
        self.emit = emit
        self.max_parse_corrections = max_parse_corrections
        self._sleep = sleep
        self.logger = get_logger()

    def run(self, session_id: str, request: str, project_root: Path,
            stop_event: Optional[threading.Event] = None) -> LoopResult:
        root = Path(project_root).resolve()
        events = EventStream(session_id, self.emit)
        try:
            return self._run(session_id, request, root, events, stop_event)
        except Exception as e:
            self.logger.log_error("single_loop", e, {"session_id": session_id})
            message = f"{type(e).__name__}: {e}"
            try:
                self.store.add_message(session_id, MessageRole.AGENT, MessageType.ERROR, {"error": message})
                self.store.update_session(session_id, status=SessionStatus.IDLE)
            except StateStoreError as store_error:
                self.logger.log_error("single_loop", store_error, {"stage": "record_run_error"})
            if not events.finished:
                events.emit(ev.RUN_ERROR, error=message)
            return LoopResult(session_id, False, error=message, events=list(events.history))

    def _run(self, session_id: str, request: str, root: Path, events: EventStream,
             stop_event: Optional[threading.Event]) -> LoopResult:
        self.store.add_message(session_id, MessageRole.USER, MessageType.TEXT, {"text": request})
        self.store.update_session(session_id, status=SessionStatus.RUNNING)

        dispatcher = ToolDispatcher(self.registry, root, store=self.store, session_id=session_id)
        system = _system_prompt(self.registry)
        transcript: List[Dict[str, str]] = [{"role": "user", "content": f"Request: {request}"}]
        tools_used = 0
        iteration = 0
        summary = None
        cancelled = False

        while iteration < self.max_iterations:
            if stop_event is not None and stop_event.is_set():
                cancelled = True
                break
            iteration += 1

            action = self._next_action(system, transcript)
            if action is None:
                continue

            if action.get("complete"):
                if tools_used == 0:
                    self.logger.log("single_loop", "EARLY_COMPLETION_REJECTED", {"iteration": iteration}, "WARNING")
                    transcript.append({"role": "user", "content": NO_TOOLS_CORRECTION})
                    continue
                summary = str(action.get("summary") or "Task completed.")
                break

            if self._execute(session_id, iteration, action, dispatcher, transcript, events):
                tools_used += 1

        if cancelled:
            summary = f"Stopped after {iteration} iterations"
        elif summary is None:
            summary = f"Task completed after {iteration} iterations (max reached)"

        success = not cancelled
        self.store.add_message(session_id, MessageRole.ASSISTANT, MessageType.SUMMARY, {
            "text": summary,
            "success": success,
            "cancelled": cancelled,
            "iterations": iteration,
            "toolsUsed": tools_used,
        })
        self.store.update_session(session_id, status=SessionStatus.STOPPED if cancelled else SessionStatus.IDLE)
        events.emit(ev.RUN_COMPLETE, success=success, cancelled=cancelled, summary=summary,
                    iterations=iteration, toolsUsed=tools_used)
        self.logger.log("single_loop", "LOOP_COMPLETE", {
            "session_id": session_id, "iterations": iteration, "tools_used": tools_used,
        }, "INFO")
        return LoopResult(session_id, success, summary, iteration, tools_used, cancelled,
                          events=list(events.history))

    def _next_action(self, system: str, transcript: List[Dict[str, str]]) -> Optional[Dict[str, Any]]:
        """Ask for one action; unparseable replies get a corrective turn, up to the allowance."""
        for correction in range(self.max_parse_corrections + 1):
            text = self.client.complete(system, transcript)
            transcript.append({"role": "assistant", "content": text})
            try:
                action = extract_with_cleanup(text)
            except PayloadExtractionError as e:
                problem = f"Could not parse your reply as JSON ({e})."
            else:
                if isinstance(action, dict) and (action.get("complete") or isinstance(action.get("tool"), str)):
                    return action
                problem = "Your reply must contain either a \"tool\" or \"complete\": true."

            self.logger.log("single_loop", "ACTION_PARSE_FAILED", {
                "correction": correction + 1, "response": text[:500],
            }, "WARNING")
            transcript.append({
                "role": "user",
                "content": problem + " Reply with exactly one JSON object as described.",
            })
        return None

    def _execute(self, session_id: str, iteration: int, action: Dict[str, Any], dispatcher: ToolDispatcher,
                 transcript: List[Dict[str, str]], events: EventStream) -> bool:
        tool = action["tool"]
        params = action.get("parameters", action.get("params", {}))
        explanation = str(action.get("explanation") or "")
        position = iteration - 1

        step = self.store.add_message(session_id, MessageRole.AGENT, MessageType.STEP, {
            "iteration": iteration,
            "tool": tool,
            "explanation": explanation,
            "parameters": params,
            "status": "running",
        })
        events.emit(ev.SUBTASK_STATUS, objectiveId=None, position=position, name=explanation or tool,
                    tool=tool, status="running", **{"pass": 1})

        def notify(attempt: int, error: str) -> None:
            events.emit(ev.TOOL_RETRY, objectiveId=None, position=position, tool=tool,
                        attempt=attempt, error=error, **{"pass": 1})

        outcome = RetryController(sleep=self._sleep, on_retry=notify).run(dispatcher, tool, params)
        result = outcome.result
        status = "done" if result.success else "skipped"

        self.store.update_message_payload(session_id, step.id, {
            "status": status,
            "attempts": outcome.attempts,
            "result": result.data if result.success else None,
            "error": result.error,
        })
        events.emit(ev.SUBTASK_STATUS, objectiveId=None, position=position, name=explanation or tool,
                    tool=tool, status=status, error=result.error, **{"pass": 1})

        feedback = json.dumps(result.to_dict(), default=str)
        if len(feedback) > FEEDBACK_CHARS:
            feedback = feedback[:FEEDBACK_CHARS] + "...[truncated]"
        transcript.append({"role": "user", "content": f"Result of {tool}: {feedback}"})
        return result.success
