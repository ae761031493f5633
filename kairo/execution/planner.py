#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Planner: turn a request plus project summary into ordered objectives."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from kairo import config
from kairo.debug_logger import get_logger
from kairo.llm.client import CompletionClient, CompletionError
from kairo.llm.payload import PayloadExtractionError, extract_with_cleanup
from kairo.models import Message, MessageRole, MessageType, Objective
from kairo.state.store import StateStore

FALLBACK_PLAN = [
    "Analyze user requirements and project structure",
    "Implement the requested functionality",
    "Test and refine the implementation",
]

SYSTEM_PROMPT = f"""You are a senior engineer planning work on an existing project.
Break the user's request into {config.MIN_OBJECTIVES}-{config.MAX_OBJECTIVES} short, actionable objectives,
in the order they must be carried out. Each objective is one sentence.
Reply with JSON only:
{{"objectives": [{{"title": "...", "dependsOn": []}}]}}
dependsOn lists the 1-based numbers of earlier objectives this one needs (may be empty)."""


@dataclass
class Plan:
    objectives: List[Objective]
    message: Message
    used_fallback: bool = False


def _objective_text(item: Any) -> Optional[str]:
    if isinstance(item, str):
        text = item
    elif isinstance(item, dict):
        text = item.get("title") or item.get("text") or item.get("description") or item.get("objective")
    else:
        return None
    if not isinstance(text, str):
        return None
    text = " ".join(text.split())
    return text or None


def _depends_on(item: Any, position: int) -> List[int]:
    if not isinstance(item, dict):
        return []
    raw = item.get("dependsOn", item.get("depends_on", []))
    if not isinstance(raw, list):
        return []
    return sorted({int(dep) for dep in raw if isinstance(dep, int) and not isinstance(dep, bool) and 0 < dep < position})


def parse_objectives(payload: Any) -> List[Tuple[str, List[int]]]:
    """Normalize a planner payload into ``(text, depends_on)`` pairs."""
    if isinstance(payload, dict):
        for key in ("objectives", "tasks", "todos", "plan", "steps"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if not isinstance(payload, list):
        return []

    parsed: List[Tuple[str, List[int]]] = []
    for item in payload:
        text = _objective_text(item)
        if text:
            parsed.append((text, _depends_on(item, len(parsed) + 1)))
        if len(parsed) >= config.MAX_OBJECTIVES:
            break
    return parsed


class Planner:
    """Produce and persist a plan for one request."""

    def __init__(self, client: Optional[CompletionClient], store: StateStore):
        self.client = client
        self.store = store
        self.logger = get_logger()

    def generate(self, request: str, summary: Dict[str, Any]) -> Tuple[List[Tuple[str, List[int]]], bool]:
        """Return ``(objectives, used_fallback)``. Always at least one objective."""
        if self.client is not None:
            prompt = (
                f"Project summary:\n{json.dumps(summary, indent=2)}\n\n"
                f"User request:\n{request}"
            )
            try:
                text = self.client.complete(SYSTEM_PROMPT, [{"role": "user", "content": prompt}])
                parsed = parse_objectives(extract_with_cleanup(text))
                if parsed:
                    return parsed, False
                self.logger.log("planner", "PLAN_EMPTY", {"response": text[:500]}, "WARNING")
            except PayloadExtractionError as e:
                self.logger.log("planner", "PLAN_PARSE_FAILED", {"error": str(e), "response": e.text[:500]}, "WARNING")
            except CompletionError as e:
                self.logger.log("planner", "PLAN_REQUEST_FAILED", {"error": str(e)}, "WARNING")

        return [(text, []) for text in FALLBACK_PLAN], True

    def create_plan(self, session_id: str, request: str, summary: Dict[str, Any]) -> Plan:
        parsed, used_fallback = self.generate(request, summary)
        base = self.store.next_order(session_id)
        objectives = [
            Objective(session_id, text, base + index, depends_on=[base + dep - 1 for dep in deps])
            for index, (text, deps) in enumerate(parsed)
        ]
        self.store.add_objectives(session_id, objectives)

        message = self.store.add_message(session_id, MessageRole.AGENT, MessageType.PLAN, {
            "request": request,
            "fallback": used_fallback,
            "objectives": [
                {"id": o.id, "order": o.order, "text": o.text, "status": o.status.value}
                for o in objectives
            ],
        })
        self.logger.log("planner", "PLAN_CREATED", {
            "session_id": session_id,
            "objectives": [o.text for o in objectives],
            "fallback": used_fallback,
        }, "INFO")
        return Plan(objectives, message, used_fallback)
