#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Decomposer: expand one objective into tool-bound subtasks.

Every proposed subtask is checked against the registry (tool exists,
parameters fit the schema, paths stay inside the project root) before
anything runs. A rejected decomposition is regenerated once with the list of
problems attached; a second rejection raises ``DecompositionError``.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from kairo import config
from kairo.debug_logger import get_logger
from kairo.llm.client import CompletionClient
from kairo.llm.payload import PayloadExtractionError, extract_with_cleanup
from kairo.models import Objective, SubtaskEntry
from kairo.tools.dispatcher import normalize_params
from kairo.tools.errors import ToolValidationError
from kairo.tools.registry import ToolRegistry


class DecompositionError(RuntimeError):
    """The objective could not be turned into a valid subtask list."""

    def __init__(self, objective_id: str, problems: List[str]):
        self.objective_id = objective_id
        self.problems = problems
        super().__init__("Decomposition failed: " + "; ".join(problems))


def _system_prompt(registry: ToolRegistry) -> str:
    return f"""You turn one objective into concrete tool calls against a project.
Available tools:
{registry.describe()}

Rules:
- Use only the tools listed above, with exactly the parameters they accept.
- Paths are relative to the project root and must stay inside it.
- Produce {config.MIN_SUBTASKS}-{config.MAX_SUBTASKS} subtasks in execution order.
- write_file content must be the complete file.
Reply with JSON only:
{{"subtasks": [{{"name": "...", "tool": "...", "parameters": {{}}}}]}}"""


class Decomposer:
    """Expand objectives into validated SubtaskEntry lists."""

    def __init__(self, client: CompletionClient, registry: ToolRegistry,
                 max_regenerations: int = config.DECOMPOSE_REGENERATIONS):
        self.client = client
        self.registry = registry
        self.max_regenerations = max_regenerations
        self.logger = get_logger()

    def validate(self, payload: Any, project_root: Path) -> Tuple[List[SubtaskEntry], List[str]]:
        """Return ``(entries, problems)``; entries are only meaningful when problems is empty."""
        if isinstance(payload, dict):
            payload = payload.get("subtasks", payload.get("steps", payload.get("tasks")))
        if not isinstance(payload, list) or not payload:
            return [], ["response must contain a non-empty 'subtasks' list"]

        entries: List[SubtaskEntry] = []
        problems: List[str] = []
        for index, item in enumerate(payload[:config.MAX_SUBTASKS]):
            if not isinstance(item, dict):
                problems.append(f"subtask #{index + 1} is not an object")
                continue
            tool = item.get("tool")
            name = item.get("name") or item.get("description") or f"{tool} step {index + 1}"
            params = item.get("parameters", item.get("params", {}))
            if not isinstance(tool, str) or tool not in self.registry:
                problems.append(f"subtask #{index + 1}: Unknown tool: {tool}")
                continue
            try:
                params = self.registry.get(tool).validate(normalize_params(tool, params), project_root)
            except ToolValidationError as e:
                problems.append(f"subtask #{index + 1}: {e}")
                continue
            entries.append(SubtaskEntry(str(name), tool, params))
        return entries, problems

    def decompose(self, request: str, summary: Dict[str, Any], objective: Objective,
                  project_root: Path, completed: Optional[List[str]] = None) -> List[SubtaskEntry]:
        """Raises DecompositionError after the regeneration budget is spent.

        ``CompletionError`` from the client propagates to the caller.
        """
        prompt = (
            f"Project summary:\n{json.dumps(summary, indent=2)}\n\n"
            f"Overall request:\n{request}\n\n"
            f"Objectives already finished: {json.dumps(completed or [])}\n\n"
            f"Objective to decompose now:\n{objective.text}"
        )
        messages = [{"role": "user", "content": prompt}]
        system = _system_prompt(self.registry)
        problems: List[str] = []

        for attempt in range(self.max_regenerations + 1):
            text = self.client.complete(system, messages)
            try:
                entries, problems = self.validate(extract_with_cleanup(text), project_root)
            except PayloadExtractionError as e:
                entries, problems = [], [f"unparseable response: {e}"]

            if not problems:
                self.logger.log("decomposer", "DECOMPOSED", {
                    "objective_id": objective.id,
                    "attempt": attempt + 1,
                    "subtasks": [e.to_dict() for e in entries],
                }, "INFO")
                return entries

            self.logger.log("decomposer", "DECOMPOSITION_REJECTED", {
                "objective_id": objective.id,
                "attempt": attempt + 1,
                "problems": problems,
            }, "WARNING")
            messages = messages + [
                {"role": "assistant", "content": text},
                {"role": "user", "content": (
                    "That decomposition was rejected:\n- " + "\n- ".join(problems)
                    + f"\nRegenerate it using only these tools: {', '.join(self.registry.names())}."
                )},
            ]

        raise DecompositionError(objective.id, problems)
