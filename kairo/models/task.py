#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Objective and subtask models for kairo.

An Objective is one high-level plan step. Its decomposition is a SubtaskGroup
holding ordered SubtaskEntry values, each bound to a registry tool. Status
changes go through ``advance`` so that no entity ever moves backwards out of
a terminal state.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ObjectiveStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class SubtaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    SKIPPED = "skipped"


OBJECTIVE_TRANSITIONS = {
    ObjectiveStatus.PENDING: {ObjectiveStatus.RUNNING, ObjectiveStatus.FAILED},
    ObjectiveStatus.RUNNING: {ObjectiveStatus.DONE, ObjectiveStatus.FAILED},
    ObjectiveStatus.DONE: set(),
    ObjectiveStatus.FAILED: set(),
}

# running -> running is the second independent retry pass
SUBTASK_TRANSITIONS = {
    SubtaskStatus.PENDING: {SubtaskStatus.RUNNING},
    SubtaskStatus.RUNNING: {SubtaskStatus.RUNNING, SubtaskStatus.DONE, SubtaskStatus.SKIPPED},
    SubtaskStatus.DONE: set(),
    SubtaskStatus.SKIPPED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change would violate the lifecycle."""


def can_transition(current: Enum, target: Enum) -> bool:
    if isinstance(current, ObjectiveStatus) and isinstance(target, ObjectiveStatus):
        return target in OBJECTIVE_TRANSITIONS[current]
    if isinstance(current, SubtaskStatus) and isinstance(target, SubtaskStatus):
        return target in SUBTASK_TRANSITIONS[current]
    return False


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Objective:
    """A single high-level step of a session's plan."""

    def __init__(
        self,
        session_id: str,
        text: str,
        order: int,
        objective_id: Optional[str] = None,
        depends_on: Optional[List[int]] = None,
    ):
        self.id = objective_id or _new_id("obj")
        self.session_id = session_id
        self.text = text
        self.order = order
        self.status = ObjectiveStatus.PENDING
        self.subtask_group_id: Optional[str] = None
        self.reason: Optional[str] = None
        self.depends_on = depends_on or []
        self.created_at = datetime.now().isoformat()
        self.updated_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return not OBJECTIVE_TRANSITIONS[self.status]

    def advance(self, status: ObjectiveStatus, reason: Optional[str] = None) -> None:
        if not can_transition(self.status, status):
            raise InvalidTransitionError(
                f"Objective {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if reason:
            self.reason = reason
        self.updated_at = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "text": self.text,
            "order": self.order,
            "status": self.status.value,
            "subtask_group_id": self.subtask_group_id,
            "reason": self.reason,
            "depends_on": self.depends_on,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Objective':
        objective = cls(
            session_id=data["session_id"],
            text=data["text"],
            order=data["order"],
            objective_id=data["id"],
            depends_on=data.get("depends_on", []),
        )
        objective.status = ObjectiveStatus(data.get("status", "pending"))
        objective.subtask_group_id = data.get("subtask_group_id")
        objective.reason = data.get("reason")
        objective.created_at = data.get("created_at", objective.created_at)
        objective.updated_at = data.get("updated_at", objective.created_at)
        return objective


class SubtaskEntry:
    """One concrete tool invocation inside a SubtaskGroup."""

    def __init__(self, name: str, tool: str, parameters: Optional[Dict[str, Any]] = None):
        self.name = name
        self.tool = tool
        self.parameters = dict(parameters or {})
        self.status = SubtaskStatus.PENDING
        self.run_count = 0  # times the entry entered RUNNING
        self.attempts = 0  # dispatch attempts across all passes
        self.result: Any = None
        self.error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return not SUBTASK_TRANSITIONS[self.status]

    def advance(self, status: SubtaskStatus) -> None:
        if not can_transition(self.status, status):
            raise InvalidTransitionError(
                f"Subtask '{self.name}': cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if status is SubtaskStatus.RUNNING:
            self.run_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tool": self.tool,
            "parameters": self.parameters,
            "status": self.status.value,
            "run_count": self.run_count,
            "attempts": self.attempts,
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubtaskEntry':
        entry = cls(data.get("name", ""), data["tool"], data.get("parameters", {}))
        entry.status = SubtaskStatus(data.get("status", "pending"))
        entry.run_count = data.get("run_count", 0)
        entry.attempts = data.get("attempts", 0)
        entry.result = data.get("result")
        entry.error = data.get("error")
        return entry


class SubtaskGroup:
    """The decomposition of exactly one Objective. Positions start at 0."""

    def __init__(self, objective_id: str, entries: Optional[List[SubtaskEntry]] = None,
                 group_id: Optional[str] = None):
        self.id = group_id or _new_id("grp")
        self.objective_id = objective_id
        self.entries: List[SubtaskEntry] = list(entries or [])
        self.created_at = datetime.now().isoformat()

    def positions(self) -> Dict[int, SubtaskEntry]:
        return {index: entry for index, entry in enumerate(self.entries)}

    @property
    def all_done(self) -> bool:
        return bool(self.entries) and all(e.status is SubtaskStatus.DONE for e in self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "objective_id": self.objective_id,
            "entries": {str(pos): entry.to_dict() for pos, entry in self.positions().items()},
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubtaskGroup':
        raw_entries = data.get("entries", {})
        if isinstance(raw_entries, dict):
            ordered = [raw_entries[key] for key in sorted(raw_entries, key=int)]
        else:
            ordered = list(raw_entries)
        group = cls(
            objective_id=data["objective_id"],
            entries=[SubtaskEntry.from_dict(item) for item in ordered],
            group_id=data["id"],
        )
        group.created_at = data.get("created_at", group.created_at)
        return group
