#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Session, message, file edit, objective and subtask models for kairo."""

from kairo.models.session import (
    EditOperation,
    FileEdit,
    Message,
    MessageRole,
    MessageType,
    Session,
    SessionStatus,
)
from kairo.models.task import (
    InvalidTransitionError,
    Objective,
    ObjectiveStatus,
    SubtaskEntry,
    SubtaskGroup,
    SubtaskStatus,
    can_transition,
)

__all__ = [
    "EditOperation",
    "FileEdit",
    "Message",
    "MessageRole",
    "MessageType",
    "Session",
    "SessionStatus",
    "InvalidTransitionError",
    "Objective",
    "ObjectiveStatus",
    "SubtaskEntry",
    "SubtaskGroup",
    "SubtaskStatus",
    "can_transition",
]
