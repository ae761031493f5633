#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Session, message and file edit models for kairo."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SessionStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    AGENT = "agent"


class MessageType(Enum):
    TEXT = "text"
    STEP = "step"
    PLAN = "plan"
    SUMMARY = "summary"
    ERROR = "error"


class Session:
    """Conversation boundary that owns objectives and messages."""

    def __init__(self, name: str = "New session", project: Optional[str] = None,
                 session_id: Optional[str] = None):
        now = datetime.now().isoformat()
        self.id = session_id or uuid.uuid4().hex
        self.name = name
        self.project = project
        self.status = SessionStatus.IDLE
        self.message_count = 0
        self.created_at = now
        self.last_activity_at = now

    def touch(self) -> None:
        self.last_activity_at = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project": self.project,
            "status": self.status.value,
            "message_count": self.message_count,
            "created_at": self.created_at,
            "last_activity_at": self.last_activity_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        session = cls(
            name=data.get("name", "New session"),
            project=data.get("project"),
            session_id=data["id"],
        )
        session.status = SessionStatus(data.get("status", "idle"))
        session.message_count = data.get("message_count", 0)
        session.created_at = data.get("created_at", session.created_at)
        session.last_activity_at = data.get("last_activity_at", session.created_at)
        return session


class Message:
    """Append-only record of user input, agent narration or a structured step."""

    def __init__(self, session_id: str, role: MessageRole, msg_type: MessageType,
                 payload: Any, message_id: Optional[str] = None,
                 created_at: Optional[str] = None):
        self.id = message_id or f"msg_{uuid.uuid4().hex[:12]}"
        self.session_id = session_id
        self.role = role
        self.type = msg_type
        self.payload = payload
        self.created_at = created_at or datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role.value,
            "type": self.type.value,
            "payload": self.payload,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        return cls(
            session_id=data["session_id"],
            role=MessageRole(data["role"]),
            msg_type=MessageType(data["type"]),
            payload=data.get("payload"),
            message_id=data["id"],
            created_at=data.get("created_at"),
        )


class EditOperation(Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    ROLLBACK = "rollback"


class FileEdit:
    """One file change made by a mutating tool, with the content it replaced.

    ``backup`` is the file text before the change; it is ``None`` for
    created files and for files that were binary or too large to keep.
    """

    def __init__(self, session_id: str, path: str, operation: EditOperation, tool: str,
                 backup: Optional[str] = None, edit_id: Optional[str] = None,
                 created_at: Optional[str] = None, original_edit_id: Optional[str] = None):
        self.id = edit_id or f"edit_{uuid.uuid4().hex[:12]}"
        self.session_id = session_id
        self.path = path
        self.operation = operation
        self.tool = tool
        self.backup = backup
        self.original_edit_id = original_edit_id
        self.rolled_back = False
        self.created_at = created_at or datetime.now().isoformat()

    def to_dict(self, include_backup: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "session_id": self.session_id,
            "path": self.path,
            "operation": self.operation.value,
            "tool": self.tool,
            "original_edit_id": self.original_edit_id,
            "rolled_back": self.rolled_back,
            "created_at": self.created_at,
        }
        if include_backup:
            data["backup"] = self.backup
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileEdit':
        edit = cls(
            session_id=data["session_id"],
            path=data["path"],
            operation=EditOperation(data["operation"]),
            tool=data.get("tool", ""),
            backup=data.get("backup"),
            edit_id=data["id"],
            created_at=data.get("created_at"),
            original_edit_id=data.get("original_edit_id"),
        )
        edit.rolled_back = data.get("rolled_back", False)
        return edit
