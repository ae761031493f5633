#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Persistent state store.

Each session is one JSON document under ``<state_dir>/sessions/<id>.json``
holding the session record, its objectives, subtask groups, messages and
the history of file edits made by its runs.
Writes are serialized per session with an ``RLock`` and land through an
atomic ``os.replace``, so concurrent readers always see a complete document
and the state survives process restarts.
"""

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from kairo import config
from kairo.debug_logger import get_logger
from kairo.models import (
    EditOperation,
    FileEdit,
    Message,
    MessageRole,
    MessageType,
    Objective,
    Session,
    SessionStatus,
    SubtaskGroup,
)
from kairo.tools.workspace import resolve_in_root

STATE_VERSION = "1.0"


class StateStoreError(RuntimeError):
    """The store could not read or write a session document."""


class SessionNotFoundError(StateStoreError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class EditNotFoundError(StateStoreError):
    def __init__(self, edit_id: str):
        super().__init__(f"Edit not found: {edit_id}")
        self.edit_id = edit_id


class StateStore:
    """JSON-file backed store of sessions, objectives, groups and messages."""

    def __init__(self, state_dir: Optional[Path] = None):
        self.state_dir = Path(state_dir or config.STATE_DIR)
        self.sessions_dir = self.state_dir / "sessions"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self.logger = get_logger()

    # ---------- low level ----------

    def _path(self, session_id: str) -> Path:
        if not session_id or any(sep in session_id for sep in ("/", "\\", "..")):
            raise StateStoreError(f"Invalid session id: {session_id!r}")
        return self.sessions_dir / f"{session_id}.json"

    def _lock(self, session_id: str) -> threading.RLock:
        with self._locks_guard:
            if session_id not in self._locks:
                self._locks[session_id] = threading.RLock()
            return self._locks[session_id]

    def _read(self, session_id: str) -> Dict[str, Any]:
        path = self._path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateStoreError(f"Failed to read session {session_id}: {e}") from e

    def _write(self, session_id: str, doc: Dict[str, Any]) -> None:
        path = self._path(session_id)
        doc["version"] = STATE_VERSION
        doc["saved_at"] = datetime.now().isoformat()
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{session_id}.", suffix=".tmp", dir=str(self.sessions_dir))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, default=str)
            os.replace(tmp_name, path)
        except OSError as e:
            self.logger.log("state", "SAVE_ERROR", {"session_id": session_id, "error": str(e)}, "ERROR")
            raise StateStoreError(f"Failed to write session {session_id}: {e}") from e

    def _mutate(self, session_id: str, fn: Callable[[Dict[str, Any]], Any]) -> Any:
        """Read-modify-write one session document under its lock."""
        with self._lock(session_id):
            doc = self._read(session_id)
            result = fn(doc)
            self._write(session_id, doc)
            return result

    # ---------- sessions ----------

    def create_session(self, name: str = "New session", project: Optional[str] = None,
                       session_id: Optional[str] = None) -> Session:
        session = Session(name=name, project=project, session_id=session_id)
        with self._lock(session.id):
            if self._path(session.id).exists():
                raise StateStoreError(f"Session already exists: {session.id}")
            self._write(session.id, {
                "session": session.to_dict(),
                "objectives": [],
                "groups": {},
                "messages": [],
                "edits": [],
            })
        self.logger.log("state", "SESSION_CREATED", {"session_id": session.id, "project": project}, "INFO")
        return session

    def get_or_create_session(self, session_id: Optional[str], name: str = "New session",
                              project: Optional[str] = None) -> Session:
        if session_id and self._path(session_id).exists():
            return self.get_session(session_id)
        return self.create_session(name=name, project=project, session_id=session_id)

    def get_session(self, session_id: str) -> Session:
        return Session.from_dict(self._read(session_id)["session"])

    def list_sessions(self) -> List[Session]:
        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            try:
                sessions.append(self.get_session(path.stem))
            except StateStoreError as e:
                self.logger.log("state", "SESSION_SKIPPED", {"path": str(path), "error": str(e)}, "WARNING")
        return sorted(sessions, key=lambda s: s.last_activity_at, reverse=True)

    def delete_session(self, session_id: str) -> None:
        with self._lock(session_id):
            path = self._path(session_id)
            if not path.exists():
                raise SessionNotFoundError(session_id)
            path.unlink()
        with self._locks_guard:
            self._locks.pop(session_id, None)

    def update_session(self, session_id: str, status: Optional[SessionStatus] = None,
                       project: Optional[str] = None, name: Optional[str] = None) -> Session:
        def apply(doc):
            session = Session.from_dict(doc["session"])
            if status is not None:
                session.status = status
            if project is not None:
                session.project = project
            if name is not None:
                session.name = name
            session.touch()
            doc["session"] = session.to_dict()
            return session
        return self._mutate(session_id, apply)

    # ---------- messages ----------

    def add_message(self, session_id: str, role: MessageRole, msg_type: MessageType, payload: Any) -> Message:
        message = Message(session_id, role, msg_type, payload)

        def apply(doc):
            doc["messages"].append(message.to_dict())
            session = Session.from_dict(doc["session"])
            session.message_count += 1
            session.touch()
            doc["session"] = session.to_dict()
        self._mutate(session_id, apply)
        return message

    def update_message_payload(self, session_id: str, message_id: str, updates: Dict[str, Any]) -> None:
        """Merge ``updates`` into a step/plan message payload (status fields only)."""
        def apply(doc):
            for raw in doc["messages"]:
                if raw["id"] == message_id:
                    if not isinstance(raw.get("payload"), dict):
                        raise StateStoreError(f"Message {message_id} has no structured payload")
                    if raw["type"] not in (MessageType.STEP.value, MessageType.PLAN.value):
                        raise StateStoreError(f"Message {message_id} is immutable ({raw['type']})")
                    raw["payload"].update(updates)
                    return
            raise StateStoreError(f"Message not found: {message_id}")
        self._mutate(session_id, apply)

    def list_messages(self, session_id: str) -> List[Message]:
        return [Message.from_dict(raw) for raw in self._read(session_id)["messages"]]

    # ---------- objectives ----------

    def next_order(self, session_id: str) -> int:
        objectives = self._read(session_id)["objectives"]
        return max((raw["order"] for raw in objectives), default=0) + 1

    def add_objectives(self, session_id: str, objectives: List[Objective]) -> List[Objective]:
        """Persist newly planned objectives; orders must continue the session's sequence."""
        def apply(doc):
            expected = max((raw["order"] for raw in doc["objectives"]), default=0) + 1
            for objective in objectives:
                if objective.session_id != session_id:
                    raise StateStoreError(f"Objective {objective.id} belongs to another session")
                if objective.order != expected:
                    raise StateStoreError(
                        f"Objective order {objective.order} breaks the sequence (expected {expected})"
                    )
                doc["objectives"].append(objective.to_dict())
                expected += 1
            session = Session.from_dict(doc["session"])
            session.touch()
            doc["session"] = session.to_dict()
        self._mutate(session_id, apply)
        return objectives

    def save_objective(self, objective: Objective) -> None:
        """Write back status, reason and group link of an existing objective."""
        def apply(doc):
            for index, raw in enumerate(doc["objectives"]):
                if raw["id"] == objective.id:
                    doc["objectives"][index] = objective.to_dict()
                    return
            raise StateStoreError(f"Objective not found: {objective.id}")
        self._mutate(objective.session_id, apply)

    def list_objectives(self, session_id: str) -> List[Objective]:
        raws = self._read(session_id)["objectives"]
        return sorted((Objective.from_dict(raw) for raw in raws), key=lambda o: o.order)

    def get_objective(self, session_id: str, objective_id: str) -> Objective:
        for objective in self.list_objectives(session_id):
            if objective.id == objective_id:
                return objective
        raise StateStoreError(f"Objective not found: {objective_id}")

    # ---------- subtask groups ----------

    def save_group(self, session_id: str, group: SubtaskGroup, objective: Optional[Objective] = None) -> None:
        """Insert or replace a group; links the owning objective on first save."""
        def apply(doc):
            groups = doc["groups"]
            owned = [gid for gid, raw in groups.items()
                     if raw["objective_id"] == group.objective_id and gid != group.id]
            for gid in owned:
                # a regenerated decomposition replaces the previous group
                del groups[gid]
            groups[group.id] = group.to_dict()
            for index, raw in enumerate(doc["objectives"]):
                if raw["id"] == group.objective_id:
                    raw["subtask_group_id"] = group.id
                    if objective is not None:
                        objective.subtask_group_id = group.id
                        doc["objectives"][index] = objective.to_dict()
                    return
            raise StateStoreError(f"Objective not found: {group.objective_id}")
        self._mutate(session_id, apply)

    def get_group(self, session_id: str, group_id: str) -> SubtaskGroup:
        raw = self._read(session_id)["groups"].get(group_id)
        if raw is None:
            raise StateStoreError(f"Subtask group not found: {group_id}")
        return SubtaskGroup.from_dict(raw)

    def get_group_for(self, session_id: str, objective_id: str) -> Optional[SubtaskGroup]:
        for raw in self._read(session_id)["groups"].values():
            if raw["objective_id"] == objective_id:
                return SubtaskGroup.from_dict(raw)
        return None

    # ---------- edit history ----------

    def record_edit(self, session_id: str, path: str, operation: EditOperation, tool: str,
                    backup: Optional[str] = None) -> FileEdit:
        """Append one file change to the session's edit history."""
        edit = FileEdit(session_id, path, operation, tool, backup=backup)
        self._mutate(session_id, lambda doc: doc.setdefault("edits", []).append(edit.to_dict()))
        self.logger.log("state", "EDIT_RECORDED", {
            "session_id": session_id, "edit_id": edit.id, "path": path, "operation": operation.value,
        }, "DEBUG")
        return edit

    def list_edits(self, session_id: str, path: Optional[str] = None,
                   limit: Optional[int] = None) -> List[FileEdit]:
        """Edit history, newest first."""
        edits = [FileEdit.from_dict(raw) for raw in self._read(session_id).get("edits", [])]
        if path is not None:
            edits = [edit for edit in edits if edit.path == path]
        edits.reverse()
        return edits[:limit] if limit else edits

    def rollback_edit(self, session_id: str, edit_id: str, root: Path) -> FileEdit:
        """Restore the file an edit changed and record the rollback.

        Created files are removed; modified and deleted files get their
        backup written back. The rollback itself is appended to the history
        with the overwritten content as its backup.

        Raises:
            EditNotFoundError: no such edit in the session.
            StateStoreError: the edit cannot be rolled back.
        """
        def apply(doc):
            edits = doc.setdefault("edits", [])
            raw = next((item for item in edits if item["id"] == edit_id), None)
            if raw is None:
                raise EditNotFoundError(edit_id)
            edit = FileEdit.from_dict(raw)
            if edit.operation is EditOperation.ROLLBACK:
                raise StateStoreError(f"Edit {edit_id} is a rollback and cannot be rolled back")
            if edit.rolled_back:
                raise StateStoreError(f"Edit already rolled back: {edit_id}")
            if edit.operation is not EditOperation.CREATE and edit.backup is None:
                raise StateStoreError(f"No backup was kept for {edit.path}; cannot roll back {edit_id}")

            target = resolve_in_root(root, edit.path)
            try:
                current = target.read_text(encoding="utf-8") if target.is_file() else None
            except UnicodeDecodeError:
                current = None
            try:
                if edit.operation is EditOperation.CREATE:
                    if target.is_file():
                        target.unlink()
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_text(edit.backup, encoding="utf-8")
            except OSError as e:
                raise StateStoreError(f"Failed to roll back {edit.path}: {e}") from e

            raw["rolled_back"] = True
            rollback = FileEdit(session_id, edit.path, EditOperation.ROLLBACK, "rollback",
                                backup=current, original_edit_id=edit.id)
            edits.append(rollback.to_dict())
            return rollback

        rollback = self._mutate(session_id, apply)
        self.logger.log("state", "EDIT_ROLLED_BACK", {
            "session_id": session_id, "edit_id": edit_id, "path": rollback.path,
        }, "INFO")
        return rollback

    # ---------- snapshots ----------

    def snapshot(self, session_id: str) -> Dict[str, Any]:
        """Full state of a session, ordered for display."""
        doc = self._read(session_id)
        objectives = sorted(doc["objectives"], key=lambda raw: raw["order"])
        return {
            "session": doc["session"],
            "objectives": objectives,
            "groups": list(doc["groups"].values()),
            "messages": doc["messages"],
            "edits": [FileEdit.from_dict(raw).to_dict(include_backup=False) for raw in doc.get("edits", [])],
        }
