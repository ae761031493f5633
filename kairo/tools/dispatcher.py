#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Tool dispatcher.

``ToolDispatcher.dispatch`` is the only place tools get called. It resolves
the name, validates parameters against the registry schema, runs the handler
and folds every outcome into a ``ToolResult`` envelope. Nothing a handler
raises escapes this boundary.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from kairo import config
from kairo.debug_logger import get_logger
from kairo.models import EditOperation
from kairo.tools.errors import ToolError, ToolValidationError
from kairo.tools.registry import ToolRegistry, ToolSpec
from kairo.tools.workspace import relative_to_root

# Alternate argument names models tend to emit
_PARAM_ALIASES = {
    "file_path": "path",
    "filepath": "path",
    "filename": "path",
    "cmd": "command",
}

_FileState = Tuple[bool, Optional[str], Optional[Tuple[int, int]]]


@dataclass
class ToolResult:
    """Uniform ``{success, data|error}`` envelope."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: bool = False
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "error": self.error,
            "error_type": self.error_type,
            "retryable": self.retryable,
        }


def _file_state(path: Path) -> _FileState:
    """``(exists, text, (size, mtime))``; text is None for binary or oversized files."""
    if not path.is_file():
        return False, None, None
    stat = path.stat()
    text = None
    if stat.st_size <= config.MAX_READ_BYTES:
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            text = None
    return True, text, (stat.st_size, stat.st_mtime_ns)


def normalize_params(tool: str, params: Any) -> Any:
    """Unwrap ``{"arguments": {...}}`` and map common aliases onto schema names."""
    while isinstance(params, dict) and len(params) == 1 and isinstance(params.get("arguments"), dict):
        params = params["arguments"]
    if not isinstance(params, dict):
        return params
    normalized = dict(params)
    for alias, canonical in _PARAM_ALIASES.items():
        if alias in normalized and canonical not in normalized:
            normalized[canonical] = normalized.pop(alias)
    return normalized


class ToolDispatcher:
    """Resolve and invoke registry tools against one project root.

    With a ``store`` and ``session_id`` the dispatcher also keeps the
    session's edit history: files a mutating tool may touch are read before
    the call, and every one that was created, changed or removed is recorded
    with its previous content.
    """

    def __init__(self, registry: ToolRegistry, project_root: Path, store: Any = None,
                 session_id: Optional[str] = None):
        self.registry = registry
        self.project_root = Path(project_root).resolve()
        self.store = store
        self.session_id = session_id
        self.logger = get_logger()

    def validate(self, name: str, params: Any) -> Dict[str, Any]:
        """Validate without executing. Raises ToolValidationError."""
        spec = self.registry.get(name)
        return spec.validate(normalize_params(name, params), self.project_root)

    def dispatch(self, name: str, params: Any = None) -> ToolResult:
        start = time.time()
        try:
            spec = self.registry.get(name)
            args = spec.validate(normalize_params(name, params), self.project_root)
        except ToolValidationError as exc:
            result = ToolResult(
                success=False,
                error=str(exc),
                error_type=exc.error_type.value,
                retryable=False,
                elapsed=time.time() - start,
            )
            self.logger.log_tool_execution(name, params if isinstance(params, dict) else {}, error=result.error)
            return result

        try:
            before = self._snapshot(spec, args)
            data = spec.handler(self.project_root, args)
        except Exception as exc:
            error = ToolError.from_exception(exc, name)
            result = ToolResult(
                success=False,
                error=error.message,
                error_type=error.error_type.value,
                retryable=error.retryable,
                elapsed=time.time() - start,
            )
            self.logger.log_tool_execution(name, args, error=result.error)
            return result

        self._record_edits(name, before)
        elapsed = time.time() - start
        self.logger.log_tool_execution(name, args, result=data)
        self.logger.log("tools", "TOOL_TIMING", {"tool": name, "elapsed_s": round(elapsed, 3)}, "DEBUG")
        return ToolResult(success=True, data=data, elapsed=elapsed)

    # ---------- edit history ----------

    def _snapshot(self, spec: ToolSpec, args: Dict[str, Any]) -> Dict[Path, _FileState]:
        if self.store is None or not self.session_id or not spec.mutates:
            return {}
        return {path: _file_state(path) for path in spec.edit_targets(self.project_root, args)}

    def _record_edits(self, tool: str, before: Dict[Path, _FileState]) -> None:
        for path, (existed, text, signature) in before.items():
            rel_path = relative_to_root(self.project_root, path)
            try:
                exists_now, text_now, signature_now = _file_state(path)
                if existed and not exists_now:
                    operation = EditOperation.DELETE
                elif exists_now and not existed:
                    operation = EditOperation.CREATE
                elif existed and (text != text_now if text is not None else signature != signature_now):
                    operation = EditOperation.MODIFY
                else:
                    continue
                self.store.record_edit(self.session_id, rel_path, operation, tool,
                                       backup=text if existed else None)
            except Exception as exc:
                # a failed history write never fails the tool call
                self.logger.log("tools", "EDIT_RECORD_ERROR", {
                    "tool": tool, "path": rel_path, "error": str(exc),
                }, "ERROR")
