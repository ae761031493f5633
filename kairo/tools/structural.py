#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Structural edit tools.

Python files are edited through libcst so formatting and comments survive:
``ast_edit`` inserts, replaces or deletes whole statements addressed by the
line they start on, and ``refactor_symbol`` renames ``Name`` nodes only,
leaving strings and comments alone. Other text files fall back to line
splicing (JSON is re-parsed before writing) and word-boundary renames.
"""

from __future__ import annotations

import ast
import json
import re
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from kairo.tools.errors import ToolExecutionError, ToolErrorType, ToolValidationError
from kairo.tools.file_ops import _is_text_file, _require_file, iter_project_files
from kairo.tools.workspace import relative_to_root, resolve_in_root

EDIT_OPS = {"insert", "replace", "delete"}

_IDENT_RE = re.compile(r"^[A-Za-z_$][\w$]*$")

# non-Python sources renamed textually
_TEXT_RENAME_SUFFIXES = {".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".vue", ".svelte"}


def _syntax_error(path: Path, line: Any, msg: str) -> ToolExecutionError:
    return ToolExecutionError(f"Syntax error in {path.name} line {line}: {msg}", ToolErrorType.SYNTAX_ERROR)


def _check_syntax(path: Path, text: str) -> None:
    suffix = path.suffix.lower()
    if suffix == ".py":
        try:
            ast.parse(text, filename=path.name)
        except SyntaxError as exc:
            raise _syntax_error(path, exc.lineno, exc.msg) from exc
    elif suffix == ".json":
        try:
            json.loads(text)
        except json.JSONDecodeError as exc:
            raise _syntax_error(path, exc.lineno, exc.msg) from exc


def _parse_module(path: Path, text: str) -> cst.Module:
    try:
        return cst.parse_module(text)
    except cst.ParserSyntaxError as exc:
        raise _syntax_error(path, exc.raw_line, exc.message) from exc


def _normalize_edits(edits: List[Dict[str, Any]], line_count: int) -> List[Dict[str, Any]]:
    normalized = []
    for index, edit in enumerate(edits):
        if not isinstance(edit, dict):
            raise ToolValidationError(f"edit #{index} must be an object")
        op = str(edit.get("op", edit.get("type", ""))).lower()
        if op not in EDIT_OPS:
            raise ToolValidationError(f"edit #{index}: op must be one of {sorted(EDIT_OPS)}")
        try:
            line = int(edit.get("line", 0))
            end_line = int(edit.get("end_line", line))
        except (TypeError, ValueError):
            raise ToolValidationError(f"edit #{index}: line numbers must be integers") from None

        upper = line_count + 1 if op == "insert" else line_count
        if line < 1 or line > upper or end_line < line or end_line > max(upper, line):
            raise ToolValidationError(
                f"edit #{index}: line range {line}-{end_line} outside 1-{upper}"
            )
        if op != "delete" and not isinstance(edit.get("text"), str):
            raise ToolValidationError(f"edit #{index}: '{op}' requires text")
        normalized.append({"index": index, "op": op, "line": line, "end_line": end_line,
                           "text": edit.get("text", "")})
    return normalized


def _splice_lines(original: str, edits: List[Dict[str, Any]]) -> str:
    lines = original.splitlines(keepends=True)
    # Bottom-up so every edit addresses the original line numbers
    for edit in sorted(edits, key=lambda e: (e["line"], e["end_line"]), reverse=True):
        start = edit["line"] - 1
        replacement = edit["text"].splitlines(keepends=True)
        if replacement and not replacement[-1].endswith("\n"):
            replacement[-1] += "\n"
        if edit["op"] == "insert":
            lines[start:start] = replacement
        elif edit["op"] == "replace":
            lines[start:edit["end_line"]] = replacement
        else:
            del lines[start:edit["end_line"]]
    return "".join(lines)


class _StatementEditor(cst.CSTTransformer):
    """Apply statement edits inside the innermost body holding the addressed line."""

    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self, edits: List[Dict[str, Any]], statements: Dict[int, Sequence[cst.CSTNode]],
                 line_count: int) -> None:
        super().__init__()
        self.pending = list(edits)
        self.statements = statements
        self.line_count = line_count

    def _span(self, node: cst.CSTNode):
        pos = self.get_metadata(PositionProvider, node)
        return pos.start.line, pos.end.line

    def _rewrite_body(self, body: Sequence[cst.CSTNode], original_body: Sequence[cst.CSTNode],
                      at_module: bool) -> List[cst.CSTNode]:
        spans = [self._span(node) for node in original_body]
        starts = {start for start, _ in spans}
        claimed = [e for e in self.pending
                   if e["line"] in starts or (at_module and e["op"] == "insert" and e["line"] == self.line_count + 1)]
        if not claimed:
            return list(body)
        for edit in claimed:
            self.pending.remove(edit)

        result: List[cst.CSTNode] = []
        for node, (start, _) in zip(body, spans):
            for edit in claimed:
                if edit["op"] == "insert" and edit["line"] == start:
                    result.extend(self.statements[edit["index"]])
            covering = next((e for e in claimed if e["op"] != "insert" and e["line"] <= start <= e["end_line"]), None)
            if covering is None:
                result.append(node)
            elif covering["op"] == "replace" and start == covering["line"]:
                replacement = list(self.statements[covering["index"]])
                if replacement and not replacement[0].leading_lines:
                    replacement[0] = replacement[0].with_changes(leading_lines=node.leading_lines)
                result.extend(replacement)
        for edit in claimed:
            if edit["op"] == "insert" and edit["line"] == self.line_count + 1:
                result.extend(self.statements[edit["index"]])
        return result

    def leave_IndentedBlock(self, original_node: cst.IndentedBlock,
                            updated_node: cst.IndentedBlock) -> cst.IndentedBlock:
        body = self._rewrite_body(updated_node.body, original_node.body, at_module=False)
        return updated_node.with_changes(body=body)

    def leave_Module(self, original_node: cst.Module, updated_node: cst.Module) -> cst.Module:
        body = self._rewrite_body(updated_node.body, original_node.body, at_module=True)
        return updated_node.with_changes(body=body)


def _edit_python(target: Path, original: str, edits: List[Dict[str, Any]], line_count: int) -> str:
    module = _parse_module(target, original)
    statements = {}
    for edit in edits:
        if edit["op"] != "delete":
            snippet = textwrap.dedent(edit["text"])
            if not snippet.endswith("\n"):
                snippet += "\n"
            parsed = _parse_module(target, snippet)
            body = list(parsed.body)
            if body and parsed.header:
                # keep comments written above the first statement
                body[0] = body[0].with_changes(leading_lines=[*parsed.header, *body[0].leading_lines])
            statements[edit["index"]] = body

    editor = _StatementEditor(edits, statements, line_count)
    updated = MetadataWrapper(module).visit(editor)
    if editor.pending:
        edit = editor.pending[0]
        raise ToolValidationError(f"edit #{edit['index']}: line {edit['line']} does not start a statement")
    return updated.code


def ast_edit(root: Path, path: str, edits: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply insert/replace/delete edits addressed by 1-based line numbers.

    In Python files an edit addresses the statement starting on ``line``:
    ``insert`` puts new statements before it (or at the end of the module
    for ``line_count + 1``), ``replace`` and ``delete`` cover every
    statement starting in ``line..end_line`` together with its body.
    Inserted text is re-indented to the enclosing block.
    """
    target = resolve_in_root(root, path)
    _require_file(target, path)
    if not edits:
        raise ToolValidationError("edits must not be empty")

    original = target.read_text(encoding="utf-8")
    line_count = len(original.splitlines())
    normalized = _normalize_edits(edits, line_count)
    if target.suffix.lower() == ".py":
        updated = _edit_python(target, original, normalized, line_count)
    else:
        updated = _splice_lines(original, normalized)

    _check_syntax(target, updated)
    target.write_text(updated, encoding="utf-8")
    return {
        "path": relative_to_root(root, target),
        "edits_applied": len(edits),
        "line_count": len(updated.splitlines()),
    }


class _NameRenamer(cst.CSTTransformer):
    def __init__(self, old_name: str, new_name: str) -> None:
        super().__init__()
        self.old_name = old_name
        self.new_name = new_name
        self.changed = 0

    def leave_Name(self, original_node: cst.Name, updated_node: cst.Name) -> cst.Name:
        if original_node.value != self.old_name:
            return updated_node
        self.changed += 1
        return updated_node.with_changes(value=self.new_name)


def _rename_python(path: Path, text: str, old_name: str, new_name: str):
    renamer = _NameRenamer(old_name, new_name)
    updated = _parse_module(path, text).visit(renamer)
    return updated.code, renamer.changed


def rename_candidates(root: Path, path: str = ".", include: Optional[str] = None) -> List[Path]:
    """Source files under ``path`` that ``refactor_symbol`` may rewrite."""
    base = resolve_in_root(root, path or ".")
    files = [base] if base.is_file() else iter_project_files(base)
    candidates = []
    for file_path in files:
        if include and not file_path.match(include):
            continue
        suffix = file_path.suffix.lower()
        if suffix != ".py" and suffix not in _TEXT_RENAME_SUFFIXES:
            continue
        if _is_text_file(file_path):
            candidates.append(file_path)
    return candidates


def refactor_symbol(root: Path, old_name: str, new_name: str, path: str = ".",
                    include: Optional[str] = None) -> Dict[str, Any]:
    """Rename ``old_name`` to ``new_name`` in the source files under ``path``."""
    for label, value in (("old_name", old_name), ("new_name", new_name)):
        if not _IDENT_RE.match(value or ""):
            raise ToolValidationError(f"{label} is not a valid identifier: {value!r}")
    if old_name == new_name:
        raise ToolValidationError("old_name and new_name are identical")

    pattern = re.compile(rf"(?<![\w$]){re.escape(old_name)}(?![\w$])")
    pending: Dict[Path, str] = {}
    counts: Dict[str, int] = {}
    for file_path in rename_candidates(root, path, include):
        suffix = file_path.suffix.lower()
        text = file_path.read_text(encoding="utf-8", errors="replace")
        if old_name not in text:
            continue
        if suffix == ".py":
            updated, count = _rename_python(file_path, text, old_name, new_name)
        else:
            updated, count = pattern.subn(new_name, text)
        if count:
            _check_syntax(file_path, updated)
            pending[file_path] = updated
            counts[relative_to_root(root, file_path)] = count

    if not pending:
        raise FileNotFoundError(f"Symbol not found: {old_name}")

    # Write only after every file validated
    for file_path, updated in pending.items():
        file_path.write_text(updated, encoding="utf-8")

    return {"old_name": old_name, "new_name": new_name, "files": counts,
            "replacements": sum(counts.values())}
