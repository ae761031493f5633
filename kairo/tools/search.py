#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Code search tools: text search, symbol lookup and file outlines."""

import fnmatch
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from kairo import config
from kairo.tools.errors import ToolValidationError
from kairo.tools.file_ops import _is_text_file, _require_file, iter_project_files
from kairo.tools.workspace import relative_to_root, resolve_in_root


# Declarations across the languages the engine is usually pointed at
_SYMBOL_PATTERNS = [
    r"^\s*(?:async\s+)?def\s+{name}\b",
    r"^\s*class\s+{name}\b",
    r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*{name}\b",
    r"^\s*(?:export\s+)?(?:const|let|var)\s+{name}\b",
    r"^\s*(?:export\s+)?(?:interface|type|enum)\s+{name}\b",
    r"^\s*(?:pub\s+)?(?:fn|struct|trait)\s+{name}\b",
    r"^\s*func\s+(?:\([^)]*\)\s*)?{name}\b",
]

_OUTLINE_RE = re.compile(
    r"^(?P<indent>\s*)(?:export\s+)?(?:default\s+)?(?:async\s+)?"
    r"(?P<kind>def|class|function|interface|type|enum|const|fn|struct|func)\s+"
    r"(?P<name>[A-Za-z_$][\w$]*)"
)


def _candidate_files(root: Path, base: Path, include: Optional[str]) -> List[Path]:
    files = iter_project_files(base)
    if include:
        files = [p for p in files if fnmatch.fnmatch(p.name, include)
                 or fnmatch.fnmatch(relative_to_root(root, p), include)]
    return [p for p in files if _is_text_file(p)]


def search_code(root: Path, query: str, path: str = ".", regex: bool = False,
                include: Optional[str] = None, case_sensitive: bool = False) -> Dict[str, Any]:
    if not query:
        raise ToolValidationError("query must not be empty")
    base = resolve_in_root(root, path or ".")
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        pattern = re.compile(query if regex else re.escape(query), flags)
    except re.error as exc:
        raise ToolValidationError(f"bad regular expression: {exc}") from exc

    matches: List[Dict[str, Any]] = []
    files = [base] if base.is_file() else _candidate_files(root, base, include)
    for file_path in files:
        try:
            text = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        for lineno, line in enumerate(text.splitlines(), 1):
            if pattern.search(line):
                matches.append({
                    "file": relative_to_root(root, file_path),
                    "line": lineno,
                    "text": line.strip()[:300],
                })
                if len(matches) >= config.MAX_SEARCH_RESULTS:
                    return {"query": query, "matches": matches, "truncated": True}
    return {"query": query, "matches": matches, "truncated": False}


def find_symbol(root: Path, name: str, path: str = ".") -> Dict[str, Any]:
    if not re.match(r"^[A-Za-z_$][\w$]*$", name or ""):
        raise ToolValidationError(f"not a valid identifier: {name!r}")
    base = resolve_in_root(root, path or ".")
    compiled = [re.compile(p.format(name=re.escape(name))) for p in _SYMBOL_PATTERNS]

    definitions: List[Dict[str, Any]] = []
    for file_path in _candidate_files(root, base, None):
        try:
            lines = file_path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            continue
        for lineno, line in enumerate(lines, 1):
            if any(rx.search(line) for rx in compiled):
                definitions.append({
                    "file": relative_to_root(root, file_path),
                    "line": lineno,
                    "text": line.strip()[:300],
                })
    return {"symbol": name, "definitions": definitions}


def find_references(root: Path, symbol: str, path: str = ".") -> Dict[str, Any]:
    if not re.match(r"^[A-Za-z_$][\w$]*$", symbol or ""):
        raise ToolValidationError(f"not a valid identifier: {symbol!r}")
    result = search_code(root, rf"\b{re.escape(symbol)}\b", path=path, regex=True, case_sensitive=True)
    return {"symbol": symbol, "references": result["matches"], "truncated": result["truncated"]}


def get_outline(root: Path, path: str) -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    _require_file(target, path)
    outline: List[Dict[str, Any]] = []
    text = target.read_text(encoding="utf-8", errors="replace")
    for lineno, line in enumerate(text.splitlines(), 1):
        match = _OUTLINE_RE.match(line)
        if not match:
            continue
        outline.append({
            "kind": match.group("kind"),
            "name": match.group("name"),
            "line": lineno,
            "depth": len(match.group("indent").expandtabs(4)) // 4,
        })
    return {"path": relative_to_root(root, target), "outline": outline}
