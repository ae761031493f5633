#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""File operation tools for kairo.

Every function takes the project root as its first argument and returns
JSON-serializable data. Failures are raised; the dispatcher normalizes them.
"""

import os
import shutil
import stat
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from kairo import config
from kairo.tools.errors import ToolExecutionError, ToolErrorType
from kairo.tools.workspace import relative_to_root, resolve_in_root


# ========== Helper Functions ==========

def _should_skip(path: Path) -> bool:
    return any(part in config.EXCLUDE_DIRS for part in path.parts)


def _is_text_file(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            return b"\x00" not in f.read(8192)
    except OSError:
        return False


def _require_file(path: Path, display: str) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {display}")
    if not path.is_file():
        raise ToolExecutionError(f"Not a file: {display}", ToolErrorType.VALIDATION_ERROR)


def iter_project_files(root: Path, limit: Optional[int] = None) -> List[Path]:
    """Walk ``root`` skipping excluded directories, sorted for stable output."""
    root = Path(root).resolve()
    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in config.EXCLUDE_DIRS)
        for name in sorted(filenames):
            found.append(Path(dirpath) / name)
            if limit is not None and len(found) >= limit:
                return found
    return found


# ========== Tools ==========

def list_files(root: Path, path: str = ".", recursive: bool = False, limit: int = 500) -> Dict[str, Any]:
    target = resolve_in_root(root, path or ".")
    if not target.exists():
        raise FileNotFoundError(f"Directory not found: {path}")
    if not target.is_dir():
        raise ToolExecutionError(f"Not a directory: {path}", ToolErrorType.VALIDATION_ERROR)

    entries: List[Dict[str, Any]] = []
    if recursive:
        for file_path in iter_project_files(target, limit=limit):
            entries.append({"path": relative_to_root(root, file_path), "type": "file"})
    else:
        for child in sorted(target.iterdir()):
            if child.name in config.EXCLUDE_DIRS:
                continue
            entries.append({
                "path": relative_to_root(root, child),
                "type": "dir" if child.is_dir() else "file",
            })
            if len(entries) >= limit:
                break

    return {"path": relative_to_root(root, target), "entries": entries, "count": len(entries)}


def read_file(root: Path, path: str) -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    _require_file(target, path)
    size = target.stat().st_size
    if size > config.MAX_READ_BYTES:
        raise ToolExecutionError(
            f"File too large to read ({size} bytes > {config.MAX_READ_BYTES})",
            ToolErrorType.VALIDATION_ERROR,
        )
    content = target.read_text(encoding="utf-8", errors="replace")
    return {"path": relative_to_root(root, target), "content": content, "size": size}


def write_file(root: Path, path: str, content: str) -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    existed = target.exists()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return {
        "path": relative_to_root(root, target),
        "bytes_written": len(content.encode("utf-8")),
        "created": not existed,
    }


def create_file(root: Path, path: str, content: str = "") -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    if target.exists():
        raise FileExistsError(f"File already exists: {path}")
    return write_file(root, path, content)


def append_file(root: Path, path: str, content: str) -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "a", encoding="utf-8") as f:
        f.write(content)
    return {"path": relative_to_root(root, target), "bytes_appended": len(content.encode("utf-8"))}


def delete_file(root: Path, path: str) -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    if target == Path(root).resolve():
        raise PermissionError("Permission denied: refusing to delete the project root")
    if not target.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if target.is_dir():
        shutil.rmtree(target)
        kind = "dir"
    else:
        target.unlink()
        kind = "file"
    return {"path": relative_to_root(root, target), "deleted": kind}


def rename_file(root: Path, old_path: str, new_path: str) -> Dict[str, Any]:
    source = resolve_in_root(root, old_path)
    dest = resolve_in_root(root, new_path)
    if not source.exists():
        raise FileNotFoundError(f"File not found: {old_path}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(source), str(dest))
    return {"from": relative_to_root(root, source), "to": relative_to_root(root, dest)}


def copy_file(root: Path, src_path: str, dest_path: str) -> Dict[str, Any]:
    source = resolve_in_root(root, src_path)
    dest = resolve_in_root(root, dest_path)
    if not source.exists():
        raise FileNotFoundError(f"File not found: {src_path}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, dest, dirs_exist_ok=True)
    else:
        shutil.copy2(source, dest)
    return {"from": relative_to_root(root, source), "to": relative_to_root(root, dest)}


def stat_file(root: Path, path: str) -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    if not target.exists():
        raise FileNotFoundError(f"File not found: {path}")
    info = target.stat()
    return {
        "path": relative_to_root(root, target),
        "type": "dir" if target.is_dir() else "file",
        "size": info.st_size,
        "mode": stat.filemode(info.st_mode),
        "modified": datetime.fromtimestamp(info.st_mtime).isoformat(),
        "text": target.is_file() and _is_text_file(target),
    }


def tail_file(root: Path, path: str, lines: int = 50) -> Dict[str, Any]:
    target = resolve_in_root(root, path)
    _require_file(target, path)
    with open(target, "r", encoding="utf-8", errors="replace") as f:
        tail = deque(f, maxlen=max(1, int(lines)))
    return {"path": relative_to_root(root, target), "lines": [line.rstrip("\n") for line in tail]}
