#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Project-root path resolution shared by every filesystem tool.

All tools resolve their path parameters through ``resolve_in_root`` so that
the dispatcher, the decomposer's pre-validation and the handlers agree on
which paths are inside the project.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from kairo.tools.errors import PathOutsideRootError, ToolValidationError


def normalize_path(path: str) -> str:
    """Normalize separators and strip quoting the model tends to add."""
    raw = str(path).strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in {"'", '"', "`"}:
        raw = raw[1:-1].strip()
    return raw.replace("\\", "/")


def resolve_in_root(root: Union[str, Path], path: Union[str, Path, None]) -> Path:
    """Resolve ``path`` against ``root`` and refuse anything that escapes it.

    Absolute paths are accepted only when they already point inside the root.

    Raises:
        ToolValidationError: the path is empty or not a string.
        PathOutsideRootError: the resolved path is outside ``root``.
    """
    if path is None or (isinstance(path, str) and not path.strip()):
        raise ToolValidationError("path must be a non-empty string")

    root_path = Path(root).resolve()
    normalized = normalize_path(str(path))
    candidate = Path(os.path.expanduser(normalized))
    if not candidate.is_absolute():
        candidate = root_path / candidate
    resolved = candidate.resolve(strict=False)

    try:
        resolved.relative_to(root_path)
    except ValueError:
        raise PathOutsideRootError(str(path), root_path) from None
    return resolved


def relative_to_root(root: Union[str, Path], path: Path) -> str:
    root_path = Path(root).resolve()
    try:
        rel = path.resolve(strict=False).relative_to(root_path)
    except ValueError:
        return str(path)
    rel_str = rel.as_posix()
    return rel_str if rel_str else "."


def is_path_within_root(root: Union[str, Path], path: Union[str, Path]) -> bool:
    try:
        resolve_in_root(root, path)
    except ToolValidationError:
        return False
    return True
