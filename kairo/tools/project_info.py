#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Manifest inspection: project configuration and declared dependencies."""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from kairo import config
from kairo.tools.workspace import resolve_in_root

_REQ_NAME_RE = re.compile(r"[<>=!~;\[ ]")


def _load_toml(text: str) -> Dict[str, Any]:
    try:
        import tomllib as toml
    except ImportError:
        import toml
    return toml.loads(text)


def load_manifest(path: Path) -> Optional[Dict[str, Any]]:
    """Parse a manifest file by extension. Returns None for unsupported formats."""
    text = path.read_text(encoding="utf-8", errors="replace")
    suffix = path.suffix.lower()
    if suffix == ".json":
        return json.loads(text)
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
        return data if isinstance(data, dict) else {"value": data}
    if suffix == ".toml":
        return _load_toml(text)
    if path.name == "requirements.txt":
        return {"requirements": _parse_requirements(text)}
    return None


def _parse_requirements(text: str) -> List[str]:
    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith(("#", "-"))
    ]


def detect_manifests(root: Path) -> List[str]:
    root = Path(root)
    return [name for name in config.MANIFEST_FILES if (root / name).is_file()]


def get_project_config(root: Path, path: Optional[str] = None) -> Dict[str, Any]:
    """Return the parsed contents of a manifest (first detected one by default)."""
    if path:
        target = resolve_in_root(root, path)
    else:
        found = detect_manifests(root)
        if not found:
            raise FileNotFoundError("Project manifest not found")
        target = Path(root).resolve() / found[0]
    if not target.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    data = load_manifest(target)
    if data is None:
        data = {"raw": target.read_text(encoding="utf-8", errors="replace")[:config.MAX_OUTPUT_CHARS]}
    return {"manifest": target.name, "config": data}


def list_dependencies(root: Path) -> Dict[str, Any]:
    """Collect declared dependencies from the manifests present in ``root``."""
    root = Path(root).resolve()
    deps: Dict[str, Dict[str, str]] = {}

    package_json = root / "package.json"
    if package_json.is_file():
        data = json.loads(package_json.read_text(encoding="utf-8"))
        deps["npm"] = {
            **data.get("dependencies", {}),
            **{f"{k} (dev)": v for k, v in data.get("devDependencies", {}).items()},
        }

    requirements = root / "requirements.txt"
    if requirements.is_file():
        pip_deps = deps.setdefault("pip", {})
        for req in _parse_requirements(requirements.read_text(encoding="utf-8")):
            name = _REQ_NAME_RE.split(req, maxsplit=1)[0]
            pip_deps[name.strip()] = req[len(name):].strip()

    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        data = _load_toml(pyproject.read_text(encoding="utf-8"))
        pip_deps = deps.setdefault("pip", {})
        for req in data.get("project", {}).get("dependencies", []):
            name = _REQ_NAME_RE.split(req, maxsplit=1)[0]
            pip_deps[name.strip()] = req[len(name):].strip()

    return {"dependencies": deps, "managers": sorted(deps)}
