#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Project modeler.

Builds the compact project summary used as planning context. The summary is
cached in ``<project>/.kairo/project_summary.json``; once the file exists it
is returned as-is on every later call. Summaries are never invalidated
automatically, delete the file to force a rebuild.
"""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from kairo import config
from kairo.debug_logger import get_logger
from kairo.llm.client import CompletionClient, CompletionError
from kairo.llm.payload import PayloadExtractionError, extract_with_cleanup
from kairo.tools.file_ops import iter_project_files
from kairo.tools.project_info import detect_manifests

EXTENSION_LANGUAGES = {
    ".py": "Python", ".js": "JavaScript", ".jsx": "JavaScript", ".mjs": "JavaScript",
    ".ts": "TypeScript", ".tsx": "TypeScript", ".go": "Go", ".rs": "Rust",
    ".java": "Java", ".kt": "Kotlin", ".rb": "Ruby", ".php": "PHP", ".cs": "C#",
    ".c": "C", ".h": "C", ".cpp": "C++", ".hpp": "C++", ".swift": "Swift",
    ".dart": "Dart", ".vue": "Vue", ".svelte": "Svelte", ".css": "CSS",
    ".scss": "SCSS", ".html": "HTML", ".sql": "SQL", ".sh": "Shell",
}

MAX_DIGEST_FILES = 2000
SAMPLE_FILES = 60
MANIFEST_EXCERPT_CHARS = 2000

SYSTEM_PROMPT = """You classify software projects.
Reply with a single JSON object and nothing else:
{"projectType": "...", "framework": "...", "languages": ["..."],
 "mainAreas": ["..."], "keyFiles": ["..."], "notes": "..."}
Use "unknown" when you cannot tell."""

HEURISTIC_NOTE = "Completion summary unavailable or unparseable; storing heuristic summary."


class ProjectModeler:
    """Produce and cache the project summary."""

    def __init__(self, client: Optional[CompletionClient], store_dir: Optional[Path] = None):
        """
        Args:
            client: completion client used for classification (None: heuristic only)
            store_dir: where the summary is cached; relative paths resolve under
                the project root (default: ``<root>/.kairo``)
        """
        self.client = client
        self.store_dir = Path(store_dir) if store_dir else None
        self.logger = get_logger()

    @staticmethod
    def summary_path(project_root: Path) -> Path:
        return Path(project_root) / config.PROJECT_META_DIRNAME / config.SUMMARY_FILENAME

    def cache_path(self, project_root: Path) -> Path:
        if self.store_dir is None:
            return self.summary_path(project_root)
        base = self.store_dir if self.store_dir.is_absolute() else Path(project_root) / self.store_dir
        return base / config.SUMMARY_FILENAME

    def summarize(self, project_root: Path, request: str = "") -> Dict[str, Any]:
        """Return the cached summary, or build, persist and return a new one. Never raises."""
        project_root = Path(project_root).resolve()
        cache = self.cache_path(project_root)

        cached = self._load_cached(cache)
        if cached is not None:
            self.logger.log("modeler", "SUMMARY_CACHE_HIT", {"path": str(cache)}, "DEBUG")
            return cached

        structure = self.build_digest(project_root)
        summary = self._classify(structure, request)
        if summary is None:
            summary = self.heuristic_summary(structure)

        document = {
            "meta": {
                "project_root": str(project_root),
                "generated_at": datetime.now().isoformat(),
                "source": summary.get("source", "heuristic"),
            },
            "request_sample": (request or "")[:500],
            "structure": structure,
            "summary": summary,
        }
        try:
            cache.parent.mkdir(parents=True, exist_ok=True)
            cache.write_text(json.dumps(document, indent=2), encoding="utf-8")
        except OSError as e:
            self.logger.log_error("modeler", e, {"path": str(cache)})
        return summary

    def _load_cached(self, cache: Path) -> Optional[Dict[str, Any]]:
        if not cache.is_file():
            return None
        try:
            data = json.loads(cache.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            self.logger.log_error("modeler", e, {"path": str(cache)})
            return None
        summary = data.get("summary") if isinstance(data, dict) else None
        return summary if isinstance(summary, dict) else None

    def build_digest(self, project_root: Path) -> Dict[str, Any]:
        """Shallow structural digest: top level, extension counts, samples, manifests."""
        try:
            files = iter_project_files(project_root, limit=MAX_DIGEST_FILES)
            top_level = sorted(
                child.name + ("/" if child.is_dir() else "")
                for child in project_root.iterdir()
                if child.name not in config.EXCLUDE_DIRS
            ) if project_root.is_dir() else []
        except OSError as e:
            self.logger.log_error("modeler", e, {"root": str(project_root)})
            files, top_level = [], []

        rel_files = [p.relative_to(project_root).as_posix() for p in files]
        extensions = Counter(Path(name).suffix.lower() for name in rel_files if Path(name).suffix)

        manifests: Dict[str, str] = {}
        for name in detect_manifests(project_root):
            try:
                manifests[name] = (project_root / name).read_text(encoding="utf-8", errors="replace")[
                    :MANIFEST_EXCERPT_CHARS
                ]
            except OSError:
                continue

        return {
            "top_level": top_level,
            "file_count": len(rel_files),
            "truncated": len(rel_files) >= MAX_DIGEST_FILES,
            "extensions": dict(extensions.most_common(15)),
            "sample_files": rel_files[:SAMPLE_FILES],
            "manifests": manifests,
        }

    def _classify(self, structure: Dict[str, Any], request: str) -> Optional[Dict[str, Any]]:
        if self.client is None:
            return None
        prompt = (
            f"User request: {request or '(none)'}\n\n"
            f"Project digest:\n{json.dumps(structure, indent=2)[:12000]}"
        )
        try:
            text = self.client.complete(SYSTEM_PROMPT, [{"role": "user", "content": prompt}])
            payload = extract_with_cleanup(text)
        except (CompletionError, PayloadExtractionError) as e:
            self.logger.log("modeler", "CLASSIFY_FAILED", {"error": str(e)}, "WARNING")
            return None
        except Exception as e:
            # the modeler degrades instead of failing the run
            self.logger.log_error("modeler", e, {"stage": "classify"})
            return None
        if not isinstance(payload, dict):
            return None

        heuristic = self.heuristic_summary(structure)
        return {
            "projectType": str(payload.get("projectType") or "unknown"),
            "framework": str(payload.get("framework") or "unknown"),
            "languages": _string_list(payload.get("languages")) or heuristic["languages"],
            "mainAreas": _string_list(payload.get("mainAreas")) or heuristic["mainAreas"],
            "keyFiles": _string_list(payload.get("keyFiles")) or heuristic["keyFiles"],
            "notes": str(payload.get("notes") or ""),
            "source": "completion",
        }

    @staticmethod
    def heuristic_summary(structure: Dict[str, Any]) -> Dict[str, Any]:
        languages: List[str] = []
        for ext in structure.get("extensions", {}):
            language = EXTENSION_LANGUAGES.get(ext)
            if language and language not in languages:
                languages.append(language)
        areas = [name.rstrip("/") for name in structure.get("top_level", []) if name.endswith("/")]
        key_files = list(structure.get("manifests", {})) + [
            name for name in structure.get("sample_files", [])[:10]
            if name not in structure.get("manifests", {})
        ]
        return {
            "projectType": "unknown",
            "framework": "unknown",
            "languages": languages,
            "mainAreas": areas,
            "keyFiles": key_files[:15],
            "notes": HEURISTIC_NOTE,
            "source": "heuristic",
        }


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value if item]
    return []
