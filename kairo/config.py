#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Configuration constants and settings for kairo."""

import os
import pathlib
from typing import List

# Configuration
ROOT = pathlib.Path(os.getcwd()).resolve()
KAIRO_DIR = pathlib.Path(os.getenv("KAIRO_HOME", str(ROOT / ".kairo"))).resolve()
STATE_DIR = pathlib.Path(os.getenv("KAIRO_STATE_DIR", str(KAIRO_DIR / "state")))
LOGS_DIR = KAIRO_DIR / "logs"

# Directory that holds one sub-directory per project (served by get-projects)
PROJECTS_DIR = pathlib.Path(os.getenv("KAIRO_PROJECTS_DIR", str(ROOT / "projects")))

# Per-project metadata lives beside the project sources
PROJECT_META_DIRNAME = ".kairo"
SUMMARY_FILENAME = os.getenv("KAIRO_SUMMARY_FILE", "project_summary.json")

EXCLUDE_DIRS = {
    ".git", ".hg", ".svn", ".idea", ".vscode", "__pycache__", ".pytest_cache",
    "node_modules", "dist", "build", ".next", "out", "coverage", ".cache",
    ".venv", "venv", "target", PROJECT_META_DIRNAME,
}

MANIFEST_FILES: List[str] = [
    "package.json", "pyproject.toml", "requirements.txt", "setup.py",
    "Cargo.toml", "go.mod", "pom.xml", "composer.json", "Gemfile",
    "pubspec.yaml", "docker-compose.yml", "tsconfig.json",
]

# Planning / decomposition bounds
MIN_OBJECTIVES = 2
MAX_OBJECTIVES = int(os.getenv("KAIRO_MAX_OBJECTIVES", "8"))
MIN_SUBTASKS = 2
MAX_SUBTASKS = int(os.getenv("KAIRO_MAX_SUBTASKS", "6"))
DECOMPOSE_REGENERATIONS = 1

# Tool execution policy
MAX_TOOL_ATTEMPTS = int(os.getenv("KAIRO_MAX_TOOL_ATTEMPTS", "3"))
RETRY_BACKOFF_BASE = float(os.getenv("KAIRO_RETRY_BACKOFF_BASE", "2"))
COMMAND_TIMEOUT = int(os.getenv("KAIRO_COMMAND_TIMEOUT", "120"))
INSTALL_TIMEOUT = int(os.getenv("KAIRO_INSTALL_TIMEOUT", "600"))
MAX_READ_BYTES = int(os.getenv("KAIRO_MAX_READ_BYTES", str(512 * 1024)))
MAX_OUTPUT_CHARS = int(os.getenv("KAIRO_MAX_OUTPUT_CHARS", "8000"))
MAX_SEARCH_RESULTS = int(os.getenv("KAIRO_MAX_SEARCH_RESULTS", "200"))

ALLOW_CMDS = {
    "python", "python3", "pip", "pytest", "ruff", "black", "mypy",
    "node", "npm", "npx", "pnpm", "yarn", "tsc", "eslint", "prettier",
    "git", "make", "ls", "cat", "echo", "go", "cargo",
}

# Single-loop agent
MAX_LOOP_ITERATIONS = int(os.getenv("KAIRO_MAX_ITERATIONS", "10"))
MAX_PARSE_CORRECTIONS = int(os.getenv("KAIRO_MAX_PARSE_CORRECTIONS", "3"))

# Completion service
LLM_PROVIDER = os.getenv("KAIRO_LLM_PROVIDER", "openai").lower()
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://openrouter.ai/api/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", os.getenv("OPENROUTER_API_KEY", ""))
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "openai/gpt-4o-mini")
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3-coder:480b-cloud")
LLM_TIMEOUT = int(os.getenv("KAIRO_LLM_TIMEOUT", "120"))
LLM_TEMPERATURE = float(os.getenv("KAIRO_LLM_TEMPERATURE", "0.2"))

# API server
SERVER_HOST = os.getenv("KAIRO_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("KAIRO_PORT", "8765"))

# Logging configuration
LOG_RETENTION_LIMIT = int(os.getenv("KAIRO_LOG_RETENTION", "7"))


def set_project_root(path: pathlib.Path) -> pathlib.Path:
    """Point ROOT and the derived directories at ``path``.

    Used by the CLI when ``--project`` names a directory other than the cwd.
    """
    global ROOT, KAIRO_DIR, STATE_DIR, LOGS_DIR

    resolved = pathlib.Path(path).resolve()
    if not resolved.is_dir():
        raise ValueError(f"Project root must be a directory: {path}")

    ROOT = resolved
    if not os.getenv("KAIRO_HOME"):
        KAIRO_DIR = ROOT / PROJECT_META_DIRNAME
    if not os.getenv("KAIRO_STATE_DIR"):
        STATE_DIR = KAIRO_DIR / "state"
    LOGS_DIR = KAIRO_DIR / "logs"
    return ROOT
