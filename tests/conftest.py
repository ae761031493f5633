import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

import pytest

from kairo.debug_logger import DebugLogger
from kairo.llm.client import CompletionClient, CompletionError
from kairo.state.store import StateStore
from kairo.tools.registry import build_default_registry


@pytest.fixture(autouse=True)
def reset_debug_logger():
    """Reset the singleton logger before and after each test."""
    DebugLogger._instance = None
    DebugLogger._loggers = {}
    yield
    instance = DebugLogger._instance
    if instance and instance.enabled:
        instance.close()
    DebugLogger._instance = None
    DebugLogger._loggers = {}


Reply = Union[str, Dict[str, Any], List[Any], Exception]


class ScriptedClient(CompletionClient):
    """Completion client that replays canned replies and records every call.

    A reply may be a string, a dict/list (sent as JSON), an exception to raise,
    or a callable taking ``(system, messages)``. Once the script runs out the
    ``default`` reply is repeated.
    """

    model = "scripted"

    def __init__(self, replies: List[Union[Reply, Callable]] = None, default: Reply = None):
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    def complete(self, system, messages, **kwargs):
        self.calls.append({"system": system, "messages": [dict(m) for m in messages]})
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise CompletionError("script exhausted")
        if callable(reply) and not isinstance(reply, type):
            reply = reply(system, messages)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply


@pytest.fixture
def scripted_client():
    return ScriptedClient


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "state")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text(
        "import os\n\n\ndef greet(name):\n    return f'hello {name}'\n\n\nclass Greeter:\n    pass\n",
        encoding="utf-8",
    )
    (root / "README.md").write_text("# demo\n", encoding="utf-8")
    (root / "requirements.txt").write_text("requests>=2.0\nPyYAML==6.0\n", encoding="utf-8")
    return root


@pytest.fixture
def summary_cached(project: Path) -> Path:
    """Pre-seed the project summary cache so the modeler never calls the client."""
    meta = project / ".kairo"
    meta.mkdir()
    (meta / "project_summary.json").write_text(json.dumps({
        "meta": {"source": "test"},
        "structure": {},
        "summary": {"projectType": "library", "framework": "unknown", "languages": ["Python"]},
    }), encoding="utf-8")
    return project
