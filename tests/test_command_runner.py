import json
import subprocess

import pytest

from kairo.tools import command_runner
from kairo.tools.dispatcher import ToolDispatcher
from kairo.tools.errors import PathOutsideRootError, ToolErrorType, ToolExecutionError, ToolValidationError


@pytest.fixture
def fake_run(monkeypatch):
    """Capture subprocess.run calls and return a configurable CompletedProcess."""
    calls = []
    state = {"returncode": 0, "stdout": "ok\n", "stderr": "", "raise": None}

    def run(args, **kwargs):
        calls.append({"args": args, **kwargs})
        if state["raise"] is not None:
            raise state["raise"]
        return subprocess.CompletedProcess(args, state["returncode"], state["stdout"], state["stderr"])

    monkeypatch.setattr(command_runner.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(command_runner.subprocess, "run", run)
    return calls, state


@pytest.mark.parametrize("cmd", [
    "ls; rm -rf /",
    "cat a.txt | grep x",
    "echo $(whoami)",
    "echo hi > out.txt",
    "npm test && npm run build",
])
def test_shell_metacharacters_are_denied(project, cmd):
    with pytest.raises(PermissionError, match="Permission denied"):
        command_runner.run_command_safe(project, cmd)


def test_command_outside_allowlist_is_denied(project, fake_run):
    with pytest.raises(PermissionError, match="not allowlisted"):
        command_runner.run_command_safe(project, "curl https://example.com")
    assert fake_run[0] == []


def test_successful_command_runs_without_shell_in_project(project, fake_run):
    calls, _ = fake_run
    result = command_runner.run_command_safe(project, "git status --short", cwd="src")
    assert result["rc"] == 0
    assert result["cwd"] == "src"
    assert calls[0]["args"] == ["/usr/bin/git", "status", "--short"]
    assert calls[0]["shell"] is False
    assert calls[0]["cwd"] == str(project.resolve() / "src")


def test_nonzero_exit_is_retryable_failure(project, fake_run):
    _, state = fake_run
    state.update(returncode=2, stdout="", stderr="boom")
    with pytest.raises(ToolExecutionError) as excinfo:
        command_runner.run_command_safe(project, "make build")
    assert excinfo.value.error_type is ToolErrorType.TRANSIENT
    assert excinfo.value.context["rc"] == 2


def test_timeout_surfaces_as_retryable_result(project, registry, fake_run):
    _, state = fake_run
    state["raise"] = subprocess.TimeoutExpired("npm", 5)
    result = ToolDispatcher(registry, project).dispatch("run_command", {"command": "npm test", "timeout": 5})
    assert not result.success
    assert result.error_type == ToolErrorType.TIMEOUT.value
    assert result.retryable
    assert "timed out after 5s" in result.error


def test_versioned_interpreter_names_are_allowlisted():
    assert command_runner._base_command("/usr/local/bin/python3.12") == "python"
    assert command_runner._base_command("npm.cmd") == "npm"


@pytest.mark.parametrize("cmd", [
    "cat /etc/passwd",
    "cat ../../etc/hosts",
    "ls ~",
    "git -C .. status",
    "git --git-dir=/tmp/other.git log",
])
def test_path_arguments_outside_project_are_refused(project, fake_run, cmd):
    with pytest.raises(PathOutsideRootError, match="outside the project root"):
        command_runner.run_command_safe(project, cmd)
    assert fake_run[0] == []


def test_relative_arguments_resolve_against_cwd(project, fake_run):
    calls, _ = fake_run
    command_runner.run_command_safe(project, "cat app.py", cwd="src")
    with pytest.raises(PathOutsideRootError):
        command_runner.run_command_safe(project, "cat ../../secret.txt", cwd="src")
    assert len(calls) == 1


def test_path_arguments_inside_project_are_allowed(project, fake_run):
    calls, _ = fake_run
    command_runner.run_command_safe(project, "cat src/app.py README.md")
    assert calls[0]["args"] == ["/usr/bin/cat", "src/app.py", "README.md"]


@pytest.mark.parametrize("cmd", [
    "python -c \"print(1)\"",
    "python3 -qc \"import os\"",
    "node -e \"process.exit(0)\"",
    "node --eval=1",
])
def test_inline_interpreter_code_is_denied(project, fake_run, cmd):
    with pytest.raises(PermissionError, match="inline code"):
        command_runner.run_command_safe(project, cmd)
    assert fake_run[0] == []


def test_dispatched_command_reading_outside_root_fails(project, registry, fake_run):
    result = ToolDispatcher(registry, project).dispatch("run_command", {"command": "cat /etc/passwd"})
    assert not result.success
    assert "outside the project root" in result.error
    assert fake_run[0] == []


def test_detect_test_command(project, tmp_path):
    (project / "package.json").write_text(json.dumps({"scripts": {"test": "jest"}}))
    assert command_runner._detect_test_command(project) == "npm test"

    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(FileNotFoundError, match="not found"):
        command_runner._detect_test_command(empty)


def test_install_dependency_passes_specifier_as_one_argument(project, fake_run):
    calls, _ = fake_run
    result = command_runner.install_dependency(project, "requests>=2.31")
    assert result["manager"] == "pip"
    assert calls[0]["args"][-3:] == ["pip", "install", "requests>=2.31"]


def test_install_dependency_rejects_odd_specifiers(project):
    with pytest.raises(ToolValidationError):
        command_runner.install_dependency(project, "requests; rm -rf /")
