"""
Safe subprocess execution for the command tools.

- Commands are parsed with shlex.split() and executed with shell=False
- Shell metacharacters (&&, ;, |, >, <, backticks, $() ...) are hard-rejected
- Only allowlisted executables may run
- Every call has a timeout; hitting it is a retryable failure
- Commands always run with the project root (or a directory inside it) as cwd
"""

import json
import os
import re
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from kairo import config
from kairo.tools.errors import ToolExecutionError, ToolErrorType, ToolValidationError
from kairo.tools.workspace import normalize_path, relative_to_root, resolve_in_root


FORBIDDEN_RE = re.compile(r"[;&|><`]|(\$\()|\r|\n")

FORBIDDEN_TOKENS = {"&&", "||", ";", "|", "&", ">", "<", ">>", "2>", "1>", "<<",
                    "2>&1", "1>&2", "`", "$(", "${"}

# path-looking arguments
_PATH_TOKEN_RE = re.compile(r"[\\/]|^\.\.?$|^[A-Za-z]:|^~")
_PATH_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{1,8}$")

# interpreter flags that run code given on the command line
INLINE_CODE_FLAGS = {
    "python": re.compile(r"^-[bBdEiIOqsSuvx]*c"),
    "node": re.compile(r"^(-[ep]|--eval|--print)(=|$)"),
}

_PACKAGE_RE = re.compile(r"^[A-Za-z0-9@][A-Za-z0-9@/._\-\[\],=<>~^*]*$")


def _parse_and_validate(cmd: str) -> Tuple[bool, str, List[str]]:
    """Parse and validate a command string for safe execution.

    Returns:
        Tuple of (is_valid, error_message, parsed_args)
    """
    if FORBIDDEN_RE.search(cmd):
        return False, "shell metacharacters not allowed (&&, ;, |, >, <, `, $(), etc.)", []

    try:
        args = shlex.split(cmd, posix=(os.name != "nt"))
    except ValueError as e:
        return False, f"failed to parse command: {e}", []

    if not args:
        return False, "empty command", []

    if any(tok in FORBIDDEN_TOKENS for tok in args):
        return False, "shell operators not allowed in arguments", []

    return True, "", args


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return "...[truncated]...\n" + text[-limit:]


def _base_command(executable: str) -> str:
    """``/usr/bin/python3.12`` -> ``python``; ``npm.cmd`` -> ``npm``."""
    name = Path(executable).name.lower()
    name = re.sub(r"\.(exe|cmd|bat)$", "", name)
    return re.sub(r"[\d.]+$", "", name) or name


def _looks_like_path_token(token: str) -> bool:
    if not token or token.startswith("-"):
        return False
    return bool(_PATH_TOKEN_RE.search(token) or _PATH_EXTENSION_RE.search(token))


def _check_arguments(root: Path, cwd: Path, args: List[str]) -> None:
    """Keep every path argument inside the project and refuse inline code.

    Raises:
        PathOutsideRootError: an argument resolves outside the project root.
        PermissionError: an interpreter was asked to run code from the command line.
    """
    inline_code = INLINE_CODE_FLAGS.get(_base_command(args[0]))
    for token in args[1:]:
        if inline_code and inline_code.match(token):
            raise PermissionError(f"Permission denied: inline code flag '{token}' is not allowed")
        value = token.partition("=")[2] if token.startswith("-") else token
        if not _looks_like_path_token(value):
            continue
        candidate = Path(os.path.expanduser(normalize_path(value)))
        if not candidate.is_absolute():
            candidate = cwd / candidate
        resolve_in_root(root, candidate)


def run_command_safe(root: Path, cmd: str, cwd: Optional[str] = None,
                     timeout: Optional[int] = None) -> Dict[str, Any]:
    """Execute ``cmd`` inside the project and return its output.

    Raises:
        PermissionError: the command is blocked by policy (terminal).
        PathOutsideRootError: an argument points outside the project root.
        ToolExecutionError: timeout (retryable) or non-zero exit code.
    """
    is_valid, error_msg, args = _parse_and_validate(cmd)
    if not is_valid:
        raise PermissionError(f"Permission denied: {error_msg}")
    _check_arguments(root, resolve_in_root(root, cwd or "."), args)
    return _execute(root, args, cmd, cwd=cwd, timeout=timeout)


def _execute(root: Path, args: List[str], cmd: str, cwd: Optional[str] = None,
             timeout: Optional[int] = None) -> Dict[str, Any]:
    timeout = int(timeout or config.COMMAND_TIMEOUT)
    resolved_cwd = resolve_in_root(root, cwd or ".")
    if not resolved_cwd.is_dir():
        raise FileNotFoundError(f"Working directory not found: {cwd}")

    args = list(args)
    executable = Path(args[0]).name
    if executable not in config.ALLOW_CMDS and _base_command(executable) not in config.ALLOW_CMDS:
        raise PermissionError(f"Permission denied: command '{executable}' is not allowlisted")

    resolved = shutil.which(args[0])
    if resolved is None:
        raise ToolExecutionError(f"Command not found: {args[0]}", ToolErrorType.NOT_FOUND)
    args[0] = resolved

    try:
        proc = subprocess.run(
            args,
            shell=False,
            cwd=str(resolved_cwd),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise ToolExecutionError(
            f"Command timed out after {timeout}s: {cmd}",
            ToolErrorType.TIMEOUT,
            context={"timeout": timeout},
        ) from exc

    result = {
        "cmd": cmd,
        "cwd": relative_to_root(root, resolved_cwd),
        "rc": proc.returncode,
        "stdout": _truncate(proc.stdout or "", config.MAX_OUTPUT_CHARS),
        "stderr": _truncate(proc.stderr or "", config.MAX_OUTPUT_CHARS),
    }
    if proc.returncode != 0:
        tail = (proc.stderr or proc.stdout or "").strip()[-500:]
        raise ToolExecutionError(
            f"Command exited with code {proc.returncode}: {tail}",
            ToolErrorType.TRANSIENT,
            context=result,
        )
    return result


def _detect_test_command(root: Path) -> str:
    package_json = Path(root) / "package.json"
    if package_json.is_file():
        scripts = json.loads(package_json.read_text(encoding="utf-8")).get("scripts", {})
        if "test" in scripts:
            return "npm test"
    if any((Path(root) / name).exists() for name in ("pytest.ini", "pyproject.toml", "setup.py", "tests")):
        return f"{shlex.quote(sys.executable)} -m pytest -q"
    if (Path(root) / "go.mod").is_file():
        return "go test ./..."
    if (Path(root) / "Cargo.toml").is_file():
        return "cargo test"
    raise FileNotFoundError("No test runner found for this project (test command not found)")


def run_tests(root: Path, command: Optional[str] = None, timeout: Optional[int] = None) -> Dict[str, Any]:
    cmd = command or _detect_test_command(root)
    return run_command_safe(root, cmd, timeout=timeout or config.COMMAND_TIMEOUT)


def install_dependency(root: Path, package: Optional[str] = None, manager: str = "auto",
                       dev: bool = False) -> Dict[str, Any]:
    """Install one package, or all declared dependencies when ``package`` is empty."""
    root = Path(root)
    if package and not _PACKAGE_RE.match(package):
        raise ToolValidationError(f"invalid package specifier: {package!r}")

    if manager == "auto":
        if (root / "package.json").is_file():
            manager = "npm"
        elif any((root / name).is_file() for name in ("requirements.txt", "pyproject.toml", "setup.py")):
            manager = "pip"
        else:
            manager = "npm" if package and package.startswith("@") else "pip"

    if manager == "npm":
        args = ["npm", "install"]
        if package:
            args.append(package)
            if dev:
                args.append("--save-dev")
    elif manager == "pip":
        args = [sys.executable, "-m", "pip", "install"]
        if package:
            args.append(package)
        elif (root / "requirements.txt").is_file():
            args.extend(["-r", "requirements.txt"])
        else:
            args.extend(["-e", "."])
    else:
        raise ToolValidationError(f"unsupported package manager: {manager}")

    result = _execute(root, args, " ".join(shlex.quote(a) for a in args), timeout=config.INSTALL_TIMEOUT)
    result["manager"] = manager
    result["package"] = package
    return result
