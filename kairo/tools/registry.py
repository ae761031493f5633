#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Tool registry.

The registry is an explicit value built once at startup with
``build_default_registry()`` and handed to the dispatcher, the decomposer and
the single-loop agent. Each entry couples a handler with the parameter schema
that the dispatcher validates against before the handler is called.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from kairo.tools import command_runner, file_ops, project_info, search, structural
from kairo.tools.errors import ToolValidationError, UnknownToolError
from kairo.tools.workspace import resolve_in_root

Handler = Callable[[Path, Dict[str, Any]], Any]

_TYPE_MAP = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


@dataclass
class ToolSpec:
    """One registry entry."""

    name: str
    description: str
    handler: Handler
    properties: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)
    path_params: List[str] = field(default_factory=list)
    mutates: bool = False
    # files a call may change when they are not simply the path params
    affected_paths: Optional[Callable[[Path, Dict[str, Any]], List[Path]]] = None

    def schema(self) -> Dict[str, Any]:
        """OpenAI-style function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.properties,
                    "required": self.required,
                },
            },
        }

    def validate(self, params: Any, root: Optional[Path] = None) -> Dict[str, Any]:
        """Check ``params`` against the schema and return a copy.

        Raises:
            ToolValidationError: on any schema or path violation.
        """
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ToolValidationError(f"{self.name}: parameters must be an object")

        problems: List[str] = []
        for key in self.required:
            if key not in params or params[key] is None:
                problems.append(f"missing required parameter '{key}'")

        for key, value in params.items():
            prop = self.properties.get(key)
            if prop is None:
                problems.append(f"unexpected parameter '{key}'")
                continue
            if value is None and key not in self.required:
                continue
            expected = _TYPE_MAP.get(prop.get("type", "string"), (object,))
            # bool is an int subclass; keep them apart
            if isinstance(value, bool) and bool not in expected:
                problems.append(f"'{key}' must be {prop.get('type')}")
            elif not isinstance(value, expected):
                problems.append(f"'{key}' must be {prop.get('type')}")
            elif "enum" in prop and value not in prop["enum"]:
                problems.append(f"'{key}' must be one of {prop['enum']}")

        if problems:
            raise ToolValidationError(f"{self.name}: " + "; ".join(problems))

        if root is not None:
            for key in self.path_params:
                if params.get(key) is not None:
                    resolve_in_root(root, params[key])

        return {k: v for k, v in params.items() if v is not None}

    def edit_targets(self, root: Path, args: Dict[str, Any]) -> List[Path]:
        """Files a call to a mutating tool may create, change or remove."""
        if not self.mutates:
            return []
        if self.affected_paths is not None:
            return list(self.affected_paths(root, args))
        targets = []
        for key in self.path_params:
            if args.get(key) is not None:
                path = resolve_in_root(root, args[key])
                if not path.is_dir():
                    targets.append(path)
        return targets


class ToolRegistry:
    """Name -> ToolSpec mapping."""

    def __init__(self, specs: Optional[List[ToolSpec]] = None):
        self._specs: Dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._specs[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def names(self) -> List[str]:
        return list(self._specs)

    def schemas(self) -> List[Dict[str, Any]]:
        return [spec.schema() for spec in self]

    def describe(self) -> str:
        """Compact catalogue for prompts: one line per tool."""
        lines = []
        for spec in self:
            params = []
            for key, prop in spec.properties.items():
                marker = "" if key in spec.required else "?"
                params.append(f"{key}{marker}: {prop.get('type', 'string')}")
            lines.append(f"- {spec.name}({', '.join(params)}): {spec.description}")
        return "\n".join(lines)


def _str(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _int(description: str) -> Dict[str, Any]:
    return {"type": "integer", "description": description}


def _bool(description: str) -> Dict[str, Any]:
    return {"type": "boolean", "description": description}


def build_default_registry() -> ToolRegistry:
    """Build the standard tool catalogue."""
    return ToolRegistry([
        # File operations
        ToolSpec(
            "list_files", "List a directory (optionally recursive).",
            lambda root, args: file_ops.list_files(root, args.get("path", "."), args.get("recursive", False)),
            {"path": _str("Directory relative to the project root"), "recursive": _bool("Walk sub-directories")},
            path_params=["path"],
        ),
        ToolSpec(
            "read_file", "Read a text file.",
            lambda root, args: file_ops.read_file(root, args["path"]),
            {"path": _str("File path")}, ["path"], ["path"],
        ),
        ToolSpec(
            "write_file", "Create or overwrite a file with the given content.",
            lambda root, args: file_ops.write_file(root, args["path"], args["content"]),
            {"path": _str("File path"), "content": _str("Full file content")},
            ["path", "content"], ["path"], mutates=True,
        ),
        ToolSpec(
            "create_file", "Create a new file; fails if it exists.",
            lambda root, args: file_ops.create_file(root, args["path"], args.get("content", "")),
            {"path": _str("File path"), "content": _str("Initial content")},
            ["path"], ["path"], mutates=True,
        ),
        ToolSpec(
            "append_file", "Append content to a file.",
            lambda root, args: file_ops.append_file(root, args["path"], args["content"]),
            {"path": _str("File path"), "content": _str("Content to append")},
            ["path", "content"], ["path"], mutates=True,
        ),
        ToolSpec(
            "delete_file", "Delete a file or directory.",
            lambda root, args: file_ops.delete_file(root, args["path"]),
            {"path": _str("Path to delete")}, ["path"], ["path"], mutates=True,
        ),
        ToolSpec(
            "rename_file", "Move or rename a file.",
            lambda root, args: file_ops.rename_file(root, args["old_path"], args["new_path"]),
            {"old_path": _str("Current path"), "new_path": _str("New path")},
            ["old_path", "new_path"], ["old_path", "new_path"], mutates=True,
        ),
        ToolSpec(
            "copy_file", "Copy a file or directory.",
            lambda root, args: file_ops.copy_file(root, args["src_path"], args["dest_path"]),
            {"src_path": _str("Source path"), "dest_path": _str("Destination path")},
            ["src_path", "dest_path"], ["src_path", "dest_path"], mutates=True,
        ),
        ToolSpec(
            "stat_file", "Size, type and modification time of a path.",
            lambda root, args: file_ops.stat_file(root, args["path"]),
            {"path": _str("Path")}, ["path"], ["path"],
        ),
        ToolSpec(
            "tail_file", "Last N lines of a file.",
            lambda root, args: file_ops.tail_file(root, args["path"], args.get("lines", 50)),
            {"path": _str("File path"), "lines": _int("Number of lines")}, ["path"], ["path"],
        ),
        # Code search
        ToolSpec(
            "search_code", "Search text (or a regex) across project files.",
            lambda root, args: search.search_code(
                root, args["query"], args.get("path", "."), args.get("regex", False), args.get("include"),
            ),
            {
                "query": _str("Text or pattern"),
                "path": _str("Directory or file to search"),
                "regex": _bool("Treat query as a regular expression"),
                "include": _str("Filename glob filter, e.g. *.tsx"),
            },
            ["query"], ["path"],
        ),
        ToolSpec(
            "find_symbol", "Locate the definition of a function, class or variable.",
            lambda root, args: search.find_symbol(root, args["name"], args.get("path", ".")),
            {"name": _str("Identifier"), "path": _str("Directory to search")}, ["name"], ["path"],
        ),
        ToolSpec(
            "find_references", "Find every usage of an identifier.",
            lambda root, args: search.find_references(root, args["symbol"], args.get("path", ".")),
            {"symbol": _str("Identifier"), "path": _str("Directory to search")}, ["symbol"], ["path"],
        ),
        ToolSpec(
            "get_outline", "List the declarations in a source file.",
            lambda root, args: search.get_outline(root, args["path"]),
            {"path": _str("Source file")}, ["path"], ["path"],
        ),
        # Project metadata
        ToolSpec(
            "get_project_config", "Parse the project manifest (package.json, pyproject.toml ...).",
            lambda root, args: project_info.get_project_config(root, args.get("path")),
            {"path": _str("Manifest path; first detected manifest when omitted")}, path_params=["path"],
        ),
        ToolSpec(
            "list_dependencies", "Declared dependencies grouped by package manager.",
            lambda root, args: project_info.list_dependencies(root),
        ),
        # Structural edits
        ToolSpec(
            "ast_edit", "Insert, replace or delete the statements starting on the given lines (whole lines outside Python); rejects edits that break syntax.",
            lambda root, args: structural.ast_edit(root, args["path"], args["edits"]),
            {
                "path": _str("File path"),
                "edits": {
                    "type": "array",
                    "description": "Objects {op: insert|replace|delete, line, end_line?, text?}",
                },
            },
            ["path", "edits"], ["path"], mutates=True,
        ),
        ToolSpec(
            "refactor_symbol", "Rename an identifier in Python and JS/TS sources; strings and comments in Python are left alone.",
            lambda root, args: structural.refactor_symbol(
                root, args["old_name"], args["new_name"], args.get("path", "."), args.get("include"),
            ),
            {
                "old_name": _str("Current identifier"),
                "new_name": _str("New identifier"),
                "path": _str("Directory or file scope"),
                "include": _str("Filename glob filter"),
            },
            ["old_name", "new_name"], ["path"], mutates=True,
            affected_paths=lambda root, args: structural.rename_candidates(
                root, args.get("path", "."), args.get("include"),
            ),
        ),
        # Commands
        ToolSpec(
            "run_command", "Run an allowlisted command (no shell operators) in the project.",
            lambda root, args: command_runner.run_command_safe(
                root, args["command"], args.get("cwd"), args.get("timeout"),
            ),
            {"command": _str("Command line"), "cwd": _str("Working directory"), "timeout": _int("Seconds")},
            ["command"], ["cwd"], mutates=True,
        ),
        ToolSpec(
            "run_tests", "Run the project's test suite.",
            lambda root, args: command_runner.run_tests(root, args.get("command"), args.get("timeout")),
            {"command": _str("Override the detected test command"), "timeout": _int("Seconds")},
        ),
        ToolSpec(
            "install_dependency", "Install a package, or all declared dependencies when package is omitted.",
            lambda root, args: command_runner.install_dependency(
                root, args.get("package"), args.get("manager", "auto"), args.get("dev", False),
            ),
            {
                "package": _str("Package specifier"),
                "manager": {"type": "string", "enum": ["auto", "npm", "pip"], "description": "Package manager"},
                "dev": _bool("Install as a dev dependency"),
            },
            mutates=True,
        ),
    ])
