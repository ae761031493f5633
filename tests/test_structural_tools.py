import pytest

from kairo.tools import structural
from kairo.tools.dispatcher import ToolDispatcher
from kairo.tools.errors import ToolErrorType, ToolExecutionError, ToolValidationError


def test_ast_edit_applies_edits_against_original_line_numbers(project):
    structural.ast_edit(project, "src/app.py", [
        {"op": "insert", "line": 1, "text": "import sys"},
        {"op": "replace", "line": 5, "text": "    return f'hi {name}'"},
        {"op": "delete", "line": 9},
        {"op": "insert", "line": 9, "text": "    greeting = 'hi'"},
    ])
    lines = (project / "src" / "app.py").read_text().splitlines()
    assert lines[0] == "import sys"
    assert lines[1] == "import os"
    assert "    return f'hi {name}'" in lines
    assert lines[-1] == "    greeting = 'hi'"


def test_ast_edit_reindents_and_keeps_comments(project):
    (project / "src" / "app.py").write_text(
        "import os\n\n\ndef greet(name):\n    # friendly\n    return f'hello {name}'\n"
    )
    structural.ast_edit(project, "src/app.py", [
        {"op": "insert", "line": 6, "text": "if not name:\n    name = 'world'"},
    ])
    assert (project / "src" / "app.py").read_text() == (
        "import os\n\n\ndef greet(name):\n"
        "    if not name:\n        name = 'world'\n"
        "    # friendly\n    return f'hello {name}'\n"
    )


def test_ast_edit_replaces_whole_statement(project):
    structural.ast_edit(project, "src/app.py", [
        {"op": "replace", "line": 8, "text": "class Greeter:\n    loud = True"},
        {"op": "insert", "line": 10, "text": "VERSION = 1"},
    ])
    text = (project / "src" / "app.py").read_text()
    assert text.endswith("\n\n\nclass Greeter:\n    loud = True\nVERSION = 1\n")
    assert "pass" not in text


def test_ast_edit_rejects_lines_that_do_not_start_a_statement(project):
    with pytest.raises(ToolValidationError, match="does not start a statement"):
        structural.ast_edit(project, "src/app.py", [{"op": "delete", "line": 2}])


def test_ast_edit_refuses_to_write_broken_python(project):
    before = (project / "src" / "app.py").read_text()
    with pytest.raises(ToolExecutionError) as excinfo:
        structural.ast_edit(project, "src/app.py", [{"op": "replace", "line": 4, "text": "def greet(name"}])
    assert excinfo.value.error_type is ToolErrorType.SYNTAX_ERROR
    assert str(excinfo.value).startswith("Syntax error")
    assert (project / "src" / "app.py").read_text() == before


def test_ast_edit_syntax_error_is_terminal_through_dispatcher(project, registry):
    result = ToolDispatcher(registry, project).dispatch("ast_edit", {
        "path": "src/app.py",
        "edits": [{"op": "insert", "line": 1, "text": "class ("}],
    })
    assert not result.success
    assert not result.retryable


@pytest.mark.parametrize("edit", [
    {"op": "move", "line": 1, "text": "x"},
    {"op": "replace", "line": 0, "text": "x"},
    {"op": "replace", "line": 2, "end_line": 1, "text": "x"},
    {"op": "insert", "line": 1},
])
def test_ast_edit_validates_edits(project, edit):
    with pytest.raises(ToolValidationError):
        structural.ast_edit(project, "src/app.py", [edit])


def test_ast_edit_checks_json(project):
    (project / "data.json").write_text('{\n  "a": 1\n}\n')
    with pytest.raises(ToolExecutionError):
        structural.ast_edit(project, "data.json", [{"op": "replace", "line": 2, "text": '  "a": 1,,'}])


def test_refactor_symbol_renames_on_word_boundaries(project):
    (project / "src" / "use.py").write_text("from app import greet\n\ngreet('x')\ngreeting = 1\n")
    result = structural.refactor_symbol(project, "greet", "welcome")
    assert result["replacements"] == 3
    assert result["files"] == {"src/app.py": 1, "src/use.py": 2}
    assert "greeting = 1" in (project / "src" / "use.py").read_text()


def test_refactor_symbol_leaves_strings_and_comments_alone(project):
    (project / "src" / "app.py").write_text(
        "def greet():\n    # greet is called from main\n    return \"greet the user\"\n\n\ngreet()\n"
    )
    result = structural.refactor_symbol(project, "greet", "welcome")
    assert result["replacements"] == 2
    assert (project / "src" / "app.py").read_text() == (
        "def welcome():\n    # greet is called from main\n    return \"greet the user\"\n\n\nwelcome()\n"
    )


def test_refactor_symbol_renames_attribute_access(project):
    (project / "src" / "use.py").write_text("import app\n\napp.greet(\"greet\")\n")
    structural.refactor_symbol(project, "greet", "welcome", path="src/use.py")
    assert (project / "src" / "use.py").read_text() == "import app\n\napp.welcome(\"greet\")\n"


def test_refactor_symbol_skips_prose_files(project):
    (project / "README.md").write_text("Call greet to say hello.\n")
    result = structural.refactor_symbol(project, "greet", "welcome")
    assert "README.md" not in result["files"]
    assert (project / "README.md").read_text() == "Call greet to say hello.\n"


def test_refactor_symbol_missing_symbol(project):
    with pytest.raises(FileNotFoundError, match="Symbol not found"):
        structural.refactor_symbol(project, "does_not_exist", "other")


def test_refactor_symbol_rejects_bad_identifiers(project):
    with pytest.raises(ToolValidationError):
        structural.refactor_symbol(project, "greet", "not valid")
