import pytest

from kairo.tools import file_ops, project_info, search
from kairo.tools.errors import PathOutsideRootError, ToolExecutionError


def test_list_files_skips_excluded_dirs(project):
    (project / "node_modules" / "pkg").mkdir(parents=True)
    (project / "node_modules" / "pkg" / "index.js").write_text("x")

    flat = file_ops.list_files(project)
    assert {"path": "src", "type": "dir"} in flat["entries"]
    assert all(not e["path"].startswith("node_modules") for e in flat["entries"])

    recursive = file_ops.list_files(project, ".", recursive=True)
    paths = [e["path"] for e in recursive["entries"]]
    assert "src/app.py" in paths
    assert not any("node_modules" in p for p in paths)


def test_write_then_read_reports_creation(project):
    first = file_ops.write_file(project, "src/new/module.py", "x = 1\n")
    assert first["created"] is True
    second = file_ops.write_file(project, "src/new/module.py", "x = 2\n")
    assert second["created"] is False
    assert file_ops.read_file(project, "src/new/module.py")["content"] == "x = 2\n"


def test_create_file_refuses_existing(project):
    with pytest.raises(FileExistsError):
        file_ops.create_file(project, "README.md", "again")


def test_append_and_tail(project):
    file_ops.append_file(project, "README.md", "line two\nline three\n")
    assert file_ops.tail_file(project, "README.md", lines=2)["lines"] == ["line two", "line three"]


def test_delete_refuses_project_root(project):
    with pytest.raises(PermissionError, match="Permission denied"):
        file_ops.delete_file(project, ".")


def test_delete_rename_copy(project):
    file_ops.copy_file(project, "README.md", "docs/README.copy.md")
    assert (project / "docs" / "README.copy.md").read_text() == "# demo\n"

    file_ops.rename_file(project, "docs/README.copy.md", "docs/INDEX.md")
    assert not (project / "docs" / "README.copy.md").exists()

    assert file_ops.delete_file(project, "docs")["deleted"] == "dir"
    assert not (project / "docs").exists()


def test_read_missing_and_directory(project):
    with pytest.raises(FileNotFoundError, match="File not found: missing.txt"):
        file_ops.read_file(project, "missing.txt")
    with pytest.raises(ToolExecutionError, match="Not a file"):
        file_ops.read_file(project, "src")


def test_traversal_is_rejected(project):
    with pytest.raises(PathOutsideRootError):
        file_ops.write_file(project, "../outside.txt", "nope")


def test_stat_file(project):
    info = file_ops.stat_file(project, "src/app.py")
    assert info["type"] == "file"
    assert info["text"] is True
    assert info["size"] > 0


def test_search_code_literal_and_regex(project):
    literal = search.search_code(project, "GREET")
    assert [m["line"] for m in literal["matches"]] == [4, 8]
    regex = search.search_code(project, r"^class\s+\w+", regex=True)
    assert regex["matches"][0]["file"] == "src/app.py"
    assert regex["truncated"] is False


def test_find_symbol_and_references(project):
    found = search.find_symbol(project, "greet")
    assert found["definitions"] == [{"file": "src/app.py", "line": 4, "text": "def greet(name):"}]
    refs = search.find_references(project, "Greeter")
    assert len(refs["references"]) == 1


def test_get_outline(project):
    outline = search.get_outline(project, "src/app.py")["outline"]
    assert [(o["kind"], o["name"]) for o in outline] == [("def", "greet"), ("class", "Greeter")]


def test_project_config_and_dependencies(project):
    (project / "pyproject.toml").write_text(
        '[project]\nname = "demo"\ndependencies = ["aiohttp>=3.9"]\n', encoding="utf-8",
    )
    config = project_info.get_project_config(project, "pyproject.toml")
    assert config["config"]["project"]["name"] == "demo"

    deps = project_info.list_dependencies(project)
    assert deps["managers"] == ["pip"]
    assert deps["dependencies"]["pip"] == {"requests": ">=2.0", "PyYAML": "==6.0", "aiohttp": ">=3.9"}


def test_yaml_manifest(project):
    (project / "pubspec.yaml").write_text("name: demo\ndependencies:\n  http: ^1.0\n", encoding="utf-8")
    config = project_info.get_project_config(project, "pubspec.yaml")
    assert config["config"]["dependencies"] == {"http": "^1.0"}
