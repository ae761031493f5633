import pytest

from kairo.execution.decomposer import DecompositionError, Decomposer
from kairo.llm.client import CompletionError
from kairo.models import Objective


@pytest.fixture
def objective(store):
    session = store.create_session()
    objective = Objective(session.id, "Create the contact form", 1)
    store.add_objectives(session.id, [objective])
    return objective


def test_valid_decomposition_on_first_try(registry, project, objective, scripted_client):
    client = scripted_client([{"subtasks": [
        {"name": "Inspect app", "tool": "read_file", "parameters": {"path": "src/app.py"}},
        {"name": "Write form", "tool": "write_file", "parameters": {"file_path": "src/form.py", "content": "x"}},
    ]}])
    entries = Decomposer(client, registry).decompose("add form", {}, objective, project)

    assert len(client.calls) == 1
    assert [e.tool for e in entries] == ["read_file", "write_file"]
    # aliases are mapped onto schema names before validation
    assert entries[1].parameters == {"path": "src/form.py", "content": "x"}


def test_unknown_tool_triggers_exactly_one_regeneration(registry, project, objective, scripted_client):
    bad = {"subtasks": [{"name": "Move", "tool": "teleport_file", "parameters": {"path": "a"}}]}
    client = scripted_client([bad, bad])

    with pytest.raises(DecompositionError) as excinfo:
        Decomposer(client, registry).decompose("add form", {}, objective, project)

    assert len(client.calls) == 2
    assert "Unknown tool: teleport_file" in str(excinfo.value)
    corrective = client.calls[1]["messages"][-1]["content"]
    assert "teleport_file" in corrective
    assert "read_file" in corrective


def test_regeneration_can_recover(registry, project, objective, scripted_client):
    client = scripted_client([
        "not json",
        {"subtasks": [{"name": "List", "tool": "list_files", "parameters": {}}]},
    ])
    entries = Decomposer(client, registry).decompose("x", {}, objective, project)
    assert len(client.calls) == 2
    assert entries[0].tool == "list_files"


def test_path_traversal_is_reported(registry, project, objective, scripted_client):
    escape = {"subtasks": [{"name": "Steal", "tool": "read_file", "parameters": {"path": "../../etc/passwd"}}]}
    with pytest.raises(DecompositionError) as excinfo:
        Decomposer(scripted_client([escape, escape]), registry).decompose("x", {}, objective, project)
    assert "outside the project root" in str(excinfo.value)


def test_validate_truncates_to_six_entries(registry, project):
    payload = {"subtasks": [{"name": f"s{n}", "tool": "list_files", "parameters": {}} for n in range(9)]}
    entries, problems = Decomposer(None, registry).validate(payload, project)
    assert problems == []
    assert len(entries) == 6


def test_single_entry_is_accepted(registry, project):
    entries, problems = Decomposer(None, registry).validate(
        [{"name": "only", "tool": "list_files", "parameters": {}}], project,
    )
    assert problems == [] and len(entries) == 1


def test_completion_errors_propagate(registry, project, objective, scripted_client):
    with pytest.raises(CompletionError):
        Decomposer(scripted_client([CompletionError("down")]), registry).decompose("x", {}, objective, project)
