import threading

import pytest

from kairo.execution import events as ev
from kairo.execution.pipeline import CANCELLED_REASON, ExecutionPipeline, PipelineConfig
from kairo.llm.client import CompletionError
from kairo.models import EditOperation, MessageType, ObjectiveStatus, SessionStatus, SubtaskStatus

LIST_FILES = {"subtasks": [{"name": "List files", "tool": "list_files", "parameters": {}}]}
MISSING_FILE = {"subtasks": [
    {"name": "List files", "tool": "list_files", "parameters": {}},
    {"name": "Read ghost", "tool": "read_file", "parameters": {"path": "ghost.py"}},
]}


@pytest.fixture
def session(store):
    return store.create_session("pipeline", project="project")


def make_pipeline(client, registry, store, emitted, summarize=False):
    return ExecutionPipeline(
        client, registry, store,
        config=PipelineConfig(max_attempts=3, backoff_base=2.0, summarize_with_completion=summarize),
        emit=emitted.append,
        sleep=lambda seconds: None,
    )


def test_successful_run_marks_everything_done(registry, store, session, summary_cached, scripted_client):
    client = scripted_client([["Inspect the project", "Read the app"]], default=LIST_FILES)
    emitted = []
    result = make_pipeline(client, registry, store, emitted).run(session.id, "look around", summary_cached)

    assert result.success and not result.cancelled
    objectives = store.list_objectives(session.id)
    assert [o.status for o in objectives] == [ObjectiveStatus.DONE, ObjectiveStatus.DONE]
    for objective in objectives:
        group = store.get_group_for(session.id, objective.id)
        assert group.id == objective.subtask_group_id
        assert all(e.status is SubtaskStatus.DONE for e in group.entries)
    assert store.get_session(session.id).status is SessionStatus.IDLE
    assert "Completed 2 of 2 objectives." in result.summary


def test_failing_subtask_gets_two_passes_then_skipped(registry, store, session, summary_cached, scripted_client):
    client = scripted_client([["Read the ghost"], MISSING_FILE])
    emitted = []
    result = make_pipeline(client, registry, store, emitted).run(session.id, "read", summary_cached)

    assert not result.success
    objective = store.list_objectives(session.id)[0]
    assert objective.status is ObjectiveStatus.FAILED
    assert objective.reason == "1 subtask(s) skipped"

    group = store.get_group_for(session.id, objective.id)
    listed, ghost = group.entries
    assert listed.status is SubtaskStatus.DONE and listed.run_count == 1
    assert ghost.status is SubtaskStatus.SKIPPED
    assert ghost.run_count == 2
    # "not found" is terminal, so each pass dispatches once
    assert ghost.attempts == 2
    assert "File not found" in ghost.error

    ghost_events = [e["status"] for e in emitted if e["type"] == ev.SUBTASK_STATUS and e["position"] == 1]
    assert ghost_events == ["running", "running", "skipped"]


def test_transient_failure_is_retried_with_backoff(registry, store, session, summary_cached, scripted_client,
                                                   monkeypatch):
    spec = registry.get("list_files")
    original = spec.handler
    calls = {"n": 0}

    def flaky(root, args):
        calls["n"] += 1
        if calls["n"] < 3:
            raise TimeoutError("slow disk")
        return original(root, args)

    monkeypatch.setattr(spec, "handler", flaky)
    sleeps = []
    pipeline = ExecutionPipeline(
        scripted_client([["List"], LIST_FILES]), registry, store,
        config=PipelineConfig(max_attempts=3, backoff_base=2.0, summarize_with_completion=False),
        emit=None, sleep=sleeps.append,
    )
    result = pipeline.run(session.id, "list", summary_cached)

    assert result.success
    retries = [e for e in result.events if e["type"] == ev.TOOL_RETRY]
    assert [e["attempt"] for e in retries] == [1, 2]
    assert sleeps == [2.0, 4.0]


def test_every_transition_emits_one_ordered_event(registry, store, session, summary_cached, scripted_client):
    client = scripted_client([["One", "Two"]], default=LIST_FILES)
    emitted = []
    make_pipeline(client, registry, store, emitted).run(session.id, "go", summary_cached)

    assert [e["seq"] for e in emitted] == list(range(1, len(emitted) + 1))
    assert emitted[0]["type"] == ev.PLAN_CREATED
    assert emitted[-1]["type"] == ev.RUN_COMPLETE
    assert sum(1 for e in emitted if e["type"] in ev.TERMINAL_EVENTS) == 1

    flow = [(e["type"], e["status"]) for e in emitted if e["type"] in ev.TRANSITION_EVENTS]
    once = [
        (ev.OBJECTIVE_STATUS, "running"),
        (ev.SUBTASK_STATUS, "running"),
        (ev.SUBTASK_STATUS, "done"),
        (ev.OBJECTIVE_STATUS, "done"),
    ]
    assert flow == once * 2


def test_plan_message_tracks_objective_status(registry, store, session, summary_cached, scripted_client):
    client = scripted_client([["One"]], default=LIST_FILES)
    make_pipeline(client, registry, store, []).run(session.id, "go", summary_cached)

    messages = store.list_messages(session.id)
    assert [m.type for m in messages] == [
        MessageType.TEXT, MessageType.PLAN, MessageType.STEP, MessageType.SUMMARY,
    ]
    plan, step = messages[1], messages[2]
    assert plan.payload["objectives"][0]["status"] == "done"
    assert step.payload["status"] == "done"
    assert step.payload["attempts"] == 1


def test_stop_after_second_objective(registry, store, session, summary_cached, scripted_client):
    stop = threading.Event()
    emitted = []

    def sink(event):
        emitted.append(event)
        if event["type"] == ev.OBJECTIVE_STATUS and event["order"] == 2 and event["status"] == "done":
            stop.set()

    client = scripted_client([["One", "Two", "Three", "Four"]], default=LIST_FILES)
    pipeline = ExecutionPipeline(
        client, registry, store,
        config=PipelineConfig(summarize_with_completion=False),
        emit=sink, sleep=lambda seconds: None,
    )
    result = pipeline.run(session.id, "four things", summary_cached, stop_event=stop)

    assert result.cancelled and not result.success
    statuses = [(o.status, o.reason) for o in store.list_objectives(session.id)]
    assert statuses == [
        (ObjectiveStatus.DONE, None),
        (ObjectiveStatus.DONE, None),
        (ObjectiveStatus.FAILED, CANCELLED_REASON),
        (ObjectiveStatus.PENDING, None),
    ]
    assert store.get_session(session.id).status is SessionStatus.STOPPED
    assert emitted[-1]["type"] == ev.RUN_COMPLETE
    assert emitted[-1]["cancelled"] is True
    assert "Run was stopped before finishing." in result.summary
    assert "- Not started: 1" in result.summary


def test_stop_between_subtasks(registry, store, session, summary_cached, scripted_client):
    stop = threading.Event()

    def sink(event):
        if event["type"] == ev.SUBTASK_STATUS and event["position"] == 0 and event["status"] == "done":
            stop.set()

    client = scripted_client([["Two steps"], MISSING_FILE])
    pipeline = ExecutionPipeline(client, registry, store, config=PipelineConfig(summarize_with_completion=False),
                                 emit=sink, sleep=lambda seconds: None)
    result = pipeline.run(session.id, "x", summary_cached, stop_event=stop)

    assert result.cancelled
    objective = store.list_objectives(session.id)[0]
    assert objective.status is ObjectiveStatus.FAILED
    assert objective.reason == CANCELLED_REASON
    group = store.get_group_for(session.id, objective.id)
    assert group.entries[1].status is SubtaskStatus.PENDING


def test_failed_decomposition_does_not_stop_the_plan(registry, store, session, summary_cached, scripted_client):
    bad = {"subtasks": [{"name": "Warp", "tool": "teleport", "parameters": {}}]}
    client = scripted_client([["Broken", "Fine"], bad, bad, LIST_FILES])
    result = make_pipeline(client, registry, store, []).run(session.id, "x", summary_cached)

    first, second = store.list_objectives(session.id)
    assert first.status is ObjectiveStatus.FAILED
    assert "Unknown tool: teleport" in first.reason
    assert first.subtask_group_id is None
    assert second.status is ObjectiveStatus.DONE
    assert not result.success
    assert "- Failed: Broken" in result.summary


def test_completion_outage_during_decomposition_is_a_run_error(registry, store, session, summary_cached,
                                                              scripted_client):
    client = scripted_client([["One"], CompletionError("HTTP 503")])
    emitted = []
    result = make_pipeline(client, registry, store, emitted).run(session.id, "x", summary_cached)

    assert not result.success
    assert "HTTP 503" in result.error
    terminal = [e for e in emitted if e["type"] in ev.TERMINAL_EVENTS]
    assert [e["type"] for e in terminal] == [ev.RUN_ERROR]
    assert emitted[-1] is terminal[0]
    assert store.list_messages(session.id)[-1].type is MessageType.ERROR
    assert store.get_session(session.id).status is SessionStatus.IDLE


def test_summary_uses_completion_and_falls_back(registry, store, session, summary_cached, scripted_client):
    client = scripted_client([["One"], LIST_FILES, "Listed the project files."])
    result = make_pipeline(client, registry, store, [], summarize=True).run(session.id, "x", summary_cached)
    assert result.summary == "Listed the project files."

    other = store.create_session()
    client = scripted_client([["One"], LIST_FILES, CompletionError("down")])
    result = make_pipeline(client, registry, store, [], summarize=True).run(other.id, "x", summary_cached)
    assert result.summary.startswith("Completed 1 of 1 objectives.")
    assert result.summary.endswith("All objectives finished successfully.")


def test_unknown_session_reports_run_error(registry, store, summary_cached, scripted_client):
    emitted = []
    result = make_pipeline(scripted_client([]), registry, store, emitted).run("missing", "x", summary_cached)
    assert not result.success
    assert [e["type"] for e in emitted] == [ev.RUN_ERROR]


def test_files_written_by_a_run_land_in_the_edit_history(registry, store, session, summary_cached, scripted_client):
    write_notes = {"subtasks": [
        {"name": "Write notes", "tool": "write_file", "parameters": {"path": "NOTES.md", "content": "# notes\n"}},
    ]}
    client = scripted_client([["Write the notes"], write_notes])
    result = make_pipeline(client, registry, store, []).run(session.id, "take notes", summary_cached)

    assert result.success
    [edit] = store.list_edits(session.id)
    assert (edit.path, edit.operation, edit.tool) == ("NOTES.md", EditOperation.CREATE, "write_file")

    store.rollback_edit(session.id, edit.id, summary_cached)
    assert not (summary_cached / "NOTES.md").exists()
