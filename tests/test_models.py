import pytest

from kairo.models import (
    InvalidTransitionError,
    Message,
    MessageRole,
    MessageType,
    Objective,
    ObjectiveStatus,
    Session,
    SubtaskEntry,
    SubtaskGroup,
    SubtaskStatus,
    can_transition,
)


def test_objective_lifecycle_moves_forward_only():
    objective = Objective("s1", "do it", 1)
    objective.advance(ObjectiveStatus.RUNNING)
    objective.advance(ObjectiveStatus.DONE)
    assert objective.is_terminal
    with pytest.raises(InvalidTransitionError):
        objective.advance(ObjectiveStatus.RUNNING)


def test_pending_objective_can_be_cancelled():
    objective = Objective("s1", "never started", 3)
    objective.advance(ObjectiveStatus.FAILED, "cancelled")
    assert objective.reason == "cancelled"


def test_subtask_second_pass_counts_runs():
    entry = SubtaskEntry("read", "read_file", {"path": "a"})
    entry.advance(SubtaskStatus.RUNNING)
    entry.advance(SubtaskStatus.RUNNING)
    entry.advance(SubtaskStatus.SKIPPED)
    assert entry.run_count == 2
    with pytest.raises(InvalidTransitionError):
        entry.advance(SubtaskStatus.RUNNING)


def test_subtask_cannot_skip_running():
    assert not can_transition(SubtaskStatus.PENDING, SubtaskStatus.DONE)
    assert not can_transition(ObjectiveStatus.PENDING, SubtaskStatus.RUNNING)
    with pytest.raises(InvalidTransitionError):
        SubtaskEntry("x", "list_files").advance(SubtaskStatus.SKIPPED)


def test_group_positions_and_serialization():
    group = SubtaskGroup("obj_1", [SubtaskEntry("a", "list_files"), SubtaskEntry("b", "read_file")])
    assert list(group.positions()) == [0, 1]
    assert not group.all_done

    data = group.to_dict()
    assert list(data["entries"]) == ["0", "1"]
    restored = SubtaskGroup.from_dict(data)
    assert [e.name for e in restored.entries] == ["a", "b"]
    assert restored.id == group.id

    as_list = dict(data, entries=[data["entries"]["0"], data["entries"]["1"]])
    assert [e.name for e in SubtaskGroup.from_dict(as_list).entries] == ["a", "b"]


def test_empty_group_is_never_done():
    assert not SubtaskGroup("obj_1").all_done


def test_session_and_message_dicts():
    session = Session("chat", project="demo")
    assert Session.from_dict(session.to_dict()).to_dict() == session.to_dict()

    message = Message(session.id, MessageRole.AGENT, MessageType.STEP, {"status": "running"})
    restored = Message.from_dict(message.to_dict())
    assert restored.type is MessageType.STEP
    assert restored.role is MessageRole.AGENT
