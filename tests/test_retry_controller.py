import pytest

from kairo.execution.retry import RetryController
from kairo.tools.dispatcher import ToolDispatcher, ToolResult
from kairo.tools.registry import ToolRegistry, ToolSpec


class CountingDispatcher:
    """Stands in for ToolDispatcher and replays a fixed list of results."""

    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def dispatch(self, name, params=None):
        self.calls += 1
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


def _fail(error, retryable=True):
    return ToolResult(success=False, error=error, error_type="transient", retryable=retryable)


def test_permission_denied_gets_exactly_one_attempt(project):
    def handler(root, args):
        raise PermissionError("Permission denied: /etc/passwd")

    dispatcher = ToolDispatcher(ToolRegistry([ToolSpec("read_secret", "x", handler)]), project)
    sleeps = []
    retries = []
    outcome = RetryController(sleep=sleeps.append, on_retry=lambda a, e: retries.append(a)).run(
        dispatcher, "read_secret", {},
    )

    assert not outcome.success
    assert outcome.attempts == 1
    assert sleeps == []
    assert retries == []


@pytest.mark.parametrize("error", [
    "Unknown tool: teleport_file",
    "File NOT FOUND: a.py",
    "Invalid parameters: path missing",
    "Syntax error in app.py line 3",
])
def test_terminal_messages_stop_immediately_even_if_marked_retryable(error):
    dispatcher = CountingDispatcher([_fail(error, retryable=True)])
    outcome = RetryController(sleep=lambda s: None).run(dispatcher, "tool")
    assert outcome.attempts == 1
    assert dispatcher.calls == 1


def test_transient_failure_exhausts_with_exponential_backoff():
    dispatcher = CountingDispatcher([_fail("connection reset")])
    sleeps = []
    retries = []
    outcome = RetryController(max_attempts=3, backoff_base=2, sleep=sleeps.append,
                              on_retry=lambda attempt, error: retries.append((attempt, error))).run(
        dispatcher, "tool",
    )

    assert not outcome.success
    assert outcome.attempts == 3
    assert dispatcher.calls == 3
    # no sleep after the final attempt
    assert sleeps == [2.0, 4.0]
    assert retries == [(1, "connection reset"), (2, "connection reset")]


def test_success_after_retry_reports_attempts():
    dispatcher = CountingDispatcher([_fail("timed out"), ToolResult(success=True, data={"ok": 1})])
    outcome = RetryController(sleep=lambda s: None).run(dispatcher, "tool")
    assert outcome.success
    assert outcome.attempts == 2
    assert outcome.result.data == {"ok": 1}


def test_backoff_delay_counts_attempts_from_one():
    controller = RetryController(backoff_base=3)
    assert [controller.get_backoff_delay(n) for n in (1, 2, 3)] == [3.0, 9.0, 27.0]


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        RetryController(max_attempts=0)
