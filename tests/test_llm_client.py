from types import SimpleNamespace

import httpx
import openai
import pytest
import requests

from kairo.llm import client as client_module
from kairo.llm.client import (
    CompletionError,
    OllamaClient,
    OpenAICompatibleClient,
    _HTTPCompletionClient,
    get_client,
)


class FakeResponse:
    def __init__(self, status_code=200, data=None, invalid_json=False):
        self.status_code = status_code
        self._data = data
        self._invalid_json = invalid_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if self._invalid_json:
            raise ValueError("Expecting value")
        return self._data


class FakeSession:
    def __init__(self, outcome):
        self.outcome = outcome
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeCompletions:
    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeOpenAI:
    """Stands in for ``openai.OpenAI``; only ``chat.completions.create`` is used."""

    def __init__(self, outcome):
        self.completions = FakeCompletions(outcome)
        self.chat = SimpleNamespace(completions=self.completions)


def _chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


_REQUEST = httpx.Request("POST", "https://llm.test/v1/chat/completions")


def _status_error(status):
    response = httpx.Response(status, request=_REQUEST)
    return openai.APIStatusError(f"{status} error", response=response, body=None)


def test_openai_compatible_request_and_extraction():
    sdk = FakeOpenAI(_chat_response("hello"))
    client = OpenAICompatibleClient("https://llm.test/v1/", "m1", api_key="sk-test", client=sdk)

    assert client.complete("be brief", [{"role": "user", "content": "hi"}], max_tokens=50) == "hello"

    request = sdk.completions.requests[0]
    assert request["model"] == "m1"
    assert request["max_tokens"] == 50
    assert request["messages"][0] == {"role": "system", "content": "be brief"}
    assert request["messages"][1] == {"role": "user", "content": "hi"}


def test_openai_sdk_client_is_built_lazily_from_settings(monkeypatch):
    built = []

    def fake_openai(**kwargs):
        built.append(kwargs)
        return FakeOpenAI(_chat_response("ok"))

    monkeypatch.setattr(client_module.openai, "OpenAI", fake_openai)
    client = OpenAICompatibleClient("https://llm.test/v1/", "m1", api_key="", timeout=7)
    assert built == []

    client.complete("s", [])
    client.complete("s", [])
    assert len(built) == 1
    assert built[0]["base_url"] == "https://llm.test/v1"
    assert built[0]["api_key"] == "not-needed"
    assert built[0]["timeout"] == 7


def test_ollama_request_and_extraction():
    session = FakeSession(FakeResponse(data={"message": {"role": "assistant", "content": "ok"}}))
    client = OllamaClient("http://ollama.test", "qwen", session=session)

    assert client.complete("sys", []) == "ok"
    post = session.posts[0]
    assert post["url"] == "http://ollama.test/api/chat"
    assert post["json"]["stream"] is False
    assert "Authorization" not in post["headers"]


@pytest.mark.parametrize("outcome, retryable, fragment", [
    (_status_error(503), True, "HTTP 503"),
    (_status_error(401), False, "HTTP 401"),
    (openai.APITimeoutError(request=_REQUEST), True, "timed out"),
    (openai.APIConnectionError(message="refused", request=_REQUEST), True, "unreachable"),
])
def test_openai_failures_become_completion_errors(outcome, retryable, fragment):
    client = OpenAICompatibleClient("https://llm.test", "m", api_key="", client=FakeOpenAI(outcome))
    with pytest.raises(CompletionError) as excinfo:
        client.complete("s", [])
    assert fragment in str(excinfo.value)
    assert excinfo.value.retryable is retryable


def test_openai_status_code_is_kept():
    client = OpenAICompatibleClient("https://llm.test", "m", client=FakeOpenAI(_status_error(429)))
    with pytest.raises(CompletionError) as excinfo:
        client.complete("s", [])
    assert excinfo.value.status_code == 429


@pytest.mark.parametrize("outcome, retryable, fragment", [
    (FakeResponse(status_code=503), True, "HTTP 503"),
    (FakeResponse(status_code=401), False, "HTTP 401"),
    (requests.exceptions.Timeout("slow"), True, "timed out"),
    (requests.exceptions.ConnectionError("refused"), True, "unreachable"),
    (FakeResponse(invalid_json=True), False, "invalid JSON"),
])
def test_ollama_transport_failures_become_completion_errors(outcome, retryable, fragment):
    client = OllamaClient("http://ollama.test", "m", session=FakeSession(outcome))
    with pytest.raises(CompletionError) as excinfo:
        client.complete("s", [])
    assert fragment in str(excinfo.value)
    assert excinfo.value.retryable is retryable


def test_malformed_bodies_are_completion_errors():
    openai_client = OpenAICompatibleClient("https://llm.test", "m", client=FakeOpenAI(SimpleNamespace(choices=[])))
    with pytest.raises(CompletionError, match="choices"):
        openai_client.complete("s", [])

    ollama = OllamaClient("http://ollama.test", "m", session=FakeSession(FakeResponse(data={"done": True})))
    with pytest.raises(CompletionError, match="missing message"):
        ollama.complete("s", [])


def test_http_client_base_requires_payload_and_extract():
    with pytest.raises(TypeError):
        _HTTPCompletionClient("http://llm.test", "m")

    class Partial(_HTTPCompletionClient):
        def _payload(self, messages, **kwargs):
            return {"messages": messages}

    with pytest.raises(TypeError):
        Partial("http://llm.test", "m")


def test_get_client_caches_per_provider(monkeypatch):
    monkeypatch.setattr(client_module, "_CLIENTS", {})
    assert isinstance(get_client("ollama"), OllamaClient)
    assert get_client("ollama") is get_client("OLLAMA")
    assert isinstance(get_client("openrouter"), OpenAICompatibleClient)
    with pytest.raises(ValueError, match="Unknown completion provider"):
        get_client("carrier-pigeon")
