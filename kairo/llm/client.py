#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Completion-service clients.

The engine only needs ``complete(system, messages) -> str``. OpenAI-compatible
endpoints (OpenAI, OpenRouter, vLLM ...) go through the openai SDK; Ollama's
``/api/chat`` is called over plain HTTP with requests.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import openai
import requests

from kairo import config
from kairo.debug_logger import get_logger

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class CompletionError(RuntimeError):
    """The completion service could not produce a response."""

    def __init__(self, message: str, retryable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class CompletionClient(ABC):
    """Abstract completion-service collaborator."""

    model: str = ""

    @abstractmethod
    def complete(self, system: str, messages: List[Dict[str, str]], **kwargs: Any) -> str:
        """Return the assistant text for ``messages`` under ``system`` instructions.

        Raises:
            CompletionError: on transport or protocol failure.
        """


class _HTTPCompletionClient(CompletionClient):
    endpoint = ""

    def __init__(self, base_url: str, model: str, timeout: int = config.LLM_TIMEOUT,
                 temperature: float = config.LLM_TEMPERATURE,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.session = session or requests.Session()
        self.logger = get_logger()

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    @abstractmethod
    def _payload(self, messages: List[Dict[str, str]], **kwargs: Any) -> Dict[str, Any]:
        """Build the request body for ``messages``."""

    @abstractmethod
    def _extract(self, data: Dict[str, Any]) -> str:
        """Pull the assistant text out of a decoded response."""

    def complete(self, system: str, messages: List[Dict[str, str]], **kwargs: Any) -> str:
        full = [{"role": "system", "content": system}] + list(messages)
        url = f"{self.base_url}{self.endpoint}"
        self.logger.log_llm_request(self.model, full, system)
        start = time.time()

        try:
            resp = self.session.post(
                url,
                json=self._payload(full, **kwargs),
                headers=self._headers(),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.Timeout as exc:
            raise CompletionError(f"Completion request timed out after {self.timeout}s", retryable=True) from exc
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise CompletionError(
                f"Completion service returned HTTP {status}",
                retryable=status in RETRYABLE_STATUS,
                status_code=status,
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise CompletionError(f"Completion service unreachable: {exc}", retryable=True) from exc
        except ValueError as exc:
            raise CompletionError("Completion service returned invalid JSON") from exc

        content = self._extract(data)
        self.logger.log_llm_response(self.model, content, time.time() - start)
        return content


class OpenAICompatibleClient(CompletionClient):
    """Client for any OpenAI-compatible chat completions endpoint (OpenAI, OpenRouter, vLLM ...)."""

    def __init__(self, base_url: str = config.OPENAI_BASE_URL, model: str = config.OPENAI_MODEL,
                 api_key: str = config.OPENAI_API_KEY, timeout: int = config.LLM_TIMEOUT,
                 temperature: float = config.LLM_TEMPERATURE, client: Optional[openai.OpenAI] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self._client = client
        self.logger = get_logger()

    def _get_client(self) -> openai.OpenAI:
        """Lazy initialization of the SDK client."""
        if self._client is None:
            # local servers accept any key but the SDK refuses an empty one
            self._client = openai.OpenAI(
                base_url=self.base_url,
                api_key=self.api_key or "not-needed",
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def complete(self, system: str, messages: List[Dict[str, str]], **kwargs: Any) -> str:
        full = [{"role": "system", "content": system}] + list(messages)
        model = kwargs.get("model", self.model)
        request_params: Dict[str, Any] = {
            "model": model,
            "messages": full,
            "temperature": kwargs.get("temperature", self.temperature),
        }
        if kwargs.get("max_tokens"):
            request_params["max_tokens"] = kwargs["max_tokens"]

        self.logger.log_llm_request(model, full, system)
        start = time.time()
        try:
            response = self._get_client().chat.completions.create(**request_params)
        except openai.APITimeoutError as exc:
            raise CompletionError(f"Completion request timed out after {self.timeout}s", retryable=True) from exc
        except openai.APIConnectionError as exc:
            raise CompletionError(f"Completion service unreachable: {exc}", retryable=True) from exc
        except openai.APIStatusError as exc:
            raise CompletionError(
                f"Completion service returned HTTP {exc.status_code}",
                retryable=exc.status_code in RETRYABLE_STATUS,
                status_code=exc.status_code,
            ) from exc
        except openai.APIError as exc:
            raise CompletionError(f"Completion service error: {exc}") from exc

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError) as exc:
            raise CompletionError("Completion response missing choices[0].message.content") from exc
        self.logger.log_llm_response(model, content, time.time() - start)
        return content


class OllamaClient(_HTTPCompletionClient):
    """Client for a local or remote Ollama server."""

    endpoint = "/api/chat"

    def __init__(self, base_url: str = config.OLLAMA_BASE_URL, model: str = config.OLLAMA_MODEL, **kwargs: Any):
        super().__init__(base_url, model, **kwargs)

    def _payload(self, messages: List[Dict[str, str]], **kwargs: Any) -> Dict[str, Any]:
        return {
            "model": kwargs.get("model", self.model),
            "messages": messages,
            "stream": False,
            "options": {"temperature": kwargs.get("temperature", self.temperature)},
        }

    def _extract(self, data: Dict[str, Any]) -> str:
        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, dict):
            raise CompletionError("Ollama response missing message")
        return message.get("content") or ""


_CLIENTS: Dict[str, CompletionClient] = {}


def get_client(provider: Optional[str] = None) -> CompletionClient:
    """Return a cached client for ``provider`` (defaults to KAIRO_LLM_PROVIDER)."""
    name = (provider or config.LLM_PROVIDER).lower()
    if name not in _CLIENTS:
        if name in {"openai", "openrouter"}:
            _CLIENTS[name] = OpenAICompatibleClient()
        elif name == "ollama":
            _CLIENTS[name] = OllamaClient()
        else:
            raise ValueError(f"Unknown completion provider: {name}")
    return _CLIENTS[name]
