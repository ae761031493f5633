#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Extract one structured JSON payload from free-form model output.

Precedence, first success wins:

1. the whole text parses as JSON;
2. a fenced code block (```json ... ``` or bare ```) parses;
3. the first balanced ``{...}`` or ``[...]`` span parses.

``strip_wrapper_artifacts`` is the cleanup applied before a second attempt:
reasoning blocks, chat-template tokens, smart quotes and trailing commas.
"""

import json
import re
from typing import Any, Iterator, List, Optional

_FENCE_RE = re.compile(r"```(?:json|JSON|javascript|js)?\s*(.*?)```", re.DOTALL)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_TEMPLATE_TOKEN_RE = re.compile(r"<\|[^|>]*\|>")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SMART_QUOTES = {"“": '"', "”": '"', "‘": "'", "’": "'"}


class PayloadExtractionError(ValueError):
    """No parseable JSON payload could be found in the text."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text


def _try_load(candidate: str) -> Optional[Any]:
    candidate = candidate.strip()
    if not candidate:
        return None
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, (dict, list)) else None


def _balanced_spans(text: str) -> Iterator[str]:
    """Yield each balanced brace/bracket span, scanning left to right."""
    start = 0
    while True:
        positions = [p for p in (text.find("{", start), text.find("[", start)) if p != -1]
        if not positions:
            return
        begin = min(positions)
        end = _match_close(text, begin)
        if end is not None:
            yield text[begin:end + 1]
        start = begin + 1


def _match_close(text: str, begin: int) -> Optional[int]:
    pairs = {"{": "}", "[": "]"}
    stack: List[str] = []
    in_string = False
    escaped = False
    for index in range(begin, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in pairs:
            stack.append(pairs[char])
        elif char in ("}", "]"):
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return index
    return None


def extract_structured_payload(text: Optional[str]) -> Any:
    """Return the first JSON object or array found in ``text``.

    Raises:
        PayloadExtractionError: nothing parseable was found.
    """
    if not text or not text.strip():
        raise PayloadExtractionError("empty response", text or "")

    direct = _try_load(text)
    if direct is not None:
        return direct

    for block in _FENCE_RE.findall(text):
        value = _try_load(block)
        if value is not None:
            return value

    for span in _balanced_spans(text):
        value = _try_load(span)
        if value is not None:
            return value

    raise PayloadExtractionError("no JSON payload found in response", text)


def strip_wrapper_artifacts(text: str) -> str:
    cleaned = _THINK_RE.sub("", text or "")
    cleaned = _TEMPLATE_TOKEN_RE.sub("", cleaned)
    for smart, plain in _SMART_QUOTES.items():
        cleaned = cleaned.replace(smart, plain)
    cleaned = cleaned.replace("```json", "```").replace("```JSON", "```")
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", cleaned)
    return cleaned.strip()


def extract_with_cleanup(text: Optional[str]) -> Any:
    """``extract_structured_payload``, retried once on the cleaned text."""
    try:
        return extract_structured_payload(text)
    except PayloadExtractionError:
        return extract_structured_payload(strip_wrapper_artifacts(text or ""))
