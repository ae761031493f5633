#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Completion-service clients and model-output parsing."""

from kairo.llm.client import (
    CompletionClient,
    CompletionError,
    OllamaClient,
    OpenAICompatibleClient,
    get_client,
)
from kairo.llm.payload import (
    PayloadExtractionError,
    extract_structured_payload,
    extract_with_cleanup,
    strip_wrapper_artifacts,
)

__all__ = [
    "CompletionClient",
    "CompletionError",
    "OllamaClient",
    "OpenAICompatibleClient",
    "get_client",
    "PayloadExtractionError",
    "extract_structured_payload",
    "extract_with_cleanup",
    "strip_wrapper_artifacts",
]
