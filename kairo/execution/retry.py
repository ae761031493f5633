#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Retry logic for tool dispatch."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from kairo import config
from kairo.debug_logger import get_logger
from kairo.tools.dispatcher import ToolDispatcher, ToolResult
from kairo.tools.errors import is_terminal_message


logger = get_logger()

RetryCallback = Callable[[int, str], None]


@dataclass
class RetryOutcome:
    result: ToolResult
    attempts: int

    @property
    def success(self) -> bool:
        return self.result.success


class RetryController:
    """Bounded attempts with exponential backoff around one dispatch call."""

    def __init__(
        self,
        max_attempts: int = config.MAX_TOOL_ATTEMPTS,
        backoff_base: float = config.RETRY_BACKOFF_BASE,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[RetryCallback] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep
        self.on_retry = on_retry

    def is_terminal(self, result: ToolResult) -> bool:
        """Terminal failures are surfaced immediately and never retried."""
        return not result.retryable or is_terminal_message(result.error)

    def get_backoff_delay(self, attempt: int) -> float:
        """``backoff_base ** attempt`` seconds; attempt is 1-indexed."""
        return float(self.backoff_base) ** attempt

    def run(self, dispatcher: ToolDispatcher, tool: str, params: Optional[Dict[str, Any]] = None,
            on_retry: Optional[RetryCallback] = None) -> RetryOutcome:
        notify = on_retry or self.on_retry
        attempt = 1

        while True:
            result = dispatcher.dispatch(tool, params)
            if result.success:
                if attempt > 1:
                    logger.info(f"{tool} succeeded on attempt {attempt}")
                return RetryOutcome(result, attempt)

            logger.log("retry", "ATTEMPT_FAILED", {
                "tool": tool,
                "attempt": attempt,
                "max_attempts": self.max_attempts,
                "error": result.error,
            }, "WARNING")

            if self.is_terminal(result):
                logger.info(f"{tool}: non-retryable error, giving up after {attempt} attempt(s)")
                return RetryOutcome(result, attempt)

            if attempt >= self.max_attempts:
                logger.info(f"{tool}: max attempts ({self.max_attempts}) exhausted")
                return RetryOutcome(result, attempt)

            if notify is not None:
                notify(attempt, result.error or "")

            delay = self.get_backoff_delay(attempt)
            logger.info(f"Retrying {tool} in {delay}s...")
            self._sleep(delay)
            attempt += 1
