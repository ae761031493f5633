#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Structured debug logging for kairo.

Logging is off by default. When enabled (``kairo --debug`` or
``DebugLogger.initialize(enabled=True)``) every component writes structured
events into a timestamped file under ``.kairo/logs/``. Each event is a single
``[EVENT_NAME]`` line followed by its JSON payload so a run can be replayed
from the log alone.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from kairo import config


def prune_old_logs(log_dir: Path, keep: int) -> None:
    """Remove old log files beyond the configured retention limit."""

    if keep < 1 or not log_dir.exists():
        return

    log_files = sorted(
        [path for path in log_dir.glob("*.log") if path.is_file()],
        key=lambda path: path.stat().st_mtime,
        reverse=True,
    )

    for stale_file in log_files[keep:]:
        try:
            stale_file.unlink()
        except OSError:
            continue


class DebugLogger:
    """Centralized debug logger with component-specific logging."""

    _instance: Optional['DebugLogger'] = None
    _enabled: bool = False
    _log_file: Optional[Path] = None
    _loggers: Dict[str, logging.Logger] = {}

    def __init__(self, enabled: bool = False, log_dir: Optional[Path] = None):
        """Initialize the debug logger.

        Args:
            enabled: Whether debug logging is enabled
            log_dir: Directory to store log files (defaults to .kairo/logs/)
        """
        self._enabled = False

        if enabled:
            self._enable(log_dir)

    def _enable(self, log_dir: Optional[Path] = None) -> None:
        if log_dir is None:
            log_dir = config.LOGS_DIR
        log_dir.mkdir(exist_ok=True, parents=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._log_file = log_dir / f"kairo_debug_{timestamp}.log"
        self._enabled = True

        self._setup_logging()

        prune_old_logs(log_dir, config.LOG_RETENTION_LIMIT)

        self.log("system", "DEBUG_SESSION_START", {
            "timestamp": datetime.now().isoformat(),
            "log_file": str(self._log_file),
            "cwd": str(Path.cwd())
        })

    @classmethod
    def initialize(cls, enabled: bool = False, log_dir: Optional[Path] = None) -> 'DebugLogger':
        """Initialize the global debug logger instance."""
        if cls._instance is None:
            cls._instance = cls(enabled, log_dir)
        elif enabled and not cls._instance._enabled:
            # components grab the instance at import time; enable it in place
            cls._instance._enable(log_dir)
        return cls._instance

    @classmethod
    def get_instance(cls) -> 'DebugLogger':
        """Get the global debug logger instance."""
        if cls._instance is None:
            cls._instance = cls(enabled=False)
        return cls._instance

    def _setup_logging(self):
        formatter = logging.Formatter(
            '%(asctime)s | %(name)-22s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = logging.FileHandler(self._log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)

        root_logger = logging.getLogger('kairo')
        root_logger.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)
        root_logger.propagate = False

    def get_logger(self, component: str) -> logging.Logger:
        """Get or create a logger for a specific component.

        Args:
            component: Component name (e.g., 'planner', 'tools', 'pipeline')
        """
        if component not in self._loggers:
            self._loggers[component] = logging.getLogger(f'kairo.{component}')
        return self._loggers[component]

    def log(self, component: str, event: str, data: Optional[Dict[str, Any]] = None, level: str = "INFO"):
        """Log a structured event.

        Args:
            component: Component name
            event: Event type/name
            data: Optional dictionary of event data
            level: Log level (DEBUG, INFO, WARNING, ERROR)
        """
        if not self._enabled:
            return

        logger = self.get_logger(component)

        message = f"[{event}]"
        if data:
            message += f" {json.dumps(data, indent=2, default=str)}"

        log_level = getattr(logging, level.upper(), logging.INFO)
        logger.log(log_level, message)

    def log_llm_request(self, model: str, messages: list, system: Optional[str] = None):
        """Log a completion-service request."""
        if not self._enabled:
            return

        data = {
            "model": model,
            "message_count": len(messages),
            "system_preview": (system or "")[:300],
            "messages": [
                {
                    "role": msg.get("role"),
                    "content": str(msg.get("content", ""))[:500]
                }
                for msg in messages
            ],
        }
        self.log("llm", "LLM_REQUEST", data, "DEBUG")

    def log_llm_response(self, model: str, content: str, elapsed: float = 0.0):
        """Log a completion-service response."""
        if not self._enabled:
            return

        self.log("llm", "LLM_RESPONSE", {
            "model": model,
            "elapsed_s": round(elapsed, 3),
            "content_preview": str(content)[:500],
        }, "DEBUG")

    def log_tool_execution(self, tool_name: str, arguments: dict, result: Any = None, error: Optional[str] = None):
        """Log a tool execution.

        Args:
            tool_name: Name of the tool
            arguments: Tool arguments
            result: Tool execution result
            error: Error message if execution failed
        """
        if not self._enabled:
            return

        data = {
            "tool": tool_name,
            "arguments": {k: str(v)[:200] for k, v in (arguments or {}).items()},
        }

        if error:
            data["error"] = str(error)
            level = "ERROR"
        else:
            data["result_type"] = type(result).__name__
            data["result_preview"] = str(result)[:500] if result is not None else None
            level = "DEBUG"

        self.log("tools", "TOOL_EXECUTION", data, level)

    def log_task_status(self, kind: str, entity_id: str, status: str, details: Optional[Dict[str, Any]] = None):
        """Log an objective or subtask status change."""
        if not self._enabled:
            return

        data = {
            "kind": kind,
            "id": entity_id,
            "status": status,
        }
        if details:
            data["details"] = details

        self.log("pipeline", "STATUS_CHANGE", data, "INFO")

    def log_error(self, component: str, error: Exception, context: Optional[Dict[str, Any]] = None):
        """Log an error with context."""
        if not self._enabled:
            return

        data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        if context:
            data["context"] = context

        self.log(component, "ERROR", data, "ERROR")

    def _log_plain(self, level: str, msg: str, *args: Any, **kwargs: Any) -> None:
        if not self._enabled:
            return

        logger = self.get_logger("general")
        log_level = getattr(logging, level.upper(), logging.INFO)
        logger.log(log_level, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("INFO", msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("WARNING", msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("ERROR", msg, *args, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("DEBUG", msg, *args, **kwargs)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def log_file_path(self) -> Optional[Path]:
        return self._log_file

    def close(self):
        """Close the logger and write session end marker."""
        if self._enabled:
            self.log("system", "DEBUG_SESSION_END", {
                "timestamp": datetime.now().isoformat()
            })

            root_logger = logging.getLogger('kairo')
            for handler in root_logger.handlers[:]:
                handler.close()
                root_logger.removeHandler(handler)
            root_logger.propagate = True


def get_logger() -> DebugLogger:
    """Get the global debug logger instance."""
    return DebugLogger.get_instance()


def is_debug_enabled() -> bool:
    return get_logger().enabled
