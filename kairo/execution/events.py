#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Run events.

Every state transition produces exactly one event. ``EventStream`` stamps
events with a per-run sequence number, keeps the history the completion
summary is written from, and forwards each event to an optional sink (the
progress broadcaster) in the order it was produced.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

PLAN_CREATED = "plan-created"
OBJECTIVE_STATUS = "objective-status"
SUBTASK_STATUS = "subtask-status"
TOOL_RETRY = "tool-retry"
RUN_COMPLETE = "run-complete"
RUN_ERROR = "run-error"

TRANSITION_EVENTS = {OBJECTIVE_STATUS, SUBTASK_STATUS}
TERMINAL_EVENTS = {RUN_COMPLETE, RUN_ERROR}

EventSink = Callable[[Dict[str, Any]], None]


class EventStream:
    """Ordered, sequence-numbered events of one run."""

    def __init__(self, session_id: str, sink: Optional[EventSink] = None):
        self.session_id = session_id
        self.sink = sink
        self.history: List[Dict[str, Any]] = []
        self._seq = 0
        self._lock = threading.Lock()

    def emit(self, event_type: str, **data: Any) -> Dict[str, Any]:
        with self._lock:
            self._seq += 1
            event = {
                "type": event_type,
                "session": self.session_id,
                "seq": self._seq,
                "timestamp": datetime.now().isoformat(),
                **data,
            }
            self.history.append(event)
            # forwarded under the lock so sinks observe production order
            if self.sink is not None:
                self.sink(event)
        return event

    @property
    def finished(self) -> bool:
        return any(event["type"] in TERMINAL_EVENTS for event in self.history)

    def transitions(self) -> List[Dict[str, Any]]:
        return [event for event in self.history if event["type"] in TRANSITION_EVENTS]
