"""
Progress broadcaster.

Pipelines run in worker threads; observers (websocket clients) live on the
server's event loop. ``publish`` may be called from any thread. Each observer
owns a FIFO queue drained by a single sender task, so every observer sees
every event in production order, one at a time.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Send = Callable[[Dict[str, Any]], Awaitable[None]]


class _Observer:
    def __init__(self, observer_id: str, send: Send):
        self.id = observer_id
        self.send = send
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None


class ProgressBroadcaster:
    """Fan events out to subscribed observers without reordering them."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._observers: Dict[str, _Observer] = {}
        self._ids = itertools.count(1)

    def bind(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    async def subscribe(self, send: Send) -> str:
        """Register ``send`` as an observer; returns its id."""
        if self._loop is None:
            self.bind()
        observer = _Observer(f"obs_{next(self._ids)}", send)
        observer.task = asyncio.create_task(self._drain(observer))
        self._observers[observer.id] = observer
        logger.info(f"Observer {observer.id} subscribed. Total observers: {len(self._observers)}")
        return observer.id

    async def unsubscribe(self, observer_id: str) -> None:
        observer = self._observers.pop(observer_id, None)
        if observer is None:
            return
        if observer.task is not None and not observer.task.done():
            observer.task.cancel()
            try:
                await observer.task
            except asyncio.CancelledError:
                pass
        logger.info(f"Observer {observer_id} unsubscribed. Total observers: {len(self._observers)}")

    def publish(self, event: Dict[str, Any]) -> bool:
        """Queue ``event`` for every observer. Safe to call from worker threads."""
        if self._loop is None or self._loop.is_closed():
            return False
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is self._loop:
            self._enqueue(event)
            return True
        # one callback per event keeps the cross-thread order intact
        self._loop.call_soon_threadsafe(self._enqueue, event)
        return True

    def _enqueue(self, event: Dict[str, Any]) -> None:
        for observer in list(self._observers.values()):
            observer.queue.put_nowait(event)

    async def _drain(self, observer: _Observer) -> None:
        while True:
            event = await observer.queue.get()
            try:
                await observer.send(event)
            except Exception as e:
                logger.error(f"Error delivering to observer {observer.id}: {e}")
                self._observers.pop(observer.id, None)
                self._discard_pending(observer)
                return
            finally:
                observer.queue.task_done()

    @staticmethod
    def _discard_pending(observer: _Observer) -> None:
        # a dropped observer must not leave flush() waiting on its queue
        while True:
            try:
                observer.queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            observer.queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued event has been delivered."""
        for observer in list(self._observers.values()):
            if observer.task is not None and not observer.task.done():
                await observer.queue.join()

    async def close(self) -> None:
        for observer_id in list(self._observers):
            await self.unsubscribe(observer_id)
