"""In-process publish/subscribe for job lifecycle events."""

from __future__ import annotations

import asyncio
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from stockscan.utils.logger import get_logger

log = get_logger(__name__)

Subscriber = Callable[[Dict[str, Any]], Any]
Predicate = Callable[[Dict[str, Any]], bool]

TOPICS = ("started", "progress", "completed", "error", "cancelled")


class EventBus:
    """
    Topic-keyed subscriber lists. A subscriber that raises is logged and
    skipped; it never stops delivery to the others or breaks the emitter.
    Coroutine functions are scheduled as tasks on the running loop.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._lock = threading.RLock()
        self._tasks = set()

    def subscribe(self, topic: str, fn: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers[topic].append(fn)
        return lambda: self.unsubscribe(topic, fn)

    def once(self, topic: str, fn: Subscriber, predicate: Optional[Predicate] = None) -> Callable[[], None]:
        """Deliver the first matching event only, then drop the subscription."""
        fired = False

        def wrapper(payload: Dict[str, Any]):
            nonlocal fired
            if fired or (predicate and not predicate(payload)):
                return None
            fired = True
            self.unsubscribe(topic, wrapper)
            return fn(payload)

        return self.subscribe(topic, wrapper)

    def unsubscribe(self, topic: str, fn: Subscriber) -> None:
        with self._lock:
            if fn in self._subscribers.get(topic, []):
                self._subscribers[topic].remove(fn)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def emit(self, topic: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))

        for fn in subscribers:
            try:
                result = fn(payload)
                if asyncio.iscoroutine(result):
                    self._schedule(result)
            except Exception as e:
                log.error(f"Subscriber for '{topic}' failed: {e}")

    def _schedule(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            log.warning("Dropped coroutine subscriber: no running event loop")
            return

        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error(f"Async subscriber failed: {task.exception()}")
