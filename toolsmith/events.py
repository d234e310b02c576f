"""
events.py - Notification channel for runs.

Every run owns an EventBus. Producers call emit(type, content) and never block;
consumers either subscribe a queue (the websocket stream) or register a plain
callback. Payloads use the same {"type", "content"} envelope the dashboard reads.
"""

import asyncio
import json
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional


@dataclass
class Event:
    type: str
    content: Any
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.content, "ts": self.ts}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class EventBus:
    def __init__(self, history_size: int = 500, queue_size: int = 1000):
        self._subscribers: List[asyncio.Queue] = []
        self._listeners: List[Callable[[Event], None]] = []
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._queue_size = queue_size

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def add_listener(self, callback: Callable[[Event], None]) -> None:
        self._listeners.append(callback)

    def emit(self, event_type: str, content: Any = None) -> Event:
        event = Event(type=event_type, content=content)
        self._history.append(event)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumer; drop rather than stall the run.
                pass
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as exc:
                print(f"[Events] listener failed on {event_type}: {exc}", flush=True)
        return event

    def recent(self, limit: Optional[int] = None, event_type: Optional[str] = None) -> List[Event]:
        items = [e for e in self._history if event_type is None or e.type == event_type]
        if limit is not None:
            items = items[-limit:]
        return items
