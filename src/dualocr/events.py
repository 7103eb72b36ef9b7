# src/dualocr/events.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

from .models import Phase


@dataclass(frozen=True)
class ImageEvent:
    batch_id: int
    image_id: Optional[str]
    phase: Phase
    payload: Any = None


Subscriber = Callable[[ImageEvent], None]


class EventChannel:
    """
    Typed event channel between the orchestrator and its observers.

    publish() calls every subscriber synchronously, in subscription order, and
    then pushes the event onto every attached queue.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._queues: List[asyncio.Queue] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def attach_queue(self, queue: Optional[asyncio.Queue] = None) -> asyncio.Queue:
        q = queue if queue is not None else asyncio.Queue()
        self._queues.append(q)
        return q

    def detach_queue(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def publish(self, event: ImageEvent) -> None:
        for callback in list(self._subscribers):
            callback(event)
        for q in self._queues:
            q.put_nowait(event)


Observer = Union[EventChannel, Subscriber, None]


def as_channel(observer: Observer) -> EventChannel:
    if isinstance(observer, EventChannel):
        return observer
    channel = EventChannel()
    if observer is not None:
        channel.subscribe(observer)
    return channel
