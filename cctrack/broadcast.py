"""Fan-out of text messages to connected clients."""

from __future__ import annotations

import asyncio


class Broadcaster:
    """Deliver every sent message to all current subscribers.

    Each subscriber gets its own bounded queue. When a subscriber falls
    behind, its oldest messages are dropped so the sender never blocks.
    """

    def __init__(self, capacity: int = 256) -> None:
        if capacity < 1:
            raise ValueError("broadcast capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: list[asyncio.Queue[str]] = []

    def subscribe(self) -> asyncio.Queue[str]:
        """Register a new subscriber and return the queue it reads from."""
        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._capacity)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[str]) -> None:
        """Stop delivering to ``queue``; unknown queues are ignored."""
        self._subscribers = [q for q in self._subscribers if q is not queue]

    def send(self, message: str) -> int:
        """Queue ``message`` for every subscriber; return how many received it."""
        for queue in self._subscribers:
            while queue.full():
                queue.get_nowait()
            queue.put_nowait(message)
        return len(self._subscribers)