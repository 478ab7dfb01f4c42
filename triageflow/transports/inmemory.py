"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import WorkflowCommand
from .base import BaseTransport

RawCommand = Tuple[str, str]


class InMemoryTransport(BaseTransport[RawCommand]):
    """Simple in-process queue for unit tests.

    Delivered commands stay in flight until acked; ``nack`` puts them back
    at the head of the queue.
    """

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[RawCommand]] = defaultdict(deque)
        self._in_flight: Dict[str, RawCommand] = {}
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, command: WorkflowCommand) -> None:
        """Publish command to in-memory queue."""
        async with self._lock:
            self._queues[topic].append((topic, command.to_json()))

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawCommand, WorkflowCommand]]:
        """Subscribe to commands from topic.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep connection open. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = loop.time() - start_time
                if elapsed >= lifespan:
                    break

            raw_message = None
            async with self._lock:
                if self._queues[topic]:
                    raw_message = self._queues[topic].popleft()
                    self._in_flight[raw_message[1]] = raw_message
            if raw_message is not None:
                yield raw_message, WorkflowCommand.from_json(raw_message[1])
                continue

            await asyncio.sleep(0.05)

    async def ack(self, raw_message: RawCommand) -> None:
        self._in_flight.pop(raw_message[1], None)

    async def nack(self, raw_message: RawCommand, requeue: bool = True) -> None:
        self._in_flight.pop(raw_message[1], None)
        if requeue:
            async with self._lock:
                self._queues[raw_message[0]].appendleft(raw_message)

    async def recover(self, topic: str) -> int:
        async with self._lock:
            stranded = [raw for raw in self._in_flight.values() if raw[0] == topic]
            for raw in reversed(stranded):
                self._queues[topic].appendleft(raw)
                self._in_flight.pop(raw[1])
        return len(stranded)

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    def in_flight(self) -> int:
        return len(self._in_flight)
