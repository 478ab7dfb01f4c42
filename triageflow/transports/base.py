"""Command transport interface shared by producers and workers."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import WorkflowCommand

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Deliver ``WorkflowCommand`` messages at least once.

    A delivered command belongs to its consumer until ``ack``; ``nack``
    releases it for another delivery. Transports are async context managers
    that connect on entry and disconnect on exit.
    """

    async def connect(self) -> None:
        """Open the broker connection; nothing to do for local transports."""

    async def disconnect(self) -> None:
        """Release the broker connection."""

    async def __aenter__(self) -> "BaseTransport[RawMessageT]":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    @abc.abstractmethod
    async def publish(self, topic: str, command: WorkflowCommand) -> None:
        """Enqueue ``command`` on ``topic``."""

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, WorkflowCommand]]:
        """Yield ``(raw_message, command)`` pairs from ``topic``.

        Stops after ``lifespan`` seconds, or never when ``lifespan`` is
        ``None``. Payloads that do not decode as a command are dropped.
        """

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark ``raw_message`` as processed."""

    @abc.abstractmethod
    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Give ``raw_message`` up, queueing it again unless ``requeue`` is false."""

    async def recover(self, topic: str) -> int:
        """Requeue commands delivered but never acknowledged; return how many."""
        return 0
