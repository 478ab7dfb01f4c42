"""Redis transport for cross-process command delivery."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import WorkflowCommand
from .base import BaseTransport

logger = logging.getLogger(__name__)

RawCommand = Tuple[str, str]


class RedisTransport(BaseTransport[RawCommand]):
    """Redis-list transport with at-least-once delivery.

    ``<prefix>:<topic>`` holds pending commands. Each delivery moves one
    command atomically onto ``<prefix>:<topic>:processing`` where it stays
    until ``ack``; ``recover`` returns the leftovers of a crashed worker.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "triageflow",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[redis.Redis] = None

    def _keys(self, topic: str) -> Tuple[str, str]:
        queue = f"{self.prefix}:{topic}"
        return queue, f"{queue}:processing"

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            await self.connect()
        return self._redis

    async def connect(self) -> None:
        client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await client.ping()
        self._redis = client
        logger.info(f"Connected to Redis at {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        client, self._redis = self._redis, None
        if client is not None:
            await client.aclose()

    async def publish(self, topic: str, command: WorkflowCommand) -> None:
        queue, _ = self._keys(topic)
        client = await self._client()
        await client.lpush(queue, command.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawCommand, WorkflowCommand]]:
        queue, processing = self._keys(topic)
        client = await self._client()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            payload = await client.blmove(queue, processing, 1, "RIGHT", "LEFT")
            if payload is None:
                continue
            try:
                command = WorkflowCommand.from_json(payload)
            except ValidationError as e:
                logger.error(f"Dropping malformed command on {topic}: {e}")
                await client.lrem(processing, 1, payload)
                continue
            yield (topic, payload), command

    async def ack(self, raw_message: RawCommand) -> None:
        topic, payload = raw_message
        _, processing = self._keys(topic)
        client = await self._client()
        await client.lrem(processing, 1, payload)

    async def nack(self, raw_message: RawCommand, requeue: bool = True) -> None:
        topic, payload = raw_message
        queue, processing = self._keys(topic)
        client = await self._client()
        await client.lrem(processing, 1, payload)
        if requeue:
            await client.rpush(queue, payload)

    async def recover(self, topic: str) -> int:
        """Requeue commands left in the processing list by a dead worker."""
        queue, processing = self._keys(topic)
        client = await self._client()
        moved = 0
        while await client.lmove(processing, queue, "LEFT", "RIGHT"):
            moved += 1
        if moved:
            logger.info(f"Requeued {moved} unacknowledged commands on {topic}")
        return moved
