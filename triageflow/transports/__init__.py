"""Command transports and the factory selecting one from configuration."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TriageFlowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport
from .redis import RedisTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[TriageFlowConfig] = None
) -> BaseTransport:
    """Build the command transport named by ``backend``.

    Falls back to ``TRIAGEFLOW_TRANSPORT`` and then to ``transport.backend``
    in the loaded configuration.
    """
    config = config or load_config()
    name = (backend or os.getenv("TRIAGEFLOW_TRANSPORT") or config.transport.backend).lower()

    if name == "inmemory":
        return InMemoryTransport()
    if name == "redis":
        return RedisTransport(**config.transport.redis.model_dump())
    raise ValueError(f"Unsupported transport backend: {name}")


__all__ = ["BaseTransport", "InMemoryTransport", "RedisTransport", "get_transport"]
