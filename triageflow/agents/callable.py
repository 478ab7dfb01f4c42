"""Agent invoker backed by plain Python callables."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Mapping, Tuple, Union

from pydantic import BaseModel

from .base import AgentName, agent_key

logger = logging.getLogger(__name__)

AgentCallable = Callable[[BaseModel], Any]


class CallableInvoker:
    """Dispatch agent calls to registered callables.

    Coroutine functions are awaited directly. Plain functions run in a worker
    thread so a blocking agent cannot stall other workflow instances; if the
    engine stops waiting, the thread still runs to completion and its result
    is dropped.
    """

    def __init__(self, agents: Mapping[Union[AgentName, str], AgentCallable]) -> None:
        self._agents: Dict[str, AgentCallable] = {
            agent_key(name): fn for name, fn in agents.items()
        }
        self.calls: List[Tuple[str, str, BaseModel]] = []
        self.ended_sessions: List[str] = []

    def register(self, agent_name: Union[AgentName, str], fn: AgentCallable) -> None:
        self._agents[agent_key(agent_name)] = fn

    def end_session(self, session_id: str) -> None:
        self.ended_sessions.append(session_id)

    async def invoke(
        self, session_id: str, agent_name: Union[AgentName, str], request: BaseModel
    ) -> str:
        name = agent_key(agent_name)
        fn = self._agents.get(name)
        if fn is None:
            raise LookupError(f"No agent registered under {name!r}")

        self.calls.append((session_id, name, request))
        logger.debug(f"Invoking agent {name} in session {session_id}")

        if inspect.iscoroutinefunction(fn):
            result = await fn(request)
        else:
            result = await asyncio.to_thread(fn, request)
            if inspect.isawaitable(result):
                result = await result
        return result if isinstance(result, str) else str(result)
