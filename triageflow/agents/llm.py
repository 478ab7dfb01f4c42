"""Agent invoker that runs pydantic-ai agents with per-session memory."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Union

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.messages import ModelMessage, ModelRequest

from ..constants import DEFAULT_HISTORY_WINDOW
from .base import AgentName, agent_key
from .prompts import DEFAULT_PROMPTS

logger = logging.getLogger(__name__)


def build_agents(
    model: str = "test", prompts: Optional[Mapping[AgentName, str]] = None
) -> Dict[str, Agent]:
    """Create one pydantic-ai agent per pipeline agent name."""
    prompts = prompts or DEFAULT_PROMPTS
    return {
        name.value: Agent(model, name=name.value, system_prompt=prompts[name])
        for name in AgentName
    }


class PydanticAIInvoker:
    """Run pydantic-ai agents, sharing one bounded message history per session.

    Every agent called with the same ``session_id`` sees the recent exchanges
    of the others, which is how all stages of a workflow share context.
    Only the last ``history_window`` messages are kept.
    """

    def __init__(
        self,
        agents: Mapping[Union[AgentName, str], Agent],
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ) -> None:
        self._agents: Dict[str, Agent] = {agent_key(n): a for n, a in agents.items()}
        self._history_window = history_window
        self._sessions: Dict[str, List[ModelMessage]] = defaultdict(list)

    @classmethod
    def from_model(
        cls, model: str, history_window: int = DEFAULT_HISTORY_WINDOW
    ) -> "PydanticAIInvoker":
        return cls(build_agents(model), history_window=history_window)

    async def invoke(
        self, session_id: str, agent_name: Union[AgentName, str], request: BaseModel
    ) -> str:
        name = agent_key(agent_name)
        agent = self._agents.get(name)
        if agent is None:
            raise LookupError(f"No agent registered under {name!r}")

        history = self._sessions[session_id]
        result = await agent.run(
            request.model_dump_json(), message_history=history or None
        )
        self._sessions[session_id] = self._trim(history + result.new_messages())
        logger.debug(
            f"Agent {name} answered in session {session_id}; "
            f"{len(self._sessions[session_id])} messages retained"
        )
        output = result.output
        return output if isinstance(output, str) else str(output)

    def session_history(self, session_id: str) -> List[ModelMessage]:
        return list(self._sessions.get(session_id, []))

    def end_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def _trim(self, messages: List[ModelMessage]) -> List[ModelMessage]:
        if self._history_window <= 0:
            return []
        trimmed = messages[-self._history_window :]
        # history handed back to a model has to open with a request
        while trimmed and not isinstance(trimmed[0], ModelRequest):
            trimmed = trimmed[1:]
        return trimmed
