from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_HISTORY_WINDOW,
    DEFAULT_MAX_RETRIES,
    DEFAULT_STEP_TIMEOUT,
    MAX_REPEAT_TIMES,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "triageflow"


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EngineSettings(BaseModel):
    """Timeouts, retry budget and backoff applied by the workflow engine.

    A claim on a workflow lasts for the running step's timeout plus
    ``lease_grace`` seconds; an engine that stops renewing it loses the
    workflow to whichever engine resumes it next.
    """

    default_step_timeout: float = Field(default=DEFAULT_STEP_TIMEOUT, gt=0)
    default_max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    max_repeat: int = Field(default=MAX_REPEAT_TIMES, ge=1)
    retry_backoff_base: float = Field(default=1.5, ge=0)
    retry_jitter: float = Field(default=0.5, ge=0)
    lease_grace: float = Field(default=30.0, ge=0)


class AgentsConfig(BaseModel):
    """Model selection for the pydantic-ai backed agents."""

    model: str = "test"
    history_window: int = Field(default=DEFAULT_HISTORY_WINDOW, ge=0)


class TriageFlowConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineSettings = EngineSettings()
    agents: AgentsConfig = AgentsConfig()
    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> TriageFlowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TRIAGEFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TRIAGEFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TriageFlowConfig(**data)
    else:
        config = TriageFlowConfig()

    env_db_url = os.getenv("TRIAGEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
