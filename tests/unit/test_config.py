"""Tests for configuration loading."""

from triageflow.config import load_config
from triageflow.transports import InMemoryTransport, get_transport
from triageflow.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  default_step_timeout: 12.5
  default_max_retries: 3
  lease_grace: 5
agents:
  model: openai:gpt-4o
  history_window: 8
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
"""
    )
    monkeypatch.setenv("TRIAGEFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("TRIAGEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.engine.default_step_timeout == 12.5
    assert config.engine.default_max_retries == 3
    assert config.engine.max_repeat == 50
    assert config.engine.lease_grace == 5
    assert config.agents.model == "openai:gpt-4o"
    assert config.agents.history_window == 8
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.database_url is None


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TRIAGEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("DATABASE_URL", "sqlite:///tmp/wf.db")
    monkeypatch.delenv("TRIAGEFLOW_DATABASE_URL", raising=False)

    config = load_config()
    assert config.engine.default_step_timeout == 300.0
    assert config.engine.default_max_retries == 1
    assert config.agents.model == "test"
    assert config.transport.backend == "inmemory"
    assert config.database_url == "sqlite:///tmp/wf.db"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
    prefix: incidents
"""
    )
    monkeypatch.setenv("TRIAGEFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("TRIAGEFLOW_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380
    assert transport.prefix == "incidents"


def test_transport_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("TRIAGEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("TRIAGEFLOW_TRANSPORT", "inmemory")

    assert isinstance(get_transport(), InMemoryTransport)
