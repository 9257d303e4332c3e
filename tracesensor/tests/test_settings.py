"""Tests for settings module."""

from __future__ import annotations

import pytest

from tracesensor.settings import Settings, get_settings, settings

ENV_VARS = (
    "TRACESENSOR_AGENT_KEY",
    "TRACESENSOR_ENDPOINT_URL",
    "TRACESENSOR_AGENT_HOST",
    "TRACESENSOR_AGENT_PORT",
    "TRACESENSOR_SERVICE_NAME",
    "TRACESENSOR_TELEMETRY_ENABLED",
    "TRACESENSOR_QUEUE_SIZE",
    "TRACESENSOR_MAX_ATTEMPTS",
    "AWS_EXECUTION_ENV",
    "ECS_CONTAINER_METADATA_URI",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No tracesensor variables and no .env files in reach."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


def test_get_settings():
    """Test that get_settings returns the singleton settings instance."""
    result = get_settings()
    assert isinstance(result, Settings)
    assert result is settings


def test_settings_defaults(clean_env):
    s = Settings()
    assert s.agent_key is None
    assert s.endpoint_url is None
    assert s.agent_host == "localhost"
    assert s.agent_port == 42699
    assert s.telemetry_enabled is True
    assert s.queue_size == 1000
    assert s.max_attempts == 3
    assert s.aws_execution_env is None
    assert s.ecs_metadata_uri is None


def test_settings_from_environment(clean_env, monkeypatch):
    monkeypatch.setenv("TRACESENSOR_AGENT_KEY", "secret")
    monkeypatch.setenv("TRACESENSOR_AGENT_PORT", "5000")
    monkeypatch.setenv("TRACESENSOR_TELEMETRY_ENABLED", "false")
    monkeypatch.setenv("AWS_EXECUTION_ENV", "AWS_ECS_FARGATE")
    monkeypatch.setenv("ECS_CONTAINER_METADATA_URI", "http://169.254.170.2/v3/abc")

    s = Settings()

    assert s.agent_key == "secret"
    assert s.agent_port == 5000
    assert s.telemetry_enabled is False
    assert s.aws_execution_env == "AWS_ECS_FARGATE"
    assert s.ecs_metadata_uri == "http://169.254.170.2/v3/abc"


def test_project_env_file(clean_env):
    (clean_env / ".env").write_text("TRACESENSOR_AGENT_HOST=agent.internal\n")

    assert Settings().agent_host == "agent.internal"


def test_user_env_file_has_lowest_precedence(clean_env, monkeypatch):
    user_dir = clean_env / ".tracesensor"
    user_dir.mkdir()
    (user_dir / ".env").write_text("TRACESENSOR_AGENT_KEY=from-user-file\n")

    assert Settings().agent_key == "from-user-file"

    monkeypatch.setenv("TRACESENSOR_AGENT_KEY", "from-env")
    assert Settings().agent_key == "from-env"
