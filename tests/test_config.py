"""Tests for calsync.config: TOML loading, env resolution and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from calsync.config import (
    CalsyncConfig,
    ConfigError,
    load_config,
    parse_config,
    resolve_env_vars,
)
from calsync.sync.retry import RetryPolicy

pytestmark = pytest.mark.unit


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "calsync.toml"
    path.write_text(content)
    return path


class TestDefaults:
    def test_empty_document_uses_defaults(self):
        config = parse_config({})
        assert config == CalsyncConfig()
        assert config.scheduler.failure_cooldown_s == 60.0
        assert config.scheduler.shutdown_timeout_s == 30.0
        assert config.scheduler.past_days == 7
        assert config.scheduler.status_queue_size == 100
        assert config.retry.to_policy() == RetryPolicy.default()


class TestLoadConfig:
    def test_loads_file(self, tmp_path):
        path = _write(
            tmp_path,
            """
[calsync]
service_name = "calsync-prod"

[calsync.logging]
level = "debug"
format = "json"

[calsync.scheduler]
failure_cooldown_s = 5
past_days = 3

[calsync.retry]
max_attempts = 5
initial_delay_ms = 250
jitter = false
""",
        )

        config = load_config(path)

        assert config.service_name == "calsync-prod"
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.scheduler.failure_cooldown_s == 5.0
        assert config.scheduler.past_days == 3
        policy = config.retry.to_policy()
        assert policy.max_attempts == 5
        assert policy.initial_delay_ms == 250
        assert policy.jitter is False

    def test_accepts_directory(self, tmp_path):
        _write(tmp_path, '[calsync]\nservice_name = "from-dir"\n')
        assert load_config(tmp_path).service_name == "from-dir"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path):
        path = _write(tmp_path, "[calsync\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)


class TestEnvResolution:
    def test_resolves_nested_values(self, monkeypatch):
        monkeypatch.setenv("CALSYNC_LOG_DIR", "/var/log/calsync")
        resolved = resolve_env_vars({"a": ["${CALSYNC_LOG_DIR}/x"], "b": 3})
        assert resolved == {"a": ["/var/log/calsync/x"], "b": 3}

    def test_env_var_in_config(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CALSYNC_LOG_DIR", str(tmp_path / "logs"))
        path = _write(tmp_path, '[calsync.logging]\nlog_root = "${CALSYNC_LOG_DIR}"\n')
        assert load_config(path).logging.log_root == str(tmp_path / "logs")

    def test_missing_env_var_is_error(self, monkeypatch):
        monkeypatch.delenv("CALSYNC_UNSET_VAR", raising=False)
        with pytest.raises(ConfigError, match="CALSYNC_UNSET_VAR"):
            parse_config({"calsync": {"service_name": "${CALSYNC_UNSET_VAR}"}})


class TestValidation:
    @pytest.mark.parametrize(
        "data,match",
        [
            ({"calsync": {"logging": {"format": "xml"}}}, "format"),
            ({"calsync": {"scheduler": {"failure_cooldown_s": -1}}}, "failure_cooldown_s"),
            ({"calsync": {"scheduler": {"status_queue_size": 0}}}, "status_queue_size"),
            ({"calsync": {"scheduler": {"past_days": "many"}}}, "past_days"),
            ({"calsync": {"retry": {"multiplier": 0.5}}}, "multiplier"),
            ({"calsync": {"retry": {"jitter": "yes"}}}, "jitter"),
            ({"calsync": {"retry": {"max_attempts": True}}}, "max_attempts"),
            ({"calsync": {"service_name": "  "}}, "service_name"),
            ({"calsync": {"scheduler": 5}}, "scheduler"),
        ],
    )
    def test_invalid_values(self, data, match):
        with pytest.raises(ConfigError, match=match):
            parse_config(data)
