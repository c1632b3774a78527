import logging

import pytest

from claimrunner.config import RunConfig
from claimrunner.errors import ConfigurationError


def test_defaults():
    config = RunConfig()
    assert config.workers is None
    assert config.concurrency == 1
    assert config.max_attempts == 3
    assert config.retry_delay == 2.0
    assert config.task_delay == 2.0
    assert config.python_log_level == logging.INFO
    assert not config.captcha_configured


def test_from_env_reads_prefixed_variables(monkeypatch, tmp_path):
    monkeypatch.setenv("CLAIMRUNNER_WORKERS", "5")
    monkeypatch.setenv("CLAIMRUNNER_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("CLAIMRUNNER_OUTPUT_DIR", str(tmp_path))
    config = RunConfig.from_env(tmp_path / "missing.env")
    assert config.workers == 5
    assert config.log_level == "debug"
    assert config.partial_dir == tmp_path / "partial"


def test_overrides_win_and_none_falls_through(monkeypatch, tmp_path):
    monkeypatch.setenv("CLAIMRUNNER_WORKERS", "5")
    monkeypatch.setenv("CLAIMRUNNER_CONCURRENCY", "4")
    config = RunConfig.from_env(tmp_path / "missing.env", workers=2, concurrency=None)
    assert config.workers == 2
    assert config.concurrency == 4


def test_env_file_is_loaded(monkeypatch, tmp_path):
    monkeypatch.delenv("CLAIMRUNNER_MAX_ATTEMPTS", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("CLAIMRUNNER_MAX_ATTEMPTS=7\n", encoding="utf-8")
    config = RunConfig.from_env(env_file)
    assert config.max_attempts == 7


def test_warning_alias():
    assert RunConfig(log_level="WARNING").log_level == "warn"


@pytest.mark.parametrize("overrides", [{"log_level": "loud"}, {"max_attempts": 0}, {"workers": 0}])
def test_invalid_values_raise_configuration_error(tmp_path, overrides):
    with pytest.raises(ConfigurationError):
        RunConfig.from_env(tmp_path / "missing.env", **overrides)


def test_captcha_configured_needs_key_and_site_key():
    assert not RunConfig(captcha_api_key="k").captcha_configured
    assert RunConfig(captcha_api_key="k", captcha_site_key="s").captcha_configured
