"""Tests for environment configuration."""

from datetime import timedelta

import pytest

from subfeed_agent.config import DEFAULT_DB_PATH, PollingConfig, load_config


def test_defaults():
    cfg = load_config({})
    assert cfg.polling == PollingConfig()
    assert cfg.polling.base_interval == timedelta(minutes=3)
    assert cfg.polling.max_interval == timedelta(minutes=30)
    assert cfg.polling.backoff_factor == 2
    assert cfg.polling.max_retries == 5
    assert cfg.polling.tick_interval == 1
    assert cfg.polling.delivery_cap == 5
    assert cfg.polling.drop_policy == "silent"
    assert cfg.db_path == DEFAULT_DB_PATH
    assert cfg.telegram_bot_token is None


def test_env_overrides():
    cfg = load_config({
        "SUBFEED_BASE_INTERVAL": "60",
        "SUBFEED_MAX_INTERVAL": "600",
        "SUBFEED_MAX_RETRIES": "3",
        "SUBFEED_DELIVERY_CAP": "10",
        "SUBFEED_MAX_CONCURRENCY": "4",
        "SUBFEED_DROP_POLICY": "Notify",
        "SUBFEED_DB_PATH": "/tmp/x.db",
        "SUBFEED_CHAT_ID": "12345",
        "TELEGRAM_BOT_TOKEN": "abc",
    })
    assert cfg.polling.base_interval == timedelta(seconds=60)
    assert cfg.polling.max_interval == timedelta(seconds=600)
    assert cfg.polling.max_retries == 3
    assert cfg.polling.delivery_cap == 10
    assert cfg.polling.max_concurrency == 4
    assert cfg.polling.drop_policy == "notify"
    assert cfg.db_path == "/tmp/x.db"
    assert cfg.chat_id == "12345"
    assert cfg.telegram_bot_token == "abc"


def test_empty_values_use_defaults():
    cfg = load_config({"SUBFEED_MAX_RETRIES": "", "TELEGRAM_BOT_TOKEN": ""})
    assert cfg.polling.max_retries == 5
    assert cfg.telegram_bot_token is None


@pytest.mark.parametrize(
    "env",
    [
        {"SUBFEED_MAX_RETRIES": "many"},
        {"SUBFEED_BASE_INTERVAL": "soon"},
        {"SUBFEED_MAX_RETRIES": "0"},
        {"SUBFEED_BASE_INTERVAL": "600", "SUBFEED_MAX_INTERVAL": "60"},
        {"SUBFEED_DROP_POLICY": "explode"},
    ],
)
def test_invalid_values(env):
    with pytest.raises(ValueError):
        load_config(env)
