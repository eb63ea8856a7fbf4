"""Runtime configuration for Subfeed Agent, read from SUBFEED_* environment variables."""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

ENV_PREFIX = "SUBFEED_"

DEFAULT_DB_PATH = "subfeed_agent.db"
CHECKPOINT_DB_PATH = "subfeed_agent_checkpoints.db"
DEFAULT_USER_AGENT = "python:subfeed-agent:0.1 (feed poller)"
DEFAULT_CHAT_ID = "console"

DropPolicy = Literal["silent", "notify"]
DROP_POLICIES = ("silent", "notify")


@dataclass(frozen=True)
class PollingConfig:
    """Scheduling and delivery knobs for the poll engine."""

    base_interval: timedelta = timedelta(minutes=3)
    max_interval: timedelta = timedelta(minutes=30)
    backoff_factor: float = 2.0
    max_retries: int = 5
    tick_interval: float = 1.0
    delivery_cap: int = 5
    fetch_timeout: float = 30.0
    max_concurrency: int = 1
    drop_policy: DropPolicy = "silent"

    def __post_init__(self) -> None:
        if self.base_interval <= timedelta(0):
            raise ValueError("base_interval must be positive")
        if self.max_interval < self.base_interval:
            raise ValueError("max_interval must be >= base_interval")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.delivery_cap < 1:
            raise ValueError("delivery_cap must be >= 1")
        if self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.drop_policy not in DROP_POLICIES:
            raise ValueError(
                f"drop_policy must be one of {', '.join(DROP_POLICIES)}"
            )


@dataclass(frozen=True)
class AppConfig:
    """Process-level settings for the entry point."""

    polling: PollingConfig
    db_path: str = DEFAULT_DB_PATH
    checkpoint_path: str = CHECKPOINT_DB_PATH
    user_agent: str = DEFAULT_USER_AGENT
    chat_id: str = DEFAULT_CHAT_ID
    telegram_bot_token: str | None = None
    log_level: str = "INFO"


def load_config(environ: dict[str, str] | None = None) -> AppConfig:
    """Build the app config from environment variables.

    Raises:
        ValueError: If a numeric variable cannot be parsed or is out of range.
    """
    env = os.environ if environ is None else environ
    defaults = PollingConfig()

    polling = PollingConfig(
        base_interval=timedelta(
            seconds=_env_float(env, "BASE_INTERVAL", defaults.base_interval.total_seconds())
        ),
        max_interval=timedelta(
            seconds=_env_float(env, "MAX_INTERVAL", defaults.max_interval.total_seconds())
        ),
        backoff_factor=_env_float(env, "BACKOFF_FACTOR", defaults.backoff_factor),
        max_retries=_env_int(env, "MAX_RETRIES", defaults.max_retries),
        tick_interval=_env_float(env, "TICK_INTERVAL", defaults.tick_interval),
        delivery_cap=_env_int(env, "DELIVERY_CAP", defaults.delivery_cap),
        fetch_timeout=_env_float(env, "FETCH_TIMEOUT", defaults.fetch_timeout),
        max_concurrency=_env_int(env, "MAX_CONCURRENCY", defaults.max_concurrency),
        drop_policy=env.get(f"{ENV_PREFIX}DROP_POLICY", defaults.drop_policy).lower(),
    )

    return AppConfig(
        polling=polling,
        db_path=env.get(f"{ENV_PREFIX}DB_PATH", DEFAULT_DB_PATH),
        checkpoint_path=env.get(f"{ENV_PREFIX}CHECKPOINT_PATH", CHECKPOINT_DB_PATH),
        user_agent=env.get(f"{ENV_PREFIX}USER_AGENT", DEFAULT_USER_AGENT),
        chat_id=env.get(f"{ENV_PREFIX}CHAT_ID", DEFAULT_CHAT_ID),
        telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN") or None,
        log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", "INFO").upper(),
    )


def _env_float(env, suffix: str, default: float) -> float:
    raw = env.get(f"{ENV_PREFIX}{suffix}")
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{suffix} must be a number, got {raw!r}")


def _env_int(env, suffix: str, default: int) -> int:
    raw = env.get(f"{ENV_PREFIX}{suffix}")
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{suffix} must be an integer, got {raw!r}")
