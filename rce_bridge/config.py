from __future__ import annotations

import os
from dataclasses import dataclass


DEFAULT_API_URL = "https://www.g-portal.com/ngpapi/"


@dataclass(frozen=True, slots=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    access_token: str | None = None
    # Unset => events are not mirrored to redis pub/sub.
    redis_url: str | None = None
    log_level: str = "INFO"

    command_timeout_s: float = 3.0
    player_interval_s: float = 60.0
    radio_interval_s: float = 30.0
    gibs_interval_s: float = 60.0
    debris_flag_ttl_s: float = 600.0

    http_retries: int = 2
    http_retry_delay_s: float = 1.0


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


def settings_from_env() -> Settings:
    return Settings(
        api_url=os.environ.get("RCE_API_URL", DEFAULT_API_URL),
        access_token=os.environ.get("RCE_ACCESS_TOKEN") or None,
        redis_url=os.environ.get("REDIS_URL") or None,
        log_level=os.environ.get("RCE_LOG_LEVEL", "INFO").upper(),
        command_timeout_s=_float_env("RCE_COMMAND_TIMEOUT_S", 3.0),
        player_interval_s=_float_env("RCE_PLAYER_INTERVAL_S", 60.0),
        radio_interval_s=_float_env("RCE_RADIO_INTERVAL_S", 30.0),
        gibs_interval_s=_float_env("RCE_GIBS_INTERVAL_S", 60.0),
        debris_flag_ttl_s=_float_env("RCE_DEBRIS_FLAG_TTL_S", 600.0),
        http_retries=int(os.environ.get("RCE_HTTP_RETRIES", "2")),
        http_retry_delay_s=_float_env("RCE_HTTP_RETRY_DELAY_S", 1.0),
    )
