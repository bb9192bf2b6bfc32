from __future__ import annotations

import redis


def create_redis(url: str) -> redis.Redis:
    # decode_responses=True => strings in/out instead of bytes
    return redis.Redis.from_url(url, decode_responses=True)


def event_channel(identifier: str) -> str:
    return f"rce:events:{identifier}"
