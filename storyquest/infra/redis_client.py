from __future__ import annotations

import os

import redis


def get_redis_url() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")


def create_redis() -> redis.Redis:
    # Session records and turn logs are JSON/str; decode_responses keeps them str.
    return redis.Redis.from_url(get_redis_url(), decode_responses=True)
