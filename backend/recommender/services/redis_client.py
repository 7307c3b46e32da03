"""Simple Redis client helper (sync) used as a checkpoint backing store."""
from __future__ import annotations

import os
from typing import Optional

import redis


REDIS_URL_ENV = "REDIS_URL"

_client: Optional[redis.Redis] = None


def get_redis(url: Optional[str] = None) -> redis.Redis:
    """Return a process-wide client; an explicit url always builds a new one."""
    global _client
    if url is not None:
        return redis.from_url(url)
    if _client is not None:
        return _client

    _client = redis.from_url(os.environ.get(REDIS_URL_ENV, "redis://127.0.0.1:6379/0"))
    return _client
