"""
Redis cache for computed leaderboards.

Every call degrades to a miss (or a no-op write) when Redis is down, so the
API keeps serving straight from the database.
"""
import json
import logging
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError

from core.config import settings

logger = logging.getLogger(__name__)

LEADERBOARD_PREFIX = "challngr:leaderboard"

_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Shared client, created on first use. None when Redis cannot be reached."""
    global _client
    if _client is not None:
        return _client

    try:
        candidate = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            health_check_interval=30,
        )
        candidate.ping()
    except RedisError as e:
        logger.warning(f"Redis unavailable, leaderboard cache disabled: {e}")
        return None

    _client = candidate
    return _client


def _run(op: str, key: str, fn: Callable[[redis.Redis], Any], fallback: Any) -> Any:
    client = get_redis_client()
    if client is None:
        return fallback
    try:
        return fn(client)
    except RedisError as e:
        logger.warning(f"Cache {op} failed for {key}: {e}")
        return fallback


def get_cache(key: str) -> Optional[Any]:
    raw = _run("get", key, lambda c: c.get(key), None)
    return json.loads(raw) if raw else None


def set_cache(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    payload = json.dumps(value, default=str)
    seconds = ttl or settings.CACHE_TTL_DEFAULT
    return _run("set", key, lambda c: bool(c.setex(key, seconds, payload)), False)


def delete_cache(key: str) -> bool:
    return _run("delete", key, lambda c: c.delete(key) >= 0, False)


def leaderboard_cache_key(competition_id) -> str:
    return f"{LEADERBOARD_PREFIX}:{competition_id}"


def invalidate_leaderboard(competition_id) -> bool:
    return delete_cache(leaderboard_cache_key(competition_id))
