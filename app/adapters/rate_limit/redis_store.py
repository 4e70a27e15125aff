"""Durable rate limit store backed by Redis.

Layout:
- ``{prefix}:entry:{key}`` hash with count, reset_time, first_request and
  last_request (epoch milliseconds), expiring shortly after its window.
- ``{prefix}:expiry`` sorted set of keys scored by reset_time, used by the
  cleanup sweep to find expired records in bounded batches.

Every read-modify-write runs as an optimistic WATCH/MULTI/EXEC transaction
scoped to the single key's record, so admission stays exact across any
number of API processes sharing the same Redis.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping

from redis import Redis
from redis.exceptions import RedisError, WatchError

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitEntry
from app.core.errors import RateLimitBackendError

logger = logging.getLogger(__name__)


def _as_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _parse_ms(raw: Any) -> int | None:
    """Read an epoch-millisecond field; missing or unreadable values give None."""
    if raw is None:
        return None
    try:
        return int(_as_str(raw))
    except ValueError:
        return None


def _ttl_ms(entry: RateLimitEntry) -> int:
    """Relative TTL so record expiry does not depend on the Redis server clock."""
    return max(1, entry.reset_time - entry.last_request)


class RedisRateLimitStore(AbstractRateLimitStore):
    """Rate limit store persisting counters in Redis."""

    backend_name = "redis"

    def __init__(self, client: Redis, *, prefix: str = "ratelimit", max_retries: int = 5) -> None:
        """Initialize the store.

        Args:
            client: Connected (or lazily connecting) Redis client.
            prefix: Namespace for all keys written by this store.
            max_retries: Transaction attempts before raising on contention.

        Raises:
            ValueError: If max_retries is invalid.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self._client = client
        self._prefix = prefix
        self._max_retries = max_retries
        self._index_key = f"{prefix}:expiry"

    def _entry_key(self, key: str) -> str:
        return f"{self._prefix}:entry:{key}"

    @staticmethod
    def _encode(entry: RateLimitEntry) -> dict[str, int]:
        return {
            "count": entry.count,
            "reset_time": entry.reset_time,
            "first_request": entry.first_request,
            "last_request": entry.last_request,
        }

    def _decode(self, raw: Mapping[Any, Any] | None, operation: str) -> RateLimitEntry | None:
        if not raw:
            return None
        try:
            data = {_as_str(k): int(_as_str(v)) for k, v in raw.items()}
            reset_time = data["reset_time"]
        except (ValueError, KeyError) as exc:
            raise self._corrupt_record_error(operation, exc) from exc
        first_request = data.get("first_request", reset_time)
        return RateLimitEntry(
            count=data.get("count", 0),
            reset_time=reset_time,
            first_request=first_request,
            last_request=data.get("last_request", first_request),
        )

    def _backend_error(self, operation: str, exc: Exception) -> RateLimitBackendError:
        return RateLimitBackendError(
            code="rate_limit_backend_error",
            message=f"Redis rate limit store failed during {operation}",
            details={
                "backend": self.backend_name,
                "operation": operation,
                "context": {"error_type": type(exc).__name__},
            },
        )

    def _corrupt_record_error(self, operation: str, exc: Exception) -> RateLimitBackendError:
        return RateLimitBackendError(
            code="rate_limit_corrupt_record",
            message=f"Redis rate limit record unreadable during {operation}",
            details={
                "backend": self.backend_name,
                "operation": operation,
                "context": {"error_type": type(exc).__name__},
            },
        )

    def _contention_error(self, operation: str) -> RateLimitBackendError:
        return RateLimitBackendError(
            code="rate_limit_contention",
            message=f"Redis transaction for {operation} kept conflicting",
            details={
                "backend": self.backend_name,
                "operation": operation,
                "context": {"attempts": self._max_retries},
            },
        )

    def get(self, key: str) -> RateLimitEntry | None:
        try:
            return self._decode(self._client.hgetall(self._entry_key(key)), "get")
        except RedisError as exc:
            raise self._backend_error("get", exc) from exc

    def set(self, key: str, entry: RateLimitEntry) -> None:
        entry_key = self._entry_key(key)
        try:
            with self._client.pipeline() as pipe:
                pipe.hset(entry_key, mapping=self._encode(entry))
                pipe.pexpire(entry_key, _ttl_ms(entry))
                pipe.zadd(self._index_key, {key: entry.reset_time})
                pipe.execute()
        except RedisError as exc:
            raise self._backend_error("set", exc) from exc

    def delete(self, key: str) -> bool:
        try:
            with self._client.pipeline() as pipe:
                pipe.delete(self._entry_key(key))
                pipe.zrem(self._index_key, key)
                deleted, _ = pipe.execute()
        except RedisError as exc:
            raise self._backend_error("delete", exc) from exc
        return bool(deleted)

    def increment(self, key: str, *, window_ms: int, now_ms: int) -> RateLimitEntry:
        if not key:
            raise ValueError("key must be a non-empty string")

        entry_key = self._entry_key(key)
        try:
            with self._client.pipeline() as pipe:
                for _ in range(self._max_retries):
                    try:
                        pipe.watch(entry_key)
                        current = self._decode(pipe.hgetall(entry_key), "increment")
                        if current is None or current.is_expired(now_ms):
                            entry = RateLimitEntry(
                                count=1,
                                reset_time=now_ms + window_ms,
                                first_request=now_ms,
                                last_request=now_ms,
                            )
                        else:
                            entry = replace(current, count=current.count + 1, last_request=now_ms)

                        pipe.multi()
                        pipe.hset(entry_key, mapping=self._encode(entry))
                        pipe.pexpire(entry_key, _ttl_ms(entry))
                        pipe.zadd(self._index_key, {key: entry.reset_time})
                        pipe.execute()
                        return entry
                    except WatchError:
                        logger.debug("rate_limit.redis_retry", extra={"operation": "increment"})
                        continue
        except RedisError as exc:
            raise self._backend_error("increment", exc) from exc

        raise self._contention_error("increment")

    def decrement(self, key: str, *, reset_time: int) -> RateLimitEntry | None:
        entry_key = self._entry_key(key)
        try:
            with self._client.pipeline() as pipe:
                for _ in range(self._max_retries):
                    try:
                        pipe.watch(entry_key)
                        current = self._decode(pipe.hgetall(entry_key), "decrement")
                        if current is None or current.reset_time != reset_time or current.count < 1:
                            return None

                        entry = replace(current, count=current.count - 1)
                        pipe.multi()
                        pipe.hset(entry_key, "count", entry.count)
                        pipe.execute()
                        return entry
                    except WatchError:
                        continue
        except RedisError as exc:
            raise self._backend_error("decrement", exc) from exc

        raise self._contention_error("decrement")

    def sweep(self, now_ms: int, *, limit: int | None = None) -> int:
        """Delete up to ``limit`` records whose window ended at or before now.

        Records with an unreadable reset time are treated as expired. Returns
        the number of record hashes actually deleted.
        """
        try:
            if limit is None:
                members = self._client.zrangebyscore(self._index_key, "-inf", now_ms)
            else:
                members = self._client.zrangebyscore(
                    self._index_key, "-inf", now_ms, start=0, num=limit
                )
            keys = [_as_str(member) for member in members]
            if not keys:
                return 0

            entry_keys = [self._entry_key(key) for key in keys]
            with self._client.pipeline() as pipe:
                for _ in range(self._max_retries):
                    try:
                        pipe.watch(*entry_keys)
                        stale: list[tuple[str, str]] = []
                        for key, entry_key in zip(keys, entry_keys):
                            reset_time = _parse_ms(pipe.hget(entry_key, "reset_time"))
                            if reset_time is None or reset_time <= now_ms:
                                stale.append((key, entry_key))

                        pipe.multi()
                        for key, entry_key in stale:
                            pipe.delete(entry_key)
                            pipe.zrem(self._index_key, key)
                        replies = pipe.execute()
                        # Index members whose hash already expired by TTL are not counted
                        return sum(replies[0::2])
                    except WatchError:
                        continue
        except RedisError as exc:
            raise self._backend_error("sweep", exc) from exc

        raise self._contention_error("sweep")
