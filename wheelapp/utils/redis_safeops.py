"""Bounded Redis operations with structured logging and optional retries."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Union

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError, ResponseError, TimeoutError

from wheelapp.utils.logging_helpers import add_context


class RedisSafeOps:
    """Wrap an ``aioredis`` client with a per-call deadline and backoff.

    Every command goes through :meth:`call`, which bounds the command with
    ``timeout_seconds`` and retries connection failures up to
    ``max_retries`` times. Response errors are never retried. The last
    error is re-raised so callers decide how to surface it.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        *,
        logger: Optional[logging.Logger] = None,
        max_retries: int = 0,
        base_backoff: float = 0.2,
        backoff_factor: float = 2.0,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._redis = redis_client
        base_logger = logger or logging.getLogger(__name__).getChild("RedisSafeOps")
        self._logger = add_context(base_logger, request_category="redis")
        self._max_retries = max(0, max_retries)
        self._base_backoff = base_backoff
        self._backoff_factor = backoff_factor
        self._timeout_seconds = timeout_seconds

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    async def call(
        self,
        method: str,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Execute a Redis method with a deadline and structured logging."""

        attempt = 0
        delay = self._base_backoff
        last_exception: Optional[BaseException] = None
        log_extra: Optional[Dict[str, Any]] = kwargs.pop("log_extra", None)

        while attempt <= self._max_retries:
            try:
                coroutine: Awaitable[Any] = getattr(self._redis, method)(*args, **kwargs)
                return await asyncio.wait_for(coroutine, timeout=self._timeout_seconds)
            except (ConnectionError, TimeoutError, asyncio.TimeoutError) as exc:
                last_exception = exc
                attempt += 1
                payload = {
                    "method": method,
                    "redis_args": self._truncate_args(args),
                    "attempt": attempt,
                    "max_attempts": self._max_retries + 1,
                    "error_type": exc.__class__.__name__,
                }
                if log_extra:
                    payload.update(log_extra)
                self._logger.warning("Redis connection issue", extra=payload)
                if attempt > self._max_retries:
                    break
                await asyncio.sleep(delay)
                delay *= self._backoff_factor
            except ResponseError as exc:
                last_exception = exc
                payload = {
                    "method": method,
                    "redis_args": self._truncate_args(args),
                    "error": str(exc),
                    "error_type": exc.__class__.__name__,
                }
                if log_extra:
                    payload.update(log_extra)
                self._logger.error("Redis response error", extra=payload)
                break

        if last_exception is not None:
            raise last_exception

        raise TimeoutError("Redis operation timed out without explicit error")

    async def safe_get(
        self, key: str, *, log_extra: Optional[Dict[str, Any]] = None
    ) -> Optional[Union[bytes, str]]:
        return await self.call("get", key, log_extra=log_extra)

    async def safe_exists(
        self, key: str, *, log_extra: Optional[Dict[str, Any]] = None
    ) -> bool:
        return bool(await self.call("exists", key, log_extra=log_extra))

    async def safe_scan_keys(
        self,
        pattern: str,
        *,
        count: int = 100,
        log_extra: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """Collect every key matching ``pattern`` using cursor based SCAN."""

        keys: List[str] = []
        cursor: Union[int, str] = 0
        while True:
            cursor, batch = await self.call(
                "scan", cursor, match=pattern, count=count, log_extra=log_extra
            )
            for raw in batch or []:
                keys.append(raw.decode("utf-8") if isinstance(raw, bytes) else str(raw))
            if int(cursor) == 0:
                break
        return keys

    @staticmethod
    def _truncate_args(args: Sequence[Any], max_length: int = 5) -> Sequence[Any]:
        if len(args) <= max_length:
            return args
        return tuple(list(args[: max_length - 1]) + ["<truncated>"])


__all__ = ["RedisSafeOps"]
