import asyncio
import json
import logging
from typing import List, Optional, Tuple

import redis.asyncio as aioredis
from redis import exceptions as redis_exceptions

from wheelapp.entities import (
    ChatId,
    InvariantViolation,
    MatchState,
    TransientIOError,
)
from wheelapp.state_validator import MatchStateValidator, ValidationIssue
from wheelapp.utils.logging_helpers import add_context
from wheelapp.utils.redis_safeops import RedisSafeOps


_STORE_ERRORS = (redis_exceptions.RedisError, asyncio.TimeoutError)


class MatchManager:
    """Persist one match per chat in Redis.

    Each match lives under ``{prefix}game:{chat_id}`` as JSON, next to a
    write counter under ``{prefix}version:{chat_id}`` used for optimistic
    compare-and-swap. Both keys share the match TTL and are refreshed on
    every save.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        redis_ops: Optional[RedisSafeOps] = None,
        state_validator: Optional[MatchStateValidator] = None,
        key_prefix: str = "wheel:",
        ttl_seconds: int = 86400,
        logger: Optional[logging.Logger] = None,
    ):
        self._redis = redis
        base_logger = logger or logging.getLogger(__name__)
        self._logger = add_context(base_logger, request_category="persistence")
        self._redis_ops = redis_ops or RedisSafeOps(
            redis, logger=base_logger.getChild("redis_safeops")
        )
        self._state_validator = state_validator or MatchStateValidator()
        self._key_prefix = key_prefix
        self._ttl_seconds = ttl_seconds

    # Keys ---------------------------------------------------------------
    def _game_key(self, chat_id: ChatId) -> str:
        return f"{self._key_prefix}game:{chat_id}"

    def _version_key(self, chat_id: ChatId) -> str:
        return f"{self._key_prefix}version:{chat_id}"

    # Codec --------------------------------------------------------------
    @staticmethod
    def _encode(match: MatchState) -> str:
        return json.dumps(match.to_payload(), ensure_ascii=False, sort_keys=True)

    def _decode(self, chat_id: ChatId, raw) -> MatchState:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", "replace")
        try:
            match = MatchState.from_payload(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as exc:
            self._logger.error(
                "Persisted match could not be decoded",
                extra={
                    "chat_id": chat_id,
                    "event_type": "match_corrupted",
                    "error_type": type(exc).__name__,
                },
            )
            raise InvariantViolation(chat_id, [ValidationIssue.CORRUPTED_PAYLOAD]) from exc

        result = self._state_validator.validate_match(match)
        if not result.is_valid:
            self._logger.error(
                "Persisted match violates invariants",
                extra={
                    "chat_id": chat_id,
                    "event_type": "match_invalid",
                    "issues": [issue.value for issue in result.issues],
                },
            )
            raise InvariantViolation(chat_id, result.issues)
        return match

    @staticmethod
    def _parse_version(raw) -> int:
        if raw is None:
            return 0
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", "ignore")
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0

    def _transient(self, chat_id: ChatId, action: str, exc: BaseException) -> TransientIOError:
        self._logger.error(
            "Redis error while accessing match",
            extra={
                "chat_id": chat_id,
                "event_type": "store_failure",
                "stage": action,
                "error_type": type(exc).__name__,
            },
        )
        return TransientIOError(f"Store unavailable during {action}: {exc}")

    # Public API ---------------------------------------------------------
    async def load_match(self, chat_id: ChatId) -> Optional[MatchState]:
        """Return the validated match for ``chat_id`` or ``None`` if absent."""

        extra = {"chat_id": chat_id}
        try:
            data = await self._redis_ops.safe_get(self._game_key(chat_id), log_extra=extra)
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "load", exc) from exc
        if not data:
            return None
        return self._decode(chat_id, data)

    async def load_match_with_version(
        self, chat_id: ChatId
    ) -> Tuple[Optional[MatchState], int]:
        """Return the match together with its current write counter.

        The version is read before the payload so a concurrent writer that
        lands in between can only make the later compare-and-swap fail.
        """

        extra = {"chat_id": chat_id}
        try:
            version_raw = await self._redis_ops.safe_get(
                self._version_key(chat_id), log_extra=extra
            )
            data = await self._redis_ops.safe_get(self._game_key(chat_id), log_extra=extra)
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "load", exc) from exc
        version = self._parse_version(version_raw)
        if not data:
            return None, version
        return self._decode(chat_id, data), version

    async def create_match(self, chat_id: ChatId, match: MatchState) -> bool:
        """Store ``match`` only if the chat has no match yet."""

        self._state_validator.ensure_valid(match, chat_id=chat_id)
        payload = self._encode(match)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(self._game_key(chat_id), self._version_key(chat_id))
                current_version = self._parse_version(
                    await pipe.get(self._version_key(chat_id))
                )
                if await pipe.exists(self._game_key(chat_id)):
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(self._game_key(chat_id), payload, ex=self._ttl_seconds)
                pipe.set(
                    self._version_key(chat_id),
                    current_version + 1,
                    ex=self._ttl_seconds,
                )
                await asyncio.wait_for(
                    pipe.execute(), timeout=self._redis_ops.timeout_seconds
                )
        except redis_exceptions.WatchError:
            self._logger.info(
                "Concurrent match creation detected",
                extra={"chat_id": chat_id, "event_type": "create_conflict"},
            )
            return False
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "create", exc) from exc

        self._logger.debug(
            "Match created",
            extra={"chat_id": chat_id, "event_type": "match_created"},
        )
        return True

    async def save_match(self, chat_id: ChatId, match: MatchState) -> None:
        """Store ``match`` unconditionally and bump its version."""

        self._state_validator.ensure_valid(match, chat_id=chat_id)
        payload = self._encode(match)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._game_key(chat_id), payload, ex=self._ttl_seconds)
                pipe.incr(self._version_key(chat_id))
                pipe.expire(self._version_key(chat_id), self._ttl_seconds)
                await asyncio.wait_for(
                    pipe.execute(), timeout=self._redis_ops.timeout_seconds
                )
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "save", exc) from exc

    async def save_match_with_version_check(
        self,
        chat_id: ChatId,
        match: MatchState,
        expected_version: int,
    ) -> bool:
        """Persist ``match`` if the stored version equals ``expected_version``.

        Returns ``False`` when another writer got there first; nothing is
        written in that case.
        """

        self._state_validator.ensure_valid(match, chat_id=chat_id)
        game_key = self._game_key(chat_id)
        version_key = self._version_key(chat_id)
        payload = self._encode(match)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(version_key)
                current_version = self._parse_version(await pipe.get(version_key))

                if current_version != expected_version:
                    await pipe.unwatch()
                    self._logger.warning(
                        "Version conflict detected during save",
                        extra={
                            "chat_id": chat_id,
                            "event_type": "version_conflict",
                            "expected_version": expected_version,
                            "current_version": current_version,
                        },
                    )
                    return False

                new_version = current_version + 1
                pipe.multi()
                pipe.set(game_key, payload, ex=self._ttl_seconds)
                pipe.set(version_key, new_version, ex=self._ttl_seconds)
                await asyncio.wait_for(
                    pipe.execute(), timeout=self._redis_ops.timeout_seconds
                )
        except redis_exceptions.WatchError:
            self._logger.warning(
                "Concurrent modification detected (WatchError)",
                extra={
                    "chat_id": chat_id,
                    "event_type": "version_conflict",
                    "expected_version": expected_version,
                },
            )
            return False
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "save", exc) from exc

        self._logger.debug(
            "Match saved with version check",
            extra={
                "chat_id": chat_id,
                "event_type": "match_saved",
                "old_version": expected_version,
                "new_version": new_version,
            },
        )
        return True

    async def delete_match(self, chat_id: ChatId) -> None:
        """Remove the match unconditionally.

        The version key is bumped rather than deleted so that a writer still
        holding a version of the old match can never overwrite a new one.
        """

        game_key = self._game_key(chat_id)
        version_key = self._version_key(chat_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(game_key)
                pipe.incr(version_key)
                pipe.expire(version_key, self._ttl_seconds)
                await asyncio.wait_for(
                    pipe.execute(), timeout=self._redis_ops.timeout_seconds
                )
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "delete", exc) from exc
        self._logger.debug(
            "Match deleted",
            extra={"chat_id": chat_id, "event_type": "match_deleted"},
        )

    async def delete_match_with_version_check(
        self, chat_id: ChatId, expected_version: int
    ) -> bool:
        """Remove the match only if nobody wrote it since ``expected_version``."""

        game_key = self._game_key(chat_id)
        version_key = self._version_key(chat_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(version_key)
                current_version = self._parse_version(await pipe.get(version_key))
                if current_version != expected_version:
                    await pipe.unwatch()
                    self._logger.warning(
                        "Version conflict detected during delete",
                        extra={
                            "chat_id": chat_id,
                            "event_type": "version_conflict",
                            "expected_version": expected_version,
                            "current_version": current_version,
                        },
                    )
                    return False
                pipe.multi()
                pipe.delete(game_key)
                pipe.set(version_key, current_version + 1, ex=self._ttl_seconds)
                await asyncio.wait_for(
                    pipe.execute(), timeout=self._redis_ops.timeout_seconds
                )
        except redis_exceptions.WatchError:
            self._logger.warning(
                "Concurrent modification detected (WatchError)",
                extra={
                    "chat_id": chat_id,
                    "event_type": "version_conflict",
                    "expected_version": expected_version,
                },
            )
            return False
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "delete", exc) from exc

        self._logger.debug(
            "Match deleted with version check",
            extra={"chat_id": chat_id, "event_type": "match_deleted"},
        )
        return True

    async def match_exists(self, chat_id: ChatId) -> bool:
        try:
            return await self._redis_ops.safe_exists(
                self._game_key(chat_id), log_extra={"chat_id": chat_id}
            )
        except _STORE_ERRORS as exc:
            raise self._transient(chat_id, "exists", exc) from exc

    async def list_session_ids(self) -> List[ChatId]:
        """Return the chat id of every stored match."""

        prefix = self._game_key("")
        try:
            keys = await self._redis_ops.safe_scan_keys(f"{prefix}*")
        except _STORE_ERRORS as exc:
            raise self._transient(None, "scan", exc) from exc

        chat_ids: List[ChatId] = []
        for key in keys:
            suffix = key[len(prefix):]
            try:
                chat_ids.append(int(suffix))
            except ValueError:
                self._logger.warning(
                    "Skipping match key with non numeric chat id",
                    extra={"event_type": "scan_skip", "redis_key": key},
                )
        return sorted(set(chat_ids))
