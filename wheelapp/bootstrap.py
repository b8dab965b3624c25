"""Application composition root for the Wheel of Fortune bot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

import redis.asyncio as aioredis

from wheelapp.config import Config, GameSettings
from wheelapp.logging_config import setup_logging
from wheelapp.match_manager import MatchManager
from wheelapp.state_validator import MatchStateValidator
from wheelapp.translations import TranslationService
from wheelapp.utils.logging_helpers import ContextLoggerAdapter, add_context
from wheelapp.utils.redis_safeops import RedisSafeOps
from wheelapp.words import WordBank


def _build_redis_client_kwargs(cfg: Config) -> Dict[str, Any]:
    """Return connection settings for the Redis client."""

    timeout = cfg.REDIS_TIMEOUT_SECONDS
    return {
        "host": cfg.REDIS_HOST,
        "port": cfg.REDIS_PORT,
        "db": cfg.REDIS_DB,
        "password": cfg.REDIS_PASS or None,
        "socket_connect_timeout": timeout,
        "socket_timeout": timeout,
        "retry_on_timeout": True,
        "health_check_interval": 30,
    }


def _create_redis_client(client_kwargs: Dict[str, Any]) -> aioredis.Redis:
    """Create a Redis client; connections are established lazily."""

    return aioredis.Redis(**dict(client_kwargs))


@dataclass(frozen=True)
class ApplicationServices:
    """Container for infrastructure dependencies shared across the bot."""

    logger: ContextLoggerAdapter
    kv_async: aioredis.Redis
    redis_ops: RedisSafeOps
    match_manager: MatchManager
    translations: TranslationService
    word_bank: WordBank
    settings: GameSettings


def _make_service_logger(
    parent_logger: ContextLoggerAdapter, child_name: str, category: str
) -> ContextLoggerAdapter:
    """Return a child logger enriched with the provided ``category`` context."""

    return add_context(parent_logger.getChild(child_name), request_category=category)


def build_services(cfg: Config) -> ApplicationServices:
    """Initialise logging and infrastructure dependencies for the bot."""

    setup_logging(debug_mode=cfg.DEBUG)
    logger = add_context(logging.getLogger("wheelbot"))

    settings = cfg.GAME
    kv_async = _create_redis_client(_build_redis_client_kwargs(cfg))
    logger.info(
        "Redis client configured",
        extra={
            "event_type": "redis_configured",
            "redis_host": cfg.REDIS_HOST,
            "redis_port": cfg.REDIS_PORT,
            "redis_db": cfg.REDIS_DB,
        },
    )

    redis_ops = RedisSafeOps(
        kv_async,
        logger=_make_service_logger(logger, "redis_safeops", "redis"),
        max_retries=cfg.REDIS_MAX_RETRIES,
        timeout_seconds=cfg.REDIS_TIMEOUT_SECONDS,
    )
    match_manager = MatchManager(
        kv_async,
        redis_ops=redis_ops,
        state_validator=MatchStateValidator(),
        key_prefix=settings.key_prefix,
        ttl_seconds=settings.state_ttl_seconds,
        logger=_make_service_logger(logger, "match_manager", "storage"),
    )

    translations = TranslationService()
    word_bank = WordBank.from_file()
    logger.info(
        "Word bank loaded",
        extra={"event_type": "word_bank_loaded", "words": len(word_bank)},
    )

    return ApplicationServices(
        logger=logger,
        kv_async=kv_async,
        redis_ops=redis_ops,
        match_manager=match_manager,
        translations=translations,
        word_bank=word_bank,
        settings=settings,
    )
