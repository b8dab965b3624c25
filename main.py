#!/usr/bin/env python3

import sys
from typing import Iterable, Mapping, Sequence

from dotenv import load_dotenv

from wheelapp.bootstrap import build_services
from wheelapp.config import Config
from wheelapp.wheelbot import WheelBot


def _startup_log_extra(
    *,
    logger,
    stage: str,
    env_config_missing: Sequence[str] | Iterable[str] | None = None,
    additional: Mapping[str, object] | None = None,
) -> dict:
    """Return a structured ``extra`` payload for startup logs."""

    missing = list(env_config_missing or [])
    extra = {
        "category": "startup",
        "stage": stage,
        "chat_id": None,
        "env_config_missing": missing,
    }

    if logger.isEnabledFor(10):  # logging.DEBUG without import cycle
        extra.update({"debug_mode": True, "debug_missing_count": len(missing)})

    if additional:
        extra.update(dict(additional))

    return extra


def _webhook_missing_settings(cfg: Config) -> list:
    missing = []
    if not cfg.WEBHOOK_PATH:
        missing.append(
            (
                "MissingWebhookPath",
                "Webhook path is not configured. Set WHEELBOT_WEBHOOK_PATH in your "
                ".env file or container environment.",
            )
        )
    if not cfg.WEBHOOK_PUBLIC_URL:
        missing.append(
            (
                "MissingWebhookPublicUrl",
                "Webhook public URL is not configured. Set WHEELBOT_WEBHOOK_DOMAIN "
                "together with WHEELBOT_WEBHOOK_PATH, or provide WHEELBOT_WEBHOOK_PUBLIC_URL.",
            )
        )
    if not cfg.WEBHOOK_SECRET:
        missing.append(
            (
                "MissingWebhookSecret",
                "Webhook secret token is not configured. Set WHEELBOT_WEBHOOK_SECRET in your "
                ".env file or container environment.",
            )
        )
    return missing


def main() -> None:
    load_dotenv()
    cfg: Config = Config()
    services = build_services(cfg)
    logger = services.logger.getChild(__name__)

    if cfg.TOKEN == "":
        logger.error(
            "Environment variable WHEELBOT_TOKEN is not set. "
            "Add it to your .env file or container environment.",
            extra=_startup_log_extra(
                logger=logger,
                stage="validation",
                env_config_missing=["MissingToken"],
                additional={"error_type": "MissingToken"},
            ),
        )
        sys.exit(1)

    webhook_missing = _webhook_missing_settings(cfg)
    use_polling = False
    if webhook_missing:
        missing_env_keys = [error_type for error_type, _ in webhook_missing]
        log = logger.warning if cfg.ALLOW_POLLING_FALLBACK else logger.error
        for error_type, message in webhook_missing:
            log(
                message,
                extra=_startup_log_extra(
                    logger=logger,
                    stage="validation",
                    env_config_missing=missing_env_keys,
                    additional={"error_type": error_type},
                ),
            )
        if not cfg.ALLOW_POLLING_FALLBACK:
            sys.exit(1)
        if not cfg.DEBUG:
            logger.warning(
                "WHEELBOT_ALLOW_POLLING_FALLBACK is enabled while DEBUG mode is off. "
                "This fallback is intended for development only.",
                extra=_startup_log_extra(
                    logger=logger,
                    stage="validation",
                    env_config_missing=missing_env_keys,
                    additional={"warning_type": "PollingFallbackDebugOff"},
                ),
            )
        logger.info(
            "Webhook configuration missing; falling back to long polling as requested "
            "by WHEELBOT_ALLOW_POLLING_FALLBACK.",
            extra=_startup_log_extra(
                logger=logger,
                stage="fallback",
                env_config_missing=missing_env_keys,
                additional={"debug_mode": cfg.DEBUG},
            ),
        )
        use_polling = True

    bot = WheelBot(
        token=cfg.TOKEN,
        cfg=cfg,
        logger=services.logger.getChild("bot"),
        match_manager=services.match_manager,
        translations=services.translations,
        word_bank=services.word_bank,
    )
    if use_polling:
        bot.run_polling()
    else:
        bot.run()


if __name__ == "__main__":
    main()
