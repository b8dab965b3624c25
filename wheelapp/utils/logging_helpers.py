"""Loggers that carry chat, user and event context into every record."""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Tuple, Union


#: Every wheel bot record carries these keys, ``None`` when unknown.
REQUIRED_LOG_KEYS: Tuple[str, ...] = (
    "chat_id",
    "user_id",
    "event_type",
    "request_category",
)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Adapter whose bound context is the default for each record.

    Per-call ``extra`` wins, so a service logger bound to
    ``request_category="match"`` still reports the chat of each call.
    """

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def getChild(self, suffix: str) -> "ContextLoggerAdapter":  # noqa: N802
        return ContextLoggerAdapter(self.logger.getChild(suffix), dict(self.extra))


def add_context(
    logger: Union[logging.Logger, logging.LoggerAdapter], **context: Any
) -> ContextLoggerAdapter:
    """Bind ``context`` on top of whatever ``logger`` already carries."""

    bound = dict.fromkeys(REQUIRED_LOG_KEYS)
    if isinstance(logger, logging.LoggerAdapter):
        bound.update(logger.extra or {})
        logger = logger.logger
    bound.update(context)
    return ContextLoggerAdapter(logger, bound)
