"""One JSON object per log line.

Match context and the fields the orchestrator reports for timeouts,
version conflicts and sweeps sit at the top level so they can be filtered
on directly. Anything else a call passes in ``extra`` is nested under
``"extra"``.
"""

import enum
import json
import logging
from typing import Any, Dict, Mapping

from wheelapp.utils.logging_helpers import REQUIRED_LOG_KEYS
from wheelapp.utils.time_utils import now_utc

#: Fields of timeout decisions, compare-and-swap conflicts and sweep reports.
MATCH_LOG_KEYS = (
    "error_type",
    "timeout_count",
    "ejected",
    "terminated",
    "source",
    "expected_version",
    "current_version",
    "checked",
    "timed_out",
    "failed",
)

_PROMOTED_KEYS = REQUIRED_LOG_KEYS + MATCH_LOG_KEYS

# Whatever a bare record carries is not caller context.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)


class ContextJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        entry: Dict[str, Any] = {
            "timestamp": now_utc().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _PROMOTED_KEYS:
            if key in context:
                entry[key] = _jsonable(context.pop(key))
        if context:
            entry["extra"] = _jsonable(context)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(debug_mode: bool = False) -> None:
    """Send JSON lines to stderr; repeated calls only adjust the level."""

    root_logger = logging.getLogger()
    if not any(isinstance(h.formatter, ContextJsonFormatter) for h in root_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(ContextJsonFormatter())
        root_logger.addHandler(handler)

    root_logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    # python-telegram-bot logs every getUpdates/httpx call at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
