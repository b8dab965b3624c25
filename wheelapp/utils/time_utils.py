"""Clock helpers used across the wheel application."""

from __future__ import annotations

import datetime as dt
import time
from typing import Callable


UTC = dt.timezone.utc

#: Callable returning the current time as epoch seconds.
Clock = Callable[[], float]


def now_utc() -> dt.datetime:
    """Return the current time as an aware ``datetime`` in UTC."""

    return dt.datetime.now(UTC)


def epoch_now() -> float:
    """Return the current time as epoch seconds; the default match clock."""

    return time.time()


__all__ = [
    "UTC",
    "Clock",
    "epoch_now",
    "now_utc",
]
