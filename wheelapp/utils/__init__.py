"""Utility helpers for the wheel application."""

from .logging_helpers import add_context
from .time_utils import epoch_now

__all__ = ["add_context", "epoch_now"]
