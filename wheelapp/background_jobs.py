"""
Background jobs for match maintenance.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, TYPE_CHECKING

from wheelapp.utils.logging_helpers import add_context

if TYPE_CHECKING:  # pragma: no cover - typing only
    from wheelapp.wheelbotmodel import SweepReport, WheelBotModel


class TimeoutSweepJob:
    """Periodically apply expired turn and solve deadlines across all matches.

    Deadlines are also enforced whenever a player presses a turn-sensitive
    button; the sweep covers matches where nobody does.
    """

    def __init__(
        self,
        model: "WheelBotModel",
        interval_seconds: float = 30.0,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self._model = model
        self._interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._logger = add_context(
            logger or logging.getLogger(__name__), request_category="sweep"
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep job."""

        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        self._logger.info(
            "Started timeout sweep job",
            extra={"interval_seconds": self._interval},
        )

    async def stop(self) -> None:
        """Stop the sweep job gracefully."""

        self._running = False
        task = self._task
        if task is None:
            self._logger.info("Stopped timeout sweep job")
            return

        task.cancel()

        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            self._logger.info("Stopped timeout sweep job")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self._logger.error(
                    "Sweep cycle failed",
                    extra={"event_type": "sweep_failed", "error": str(exc)},
                    exc_info=True,
                )

            if not self._running:
                break

            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    async def run_once(self) -> "SweepReport":
        """Run a single sweep over every stored match."""

        started = time.monotonic()
        report = await self._model.sweep()
        self._logger.debug(
            "Sweep cycle completed",
            extra={
                "event_type": "sweep_cycle",
                "duration_seconds": round(time.monotonic() - started, 3),
                "checked": report.checked,
                "timed_out": report.timed_out,
                "failed": report.failed,
            },
        )
        return report
