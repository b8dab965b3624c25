"""Turn and solve deadline arbitration.

The arbiter is consulted from two places: the periodic sweep and every
turn-sensitive button press. Both load a fresh snapshot and call
:func:`check_timeouts`; the decision depends only on the snapshot and the
clock reading, so two racing callers that saw the same snapshot compute the
same outcome. Which of them gets to persist it is settled by the version
check in :class:`~wheelapp.match_manager.MatchManager`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from wheelapp.config import GameSettings
from wheelapp.entities import MatchState, UserId
from wheelapp.transitions import (
    advance_turn,
    clear_solve_attempt,
    register_timeout,
    reset_turn_clock,
)


class TimeoutKind(enum.Enum):
    TURN = "turn"
    SOLVE = "solve"


@dataclass(frozen=True)
class TimeoutDecision:
    kind: TimeoutKind
    player_id: UserId
    player_name: str
    timeout_count: int
    ejected: bool
    #: State to persist; ``None`` when the roster emptied and the match ends.
    state: Optional[MatchState]

    @property
    def terminated(self) -> bool:
        return self.state is None


def is_solve_expired(state: MatchState, now: float, settings: GameSettings) -> bool:
    attempt = state.solve_attempt
    if not state.is_playing or attempt is None:
        return False
    return now - attempt.deadline_at > settings.solve_timeout_seconds


def is_turn_expired(state: MatchState, now: float, settings: GameSettings) -> bool:
    if not state.is_playing or state.solve_attempt is not None:
        return False
    deadline = state.turn_deadline_at
    if deadline is None:
        return False
    return now - deadline > settings.turn_timeout_seconds


def _penalize(
    state: MatchState,
    player_id: UserId,
    kind: TimeoutKind,
    now: float,
    settings: GameSettings,
) -> TimeoutDecision:
    name = state.player_name(player_id)
    updated, count, ejected = register_timeout(state, player_id, settings.max_timeouts)

    if ejected and not updated.player_order:
        return TimeoutDecision(
            kind=kind,
            player_id=player_id,
            player_name=name,
            timeout_count=count,
            ejected=True,
            state=None,
        )

    # Ejecting the current player already hands the turn to the next seat.
    if not ejected:
        updated = advance_turn(updated)
    updated = reset_turn_clock(updated, now)

    return TimeoutDecision(
        kind=kind,
        player_id=player_id,
        player_name=name,
        timeout_count=count,
        ejected=ejected,
        state=updated,
    )


def resolve_solve_timeout(
    state: MatchState, now: float, settings: GameSettings
) -> TimeoutDecision:
    attempt = state.solve_attempt
    if attempt is None:
        raise ValueError("No solve attempt in flight")
    cleared = clear_solve_attempt(state, now)
    return _penalize(cleared, attempt.solver_id, TimeoutKind.SOLVE, now, settings)


def resolve_turn_timeout(
    state: MatchState, now: float, settings: GameSettings
) -> TimeoutDecision:
    player_id = state.current_player_id
    if player_id is None:
        raise ValueError("No active player to time out")
    return _penalize(state, player_id, TimeoutKind.TURN, now, settings)


def check_timeouts(
    state: MatchState, now: float, settings: GameSettings
) -> Optional[TimeoutDecision]:
    """Return the timeout transition due at ``now``, if any.

    A solve attempt in flight supersedes the turn deadline, so the solve
    check runs first and an unexpired attempt short-circuits the turn check.
    """

    if not state.is_playing:
        return None
    if state.solve_attempt is not None:
        if is_solve_expired(state, now, settings):
            return resolve_solve_timeout(state, now, settings)
        return None
    if is_turn_expired(state, now, settings) and state.current_player_id is not None:
        return resolve_turn_timeout(state, now, settings)
    return None


__all__ = [
    "TimeoutDecision",
    "TimeoutKind",
    "check_timeouts",
    "is_solve_expired",
    "is_turn_expired",
    "resolve_solve_timeout",
    "resolve_turn_timeout",
]
