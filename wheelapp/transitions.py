"""Pure state transitions for a match.

Every function takes a :class:`MatchState` and returns a new one; inputs
are never mutated. Callers own persistence and notification.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple

from wheelapp.entities import (
    AwaitingSolve,
    AwaitingTurn,
    MatchState,
    MatchStatus,
    MessageId,
    PlayerData,
    UserId,
)
from wheelapp.normalize import (
    both_forms,
    equals_ignoring_form_and_spaces,
    is_hebrew_letter,
    normalize,
)


@dataclass(frozen=True)
class GuessOutcome:
    state: MatchState
    correct: bool
    word_complete: bool


@dataclass(frozen=True)
class SolveOutcome:
    state: MatchState
    correct: bool


def create_match(
    word: str, category: str, starter: UserId, win_limit: int
) -> MatchState:
    return MatchState(
        word=word,
        category=category,
        started_by=starter,
        win_limit=win_limit,
    )


def add_player(state: MatchState, user_id: UserId, name: str) -> MatchState:
    """Append ``user_id`` to the roster; no-op when already present."""

    if user_id in state.player_order:
        return state
    players = dict(state.players_data)
    players[user_id] = PlayerData(display_name=name)
    return replace(
        state,
        player_order=state.player_order + (user_id,),
        players_data=players,
    )


def remove_player(state: MatchState, user_id: UserId) -> MatchState:
    """Drop ``user_id`` and keep ``turn_index`` pointing at a valid seat.

    A removal before the current turn shifts the index back by one; removing
    the current player leaves the index in place so the next player in
    order inherits the turn, wrapping at the end of the roster.
    """

    if user_id not in state.player_order:
        return state

    removed_index = state.player_order.index(user_id)
    order = tuple(pid for pid in state.player_order if pid != user_id)
    players = {pid: data for pid, data in state.players_data.items() if pid != user_id}

    turn_index = state.turn_index
    if removed_index < turn_index:
        turn_index = max(0, turn_index - 1)
    elif removed_index == turn_index:
        turn_index = turn_index % len(order) if order else 0
    if order and turn_index >= len(order):
        turn_index = 0

    return replace(state, player_order=order, players_data=players, turn_index=turn_index)


def reveal_letter(state: MatchState, letter: str) -> MatchState:
    canonical = normalize(letter)
    if canonical in state.revealed_letters:
        return state
    return replace(state, revealed_letters=state.revealed_letters | {canonical})


def _update_player(state: MatchState, user_id: UserId, **changes) -> MatchState:
    data = state.players_data.get(user_id)
    if data is None:
        return state
    players = dict(state.players_data)
    players[user_id] = replace(data, **changes)
    return replace(state, players_data=players)


def add_points(state: MatchState, user_id: UserId, delta: int) -> MatchState:
    data = state.players_data.get(user_id)
    if data is None:
        return state
    return _update_player(state, user_id, score=data.score + delta)


def increment_timeout(state: MatchState, user_id: UserId) -> MatchState:
    data = state.players_data.get(user_id)
    if data is None:
        return state
    return _update_player(state, user_id, timeout_count=data.timeout_count + 1)


def advance_turn(state: MatchState) -> MatchState:
    if not state.player_order:
        return state
    return replace(state, turn_index=(state.turn_index + 1) % len(state.player_order))


def start_play(state: MatchState, now: float) -> MatchState:
    return replace(
        state,
        status=MatchStatus.PLAYING,
        turn_index=0,
        phase=AwaitingTurn(deadline_at=now),
    )


def reset_turn_clock(state: MatchState, now: float) -> MatchState:
    """Restart the turn clock; any open solve attempt is dropped."""

    if not state.is_playing:
        return state
    return replace(state, phase=AwaitingTurn(deadline_at=now))


def open_solve_attempt(
    state: MatchState,
    solver_id: UserId,
    prompt_ref: Optional[MessageId],
    now: float,
) -> MatchState:
    return replace(
        state,
        phase=AwaitingSolve(
            solver_id=solver_id,
            prompt_message_ref=prompt_ref,
            deadline_at=now,
        ),
    )


def clear_solve_attempt(state: MatchState, now: float) -> MatchState:
    if state.solve_attempt is None:
        return state
    return replace(state, phase=AwaitingTurn(deadline_at=now))


def with_board_ref(state: MatchState, ref: Optional[MessageId]) -> MatchState:
    if ref is None or ref == state.board_message_ref:
        return state
    return replace(state, board_message_ref=ref)


def start_new_round(
    state: MatchState, word: str, category: str, now: float
) -> MatchState:
    """Swap in a new word; scores and turn position carry over."""

    phase = AwaitingTurn(deadline_at=now) if state.is_playing else None
    return replace(
        state,
        word=word,
        category=category,
        revealed_letters=frozenset(),
        phase=phase,
    )


def check_winner(state: MatchState) -> Optional[UserId]:
    for user_id in state.player_order:
        data = state.players_data.get(user_id)
        if data is not None and data.score >= state.win_limit:
            return user_id
    return None


def is_letter_in_word(word: str, letter: str) -> bool:
    return any(form in word for form in both_forms(letter))


def is_word_fully_revealed(state: MatchState) -> bool:
    return all(
        normalize(char) in state.revealed_letters
        for char in state.word
        if is_hebrew_letter(char)
    )


def register_timeout(
    state: MatchState, user_id: UserId, threshold: int
) -> Tuple[MatchState, int, bool]:
    """Count one timeout for ``user_id`` and eject them at ``threshold``.

    Returns the new state, the player's updated timeout count and whether
    the player was removed. Increment, test and removal happen together so
    no caller can persist the counter without the ejection.
    """

    updated = increment_timeout(state, user_id)
    data = updated.players_data.get(user_id)
    count = data.timeout_count if data is not None else 0
    if data is not None and count >= threshold:
        return remove_player(updated, user_id), count, True
    return updated, count, False


def guess_letter(
    state: MatchState, letter: str, points: int, now: float
) -> GuessOutcome:
    """Apply the current player's letter pick.

    A hit scores ``points`` and keeps the turn; a miss passes it. Either way
    the letter is revealed and the turn clock restarts.
    """

    canonical = normalize(letter)
    player_id = state.current_player_id
    correct = is_letter_in_word(state.word, canonical)

    updated = reveal_letter(state, canonical)
    if correct and player_id is not None:
        updated = add_points(updated, player_id, points)
    else:
        updated = advance_turn(updated)
    updated = reset_turn_clock(updated, now)

    return GuessOutcome(
        state=updated,
        correct=correct,
        word_complete=correct and is_word_fully_revealed(updated),
    )


def resolve_solve(
    state: MatchState, answer: str, points: int, now: float
) -> SolveOutcome:
    """Judge the solver's answer and close the solve attempt."""

    attempt = state.solve_attempt
    solver_id = attempt.solver_id if attempt is not None else state.current_player_id
    updated = clear_solve_attempt(state, now)

    if equals_ignoring_form_and_spaces(answer, state.word):
        if solver_id is not None:
            updated = add_points(updated, solver_id, points)
        return SolveOutcome(state=updated, correct=True)

    updated = reset_turn_clock(advance_turn(updated), now)
    return SolveOutcome(state=updated, correct=False)


__all__ = [
    "GuessOutcome",
    "SolveOutcome",
    "add_player",
    "add_points",
    "advance_turn",
    "check_winner",
    "clear_solve_attempt",
    "create_match",
    "guess_letter",
    "increment_timeout",
    "is_letter_in_word",
    "is_word_fully_revealed",
    "open_solve_attempt",
    "register_timeout",
    "remove_player",
    "reset_turn_clock",
    "resolve_solve",
    "reveal_letter",
    "start_new_round",
    "start_play",
    "with_board_ref",
]
