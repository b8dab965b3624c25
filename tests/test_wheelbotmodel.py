import pytest

from wheelapp.board import escape
from wheelapp.entities import (
    AwaitingTurn,
    ConcurrentUpdateError,
    InvariantViolation,
    MatchStatus,
    NotFoundError,
    ValidationError,
)
from wheelapp.keyboards import game_over_keyboard, kick_keyboard
from wheelapp.wheelbotmodel import parse_win_limit

CHAT_ID = -1001
ADMIN_ID = 1
ALICE = 11
BOB = 22
CAROL = 33


async def _start(model, *players, win_limit=None):
    await model.start_match(CHAT_ID, ADMIN_ID, win_limit)
    for user_id in players:
        await model.join(CHAT_ID, user_id, f"player{user_id}")
    await model.begin_play(CHAT_ID, ADMIN_ID)


async def _state(match_manager):
    return await match_manager.load_match(CHAT_ID)


@pytest.mark.parametrize(
    "raw, expected",
    [(None, 10), ("5", 5), ("100", 100), ("0", 10), ("101", 10), ("abc", 10), ("  7 extra", 7)],
)
def test_parse_win_limit(raw, expected, settings):
    assert parse_win_limit(raw, settings) == expected


# Join / start ----------------------------------------------------------------
@pytest.mark.asyncio
async def test_start_match_requires_admin(model, match_manager, translations):
    with pytest.raises(ValidationError) as excinfo:
        await model.start_match(CHAT_ID, ALICE)

    assert str(excinfo.value) == translations.get("errors.admins_only_start")
    assert not await match_manager.match_exists(CHAT_ID)


@pytest.mark.asyncio
async def test_start_match_posts_join_board(model, match_manager, transport):
    await model.start_match(CHAT_ID, ADMIN_ID, "12")

    state = await _state(match_manager)
    assert state.status is MatchStatus.JOINING
    assert state.win_limit == 12
    assert state.started_by == ADMIN_ID

    _, request, previous = transport.renders[-1]
    assert request.turn_changed
    assert previous is None
    assert state.board_message_ref is not None


@pytest.mark.asyncio
async def test_second_start_is_rejected(model, translations):
    await model.start_match(CHAT_ID, ADMIN_ID)

    with pytest.raises(ValidationError) as excinfo:
        await model.start_match(CHAT_ID, ADMIN_ID)

    assert str(excinfo.value) == translations.get("errors.game_exists")


@pytest.mark.asyncio
async def test_join_edits_join_board(model, match_manager, transport):
    await model.start_match(CHAT_ID, ADMIN_ID)
    board_ref = (await _state(match_manager)).board_message_ref

    result = await model.join(CHAT_ID, ALICE, "Alice")

    state = await _state(match_manager)
    assert state.player_order == (ALICE,)
    assert result.answer
    _, request, previous = transport.renders[-1]
    assert not request.turn_changed
    assert previous == board_ref
    assert "Alice" in request.board_text


@pytest.mark.asyncio
async def test_join_twice_is_rejected(model):
    await model.start_match(CHAT_ID, ADMIN_ID)
    await model.join(CHAT_ID, ALICE, "Alice")

    with pytest.raises(ValidationError):
        await model.join(CHAT_ID, ALICE, "Alice")


@pytest.mark.asyncio
async def test_join_without_match(model):
    with pytest.raises(NotFoundError):
        await model.join(CHAT_ID, ALICE, "Alice")


@pytest.mark.asyncio
async def test_join_after_start_is_rejected(model):
    await _start(model, ALICE)

    with pytest.raises(ValidationError):
        await model.join(CHAT_ID, BOB, "Bob")


@pytest.mark.asyncio
async def test_begin_play_by_non_admin_is_rejected(model, match_manager):
    await model.start_match(CHAT_ID, ADMIN_ID)
    await model.join(CHAT_ID, ALICE, "Alice")
    await model.join(CHAT_ID, BOB, "Bob")

    with pytest.raises(ValidationError):
        await model.begin_play(CHAT_ID, ALICE)

    assert (await _state(match_manager)).status is MatchStatus.JOINING


@pytest.mark.asyncio
async def test_begin_play_needs_a_player(model):
    await model.start_match(CHAT_ID, ADMIN_ID)

    with pytest.raises(ValidationError):
        await model.begin_play(CHAT_ID, ADMIN_ID)


@pytest.mark.asyncio
async def test_begin_play_starts_first_turn(model, match_manager, transport, clock):
    await _start(model, ALICE, BOB)

    state = await _state(match_manager)
    assert state.status is MatchStatus.PLAYING
    assert state.turn_index == 0
    assert state.phase == AwaitingTurn(deadline_at=clock.now)
    _, request, _ = transport.renders[-1]
    assert request.turn_changed


# Letters ---------------------------------------------------------------------
@pytest.mark.asyncio
async def test_correct_guess_keeps_turn(model, match_manager, transport, clock, translations):
    await _start(model, ALICE, BOB)
    clock.advance(5)

    result = await model.guess_letter(CHAT_ID, ALICE, "ש")

    state = await _state(match_manager)
    assert result.answer == translations.get("answers.correct_letter")
    assert state.players_data[ALICE].score == 1
    assert state.turn_index == 0
    assert state.phase == AwaitingTurn(deadline_at=clock.now)
    _, request, _ = transport.renders[-1]
    assert not request.turn_changed


@pytest.mark.asyncio
async def test_wrong_guess_passes_turn(model, match_manager, transport, clock, translations):
    await _start(model, ALICE, BOB)
    clock.advance(5)

    result = await model.guess_letter(CHAT_ID, ALICE, "א")

    state = await _state(match_manager)
    assert result.answer == translations.get("answers.wrong_letter")
    assert state.players_data[ALICE].score == 0
    assert state.turn_index == 1
    assert state.phase == AwaitingTurn(deadline_at=clock.now)
    _, request, _ = transport.renders[-1]
    assert request.turn_changed


@pytest.mark.asyncio
async def test_guess_out_of_turn(model, translations):
    await _start(model, ALICE, BOB)

    with pytest.raises(ValidationError) as excinfo:
        await model.guess_letter(CHAT_ID, BOB, "ש")

    assert str(excinfo.value) == translations.get("errors.not_your_turn")


@pytest.mark.asyncio
async def test_repeated_letter_in_either_form_is_rejected(model, translations):
    await _start(model, ALICE, BOB)
    await model.guess_letter(CHAT_ID, ALICE, "מ")

    with pytest.raises(ValidationError) as excinfo:
        await model.guess_letter(CHAT_ID, ALICE, "ם")

    assert str(excinfo.value) == translations.get("errors.letter_guessed")


@pytest.mark.asyncio
async def test_non_hebrew_letter_is_rejected(model):
    await _start(model, ALICE)

    with pytest.raises(ValidationError):
        await model.guess_letter(CHAT_ID, ALICE, "a")


@pytest.mark.asyncio
async def test_guess_before_play_is_rejected(model):
    await model.start_match(CHAT_ID, ADMIN_ID)
    await model.join(CHAT_ID, ALICE, "Alice")

    with pytest.raises(ValidationError):
        await model.guess_letter(CHAT_ID, ALICE, "ש")


@pytest.mark.asyncio
async def test_completing_word_starts_new_round(model, match_manager, transport, translations):
    await _start(model, ALICE, BOB)
    for letter in ("ש", "ל", "ו", "מ"):
        await model.guess_letter(CHAT_ID, ALICE, letter)

    state = await _state(match_manager)
    assert state.players_data[ALICE].score == 4 + 2
    assert state.revealed_letters == frozenset()
    assert state.current_player_id == ALICE
    assert translations.get("messages.word_revealed", word=escape("שלום")) in transport.texts
    assert translations.get("messages.new_round") in transport.texts


@pytest.mark.asyncio
async def test_reaching_win_limit_ends_match(model, match_manager, transport, translations):
    await _start(model, ALICE, BOB, win_limit="5")
    for letter in ("ש", "ל", "ו", "ם"):
        await model.guess_letter(CHAT_ID, ALICE, letter)

    assert not await match_manager.match_exists(CHAT_ID)
    _, text, keyboard = transport.messages[-1]
    assert "player11" in text
    assert keyboard == game_over_keyboard(translations)


# Solving ---------------------------------------------------------------------
@pytest.mark.asyncio
async def test_request_solve_stores_prompt_reference(model, match_manager, transport):
    await _start(model, ALICE, BOB)

    await model.request_solve(CHAT_ID, ALICE)

    state = await _state(match_manager)
    attempt = state.solve_attempt
    assert attempt is not None
    assert attempt.solver_id == ALICE
    assert attempt.prompt_message_ref is not None
    assert len(transport.prompts) == 1


@pytest.mark.asyncio
async def test_request_solve_out_of_turn(model):
    await _start(model, ALICE, BOB)

    with pytest.raises(ValidationError):
        await model.request_solve(CHAT_ID, BOB)


@pytest.mark.asyncio
async def test_letters_are_blocked_while_solving(model, translations):
    await _start(model, ALICE, BOB)
    await model.request_solve(CHAT_ID, ALICE)

    with pytest.raises(ValidationError) as excinfo:
        await model.guess_letter(CHAT_ID, ALICE, "ש")

    assert str(excinfo.value) == translations.get("errors.solve_pending")


@pytest.mark.asyncio
async def test_correct_solve_scores_and_rotates_word(model, match_manager, transport, translations):
    await _start(model, ALICE, BOB)
    await model.request_solve(CHAT_ID, ALICE)
    prompt_ref = (await _state(match_manager)).solve_attempt.prompt_message_ref

    result = await model.submit_solve(CHAT_ID, ALICE, "של ום", prompt_ref)

    state = await _state(match_manager)
    assert result is not None
    assert state.players_data[ALICE].score == 2
    assert state.solve_attempt is None
    assert state.revealed_letters == frozenset()
    assert translations.get("messages.correct_solve", word=escape("שלום")) in transport.texts


@pytest.mark.asyncio
async def test_wrong_solve_passes_turn(model, match_manager, transport, translations):
    await _start(model, ALICE, BOB)
    await model.request_solve(CHAT_ID, ALICE)
    prompt_ref = (await _state(match_manager)).solve_attempt.prompt_message_ref

    await model.submit_solve(CHAT_ID, ALICE, "שלוט", prompt_ref)

    state = await _state(match_manager)
    assert state.players_data[ALICE].score == 0
    assert state.players_data[ALICE].timeout_count == 0
    assert state.current_player_id == BOB
    assert state.solve_attempt is None
    assert translations.get("messages.wrong_solve") in transport.texts


@pytest.mark.asyncio
async def test_solve_reaching_win_limit_ends_match(model, match_manager, transport):
    await _start(model, ALICE, BOB, win_limit="2")
    await model.request_solve(CHAT_ID, ALICE)
    prompt_ref = (await _state(match_manager)).solve_attempt.prompt_message_ref

    await model.submit_solve(CHAT_ID, ALICE, "שלום", prompt_ref)

    assert not await match_manager.match_exists(CHAT_ID)
    assert "player11" in transport.texts[-1]


@pytest.mark.asyncio
async def test_unrelated_replies_are_ignored(model, match_manager):
    await _start(model, ALICE, BOB)
    await model.request_solve(CHAT_ID, ALICE)
    prompt_ref = (await _state(match_manager)).solve_attempt.prompt_message_ref

    assert await model.submit_solve(CHAT_ID, BOB, "שלום", prompt_ref) is None
    assert await model.submit_solve(CHAT_ID, ALICE, "שלום", prompt_ref + 1000) is None
    assert (await _state(match_manager)).solve_attempt is not None


@pytest.mark.asyncio
async def test_reply_without_open_attempt_is_ignored(model):
    await _start(model, ALICE, BOB)

    assert await model.submit_solve(CHAT_ID, ALICE, "שלום", 5) is None


# Timeouts --------------------------------------------------------------------
@pytest.mark.asyncio
async def test_expired_turn_is_applied_before_button_press(
    model, match_manager, transport, clock, translations
):
    await _start(model, ALICE, BOB)
    clock.advance(31)

    result = await model.guess_letter(CHAT_ID, BOB, "ש")

    state = await _state(match_manager)
    assert result.answer == translations.get("answers.timed_out", count=1, max=3)
    assert state.players_data[ALICE].timeout_count == 1
    assert state.current_player_id == BOB
    assert "ש" not in state.revealed_letters
    assert state.phase == AwaitingTurn(deadline_at=clock.now)

    timeout_text = translations.get("messages.turn_timeout", name="player11", count=1, max=3)
    assert (CHAT_ID, timeout_text, kick_keyboard(ALICE, "player11", translations)) in transport.messages


@pytest.mark.asyncio
async def test_sweep_applies_turn_timeout_once(model, match_manager, clock):
    await _start(model, ALICE, BOB)
    clock.advance(31)

    assert await model.check_session(CHAT_ID)
    assert not await model.check_session(CHAT_ID)

    state = await _state(match_manager)
    assert state.players_data[ALICE].timeout_count == 1
    assert state.current_player_id == BOB


@pytest.mark.asyncio
async def test_stale_sweep_decision_is_dropped(model, match_manager, clock, monkeypatch):
    await _start(model, ALICE, BOB)
    clock.advance(31)
    stale = await match_manager.load_match_with_version(CHAT_ID)

    assert await model.check_session(CHAT_ID)

    async def stale_load(chat_id):
        return stale

    monkeypatch.setattr(match_manager, "load_match_with_version", stale_load)
    assert not await model.check_session(CHAT_ID)
    with pytest.raises(ConcurrentUpdateError):
        await model.guess_letter(CHAT_ID, BOB, "ש")
    monkeypatch.undo()

    state = await _state(match_manager)
    assert state.players_data[ALICE].timeout_count == 1
    assert state.players_data[BOB].timeout_count == 0


@pytest.mark.asyncio
async def test_pending_solve_suppresses_turn_timeout(model, match_manager, clock):
    await _start(model, ALICE, BOB)
    clock.advance(25)
    await model.request_solve(CHAT_ID, ALICE)
    clock.advance(10)

    assert not await model.check_session(CHAT_ID)

    state = await _state(match_manager)
    assert state.solve_attempt is not None
    assert state.players_data[ALICE].timeout_count == 0


@pytest.mark.asyncio
async def test_expired_solve_attempt_times_out(model, match_manager, transport, clock, translations):
    await _start(model, ALICE, BOB)
    await model.request_solve(CHAT_ID, ALICE)
    prompt_ref = (await _state(match_manager)).solve_attempt.prompt_message_ref
    clock.advance(31)

    result = await model.submit_solve(CHAT_ID, ALICE, "שלום", prompt_ref)

    state = await _state(match_manager)
    assert result.answer == translations.get("answers.timed_out", count=1, max=3)
    assert state.solve_attempt is None
    assert state.players_data[ALICE].score == 0
    assert state.players_data[ALICE].timeout_count == 1
    assert state.current_player_id == BOB
    assert translations.get("messages.solve_timeout", name="player11", count=1, max=3) in transport.texts


@pytest.mark.asyncio
async def test_repeated_timeouts_eject_player(model, match_manager, transport, clock, translations):
    await _start(model, ALICE, BOB)
    for letter in ("א", "ב"):
        clock.advance(31)
        assert await model.check_session(CHAT_ID)
        await model.guess_letter(CHAT_ID, BOB, letter)
    clock.advance(31)

    assert await model.check_session(CHAT_ID)

    state = await _state(match_manager)
    assert state.player_order == (BOB,)
    assert state.current_player_id == BOB
    assert translations.get("messages.ejected", name="player11", max=3) in transport.texts


@pytest.mark.asyncio
async def test_ejecting_sole_player_deletes_match(model, match_manager, transport, clock, translations):
    await _start(model, ALICE)
    for _ in range(3):
        clock.advance(31)
        assert await model.check_session(CHAT_ID)

    assert not await match_manager.match_exists(CHAT_ID)
    assert transport.texts[-1] == translations.get("messages.not_enough_players")


# Leaving and kicking ---------------------------------------------------------
@pytest.mark.asyncio
async def test_leave_while_joining_updates_join_board(model, match_manager, transport):
    await model.start_match(CHAT_ID, ADMIN_ID)
    await model.join(CHAT_ID, ALICE, "Alice")
    await model.join(CHAT_ID, BOB, "Bob")

    await model.leave(CHAT_ID, ALICE)

    assert (await _state(match_manager)).player_order == (BOB,)
    _, request, _ = transport.renders[-1]
    assert "Alice" not in request.board_text


@pytest.mark.asyncio
async def test_current_player_leaving_hands_turn_on(model, match_manager, transport, clock):
    await _start(model, ALICE, BOB, CAROL)
    clock.advance(10)

    await model.leave(CHAT_ID, ALICE)

    state = await _state(match_manager)
    assert state.player_order == (BOB, CAROL)
    assert state.current_player_id == BOB
    assert state.phase == AwaitingTurn(deadline_at=clock.now)
    _, request, _ = transport.renders[-1]
    assert request.turn_changed


@pytest.mark.asyncio
async def test_solver_leaving_cancels_attempt(model, match_manager):
    await _start(model, ALICE, BOB)
    await model.request_solve(CHAT_ID, ALICE)

    await model.leave(CHAT_ID, ALICE)

    state = await _state(match_manager)
    assert state.solve_attempt is None
    assert state.current_player_id == BOB


@pytest.mark.asyncio
async def test_last_player_leaving_ends_match(model, match_manager, transport, translations):
    await _start(model, ALICE)

    await model.leave(CHAT_ID, ALICE)

    assert not await match_manager.match_exists(CHAT_ID)
    assert translations.get("messages.not_enough_players") in transport.texts[-1]


@pytest.mark.asyncio
async def test_leave_when_not_playing_in_match(model):
    await _start(model, ALICE)

    with pytest.raises(ValidationError):
        await model.leave(CHAT_ID, BOB)


@pytest.mark.asyncio
async def test_admin_kick_removes_player(model, match_manager):
    await _start(model, ALICE, BOB)

    result = await model.kick(CHAT_ID, ADMIN_ID, BOB)

    assert result.clear_keyboard
    assert (await _state(match_manager)).player_order == (ALICE,)


@pytest.mark.asyncio
async def test_kick_requires_admin(model):
    await _start(model, ALICE, BOB)

    with pytest.raises(ValidationError):
        await model.kick(CHAT_ID, ALICE, BOB)


@pytest.mark.asyncio
async def test_kick_of_departed_player(model, translations):
    await _start(model, ALICE, BOB)
    await model.leave(CHAT_ID, BOB)

    result = await model.kick(CHAT_ID, ADMIN_ID, BOB)

    assert result.answer == translations.get("errors.player_gone")
    assert result.clear_keyboard


# Ending ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_admin_ends_match(model, match_manager, transport, translations):
    await _start(model, ALICE)

    await model.end_match(CHAT_ID, ADMIN_ID)

    assert not await match_manager.match_exists(CHAT_ID)
    assert transport.messages[-1] == (
        CHAT_ID,
        translations.get("messages.game_ended"),
        game_over_keyboard(translations),
    )


@pytest.mark.asyncio
async def test_starter_may_end_without_admin_rights(model, match_manager, transport):
    await _start(model, ALICE)
    transport.admins.clear()

    await model.end_match(CHAT_ID, ADMIN_ID)

    assert not await match_manager.match_exists(CHAT_ID)


@pytest.mark.asyncio
async def test_other_players_cannot_end_match(model, match_manager):
    await _start(model, ALICE)

    with pytest.raises(ValidationError):
        await model.end_match(CHAT_ID, ALICE)

    assert await match_manager.match_exists(CHAT_ID)


@pytest.mark.asyncio
async def test_end_without_match(model):
    with pytest.raises(NotFoundError):
        await model.end_match(CHAT_ID, ADMIN_ID)


@pytest.mark.asyncio
async def test_corrupted_match_can_only_be_ended_by_admin(model, match_manager, redis_pool):
    await redis_pool.set(f"wheel:game:{CHAT_ID}", "garbage")

    with pytest.raises(InvariantViolation):
        await model.join(CHAT_ID, ALICE, "Alice")
    with pytest.raises(InvariantViolation):
        await model.end_match(CHAT_ID, ALICE)

    await model.end_match(CHAT_ID, ADMIN_ID)
    assert not await match_manager.match_exists(CHAT_ID)


# Sweep -----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_sweep_checks_every_session(model, redis_pool, clock):
    await _start(model, ALICE, BOB)
    await model.start_match(-2002, ADMIN_ID)
    await redis_pool.set("wheel:game:-3003", "garbage")
    clock.advance(31)

    report = await model.sweep()

    assert report.checked == 3
    assert report.timed_out == 1
    assert report.failed == 1
