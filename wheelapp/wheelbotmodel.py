#!/usr/bin/env python3

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from wheelapp.board import board_text, display_name, escape, join_text, scoreboard
from wheelapp.config import GameSettings
from wheelapp.entities import (
    ChatId,
    ConcurrentUpdateError,
    MatchState,
    MatchStatus,
    MessageId,
    NotFoundError,
    UserId,
    ValidationError,
)
from wheelapp.keyboards import (
    game_over_keyboard,
    join_keyboard,
    kick_keyboard,
    letter_keyboard,
)
from wheelapp.match_manager import MatchManager
from wheelapp.normalize import is_hebrew_letter, normalize
from wheelapp.timeout_arbiter import TimeoutDecision, TimeoutKind, check_timeouts
from wheelapp.transitions import (
    add_player,
    add_points,
    check_winner,
    create_match,
    guess_letter as apply_guess,
    open_solve_attempt,
    remove_player,
    reset_turn_clock,
    resolve_solve,
    start_new_round,
    start_play,
    with_board_ref,
)
from wheelapp.translations import TranslationService
from wheelapp.transport import RenderRequest, Transport
from wheelapp.utils.logging_helpers import add_context
from wheelapp.utils.time_utils import Clock, epoch_now
from wheelapp.words import WordBank


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    """Short feedback for the user who triggered an intent."""

    answer: str = ""
    clear_keyboard: bool = False


@dataclass(frozen=True)
class SweepReport:
    checked: int = 0
    timed_out: int = 0
    failed: int = 0


def parse_win_limit(raw: Optional[str], settings: GameSettings) -> int:
    """Return the requested win limit, or the default when out of range."""

    if raw:
        try:
            parsed = int(raw.strip().split()[0])
        except (ValueError, IndexError):
            return settings.default_win_limit
        if 0 < parsed <= settings.max_win_limit:
            return parsed
    return settings.default_win_limit


class WheelBotModel:
    """Run match intents against the stored state.

    Every intent loads a fresh snapshot with its version, validates, lets
    the timeout arbiter act first when the intent depends on whose turn it
    is, applies the transition and persists with a version check before
    anything is sent to the chat. A lost version check raises
    :class:`ConcurrentUpdateError` and nothing is announced.
    """

    def __init__(
        self,
        match_manager: MatchManager,
        transport: Transport,
        word_bank: WordBank,
        settings: GameSettings,
        translations: TranslationService,
        *,
        clock: Clock = epoch_now,
    ):
        self._matches = match_manager
        self._transport = transport
        self._words = word_bank
        self._settings = settings
        self._t = translations
        self._clock = clock
        self._logger = add_context(logger.getChild("model"), request_category="match")

    # Helpers -------------------------------------------------------------
    async def _load(self, chat_id: ChatId) -> Tuple[MatchState, int]:
        state, version = await self._matches.load_match_with_version(chat_id)
        if state is None:
            raise NotFoundError(self._t.get("errors.no_game"))
        return state, version

    async def _commit(self, chat_id: ChatId, state: MatchState, version: int) -> int:
        saved = await self._matches.save_match_with_version_check(chat_id, state, version)
        if not saved:
            raise ConcurrentUpdateError(self._t.get("errors.retry"))
        return version + 1

    async def _commit_delete(self, chat_id: ChatId, version: int) -> None:
        deleted = await self._matches.delete_match_with_version_check(chat_id, version)
        if not deleted:
            raise ConcurrentUpdateError(self._t.get("errors.retry"))

    async def _attach_board_ref(
        self,
        chat_id: ChatId,
        state: MatchState,
        version: int,
        ref: Optional[MessageId],
    ) -> None:
        updated = with_board_ref(state, ref)
        if updated is state:
            return
        saved = await self._matches.save_match_with_version_check(chat_id, updated, version)
        if not saved:
            # A newer write owns the match now and renders its own board.
            self._logger.debug(
                "Board reference not stored; match changed meanwhile",
                extra={"chat_id": chat_id, "event_type": "board_ref_stale"},
            )

    async def _publish_board(
        self,
        chat_id: ChatId,
        state: MatchState,
        version: int,
        *,
        turn_changed: bool,
    ) -> None:
        request = RenderRequest(
            board_text=board_text(
                state, self._t, turn_seconds=self._settings.turn_timeout_seconds
            ),
            keyboard=letter_keyboard(state.revealed_letters, self._t),
            turn_changed=turn_changed,
        )
        ref = await self._transport.render_board(chat_id, request, state.board_message_ref)
        await self._attach_board_ref(chat_id, state, version, ref)

    async def _publish_join_board(
        self,
        chat_id: ChatId,
        state: MatchState,
        version: int,
        *,
        fresh: bool,
    ) -> None:
        request = RenderRequest(
            board_text=join_text(state, self._t),
            keyboard=join_keyboard(self._t),
            turn_changed=fresh,
        )
        ref = await self._transport.render_board(
            chat_id, request, None if fresh else state.board_message_ref
        )
        await self._attach_board_ref(chat_id, state, version, ref)

    def _name(self, state: MatchState, user_id: UserId) -> str:
        return display_name(state, user_id, self._t)

    # Timeouts ------------------------------------------------------------
    async def _persist_decision(
        self, chat_id: ChatId, decision: TimeoutDecision, version: int
    ) -> bool:
        if decision.terminated:
            return await self._matches.delete_match_with_version_check(chat_id, version)
        return await self._matches.save_match_with_version_check(
            chat_id, decision.state, version
        )

    async def _announce_decision(
        self,
        chat_id: ChatId,
        decision: TimeoutDecision,
        version: int,
    ) -> None:
        name = escape(decision.player_name or self._t.get("messages.default_player_name"))
        if decision.ejected:
            await self._transport.send_message(
                chat_id,
                self._t.get("messages.ejected", name=name, max=self._settings.max_timeouts),
            )
        else:
            key = (
                "messages.solve_timeout"
                if decision.kind is TimeoutKind.SOLVE
                else "messages.turn_timeout"
            )
            await self._transport.send_message(
                chat_id,
                self._t.get(
                    key,
                    name=name,
                    count=decision.timeout_count,
                    max=self._settings.max_timeouts,
                ),
                kick_keyboard(decision.player_id, decision.player_name, self._t),
            )

        if decision.terminated:
            await self._transport.send_message(
                chat_id, self._t.get("messages.not_enough_players")
            )
            return
        await self._publish_board(chat_id, decision.state, version, turn_changed=True)

    async def _enforce_deadlines(
        self, chat_id: ChatId, state: MatchState, version: int
    ) -> Optional[TimeoutDecision]:
        """Apply an expired deadline before a turn-sensitive intent runs."""

        decision = check_timeouts(state, self._clock(), self._settings)
        if decision is None:
            return None
        if not await self._persist_decision(chat_id, decision, version):
            raise ConcurrentUpdateError(self._t.get("errors.retry"))
        self._log_decision(chat_id, decision, source="intent")
        await self._announce_decision(chat_id, decision, version + 1)
        return decision

    def _timeout_answer(self, decision: TimeoutDecision) -> ActionResult:
        if decision.ejected:
            return ActionResult(
                self._t.get("answers.ejected", name=decision.player_name)
            )
        return ActionResult(
            self._t.get(
                "answers.timed_out",
                count=decision.timeout_count,
                max=self._settings.max_timeouts,
            )
        )

    def _log_decision(
        self, chat_id: ChatId, decision: TimeoutDecision, *, source: str
    ) -> None:
        self._logger.info(
            "Timeout applied",
            extra={
                "chat_id": chat_id,
                "user_id": decision.player_id,
                "event_type": f"{decision.kind.value}_timeout",
                "timeout_count": decision.timeout_count,
                "ejected": decision.ejected,
                "terminated": decision.terminated,
                "source": source,
            },
        )

    # Round end -----------------------------------------------------------
    async def _finish_round(
        self,
        chat_id: ChatId,
        state: MatchState,
        version: int,
        announcement: str,
    ) -> None:
        winner_id = check_winner(state)
        if winner_id is not None:
            await self._commit_delete(chat_id, version)
            self._logger.info(
                "Match won",
                extra={"chat_id": chat_id, "user_id": winner_id, "event_type": "match_won"},
            )
            await self._transport.send_message(chat_id, announcement)
            await self._transport.send_message(
                chat_id,
                self._t.get(
                    "messages.winner",
                    name=self._name(state, winner_id),
                    scoreboard=scoreboard(state, self._t),
                ),
                game_over_keyboard(self._t),
            )
            return

        entry = self._words.next()
        next_round = start_new_round(state, entry.word, entry.category, self._clock())
        version = await self._commit(chat_id, next_round, version)
        self._logger.info(
            "New round started",
            extra={"chat_id": chat_id, "event_type": "round_started"},
        )
        await self._transport.send_message(chat_id, announcement)
        await self._transport.send_message(chat_id, self._t.get("messages.new_round"))
        await self._publish_board(chat_id, next_round, version, turn_changed=True)

    # Intents -------------------------------------------------------------
    async def start_match(
        self, chat_id: ChatId, user_id: UserId, raw_win_limit: Optional[str] = None
    ) -> ActionResult:
        if not await self._transport.is_admin(chat_id, user_id):
            raise ValidationError(self._t.get("errors.admins_only_start"))
        if await self._matches.match_exists(chat_id):
            raise ValidationError(self._t.get("errors.game_exists"))

        win_limit = parse_win_limit(raw_win_limit, self._settings)
        entry = self._words.next()
        state = create_match(entry.word, entry.category, user_id, win_limit)
        if not await self._matches.create_match(chat_id, state):
            raise ValidationError(self._t.get("errors.game_exists"))

        self._logger.info(
            "Match created",
            extra={
                "chat_id": chat_id,
                "user_id": user_id,
                "event_type": "match_created",
                "win_limit": win_limit,
            },
        )
        state, version = await self._load(chat_id)
        await self._publish_join_board(chat_id, state, version, fresh=True)
        return ActionResult()

    async def join(self, chat_id: ChatId, user_id: UserId, name: str) -> ActionResult:
        state, version = await self._load(chat_id)
        if state.status is not MatchStatus.JOINING:
            raise ValidationError(self._t.get("errors.game_already_started"))
        if state.has_player(user_id):
            raise ValidationError(self._t.get("errors.already_joined"))

        state = add_player(state, user_id, name)
        version = await self._commit(chat_id, state, version)
        self._logger.info(
            "Player joined",
            extra={"chat_id": chat_id, "user_id": user_id, "event_type": "player_joined"},
        )
        await self._publish_join_board(chat_id, state, version, fresh=False)
        return ActionResult(self._t.get("answers.joined"))

    async def begin_play(self, chat_id: ChatId, user_id: UserId) -> ActionResult:
        state, version = await self._load(chat_id)
        if state.status is not MatchStatus.JOINING:
            raise ValidationError(self._t.get("errors.game_already_started"))
        if not await self._transport.is_admin(chat_id, user_id):
            raise ValidationError(self._t.get("errors.admins_only_begin"))
        if not state.player_order:
            raise ValidationError(self._t.get("errors.need_player"))

        state = start_play(state, self._clock())
        version = await self._commit(chat_id, state, version)
        self._logger.info(
            "Match started",
            extra={
                "chat_id": chat_id,
                "user_id": user_id,
                "event_type": "match_started",
                "players": len(state.player_order),
            },
        )
        await self._publish_board(chat_id, state, version, turn_changed=True)
        return ActionResult(self._t.get("answers.game_starting"))

    async def guess_letter(
        self, chat_id: ChatId, user_id: UserId, letter: str
    ) -> ActionResult:
        state, version = await self._load(chat_id)
        if not state.is_playing:
            raise ValidationError(self._t.get("errors.game_not_active"))

        decision = await self._enforce_deadlines(chat_id, state, version)
        if decision is not None:
            return self._timeout_answer(decision)

        if state.solve_attempt is not None:
            raise ValidationError(self._t.get("errors.solve_pending"))
        if state.current_player_id != user_id:
            raise ValidationError(self._t.get("errors.not_your_turn"))
        if not letter or not is_hebrew_letter(letter):
            raise ValidationError(self._t.get("errors.invalid_letter"))
        if normalize(letter) in state.revealed_letters:
            raise ValidationError(self._t.get("errors.letter_guessed"))

        outcome = apply_guess(state, letter, self._settings.points_letter, self._clock())
        self._logger.info(
            "Letter guessed",
            extra={
                "chat_id": chat_id,
                "user_id": user_id,
                "event_type": "letter_guessed",
                "letter": normalize(letter),
                "correct": outcome.correct,
            },
        )

        if outcome.word_complete:
            completed = add_points(outcome.state, user_id, self._settings.points_solve)
            await self._finish_round(
                chat_id,
                completed,
                version,
                self._t.get("messages.word_revealed", word=escape(state.word)),
            )
            return ActionResult(self._t.get("answers.correct_letter"))

        version = await self._commit(chat_id, outcome.state, version)
        await self._publish_board(
            chat_id, outcome.state, version, turn_changed=not outcome.correct
        )
        key = "answers.correct_letter" if outcome.correct else "answers.wrong_letter"
        return ActionResult(self._t.get(key))

    async def request_solve(self, chat_id: ChatId, user_id: UserId) -> ActionResult:
        state, version = await self._load(chat_id)
        if not state.is_playing:
            raise ValidationError(self._t.get("errors.game_not_active"))

        decision = await self._enforce_deadlines(chat_id, state, version)
        if decision is not None:
            return self._timeout_answer(decision)

        if state.solve_attempt is not None:
            raise ValidationError(self._t.get("errors.solve_pending"))
        if state.current_player_id != user_id:
            raise ValidationError(self._t.get("errors.not_your_turn"))

        opened = open_solve_attempt(state, user_id, None, self._clock())
        version = await self._commit(chat_id, opened, version)
        self._logger.info(
            "Solve attempt opened",
            extra={"chat_id": chat_id, "user_id": user_id, "event_type": "solve_requested"},
        )

        seconds = int(self._settings.solve_timeout_seconds)
        prompt_ref = await self._transport.send_solve_prompt(
            chat_id,
            self._t.get(
                "messages.solve_prompt", name=self._name(state, user_id), seconds=seconds
            ),
        )
        if prompt_ref is not None:
            with_prompt = open_solve_attempt(
                opened, user_id, prompt_ref, opened.solve_attempt.deadline_at
            )
            saved = await self._matches.save_match_with_version_check(
                chat_id, with_prompt, version
            )
            if not saved:
                self._logger.debug(
                    "Solve prompt reference not stored; match changed meanwhile",
                    extra={"chat_id": chat_id, "event_type": "solve_prompt_stale"},
                )
        return ActionResult(self._t.get("answers.solve_prompt", seconds=seconds))

    async def submit_solve(
        self,
        chat_id: ChatId,
        user_id: UserId,
        text: str,
        reply_to: Optional[MessageId],
    ) -> Optional[ActionResult]:
        """Judge a reply to the solve prompt.

        Messages that are not the solver's reply to the open prompt are
        ignored and ``None`` is returned.
        """

        state, version = await self._matches.load_match_with_version(chat_id)
        if state is None or not state.is_playing:
            return None
        attempt = state.solve_attempt
        if attempt is None or attempt.solver_id != user_id:
            return None
        if attempt.prompt_message_ref is not None and reply_to != attempt.prompt_message_ref:
            return None

        decision = await self._enforce_deadlines(chat_id, state, version)
        if decision is not None:
            return self._timeout_answer(decision)

        outcome = resolve_solve(state, text, self._settings.points_solve, self._clock())
        self._logger.info(
            "Solve attempt judged",
            extra={
                "chat_id": chat_id,
                "user_id": user_id,
                "event_type": "solve_submitted",
                "correct": outcome.correct,
            },
        )

        if outcome.correct:
            await self._finish_round(
                chat_id,
                outcome.state,
                version,
                self._t.get("messages.correct_solve", word=escape(state.word)),
            )
            return ActionResult()

        version = await self._commit(chat_id, outcome.state, version)
        await self._transport.send_message(chat_id, self._t.get("messages.wrong_solve"))
        await self._publish_board(chat_id, outcome.state, version, turn_changed=True)
        return ActionResult()

    async def _remove_from_match(
        self,
        chat_id: ChatId,
        state: MatchState,
        version: int,
        user_id: UserId,
        message_key: str,
    ) -> None:
        name = self._name(state, user_id)
        was_current = state.is_playing and state.current_player_id == user_id
        updated = remove_player(state, user_id)
        announcement = self._t.get(message_key, name=name)

        if not updated.player_order:
            await self._commit_delete(chat_id, version)
            await self._transport.send_message(
                chat_id,
                f"{announcement}\n{self._t.get('messages.not_enough_players')}",
            )
            return

        if was_current:
            updated = reset_turn_clock(updated, self._clock())
        version = await self._commit(chat_id, updated, version)
        await self._transport.send_message(chat_id, announcement)

        if updated.is_playing:
            await self._publish_board(chat_id, updated, version, turn_changed=was_current)
        else:
            await self._publish_join_board(chat_id, updated, version, fresh=False)

    async def leave(self, chat_id: ChatId, user_id: UserId) -> ActionResult:
        state, version = await self._load(chat_id)
        if not state.has_player(user_id):
            raise ValidationError(self._t.get("errors.not_in_game"))

        await self._remove_from_match(
            chat_id, state, version, user_id, "messages.player_left"
        )
        self._logger.info(
            "Player left",
            extra={"chat_id": chat_id, "user_id": user_id, "event_type": "player_left"},
        )
        return ActionResult(self._t.get("answers.left"))

    async def kick(
        self, chat_id: ChatId, admin_id: UserId, target_id: UserId
    ) -> ActionResult:
        state, version = await self._load(chat_id)
        if not await self._transport.is_admin(chat_id, admin_id):
            raise ValidationError(self._t.get("errors.admins_only_kick"))
        if not state.has_player(target_id):
            return ActionResult(self._t.get("errors.player_gone"), clear_keyboard=True)

        name = state.player_name(target_id)
        await self._remove_from_match(
            chat_id, state, version, target_id, "messages.player_kicked"
        )
        self._logger.info(
            "Player kicked",
            extra={
                "chat_id": chat_id,
                "user_id": admin_id,
                "event_type": "player_kicked",
                "target_id": target_id,
            },
        )
        return ActionResult(self._t.get("answers.kicked", name=name), clear_keyboard=True)

    async def end_match(self, chat_id: ChatId, user_id: UserId) -> ActionResult:
        """End the match on request of an admin or of whoever started it.

        Admins may end a match whose stored state is unreadable; the starter
        check needs a valid state and lets :class:`InvariantViolation` through.
        """

        if not await self._matches.match_exists(chat_id):
            raise NotFoundError(self._t.get("errors.no_game"))

        if not await self._transport.is_admin(chat_id, user_id):
            state = await self._matches.load_match(chat_id)
            if state is None:
                raise NotFoundError(self._t.get("errors.no_game"))
            if state.started_by != user_id:
                raise ValidationError(self._t.get("errors.admins_only_end"))

        await self._matches.delete_match(chat_id)
        self._logger.info(
            "Match ended",
            extra={"chat_id": chat_id, "user_id": user_id, "event_type": "match_ended"},
        )
        await self._transport.send_message(
            chat_id, self._t.get("messages.game_ended"), game_over_keyboard(self._t)
        )
        return ActionResult()

    # Sweep ---------------------------------------------------------------
    async def check_session(self, chat_id: ChatId) -> bool:
        """Apply an expired deadline for one chat; ``True`` if one was applied.

        Losing the version check to a concurrent writer drops the decision
        silently: that writer already saw the same expiry or superseded it.
        """

        state, version = await self._matches.load_match_with_version(chat_id)
        if state is None:
            return False
        decision = check_timeouts(state, self._clock(), self._settings)
        if decision is None:
            return False
        if not await self._persist_decision(chat_id, decision, version):
            self._logger.debug(
                "Sweep decision dropped; match changed meanwhile",
                extra={"chat_id": chat_id, "event_type": "sweep_conflict"},
            )
            return False
        self._log_decision(chat_id, decision, source="sweep")
        await self._announce_decision(chat_id, decision, version + 1)
        return True

    async def sweep(self) -> SweepReport:
        chat_ids = await self._matches.list_session_ids()
        checked = timed_out = failed = 0
        for chat_id in chat_ids:
            checked += 1
            try:
                if await self.check_session(chat_id):
                    timed_out += 1
            except Exception:
                failed += 1
                self._logger.exception(
                    "Sweep failed for session",
                    extra={"chat_id": chat_id, "event_type": "sweep_session_failed"},
                )
        report = SweepReport(checked=checked, timed_out=timed_out, failed=failed)
        if timed_out or failed:
            self._logger.info(
                "Sweep finished",
                extra={
                    "event_type": "sweep_finished",
                    "checked": report.checked,
                    "timed_out": report.timed_out,
                    "failed": report.failed,
                },
            )
        return report
