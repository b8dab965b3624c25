#!/usr/bin/env python3

import logging
from typing import Awaitable, Callable, Optional

from telegram import CallbackQuery, Update
from telegram.constants import ChatType, ParseMode
from telegram.error import BadRequest
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from wheelapp.entities import (
    ConcurrentUpdateError,
    InvariantViolation,
    TransientIOError,
    UserException,
)
from wheelapp.keyboards import (
    ACTION_JOIN,
    ACTION_LEAVE,
    ACTION_NEW_GAME,
    ACTION_SOLVE,
    ACTION_START,
    KICK_PREFIX,
    LETTER_PREFIX,
    parse_callback_data,
)
from wheelapp.translations import TranslationService
from wheelapp.utils.logging_helpers import add_context
from wheelapp.wheelbotmodel import ActionResult, WheelBotModel
from wheelapp.wheelbotview import WheelBotViewer


logger = logging.getLogger(__name__)


class WheelBotController:
    def __init__(
        self,
        model: WheelBotModel,
        view: WheelBotViewer,
        application: Application,
        translations: TranslationService,
        *,
        help_kwargs: Optional[dict] = None,
    ):
        self._model = model
        self._view = view
        self._t = translations
        self._help_kwargs = dict(help_kwargs or {})
        self._logger = add_context(logger, request_category="handler")

        application.add_handler(CommandHandler("start", self._handle_start))
        application.add_handler(CommandHandler("help", self._handle_help))
        application.add_handler(CommandHandler("start_game", self._handle_start_game))
        application.add_handler(CommandHandler("end_game", self._handle_end_game))

        application.add_handler(CallbackQueryHandler(self._handle_action, pattern="^action:"))
        application.add_handler(CallbackQueryHandler(self._handle_letter, pattern=f"^{LETTER_PREFIX}:"))
        application.add_handler(CallbackQueryHandler(self._handle_kick, pattern=f"^{KICK_PREFIX}:"))

        application.add_handler(
            MessageHandler(
                filters.TEXT & ~filters.COMMAND & filters.REPLY & filters.ChatType.GROUPS,
                self._handle_solve_reply,
            )
        )

    # Error mapping -------------------------------------------------------
    def _describe_error(self, exc: Exception) -> str:
        if isinstance(exc, UserException):
            return str(exc)
        if isinstance(exc, InvariantViolation):
            return self._t.get("errors.corrupted")
        if isinstance(exc, ConcurrentUpdateError):
            return self._t.get("errors.retry")
        if isinstance(exc, TransientIOError):
            return self._t.get("errors.unavailable")
        return self._t.get("errors.generic")

    def _log_failure(self, exc: Exception, chat_id: Optional[int], user_id: Optional[int]) -> None:
        extra = {
            "chat_id": chat_id,
            "user_id": user_id,
            "event_type": "intent_failed",
            "error_type": type(exc).__name__,
        }
        if isinstance(exc, UserException):
            self._logger.debug("Intent rejected", extra=extra)
        elif isinstance(exc, InvariantViolation):
            self._logger.error(
                "Intent hit a corrupted match",
                extra={**extra, "issues": [getattr(i, "value", i) for i in exc.issues]},
            )
        elif isinstance(exc, TransientIOError):
            self._logger.warning("Intent failed on I/O", extra=extra)
        else:
            self._logger.exception("Unexpected error while handling intent", extra=extra)

    @staticmethod
    async def _answer(query: CallbackQuery, text: str = "", show_alert: bool = False) -> None:
        try:
            await query.answer(text=text or None, show_alert=show_alert)
        except BadRequest as e:
            if "query is too old" not in str(e).lower():
                raise

    async def _run_callback(
        self,
        update: Update,
        intent: Callable[[], Awaitable[ActionResult]],
    ) -> None:
        query = update.callback_query
        chat_id = update.effective_chat.id if update.effective_chat else None
        user_id = update.effective_user.id if update.effective_user else None
        try:
            result = await intent()
        except (UserException, InvariantViolation, TransientIOError) as exc:
            self._log_failure(exc, chat_id, user_id)
            await self._answer(query, self._describe_error(exc))
            return
        except Exception as exc:
            self._log_failure(exc, chat_id, user_id)
            await self._answer(query, self._t.get("errors.generic"))
            return

        await self._answer(query, result.answer)
        if result.clear_keyboard and query.message is not None:
            await self._view.clear_keyboard(query.message.chat_id, query.message.message_id)

    async def _reply_failure(self, update: Update, exc: Exception) -> None:
        chat_id = update.effective_chat.id if update.effective_chat else None
        user_id = update.effective_user.id if update.effective_user else None
        self._log_failure(exc, chat_id, user_id)
        if update.effective_message is not None:
            await update.effective_message.reply_text(
                self._describe_error(exc), parse_mode=ParseMode.HTML
            )

    # Commands ------------------------------------------------------------
    async def _handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        if chat is None or chat.type != ChatType.PRIVATE:
            return
        await update.effective_message.reply_text(
            self._t.get("help.private_welcome", **self._help_kwargs)
        )

    async def _handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await update.effective_message.reply_text(
            self._t.get("help.rules", **self._help_kwargs),
            parse_mode=ParseMode.HTML,
        )

    async def _handle_start_game(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        user = update.effective_user
        if chat is None or user is None:
            return
        if chat.type == ChatType.PRIVATE:
            await update.effective_message.reply_text(self._t.get("errors.group_only"))
            return
        raw_limit = " ".join(context.args) if context.args else None
        try:
            await self._model.start_match(chat.id, user.id, raw_limit)
        except (UserException, InvariantViolation, TransientIOError) as exc:
            await self._reply_failure(update, exc)

    async def _handle_end_game(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        user = update.effective_user
        if chat is None or user is None or chat.type == ChatType.PRIVATE:
            return
        try:
            await self._model.end_match(chat.id, user.id)
        except (UserException, InvariantViolation, TransientIOError) as exc:
            await self._reply_failure(update, exc)

    # Buttons -------------------------------------------------------------
    async def _handle_action(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        chat = update.effective_chat
        user = update.effective_user
        if query is None or chat is None or user is None:
            return
        action = parse_callback_data(query.data).value

        if action == ACTION_JOIN:
            name = user.first_name or self._t.get("messages.default_player_name")
            await self._run_callback(update, lambda: self._model.join(chat.id, user.id, name))
        elif action == ACTION_START:
            await self._run_callback(update, lambda: self._model.begin_play(chat.id, user.id))
        elif action == ACTION_SOLVE:
            await self._run_callback(update, lambda: self._model.request_solve(chat.id, user.id))
        elif action == ACTION_LEAVE:
            await self._run_callback(update, lambda: self._model.leave(chat.id, user.id))
        elif action == ACTION_NEW_GAME:
            await self._answer(query, self._t.get("answers.new_game_hint"))
        else:
            await self._answer(query)

    async def _handle_letter(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        chat = update.effective_chat
        user = update.effective_user
        if query is None or chat is None or user is None:
            return
        letter = parse_callback_data(query.data).value or ""
        await self._run_callback(
            update, lambda: self._model.guess_letter(chat.id, user.id, letter)
        )

    async def _handle_kick(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        chat = update.effective_chat
        user = update.effective_user
        if query is None or chat is None or user is None:
            return
        raw_target = parse_callback_data(query.data).value
        try:
            target_id = int(raw_target) if raw_target else None
        except ValueError:
            target_id = None
        if target_id is None:
            await self._answer(query, self._t.get("errors.generic"))
            return
        await self._run_callback(
            update, lambda: self._model.kick(chat.id, user.id, target_id)
        )

    # Replies -------------------------------------------------------------
    async def _handle_solve_reply(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        chat = update.effective_chat
        user = update.effective_user
        if message is None or chat is None or user is None or message.reply_to_message is None:
            return
        try:
            result = await self._model.submit_solve(
                chat.id,
                user.id,
                message.text or "",
                message.reply_to_message.message_id,
            )
        except (UserException, InvariantViolation, TransientIOError) as exc:
            await self._reply_failure(update, exc)
            return
        if result is not None and result.answer:
            await message.reply_text(result.answer)
