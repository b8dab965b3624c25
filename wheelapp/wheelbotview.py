#!/usr/bin/env python3

import logging
from typing import Optional

from cachetools import TTLCache
from telegram import Bot, ForceReply, InlineKeyboardButton, InlineKeyboardMarkup, Message
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from wheelapp.entities import ChatId, MessageId, TransientIOError, UserId
from wheelapp.keyboards import KeyboardSpec
from wheelapp.transport import RenderRequest
from wheelapp.utils.logging_helpers import add_context


logger = logging.getLogger(__name__)


def build_inline_keyboard(keyboard: Optional[KeyboardSpec]) -> Optional[InlineKeyboardMarkup]:
    if not keyboard:
        return None
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(text=button.text, callback_data=button.callback_data)
                for button in row
            ]
            for row in keyboard
        ]
    )


class WheelBotViewer:
    """Telegram implementation of :class:`wheelapp.transport.Transport`."""

    def __init__(
        self,
        bot: Bot,
        *,
        admin_cache_ttl: float = 60.0,
        admin_cache_size: int = 1024,
    ):
        self._bot = bot
        self._logger = add_context(logger, request_category="telegram")
        self._admin_cache: TTLCache = TTLCache(maxsize=admin_cache_size, ttl=admin_cache_ttl)

    async def send_message(
        self,
        chat_id: ChatId,
        text: str,
        keyboard: Optional[KeyboardSpec] = None,
    ) -> Optional[MessageId]:
        try:
            message = await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=build_inline_keyboard(keyboard),
                disable_web_page_preview=True,
            )
        except TelegramError as exc:
            self._logger.error(
                "Error sending message",
                extra={
                    "chat_id": chat_id,
                    "method": "send_message",
                    "error_type": type(exc).__name__,
                },
            )
            raise TransientIOError(str(exc)) from exc
        if isinstance(message, Message):
            return message.message_id
        return None

    async def send_solve_prompt(self, chat_id: ChatId, text: str) -> Optional[MessageId]:
        try:
            message = await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=ForceReply(selective=True),
            )
        except TelegramError as exc:
            self._logger.error(
                "Error sending solve prompt",
                extra={
                    "chat_id": chat_id,
                    "method": "send_solve_prompt",
                    "error_type": type(exc).__name__,
                },
            )
            raise TransientIOError(str(exc)) from exc
        if isinstance(message, Message):
            return message.message_id
        return None

    async def delete_message(self, chat_id: ChatId, message_id: MessageId) -> None:
        try:
            await self._bot.delete_message(chat_id=chat_id, message_id=message_id)
        except TelegramError as exc:
            # The message may already be gone or too old to delete.
            self._logger.debug(
                "Could not delete message",
                extra={
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "method": "delete_message",
                    "error_type": type(exc).__name__,
                },
            )

    async def edit_message_text(
        self,
        chat_id: ChatId,
        message_id: MessageId,
        text: str,
        keyboard: Optional[KeyboardSpec] = None,
    ) -> bool:
        """Edit a message in place; ``False`` when Telegram refused the edit."""

        try:
            await self._bot.edit_message_text(
                chat_id=chat_id,
                message_id=message_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=build_inline_keyboard(keyboard),
                disable_web_page_preview=True,
            )
        except BadRequest as exc:
            if "message is not modified" in str(exc).lower():
                return True
            self._logger.info(
                "Edit rejected; a replacement will be sent",
                extra={
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "method": "edit_message_text",
                    "error_type": type(exc).__name__,
                },
            )
            return False
        except TelegramError as exc:
            self._logger.warning(
                "TelegramError when editing message; will send a replacement",
                extra={
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "method": "edit_message_text",
                    "error_type": type(exc).__name__,
                },
            )
            return False
        return True

    async def render_board(
        self,
        chat_id: ChatId,
        request: RenderRequest,
        previous_ref: Optional[MessageId],
    ) -> Optional[MessageId]:
        """Show the board: a new message on turn change, an edit otherwise."""

        if request.turn_changed or previous_ref is None:
            if previous_ref is not None:
                await self.delete_message(chat_id, previous_ref)
            return await self.send_message(chat_id, request.board_text, request.keyboard)

        edited = await self.edit_message_text(
            chat_id, previous_ref, request.board_text, request.keyboard
        )
        if edited:
            return previous_ref
        return await self.send_message(chat_id, request.board_text, request.keyboard)

    async def clear_keyboard(self, chat_id: ChatId, message_id: MessageId) -> None:
        try:
            await self._bot.edit_message_reply_markup(
                chat_id=chat_id, message_id=message_id, reply_markup=None
            )
        except TelegramError as exc:
            self._logger.debug(
                "Could not clear keyboard",
                extra={
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "method": "edit_message_reply_markup",
                    "error_type": type(exc).__name__,
                },
            )

    async def is_admin(self, chat_id: ChatId, user_id: UserId) -> bool:
        """Whether ``user_id`` administers ``chat_id``; lookup failures deny."""

        admin_ids = self._admin_cache.get(chat_id)
        if admin_ids is None:
            try:
                administrators = await self._bot.get_chat_administrators(chat_id)
            except TelegramError as exc:
                self._logger.warning(
                    "Admin lookup failed",
                    extra={
                        "chat_id": chat_id,
                        "user_id": user_id,
                        "method": "get_chat_administrators",
                        "error_type": type(exc).__name__,
                    },
                )
                return False
            admin_ids = frozenset(member.user.id for member in administrators)
            self._admin_cache[chat_id] = admin_ids
        return user_id in admin_ids
