"""Interface between the match orchestrator and the chat platform."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from wheelapp.entities import ChatId, MessageId, UserId
from wheelapp.keyboards import KeyboardSpec


@dataclass(frozen=True)
class RenderRequest:
    """Board content plus how it should reach the chat.

    ``turn_changed`` asks for a fresh message so the next player gets a
    notification; otherwise the previous board is edited in place.
    """

    board_text: str
    keyboard: Optional[KeyboardSpec]
    turn_changed: bool


class Transport(Protocol):
    async def render_board(
        self,
        chat_id: ChatId,
        request: RenderRequest,
        previous_ref: Optional[MessageId],
    ) -> Optional[MessageId]:
        """Show the board and return the id of the message now holding it."""

    async def send_message(
        self,
        chat_id: ChatId,
        text: str,
        keyboard: Optional[KeyboardSpec] = None,
    ) -> Optional[MessageId]:
        ...

    async def send_solve_prompt(self, chat_id: ChatId, text: str) -> Optional[MessageId]:
        """Send a message the solver must reply to."""

    async def is_admin(self, chat_id: ChatId, user_id: UserId) -> bool:
        ...


__all__ = ["RenderRequest", "Transport"]
