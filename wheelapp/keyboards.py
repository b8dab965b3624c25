"""Transport neutral inline keyboard layouts and callback data parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Optional, Tuple

from wheelapp.entities import UserId
from wheelapp.normalize import HEBREW_LETTERS, normalize
from wheelapp.translations import TranslationService


LETTERS_PER_ROW = 5

ACTION_PREFIX = "action"
LETTER_PREFIX = "letter"
KICK_PREFIX = "kick"

ACTION_JOIN = "join"
ACTION_START = "start"
ACTION_SOLVE = "solve"
ACTION_LEAVE = "leave"
ACTION_NEW_GAME = "new_game"


@dataclass(frozen=True)
class KeyboardButton:
    text: str
    callback_data: str


KeyboardRow = Tuple[KeyboardButton, ...]
KeyboardSpec = Tuple[KeyboardRow, ...]


@dataclass(frozen=True)
class CallbackData:
    kind: str
    value: Optional[str] = None


def _action(translations: TranslationService, action: str) -> KeyboardButton:
    return KeyboardButton(
        text=translations.get(f"buttons.{action}"),
        callback_data=f"{ACTION_PREFIX}:{action}",
    )


def join_keyboard(translations: TranslationService) -> KeyboardSpec:
    return (
        (_action(translations, ACTION_JOIN),),
        (_action(translations, ACTION_START),),
    )


def letter_keyboard(
    revealed: AbstractSet[str], translations: TranslationService
) -> KeyboardSpec:
    """Unrevealed letters in alphabet order, five per row, then solve/leave.

    Each row is reversed so that it reads right to left in the client.
    """

    available = [letter for letter in HEBREW_LETTERS if normalize(letter) not in revealed]
    rows = []
    for start in range(0, len(available), LETTERS_PER_ROW):
        chunk = available[start:start + LETTERS_PER_ROW]
        rows.append(
            tuple(
                KeyboardButton(text=letter, callback_data=f"{LETTER_PREFIX}:{letter}")
                for letter in reversed(chunk)
            )
        )
    rows.append(
        (_action(translations, ACTION_SOLVE), _action(translations, ACTION_LEAVE))
    )
    return tuple(rows)


def game_over_keyboard(translations: TranslationService) -> KeyboardSpec:
    return ((_action(translations, ACTION_NEW_GAME),),)


def kick_keyboard(
    user_id: UserId, name: str, translations: TranslationService
) -> KeyboardSpec:
    return (
        (
            KeyboardButton(
                text=translations.get("buttons.kick", name=name),
                callback_data=f"{KICK_PREFIX}:{user_id}",
            ),
        ),
    )


def parse_callback_data(data: Optional[str]) -> CallbackData:
    """Split ``kind:value`` callback payloads; a missing value stays ``None``."""

    if not data:
        return CallbackData(kind="")
    kind, sep, value = data.partition(":")
    return CallbackData(kind=kind, value=value if sep and value else None)


__all__ = [
    "ACTION_JOIN",
    "ACTION_LEAVE",
    "ACTION_NEW_GAME",
    "ACTION_SOLVE",
    "ACTION_START",
    "CallbackData",
    "KeyboardButton",
    "KeyboardRow",
    "KeyboardSpec",
    "game_over_keyboard",
    "join_keyboard",
    "kick_keyboard",
    "letter_keyboard",
    "parse_callback_data",
]
