"""Board and join screen texts (Telegram HTML)."""

from __future__ import annotations

import html
from typing import AbstractSet, Optional

from wheelapp.entities import MatchState, UserId
from wheelapp.normalize import is_hebrew_letter, normalize
from wheelapp.translations import TranslationService


RLM = "\u200f"
HIDDEN_LETTER = "_"
WORD_GAP = "   "
CURRENT_MARKER = "➡️"
IDLE_MARKER = "⬜"


def escape(text: str) -> str:
    return html.escape(text, quote=False)


def word_display(word: str, revealed: AbstractSet[str]) -> str:
    """Mask unrevealed Hebrew letters; spaces widen and other glyphs stay."""

    cells = []
    for char in word:
        if char == " ":
            cells.append(WORD_GAP)
        elif not is_hebrew_letter(char):
            cells.append(escape(char))
        elif normalize(char) in revealed:
            cells.append(char)
        else:
            cells.append(HIDDEN_LETTER)
    return f"{RLM}{' '.join(cells)}{RLM}"


def display_name(
    state: MatchState, user_id: UserId, translations: TranslationService
) -> str:
    name = state.player_name(user_id) or translations.get("messages.default_player_name")
    return escape(name)


def player_mention(user_id: UserId, name: str) -> str:
    return f'<a href="tg://user?id={user_id}">{escape(name)}</a>'


def scoreboard(state: MatchState, translations: TranslationService) -> str:
    lines = []
    for index, user_id in enumerate(state.player_order):
        data = state.players_data.get(user_id)
        marker = CURRENT_MARKER if index == state.turn_index else IDLE_MARKER
        line = translations.get(
            "messages.score_line",
            marker=marker,
            score=data.score if data is not None else 0,
            name=display_name(state, user_id, translations),
        )
        lines.append(f"{RLM}{line}")
    return "\n".join(lines)


def board_text(
    state: MatchState,
    translations: TranslationService,
    *,
    turn_seconds: Optional[float] = None,
) -> str:
    current = state.current_player_id
    if current is not None:
        player = player_mention(
            current,
            state.player_name(current)
            or translations.get("messages.default_player_name"),
        )
    else:
        player = translations.get("messages.unknown_player")
    return translations.get(
        "messages.board",
        category=escape(state.category),
        word=word_display(state.word, state.revealed_letters),
        scoreboard=scoreboard(state, translations),
        player=player,
        seconds=int(turn_seconds) if turn_seconds is not None else "",
    )


def join_text(state: MatchState, translations: TranslationService) -> str:
    names = ", ".join(
        display_name(state, user_id, translations) for user_id in state.player_order
    )
    return translations.get(
        "messages.join_board",
        win_limit=state.win_limit,
        count=len(state.player_order),
        players=names,
    )


__all__ = [
    "RLM",
    "board_text",
    "display_name",
    "escape",
    "join_text",
    "player_mention",
    "scoreboard",
    "word_display",
]
