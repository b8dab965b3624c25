"""Translation utilities for user facing bot messages."""

from __future__ import annotations

import json
import logging
import os
from copy import deepcopy
from typing import Any, Dict, Optional, Sequence


logger = logging.getLogger(__name__)


DEFAULT_TRANSLATIONS: Dict[str, Any] = {
    "default_language": "he",
    "help": {
        "private_welcome": {
            "he": (
                "🎡 ברוכים הבאים לגלגל המזל!\n\n"
                "הוסף אותי לקבוצה והשתמש בפקודה /start_game כדי להתחיל משחק.\n\n"
                "פקודות:\n"
                "/start_game [נקודות] - התחל משחק חדש (ברירת מחדל: {default_limit} נקודות)\n"
                "/end_game - סיים את המשחק הנוכחי\n"
                "/help - עזרה"
            ),
        },
        "rules": {
            "he": (
                "🎡 <b>גלגל המזל - עזרה</b>\n\n"
                "<b>חוקי המשחק:</b>\n"
                "• נחשו אותיות כדי לגלות את המילה\n"
                "• ניחוש נכון = {points_letter} נקודה ותור נוסף\n"
                "• ניחוש שגוי = התור עובר\n"
                "• פתרון המילה = {points_solve} נקודות\n\n"
                "<b>פקודות:</b>\n"
                "/start_game [נקודות] - התחל משחק (מנהלים בלבד)\n"
                "/end_game - סיים משחק\n\n"
                "<b>טיפ:</b> האותיות כ/ך, מ/ם, נ/ן, פ/ף, צ/ץ נחשבות זהות!"
            ),
        },
    },
    "commands": {
        "start": {"he": "🎡 התחל שיחה עם הבוט"},
        "help": {"he": "❓ עזרה וחוקי המשחק"},
        "start_game": {"he": "🎮 התחל משחק חדש"},
        "end_game": {"he": "🛑 סיים משחק"},
    },
    "buttons": {
        "join": {"he": "🎮 הצטרפות"},
        "start": {"he": "▶️ התחל משחק"},
        "solve": {"he": "💡 פתרון המילה"},
        "leave": {"he": "🚪 עזיבה"},
        "new_game": {"he": "🔄 משחק חדש"},
        "kick": {"he": "🚫 להעיף את {name}"},
    },
    "errors": {
        "group_only": {"he": "❌ פקודה זו פועלת רק בקבוצות."},
        "admins_only_start": {"he": "❌ רק מנהלים יכולים להתחיל משחק."},
        "admins_only_begin": {"he": "רק מנהלים יכולים להתחיל את המשחק!"},
        "admins_only_end": {"he": "❌ רק מנהלים יכולים לסיים את המשחק."},
        "admins_only_kick": {"he": "רק מנהלים יכולים להעיף שחקנים!"},
        "game_exists": {"he": "❌ כבר יש משחק פעיל! השתמש ב-/end_game כדי לסיים אותו."},
        "no_game": {"he": "❌ אין משחק פעיל."},
        "game_already_started": {"he": "המשחק כבר התחיל!"},
        "game_not_active": {"he": "המשחק לא פעיל!"},
        "already_joined": {"he": "כבר הצטרפת למשחק!"},
        "not_in_game": {"he": "את/ה לא במשחק!"},
        "need_player": {"he": "צריך לפחות שחקן אחד!"},
        "not_your_turn": {"he": "זה לא התור שלך!"},
        "letter_guessed": {"he": "האות הזו כבר נוחשה!"},
        "invalid_letter": {"he": "אות לא חוקית."},
        "solve_pending": {"he": "ממתינים לפתרון!"},
        "player_gone": {"he": "השחקן כבר לא במשחק!"},
        "retry": {"he": "⚠️ המשחק עודכן בינתיים, נסו שוב."},
        "unavailable": {"he": "⚠️ תקלה זמנית, נסו שוב בעוד רגע."},
        "corrupted": {
            "he": "⚠️ מצב המשחק פגום. מנהל יכול לסיים אותו עם /end_game."
        },
        "generic": {"he": "שגיאה"},
    },
    "answers": {
        "joined": {"he": "הצטרפת למשחק! 🎉"},
        "left": {"he": "עזבת את המשחק."},
        "game_starting": {"he": "המשחק מתחיל! 🎮"},
        "correct_letter": {"he": "נכון! 🎉"},
        "wrong_letter": {"he": "לא נכון! התור עובר."},
        "solve_prompt": {"he": "השב להודעה עם הפתרון תוך {seconds} שניות."},
        "kicked": {"he": "{name} הועף/ה!"},
        "timed_out": {"he": "⏰ נגמר הזמן! ({count}/{max})"},
        "ejected": {"he": "🚫 {name} הוסר/ה מהמשחק!"},
        "new_game_hint": {"he": "השתמש ב-/start_game להתחלת משחק חדש"},
    },
    "messages": {
        "join_board": {
            "he": (
                "🎡 <b>גלגל המזל - משחק חדש!</b>\n\n"
                "🏆 יעד: {win_limit} נקודות\n"
                "👥 שחקנים ({count}): {players}\n\n"
                "לחצו על <b>הצטרפות</b> להצטרף למשחק.\n"
                "כשכולם מוכנים, מנהל ילחץ על <b>התחל משחק</b>."
            ),
        },
        "board": {
            "he": (
                "🎡 <b>גלגל המזל</b>\n\n"
                "📂 קטגוריה: <b>{category}</b>\n\n"
                "━━━━━━━━━━━━━━━━━━━━━━━━━━\n"
                "<b>{word}</b>\n"
                "━━━━━━━━━━━━━━━━━━━━━━━━━━\n\n"
                "📊 <b>ניקוד:</b>\n{scoreboard}\n\n"
                "🎮 <b>תור:</b> {player}\n"
                "⏱ <i>{seconds} שניות לבחירה</i>"
            ),
        },
        "score_line": {"he": "{marker} {score} נק' • {name}"},
        "unknown_player": {"he": "לא ידוע"},
        "default_player_name": {"he": "שחקן"},
        "solve_prompt": {
            "he": "🤔 <b>{name}</b>, מה הפתרון שלך?\n\n<i>↩️ השב להודעה זו תוך {seconds} שניות</i>"
        },
        "correct_solve": {"he": "🎉 נכון! המילה היא: <b>{word}</b>"},
        "wrong_solve": {"he": "❌ לא נכון! התור עובר."},
        "word_revealed": {"he": "🎉 המילה נחשפה: <b>{word}</b>"},
        "new_round": {"he": "🔄 סיבוב חדש!"},
        "winner": {
            "he": "🏆 <b>{name} ניצח/ה!</b>\n\n📊 <b>טבלת ניקוד סופית:</b>\n{scoreboard}"
        },
        "turn_timeout": {
            "he": (
                "⏰ נגמר הזמן ל-<b>{name}</b>! ({count}/{max}) התור עובר.\n"
                "<i>מנהלים יכולים להעיף:</i>"
            ),
        },
        "solve_timeout": {
            "he": (
                "⏰ נגמר הזמן לפתרון ל-<b>{name}</b>! ({count}/{max}) התור עובר.\n"
                "<i>מנהלים יכולים להעיף:</i>"
            ),
        },
        "ejected": {"he": "🚫 <b>{name}</b> הוסר/ה מהמשחק לאחר {max} פסילות!"},
        "player_left": {"he": "🚪 <b>{name}</b> עזב/ה את המשחק."},
        "player_kicked": {"he": "🚫 <b>{name}</b> הועף/ה מהמשחק על ידי מנהל."},
        "not_enough_players": {"he": "🛑 המשחק הסתיים - אין מספיק שחקנים."},
        "game_ended": {"he": "🛑 המשחק הסתיים."},
    },
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


class TranslationService:
    """Look up bot messages by dotted key.

    Built-in Hebrew texts can be overridden, fully or per key, by a JSON
    file with the same nesting.
    """

    def __init__(self, translations_path: Optional[str] = None):
        self._translations: Dict[str, Any] = deepcopy(DEFAULT_TRANSLATIONS)
        self._language_order: Sequence[str] = ("he", "en")
        path = translations_path or os.getenv("WHEELBOT_TRANSLATIONS_FILE")
        if path:
            self._load_translations(path)
        self._refresh_language_order()

    def _load_translations(self, path: str) -> None:
        """Merge translations from a JSON file over the defaults."""

        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                loaded = json.load(file_obj)
        except FileNotFoundError:
            logger.warning(
                "Translations file not found; using built-in texts.",
                extra={"category": "config", "config_path": path},
            )
            return
        except json.JSONDecodeError as exc:
            logger.warning(
                "Translations file is not valid JSON; using built-in texts.",
                extra={
                    "category": "config",
                    "config_path": path,
                    "error_type": type(exc).__name__,
                },
            )
            return
        if isinstance(loaded, dict):
            self._translations = _deep_merge(self._translations, loaded)

    def _refresh_language_order(self) -> None:
        default_language = "he"
        candidate = self._translations.get("default_language")
        if isinstance(candidate, str) and candidate:
            default_language = candidate
        self._language_order = tuple(dict.fromkeys([default_language, "he", "en"]))

    def _resolve_value(self, value: Any) -> Optional[str]:
        if isinstance(value, str):
            return value
        if isinstance(value, dict):
            for language in self._language_order:
                candidate = value.get(language)
                if isinstance(candidate, str) and candidate:
                    return candidate
        return None

    def get(self, key: str, default: str = "", **format_kwargs: Any) -> str:
        """Get translated message by dot-notation key."""

        value: Any = self._translations
        for part in key.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = None
                break

        resolved = self._resolve_value(value)
        if resolved is None:
            resolved = default or key

        if format_kwargs:
            try:
                return resolved.format(**format_kwargs)
            except (KeyError, IndexError, ValueError):
                logger.warning(
                    "Failed to format translation",
                    extra={"category": "translations", "translation_key": key},
                )
                return resolved
        return resolved

    __call__ = get
