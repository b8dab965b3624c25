"""Word bank supplying the secret word and its category for each round."""

from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import yaml


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WordEntry:
    word: str
    category: str


DEFAULT_WORDS: Dict[str, Sequence[str]] = {
    "חיות": ("אריה", "פיל", "ג׳ירפה", "נמר", "תנין", "צב ים", "דולפין", "קנגורו"),
    "מאכלים": ("פלאפל", "שקשוקה", "חומוס", "סביח", "מלוואח", "ג׳חנון", "עוגת גבינה"),
    "ערים": ("ירושלים", "תל אביב", "חיפה", "באר שבע", "אילת", "נצרת", "טבריה"),
    "מקצועות": ("רופא", "מהנדס", "נגר", "טייס", "שף", "מורה", "עורך דין"),
    "ספורט": ("כדורגל", "כדורסל", "טניס", "שחייה", "ריצת מרתון", "התעמלות"),
    "טבע": ("הר געש", "מפל", "מדבר", "יער גשם", "אגם", "שקיעה"),
    "בית": ("מקרר", "ספה", "מנורה", "שולחן", "ארון בגדים", "מכונת כביסה"),
}


def _entries_from_mapping(mapping: Dict[str, Iterable[str]]) -> List[WordEntry]:
    entries: List[WordEntry] = []
    for category, words in mapping.items():
        if not isinstance(words, (list, tuple)):
            continue
        for word in words:
            text = str(word).strip()
            if text:
                entries.append(WordEntry(word=text, category=str(category)))
    return entries


class WordBank:
    """Random word supplier.

    Words come from ``DEFAULT_WORDS`` unless a YAML file mapping category
    names to word lists is given (``WHEELBOT_WORDS_FILE``).
    """

    def __init__(
        self,
        entries: Optional[Sequence[WordEntry]] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._entries: List[WordEntry] = list(entries or _entries_from_mapping(DEFAULT_WORDS))
        if not self._entries:
            raise ValueError("Word bank must contain at least one word")
        self._rng = rng or random.Random()

    @classmethod
    def from_file(cls, path: Optional[str] = None, **kwargs) -> "WordBank":
        candidate = path or os.getenv("WHEELBOT_WORDS_FILE")
        if not candidate:
            return cls(**kwargs)
        try:
            with Path(candidate).open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
        except FileNotFoundError:
            logger.warning(
                "Word file not found; using built-in words.",
                extra={"category": "config", "config_path": candidate},
            )
            return cls(**kwargs)
        except yaml.YAMLError as exc:
            logger.warning(
                "Failed to parse word file; using built-in words.",
                extra={
                    "category": "config",
                    "config_path": candidate,
                    "error_type": type(exc).__name__,
                },
            )
            return cls(**kwargs)

        entries = _entries_from_mapping(loaded) if isinstance(loaded, dict) else []
        if not entries:
            logger.warning(
                "Word file contained no usable words; using built-in words.",
                extra={"category": "config", "config_path": candidate},
            )
            return cls(**kwargs)
        return cls(entries, **kwargs)

    def __len__(self) -> int:
        return len(self._entries)

    def next(self) -> WordEntry:
        return self._rng.choice(self._entries)


__all__ = ["DEFAULT_WORDS", "WordBank", "WordEntry"]
