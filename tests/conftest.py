"""Pytest configuration shared across the test suite."""

import random
import sys
from pathlib import Path
from typing import List, Optional, Set, Tuple

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import fakeredis
import fakeredis.aioredis
import pytest

from wheelapp.config import GameSettings
from wheelapp.keyboards import KeyboardSpec
from wheelapp.match_manager import MatchManager
from wheelapp.translations import TranslationService
from wheelapp.transport import RenderRequest
from wheelapp.wheelbotmodel import WheelBotModel
from wheelapp.words import WordBank, WordEntry


CHAT_ID = -1001
ADMIN_ID = 1
ALICE = 11
BOB = 22
CAROL = 33


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records everything the model sends to the chat."""

    def __init__(self, admins: Optional[Set[int]] = None) -> None:
        self.admins: Set[int] = set(admins if admins is not None else {ADMIN_ID})
        self.messages: List[Tuple[int, str, Optional[KeyboardSpec]]] = []
        self.renders: List[Tuple[int, RenderRequest, Optional[int]]] = []
        self.prompts: List[Tuple[int, str]] = []
        self._next_id = 100

    def _message_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def render_board(
        self, chat_id: int, request: RenderRequest, previous_ref: Optional[int]
    ) -> Optional[int]:
        self.renders.append((chat_id, request, previous_ref))
        if request.turn_changed or previous_ref is None:
            return self._message_id()
        return previous_ref

    async def send_message(
        self, chat_id: int, text: str, keyboard: Optional[KeyboardSpec] = None
    ) -> Optional[int]:
        self.messages.append((chat_id, text, keyboard))
        return self._message_id()

    async def send_solve_prompt(self, chat_id: int, text: str) -> Optional[int]:
        self.prompts.append((chat_id, text))
        return self._message_id()

    async def is_admin(self, chat_id: int, user_id: int) -> bool:
        return user_id in self.admins

    @property
    def texts(self) -> List[str]:
        return [text for _, text, _ in self.messages]


@pytest.fixture
def redis_pool():
    server = fakeredis.FakeServer()
    return fakeredis.aioredis.FakeRedis(server=server)


@pytest.fixture
def settings() -> GameSettings:
    return GameSettings()


@pytest.fixture
def translations() -> TranslationService:
    return TranslationService()


@pytest.fixture
def match_manager(redis_pool, settings) -> MatchManager:
    return MatchManager(
        redis_pool,
        key_prefix=settings.key_prefix,
        ttl_seconds=settings.state_ttl_seconds,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def word_bank() -> WordBank:
    return WordBank([WordEntry(word="שלום", category="ברכות")], rng=random.Random(0))


@pytest.fixture
def model(match_manager, transport, word_bank, settings, translations, clock) -> WheelBotModel:
    return WheelBotModel(
        match_manager,
        transport,
        word_bank,
        settings,
        translations,
        clock=clock,
    )
