#!/usr/bin/env python3

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

MessageId = int
ChatId = int
UserId = int
Score = int


class MatchStatus(enum.Enum):
    JOINING = "joining"
    PLAYING = "playing"


@dataclass(frozen=True)
class PlayerData:
    display_name: str
    score: Score = 0
    timeout_count: int = 0


@dataclass(frozen=True)
class AwaitingTurn:
    """The current player must pick a letter or ask to solve."""

    deadline_at: float


@dataclass(frozen=True)
class AwaitingSolve:
    """The current player opened a solve attempt and owes a reply."""

    solver_id: UserId
    prompt_message_ref: Optional[MessageId]
    deadline_at: float


TurnPhase = Union[AwaitingTurn, AwaitingSolve]


@dataclass(frozen=True)
class MatchState:
    """Immutable snapshot of one chat's match.

    ``phase`` is ``None`` while players are joining. Once the match is
    playing it is either :class:`AwaitingTurn` or :class:`AwaitingSolve`,
    so exactly one deadline is live at any time.
    """

    word: str
    category: str
    started_by: UserId
    win_limit: int
    status: MatchStatus = MatchStatus.JOINING
    revealed_letters: FrozenSet[str] = frozenset()
    player_order: Tuple[UserId, ...] = ()
    players_data: Mapping[UserId, PlayerData] = field(
        default_factory=lambda: MappingProxyType({}), hash=False
    )
    turn_index: int = 0
    board_message_ref: Optional[MessageId] = None
    phase: Optional[TurnPhase] = None

    def __post_init__(self) -> None:
        # Snapshots never share a writable roster mapping.
        if not isinstance(self.players_data, MappingProxyType):
            object.__setattr__(
                self, "players_data", MappingProxyType(dict(self.players_data))
            )

    @property
    def is_playing(self) -> bool:
        return self.status is MatchStatus.PLAYING

    @property
    def current_player_id(self) -> Optional[UserId]:
        if not self.player_order:
            return None
        if not 0 <= self.turn_index < len(self.player_order):
            return None
        return self.player_order[self.turn_index]

    @property
    def solve_attempt(self) -> Optional[AwaitingSolve]:
        if isinstance(self.phase, AwaitingSolve):
            return self.phase
        return None

    @property
    def turn_deadline_at(self) -> Optional[float]:
        if isinstance(self.phase, AwaitingTurn):
            return self.phase.deadline_at
        return None

    def player_name(self, user_id: UserId, default: str = "") -> str:
        data = self.players_data.get(user_id)
        if data is None:
            return default
        return data.display_name

    def has_player(self, user_id: UserId) -> bool:
        return user_id in self.players_data

    # Serialisation ------------------------------------------------------
    def to_payload(self) -> Dict[str, Any]:
        """Return the flat, JSON friendly representation of the match."""

        payload: Dict[str, Any] = {
            "word": self.word,
            "category": self.category,
            "revealedLetters": sorted(self.revealed_letters),
            "playerOrder": list(self.player_order),
            "playersData": {
                str(user_id): {
                    "displayName": data.display_name,
                    "score": data.score,
                    "timeoutCount": data.timeout_count,
                }
                for user_id, data in self.players_data.items()
            },
            "turnIndex": self.turn_index,
            "winLimit": self.win_limit,
            "status": self.status.value,
            "startedBy": self.started_by,
        }
        if self.board_message_ref is not None:
            payload["boardMessageRef"] = self.board_message_ref
        if isinstance(self.phase, AwaitingTurn):
            payload["turnDeadlineAt"] = self.phase.deadline_at
        elif isinstance(self.phase, AwaitingSolve):
            solve: Dict[str, Any] = {
                "solverId": self.phase.solver_id,
                "deadlineAt": self.phase.deadline_at,
            }
            if self.phase.prompt_message_ref is not None:
                solve["promptMessageRef"] = self.phase.prompt_message_ref
            payload["solveAttempt"] = solve
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MatchState":
        """Build a match from :meth:`to_payload` output.

        Raises ``KeyError``, ``TypeError`` or ``ValueError`` when the payload
        is malformed. Invariants are not checked here.
        """

        phase: Optional[TurnPhase] = None
        solve = payload.get("solveAttempt")
        if solve is not None:
            prompt_ref = solve.get("promptMessageRef")
            phase = AwaitingSolve(
                solver_id=int(solve["solverId"]),
                prompt_message_ref=int(prompt_ref) if prompt_ref is not None else None,
                deadline_at=float(solve["deadlineAt"]),
            )
        elif payload.get("turnDeadlineAt") is not None:
            phase = AwaitingTurn(deadline_at=float(payload["turnDeadlineAt"]))

        players_data = {
            int(raw_id): PlayerData(
                display_name=str(raw["displayName"]),
                score=int(raw["score"]),
                timeout_count=int(raw["timeoutCount"]),
            )
            for raw_id, raw in payload["playersData"].items()
        }
        board_ref = payload.get("boardMessageRef")

        return cls(
            word=str(payload["word"]),
            category=str(payload["category"]),
            started_by=int(payload["startedBy"]),
            win_limit=int(payload["winLimit"]),
            status=MatchStatus(payload["status"]),
            revealed_letters=frozenset(str(letter) for letter in payload["revealedLetters"]),
            player_order=tuple(int(user_id) for user_id in payload["playerOrder"]),
            players_data=players_data,
            turn_index=int(payload["turnIndex"]),
            board_message_ref=int(board_ref) if board_ref is not None else None,
            phase=phase,
        )


# Errors -----------------------------------------------------------------
class UserException(Exception):
    """An intent was refused; the message is shown to the acting user only."""


class ValidationError(UserException):
    pass


class NotFoundError(UserException):
    pass


class TransientIOError(Exception):
    """The store or the chat transport failed; the caller may retry."""


class ConcurrentUpdateError(TransientIOError):
    """Another writer changed the match between load and save."""


class InvariantViolation(Exception):
    """A persisted match failed validation and must not be used."""

    def __init__(self, chat_id: Optional[ChatId], issues: Iterable[Any]):
        self.chat_id = chat_id
        self.issues: List[Any] = list(issues)
        rendered = ", ".join(str(getattr(issue, "value", issue)) for issue in self.issues)
        super().__init__(f"Match for chat {chat_id} violates invariants: {rendered}")
