"""Validation helpers for persisted match state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from wheelapp.entities import (
    AwaitingSolve,
    ChatId,
    InvariantViolation,
    MatchState,
    MatchStatus,
)


class ValidationIssue(str, Enum):
    """Enumerates problems detected while validating a persisted match."""

    CORRUPTED_PAYLOAD = "corrupted_payload"
    DUPLICATE_PLAYERS = "duplicate_players"
    ROSTER_MISMATCH = "roster_mismatch"
    TURN_INDEX_OUT_OF_RANGE = "turn_index_out_of_range"
    INVALID_WIN_LIMIT = "invalid_win_limit"
    NEGATIVE_COUNTER = "negative_counter"
    PHASE_STATUS_MISMATCH = "phase_status_mismatch"
    UNKNOWN_SOLVER = "unknown_solver"


@dataclass(slots=True)
class ValidationResult:
    """Outcome of validating a match snapshot."""

    is_valid: bool
    issues: List[ValidationIssue]


class MatchStateValidator:
    """Check ``MatchState`` snapshots loaded from persistence.

    Problems are reported, never repaired: a match that fails validation is
    unusable until an admin ends it.
    """

    def validate_match(self, match: MatchState) -> ValidationResult:
        issues: List[ValidationIssue] = []

        order = list(match.player_order)
        if len(set(order)) != len(order):
            issues.append(ValidationIssue.DUPLICATE_PLAYERS)
        if set(order) != set(match.players_data.keys()):
            issues.append(ValidationIssue.ROSTER_MISMATCH)

        if order:
            if not 0 <= match.turn_index < len(order):
                issues.append(ValidationIssue.TURN_INDEX_OUT_OF_RANGE)
        elif match.turn_index != 0:
            issues.append(ValidationIssue.TURN_INDEX_OUT_OF_RANGE)

        if match.win_limit <= 0:
            issues.append(ValidationIssue.INVALID_WIN_LIMIT)

        if any(
            data.score < 0 or data.timeout_count < 0
            for data in match.players_data.values()
        ):
            issues.append(ValidationIssue.NEGATIVE_COUNTER)

        if match.status is MatchStatus.JOINING and match.phase is not None:
            issues.append(ValidationIssue.PHASE_STATUS_MISMATCH)
        elif match.status is MatchStatus.PLAYING and match.phase is None:
            issues.append(ValidationIssue.PHASE_STATUS_MISMATCH)

        if (
            isinstance(match.phase, AwaitingSolve)
            and match.phase.solver_id not in match.players_data
        ):
            issues.append(ValidationIssue.UNKNOWN_SOLVER)

        return ValidationResult(is_valid=not issues, issues=issues)

    def ensure_valid(
        self, match: MatchState, *, chat_id: Optional[ChatId] = None
    ) -> MatchState:
        """Return ``match`` unchanged or raise :class:`InvariantViolation`."""

        result = self.validate_match(match)
        if not result.is_valid:
            raise InvariantViolation(chat_id, result.issues)
        return match


__all__ = [
    "MatchStateValidator",
    "ValidationIssue",
    "ValidationResult",
]
