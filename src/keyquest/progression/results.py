"""Result and error types shared by the progression services.

Expected business outcomes (not found, insufficient funds, already claimed)
are returned as ``Failure`` values. Only malformed input and exhausted
concurrency retries raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Generic, TypeVar

T = TypeVar("T")


class ValidationError(ValueError):
    """Input rejected before any state change."""


class ConcurrencyError(RuntimeError):
    """A transaction kept losing to concurrent writers and gave up."""


class StaleStateError(Exception):
    """A compare-and-swap write matched no row; the unit must be retried."""


class FailureReason(str, Enum):
    USER_NOT_FOUND = "user_not_found"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    NO_PROGRESS = "no_progress"
    NO_STREAK = "no_streak"
    NOT_COMPLETED = "not_completed"
    ALREADY_CLAIMED = "already_claimed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NO_FREEZES = "no_freezes"
    FREEZE_ALREADY_USED = "freeze_already_used"
    NOT_PREMIUM = "not_premium"
    POWER_UP_NOT_OWNED = "power_up_not_owned"
    NO_HINT_TOKENS = "no_hint_tokens"


NOT_FOUND_REASONS = frozenset({
    FailureReason.USER_NOT_FOUND,
    FailureReason.CHALLENGE_NOT_FOUND,
    FailureReason.NO_PROGRESS,
    FailureReason.NO_STREAK,
})


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class Failure:
    reason: FailureReason
    detail: str
    ok: ClassVar[bool] = False

    @property
    def is_not_found(self) -> bool:
        return self.reason in NOT_FOUND_REASONS
