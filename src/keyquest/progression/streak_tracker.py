"""Daily activity streak state machine.

Pure functions of (state, as-of date). Persistence lives in streak_service.

Transitions when activity is recorded for ``today``:

- no prior state: streak starts at 1
- already recorded today: no-op
- last activity yesterday: streak + 1
- last activity two days ago and a freeze is banked: the freeze covers
  yesterday, streak + 1
- anything else: streak resets to 1
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date

from keyquest.progression.clock import days_between, previous_day
from keyquest.progression.results import Failure, FailureReason, Success

STREAK_MILESTONES: tuple[int, ...] = (7, 30, 100, 365)
BASE_STREAK_COINS = 5


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: date | None = None
    freeze_count: int = 0
    freeze_used_dates: tuple[date, ...] = ()
    total_days_active: int = 0


@dataclass(frozen=True)
class StreakTransition:
    state: StreakState
    is_new_day: bool
    coins_earned: int = 0
    milestone_reached: int | None = None
    freeze_consumed: bool = False
    previous_streak: int = 0

    @property
    def streak_broken(self) -> bool:
        return self.is_new_day and self.previous_streak > 0 and self.state.current_streak == 1


def streak_multiplier(streak: int) -> int:
    if streak >= 30:
        return 3
    if streak >= 7:
        return 2
    return 1


def streak_coins(streak: int) -> int:
    """Coins paid for an active day at this streak length."""
    return BASE_STREAK_COINS * streak_multiplier(streak)


def next_milestone(streak: int) -> int:
    for milestone in STREAK_MILESTONES:
        if streak < milestone:
            return milestone
    return STREAK_MILESTONES[-1]


def is_active_today(state: StreakState | None, today: date) -> bool:
    return state is not None and state.last_activity_date == today


def is_at_risk(state: StreakState | None, today: date) -> bool:
    """Not recorded today but recorded yesterday: one missed day ends the streak."""
    if state is None or state.last_activity_date is None:
        return False
    return state.last_activity_date == previous_day(today)


def advance(state: StreakState | None, today: date) -> StreakTransition:
    """Apply "activity recorded today" to a streak."""
    if state is None:
        fresh = StreakState(
            current_streak=1,
            longest_streak=1,
            last_activity_date=today,
            total_days_active=1,
        )
        return StreakTransition(state=fresh, is_new_day=True, coins_earned=streak_coins(1))

    if state.last_activity_date == today:
        return StreakTransition(state=state, is_new_day=False, previous_streak=state.current_streak)

    freeze_count = state.freeze_count
    freeze_used_dates = state.freeze_used_dates
    freeze_consumed = False
    gap = days_between(state.last_activity_date, today) if state.last_activity_date else None

    if gap == 1:
        current = state.current_streak + 1
    elif gap == 2 and state.freeze_count > 0:
        # Only a single missed day can be forgiven, however many freezes are banked.
        current = state.current_streak + 1
        freeze_count -= 1
        freeze_used_dates = (*freeze_used_dates, previous_day(today))
        freeze_consumed = True
    else:
        current = 1

    advanced = replace(
        state,
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_activity_date=today,
        freeze_count=freeze_count,
        freeze_used_dates=freeze_used_dates,
        total_days_active=state.total_days_active + 1,
    )
    return StreakTransition(
        state=advanced,
        is_new_day=True,
        coins_earned=streak_coins(current),
        milestone_reached=current if current in STREAK_MILESTONES else None,
        freeze_consumed=freeze_consumed,
        previous_streak=state.current_streak,
    )


def apply_freeze(state: StreakState | None, today: date) -> Success[StreakState] | Failure:
    """Spend a banked freeze to mark today as covered.

    Today counts as the last activity date so tomorrow continues the streak,
    but neither the streak nor total_days_active is incremented.
    """
    if state is None:
        return Failure(FailureReason.NO_STREAK, "No streak found")
    if state.freeze_count <= 0:
        return Failure(FailureReason.NO_FREEZES, "No freezes available")
    if today in state.freeze_used_dates:
        return Failure(FailureReason.FREEZE_ALREADY_USED, "Freeze already used today")

    return Success(replace(
        state,
        freeze_count=state.freeze_count - 1,
        freeze_used_dates=(*state.freeze_used_dates, today),
        last_activity_date=today,
    ))
