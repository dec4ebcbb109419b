"""Streak persistence: record activity, freezes, leaderboard."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keyquest.config import get_settings
from keyquest.db.models import User, UserStreak
from keyquest.progression import ledger_service
from keyquest.progression.clock import date_key, parse_date_key, utc_now, utc_today
from keyquest.progression.events import STREAK_CHANNEL, publish_event
from keyquest.progression.results import (
    Failure,
    FailureReason,
    StaleStateError,
    Success,
    ValidationError,
)
from keyquest.progression.streak_tracker import (
    StreakState,
    StreakTransition,
    advance,
    apply_freeze,
    is_active_today,
    is_at_risk,
    next_milestone,
    streak_multiplier,
)
from keyquest.progression.transaction import run_transaction
from keyquest.users.service import Account, is_premium_active

logger = logging.getLogger(__name__)

STREAK_COIN_SOURCE = "daily_streak"
FREEZE_PURCHASE_SOURCE = "streak_freeze_purchase"


@dataclass(frozen=True)
class StreakView:
    current_streak: int
    longest_streak: int
    last_activity_date: str | None
    freeze_count: int
    freeze_used_dates: list[str]
    total_days_active: int
    is_active_today: bool
    is_at_risk: bool
    next_milestone: int
    streak_multiplier: int


@dataclass(frozen=True)
class ActivityResult:
    streak: int
    is_new_day: bool
    coins_earned: int
    milestone_reached: int | None
    freeze_consumed: bool
    new_balance: int | None = None


@dataclass(frozen=True)
class FreezePurchase:
    cost: int
    new_balance: int
    freeze_count: int


def to_state(row: UserStreak | None) -> StreakState | None:
    if row is None:
        return None
    return StreakState(
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        last_activity_date=parse_date_key(row.last_activity_date) if row.last_activity_date else None,
        freeze_count=row.freeze_count,
        freeze_used_dates=tuple(parse_date_key(d) for d in row.freeze_used_dates or ()),
        total_days_active=row.total_days_active,
    )


def _columns(state: StreakState) -> dict:
    return {
        "current_streak": state.current_streak,
        "longest_streak": state.longest_streak,
        "last_activity_date": date_key(state.last_activity_date) if state.last_activity_date else None,
        "freeze_count": state.freeze_count,
        "freeze_used_dates": [date_key(d) for d in state.freeze_used_dates],
        "total_days_active": state.total_days_active,
    }


async def get_streak_row(db: AsyncSession, user_id: int) -> UserStreak | None:
    result = await db.execute(
        select(UserStreak).where(UserStreak.user_id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def save_streak(
    db: AsyncSession,
    user_id: int,
    row: UserStreak | None,
    state: StreakState,
    now: datetime,
) -> None:
    """Insert the first row, or compare-and-swap an existing one on its version."""
    if row is None:
        db.add(UserStreak(user_id=user_id, version=0, updated_at=now, **_columns(state)))
        await db.flush()
        return

    result = await db.execute(
        update(UserStreak)
        .where(UserStreak.user_id == user_id, UserStreak.version == row.version)
        .values(version=row.version + 1, updated_at=now, **_columns(state))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        msg = f"streak of user {user_id} changed since version {row.version}"
        raise StaleStateError(msg)


async def get_streak(db: AsyncSession, user_id: int, today: date | None = None) -> StreakView:
    """Streak summary with derived flags. Users without a row get zeros."""
    today = today or utc_today()
    state = to_state(await get_streak_row(db, user_id)) or StreakState()
    return StreakView(
        current_streak=state.current_streak,
        longest_streak=state.longest_streak,
        last_activity_date=date_key(state.last_activity_date) if state.last_activity_date else None,
        freeze_count=state.freeze_count,
        freeze_used_dates=[date_key(d) for d in state.freeze_used_dates],
        total_days_active=state.total_days_active,
        is_active_today=is_active_today(state, today),
        is_at_risk=is_at_risk(state, today),
        next_milestone=next_milestone(state.current_streak),
        streak_multiplier=streak_multiplier(state.current_streak),
    )


async def _record_activity(
    db: AsyncSession, user: Account, today: date, now: datetime
) -> tuple[StreakTransition, int | None]:
    row = await get_streak_row(db, user.id)
    transition = advance(to_state(row), today)
    if not transition.is_new_day:
        return transition, None

    await save_streak(db, user.id, row, transition.state, now)

    new_balance = None
    if transition.coins_earned > 0:
        credited = await ledger_service.credit_earned(
            db,
            user,
            transition.coins_earned,
            STREAK_COIN_SOURCE,
            details={"streak": transition.state.current_streak, "date": date_key(today)},
            now=now,
        )
        # Credits never fail on balance grounds.
        new_balance = credited.value.new_balance  # type: ignore[union-attr]
    return transition, new_balance


async def record_activity(
    db: AsyncSession,
    redis: object | None,
    user: Account,
    today: date | None = None,
    now: datetime | None = None,
) -> ActivityResult:
    """Record today's activity, pay the daily streak coins, report milestones."""
    now = now or utc_now()
    today = today or utc_today(now)

    transition, new_balance = await run_transaction(
        db, lambda: _record_activity(db, user, today, now), label="record_activity"
    )

    if transition.is_new_day:
        logger.info(
            "Streak user=%d %d -> %d%s",
            user.id,
            transition.previous_streak,
            transition.state.current_streak,
            " (freeze used)" if transition.freeze_consumed else "",
        )
    if transition.milestone_reached is not None:
        await publish_event(redis, STREAK_CHANNEL, {
            "user_id": user.id,
            "event": "streak_milestone",
            "streak_length": transition.milestone_reached,
        })
    elif transition.streak_broken:
        await publish_event(redis, STREAK_CHANNEL, {
            "user_id": user.id,
            "event": "streak_broken",
            "streak_length": transition.previous_streak,
        })

    return ActivityResult(
        streak=transition.state.current_streak,
        is_new_day=transition.is_new_day,
        coins_earned=transition.coins_earned if transition.is_new_day else 0,
        milestone_reached=transition.milestone_reached,
        freeze_consumed=transition.freeze_consumed,
        new_balance=new_balance,
    )


async def use_streak_freeze(
    db: AsyncSession, user_id: int, today: date | None = None, now: datetime | None = None
) -> Success[int] | Failure:
    """Spend a banked freeze on today. Returns the freezes remaining."""
    now = now or utc_now()
    today = today or utc_today(now)

    async def _use() -> Success[int] | Failure:
        row = await get_streak_row(db, user_id)
        frozen = apply_freeze(to_state(row), today)
        if isinstance(frozen, Failure):
            return frozen
        await save_streak(db, user_id, row, frozen.value, now)
        return Success(frozen.value.freeze_count)

    return await run_transaction(db, _use, label="use_streak_freeze")


async def add_freezes(db: AsyncSession, user_id: int, count: int, now: datetime) -> int:
    """Bank ``count`` freezes inside the caller's transaction. Returns the new total."""
    if count <= 0:
        msg = "Freeze count must be positive"
        raise ValidationError(msg)
    row = await get_streak_row(db, user_id)
    state = to_state(row) or StreakState()
    updated = replace(state, freeze_count=state.freeze_count + count)
    await save_streak(db, user_id, row, updated, now)
    return updated.freeze_count


async def purchase_streak_freeze(
    db: AsyncSession, user: Account, now: datetime | None = None
) -> Success[FreezePurchase] | Failure:
    """Buy one freeze with coins; the spend and the freeze land together or not at all."""
    now = now or utc_now()
    cost = get_settings().streak_freeze_cost

    async def _purchase() -> Success[FreezePurchase] | Failure:
        posted = await ledger_service.post(
            db, user.id, -cost, ledger_service.SPEND, FREEZE_PURCHASE_SOURCE, now=now
        )
        if isinstance(posted, Failure):
            return posted
        freeze_count = await add_freezes(db, user.id, 1, now)
        return Success(FreezePurchase(cost=cost, new_balance=posted.value.balance_after, freeze_count=freeze_count))

    return await run_transaction(db, _purchase, label="purchase_streak_freeze")


async def grant_premium_freezes(
    db: AsyncSession, user: Account, now: datetime | None = None
) -> Success[int] | Failure:
    """Monthly premium benefit: bank the configured number of free freezes."""
    now = now or utc_now()
    if not is_premium_active(user, now):
        return Failure(FailureReason.NOT_PREMIUM, "User is not premium")

    granted = get_settings().premium_monthly_freezes

    async def _grant() -> Success[int]:
        await add_freezes(db, user.id, granted, now)
        return Success(granted)

    return await run_transaction(db, _grant, label="grant_premium_freezes")


async def get_streak_leaderboard(db: AsyncSession, limit: int | None = None) -> list[dict]:
    """Top current streaks with display names."""
    if limit is None:
        limit = get_settings().leaderboard_default_limit
    if limit <= 0:
        msg = "Limit must be positive"
        raise ValidationError(msg)

    result = await db.execute(
        select(UserStreak, User)
        .join(User, UserStreak.user_id == User.id)
        .order_by(UserStreak.current_streak.desc(), UserStreak.longest_streak.desc(), User.id.asc())
        .limit(limit)
    )
    return [
        {
            "user_id": row.User.id,
            "display_name": row.User.display_name or "Anonymous",
            "current_streak": row.UserStreak.current_streak,
            "longest_streak": row.UserStreak.longest_streak,
        }
        for row in result
    ]
