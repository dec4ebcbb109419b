"""Daily challenge orchestration: ensure, submit attempts, claim rewards exactly once."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keyquest.config import get_settings
from keyquest.db.models import DailyChallenge, DailyChallengeProgress
from keyquest.progression import ledger_service
from keyquest.progression.challenge_generator import GeneratedChallenge, challenge_for
from keyquest.progression.clock import date_key, days_between, parse_date_key, utc_now, utc_today
from keyquest.progression.events import COIN_BALANCE_CHANNEL, LEVEL_UP_CHANNEL, publish_event
from keyquest.progression.results import (
    Failure,
    FailureReason,
    StaleStateError,
    Success,
    ValidationError,
)
from keyquest.progression.reward_resolver import RewardTable, Tier, max_tier, payout_for, resolve_tier
from keyquest.progression.transaction import run_transaction
from keyquest.users.service import Account, is_premium_active

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptResult:
    tier: Tier
    is_new_best: bool
    is_new_tier: bool
    value: float
    target: int
    rewards: RewardTable | None
    recorded_tier: Tier


@dataclass(frozen=True)
class ClaimReceipt:
    coins: int
    xp: int
    tier: Tier
    is_premium_bonus: bool
    new_balance: int
    level: int
    leveled_up: bool


def reward_table(challenge: DailyChallenge) -> RewardTable:
    return RewardTable(
        bronze=challenge.reward_bronze,
        silver=challenge.reward_silver,
        gold=challenge.reward_gold,
        xp=challenge.reward_xp,
    )


def _challenge_row(generated: GeneratedChallenge, now: datetime) -> DailyChallenge:
    return DailyChallenge(
        date_key=generated.date_key,
        challenge_type=generated.challenge_type,
        title=generated.title,
        description=generated.description,
        target_value=generated.target_value,
        target_keys=list(generated.target_keys) if generated.target_keys else None,
        reward_bronze=generated.rewards.bronze,
        reward_silver=generated.rewards.silver,
        reward_gold=generated.rewards.gold,
        reward_xp=generated.rewards.xp,
        created_at=now,
    )


async def get_challenge(db: AsyncSession, key: str) -> DailyChallenge | None:
    result = await db.execute(select(DailyChallenge).where(DailyChallenge.date_key == key))
    return result.scalar_one_or_none()


async def ensure_challenge(db: AsyncSession, day: date, now: datetime) -> DailyChallenge:
    """Get the stored challenge for a day, inserting the generated one if missing.

    Inside the caller's transaction. A concurrent creator makes the insert fail
    on the unique date key; the retried transaction then finds the winner's row.
    """
    key = date_key(day)
    challenge = await get_challenge(db, key)
    if challenge is not None:
        return challenge

    challenge = _challenge_row(challenge_for(day), now)
    db.add(challenge)
    await db.flush()
    logger.info("Created daily challenge %s (%s, target %d)", key, challenge.challenge_type, challenge.target_value)
    return challenge


async def ensure_todays_challenge(
    db: AsyncSession, today: date | None = None, now: datetime | None = None
) -> DailyChallenge:
    now = now or utc_now()
    today = today or utc_today(now)
    return await run_transaction(db, lambda: ensure_challenge(db, today, now), label="ensure_challenge")


async def get_todays_challenge(
    db: AsyncSession, today: date | None = None
) -> DailyChallenge | GeneratedChallenge:
    """The stored challenge, or the generated one when nobody has touched today yet."""
    today = today or utc_today()
    challenge = await get_challenge(db, date_key(today))
    if challenge is not None:
        return challenge
    return challenge_for(today)


async def get_progress(db: AsyncSession, user_id: int, key: str) -> DailyChallengeProgress | None:
    result = await db.execute(
        select(DailyChallengeProgress)
        .where(DailyChallengeProgress.user_id == user_id, DailyChallengeProgress.date_key == key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_challenge_progress(
    db: AsyncSession, user_id: int, today: date | None = None
) -> DailyChallengeProgress | None:
    return await get_progress(db, user_id, date_key(today or utc_today()))


async def _submit_attempt(
    db: AsyncSession, user_id: int, value: float, today: date, now: datetime
) -> AttemptResult:
    challenge = await ensure_challenge(db, today, now)
    tier = resolve_tier(value, challenge.target_value)
    progress = await get_progress(db, user_id, challenge.date_key)

    if progress is None:
        db.add(DailyChallengeProgress(
            user_id=user_id,
            challenge_id=challenge.id,
            date_key=challenge.date_key,
            tier=tier.value,
            best_value=value,
            attempts=1,
            completed_at=now if tier is not Tier.PENDING else None,
            rewards_claimed=False,
            version=0,
        ))
        await db.flush()
        recorded = tier
        is_new_best = True
        is_new_tier = tier is not Tier.PENDING
    else:
        previous = Tier(progress.tier)
        recorded = max_tier(previous, tier)
        completed_at = progress.completed_at
        if completed_at is None and recorded is not Tier.PENDING:
            completed_at = now
        result = await db.execute(
            update(DailyChallengeProgress)
            .where(DailyChallengeProgress.id == progress.id, DailyChallengeProgress.version == progress.version)
            .values(
                tier=recorded.value,
                best_value=max(progress.best_value, value),
                attempts=progress.attempts + 1,
                completed_at=completed_at,
                version=progress.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            msg = f"challenge progress {progress.id} changed since version {progress.version}"
            raise StaleStateError(msg)
        is_new_best = value > progress.best_value
        is_new_tier = recorded is not previous

    return AttemptResult(
        tier=tier,
        is_new_best=is_new_best,
        is_new_tier=is_new_tier,
        value=value,
        target=challenge.target_value,
        rewards=reward_table(challenge) if tier is not Tier.PENDING else None,
        recorded_tier=recorded,
    )


async def submit_challenge_attempt(
    db: AsyncSession,
    user: Account,
    value: float,
    today: date | None = None,
    now: datetime | None = None,
) -> AttemptResult:
    """Record an attempt at today's challenge. The stored tier only ever goes up."""
    if not math.isfinite(value) or value < 0:
        msg = f"Attempt value must be a finite non-negative number, got {value}"
        raise ValidationError(msg)
    now = now or utc_now()
    today = today or utc_today(now)

    attempt = await run_transaction(
        db, lambda: _submit_attempt(db, user.id, value, today, now), label="submit_challenge_attempt"
    )
    logger.info(
        "Challenge attempt user=%d date=%s value=%s tier=%s recorded=%s",
        user.id, date_key(today), value, attempt.tier.value, attempt.recorded_tier.value,
    )
    return attempt


async def _claim(
    db: AsyncSession, user: Account, today: date, now: datetime
) -> Success[ClaimReceipt] | Failure:
    progress = await get_progress(db, user.id, date_key(today))
    if progress is None:
        return Failure(FailureReason.NO_PROGRESS, "No progress found")
    tier = Tier(progress.tier)
    if tier is Tier.PENDING:
        return Failure(FailureReason.NOT_COMPLETED, "Challenge not completed")
    if progress.rewards_claimed:
        return Failure(FailureReason.ALREADY_CLAIMED, "Rewards already claimed")

    challenge = await db.get(DailyChallenge, progress.challenge_id)
    if challenge is None:
        return Failure(FailureReason.CHALLENGE_NOT_FOUND, "Challenge not found")

    # The flag flip is the claim: only the transaction that flips it pays.
    flipped = await db.execute(
        update(DailyChallengeProgress)
        .where(
            DailyChallengeProgress.id == progress.id,
            DailyChallengeProgress.rewards_claimed == False,  # noqa: E712
        )
        .values(rewards_claimed=True, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount != 1:
        return Failure(FailureReason.ALREADY_CLAIMED, "Rewards already claimed")

    premium = is_premium_active(user, now)
    payout = payout_for(tier, reward_table(challenge), premium)
    if payout is None:
        return Failure(FailureReason.NOT_COMPLETED, "Challenge not completed")
    posted = await ledger_service.post(
        db,
        user.id,
        payout.coins,
        ledger_service.PREMIUM_BONUS if premium else ledger_service.EARN,
        f"daily_challenge_{tier.value}",
        details={"challenge_id": challenge.id, "date": challenge.date_key, "tier": tier.value},
        now=now,
    )
    if isinstance(posted, Failure):
        return posted
    xp = await ledger_service.grant_xp(db, user.id, payout.xp, now)

    return Success(ClaimReceipt(
        coins=payout.coins,
        xp=payout.xp,
        tier=tier,
        is_premium_bonus=premium,
        new_balance=posted.value.balance_after,
        level=xp.level,
        leveled_up=xp.leveled_up,
    ))


async def claim_challenge_rewards(
    db: AsyncSession,
    redis: object | None,
    user: Account,
    today: date | None = None,
    now: datetime | None = None,
) -> Success[ClaimReceipt] | Failure:
    """Pay today's challenge reward at most once."""
    now = now or utc_now()
    today = today or utc_today(now)

    claimed = await run_transaction(db, lambda: _claim(db, user, today, now), label="claim_challenge_rewards")
    if isinstance(claimed, Failure):
        logger.info("Claim rejected user=%d date=%s: %s", user.id, date_key(today), claimed.reason.value)
        return claimed

    receipt = claimed.value
    logger.info(
        "Claim paid user=%d date=%s tier=%s coins=%d xp=%d",
        user.id, date_key(today), receipt.tier.value, receipt.coins, receipt.xp,
    )
    await publish_event(redis, COIN_BALANCE_CHANNEL, {"user_id": user.id, "balance": receipt.new_balance})
    if receipt.leveled_up:
        await publish_event(redis, LEVEL_UP_CHANNEL, {"user_id": user.id, "new_level": receipt.level})
    return claimed


async def get_challenge_history(
    db: AsyncSession, user_id: int, limit: int | None = None
) -> list[tuple[DailyChallengeProgress, DailyChallenge]]:
    """Most recent progress rows with their challenges."""
    if limit is None:
        limit = get_settings().challenge_history_default_limit
    if limit <= 0:
        msg = "Limit must be positive"
        raise ValidationError(msg)
    result = await db.execute(
        select(DailyChallengeProgress, DailyChallenge)
        .join(DailyChallenge, DailyChallengeProgress.challenge_id == DailyChallenge.id)
        .where(DailyChallengeProgress.user_id == user_id)
        .order_by(DailyChallengeProgress.date_key.desc())
        .limit(limit)
    )
    return [(row.DailyChallengeProgress, row.DailyChallenge) for row in result]


def completed_day_streak(completed_keys: list[str], today: date) -> int:
    """Consecutive completed days ending today or yesterday."""
    days = sorted({parse_date_key(k) for k in completed_keys}, reverse=True)
    if not days or days_between(days[0], today) > 1:
        return 0

    streak = 1
    for newer, older in zip(days, days[1:]):
        if days_between(older, newer) != 1:
            break
        streak += 1
    return streak


async def get_challenge_stats(db: AsyncSession, user_id: int, today: date | None = None) -> dict[str, int]:
    today = today or utc_today()
    result = await db.execute(
        select(DailyChallengeProgress).where(DailyChallengeProgress.user_id == user_id)
    )
    rows = list(result.scalars().all())
    completed = [r for r in rows if r.tier != Tier.PENDING.value]
    return {
        "total_completed": len(completed),
        "gold": sum(1 for r in rows if r.tier == Tier.GOLD.value),
        "silver": sum(1 for r in rows if r.tier == Tier.SILVER.value),
        "bronze": sum(1 for r in rows if r.tier == Tier.BRONZE.value),
        "total_attempts": sum(r.attempts for r in rows),
        "current_day_streak": completed_day_streak([r.date_key for r in completed], today),
    }
