"""Progression API endpoints: challenges, streak, coins, power-ups."""

from __future__ import annotations

from dataclasses import asdict
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from keyquest.auth.dependencies import get_current_user
from keyquest.database import get_session
from keyquest.db.models import DailyChallenge
from keyquest.dependencies import get_redis_dep
from keyquest.progression import (
    challenge_service,
    ledger_service,
    powerup_service,
    streak_service,
)
from keyquest.progression.challenge_generator import GeneratedChallenge
from keyquest.progression.power_ups import ConsumablePowerUp, PowerUp, TimedPowerUp
from keyquest.progression.results import Failure
from keyquest.progression.schemas import (
    ActivationResponse,
    ActivePowerUpsResponse,
    ActivityResponse,
    AttemptRequest,
    AttemptResponse,
    AwardRequest,
    AwardResponse,
    BalanceResponse,
    ChallengeHistoryEntry,
    ChallengeHistoryResponse,
    ChallengeProgressResponse,
    ChallengeResponse,
    ChallengeRewardsResponse,
    ChallengeStatsResponse,
    ClaimResponse,
    CoinStatsResponse,
    FreezePurchaseResponse,
    FreezeUseResponse,
    HintTokenResponse,
    PowerUpResponse,
    SpendRequest,
    SpendResponse,
    StreakLeaderboardEntry,
    StreakLeaderboardResponse,
    StreakResponse,
    TransactionEntry,
    TransactionHistoryResponse,
)
from keyquest.users.service import Account

router = APIRouter(prefix="/api/v1", tags=["Progression"])


def _raise_failure(failure: Failure) -> NoReturn:
    """Business rejections: missing state is 404, everything else a 409 conflict."""
    raise HTTPException(
        status_code=404 if failure.is_not_found else 409,
        detail={"reason": failure.reason.value, "message": failure.detail},
    )


def _challenge_response(challenge: DailyChallenge | GeneratedChallenge) -> ChallengeResponse:
    if isinstance(challenge, GeneratedChallenge):
        rewards = challenge.rewards
        keys = list(challenge.target_keys) if challenge.target_keys else None
        stored = False
    else:
        rewards = challenge_service.reward_table(challenge)
        keys = challenge.target_keys
        stored = True
    return ChallengeResponse(
        date=challenge.date_key,
        challenge_type=challenge.challenge_type,
        title=challenge.title,
        description=challenge.description,
        target_value=challenge.target_value,
        target_keys=keys,
        rewards=ChallengeRewardsResponse(**rewards.as_dict()),
        stored=stored,
    )


def _power_up_response(power_up: PowerUp) -> PowerUpResponse:
    match power_up:
        case TimedPowerUp():
            return PowerUpResponse(
                power_up_type=power_up.power_up_type,
                kind="timed",
                multiplier=power_up.multiplier,
                expires_at=power_up.expires_at,
                activated_at=power_up.activated_at,
            )
        case ConsumablePowerUp():
            return PowerUpResponse(
                power_up_type=power_up.power_up_type,
                kind="consumable",
                remaining_uses=power_up.remaining_uses,
                activated_at=power_up.activated_at,
            )


# ── Challenges ──


@router.get("/challenges/today", response_model=ChallengeResponse)
async def get_todays_challenge(db: AsyncSession = Depends(get_session)):
    """Today's challenge. Not stored until someone ensures or attempts it."""
    return _challenge_response(await challenge_service.get_todays_challenge(db))


@router.post("/challenges/today", response_model=ChallengeResponse)
async def ensure_todays_challenge(
    _user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Store today's challenge if it is not stored yet."""
    return _challenge_response(await challenge_service.ensure_todays_challenge(db))


@router.get("/challenges/today/progress", response_model=ChallengeProgressResponse | None)
async def get_challenge_progress(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    progress = await challenge_service.get_challenge_progress(db, user.id)
    if progress is None:
        return None
    return ChallengeProgressResponse(
        date=progress.date_key,
        tier=progress.tier,
        best_value=progress.best_value,
        attempts=progress.attempts,
        completed_at=progress.completed_at,
        rewards_claimed=progress.rewards_claimed,
        claimed_at=progress.claimed_at,
    )


@router.post("/challenges/today/attempts", response_model=AttemptResponse)
async def submit_challenge_attempt(
    body: AttemptRequest,
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Record an attempt value (WPM, accuracy %, seconds...) against today's target."""
    attempt = await challenge_service.submit_challenge_attempt(db, user, body.value)
    return AttemptResponse(
        tier=attempt.tier.value,
        recorded_tier=attempt.recorded_tier.value,
        is_new_best=attempt.is_new_best,
        is_new_tier=attempt.is_new_tier,
        value=attempt.value,
        target=attempt.target,
        rewards=ChallengeRewardsResponse(**attempt.rewards.as_dict()) if attempt.rewards else None,
    )


@router.post("/challenges/today/claim", response_model=ClaimResponse)
async def claim_challenge_rewards(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    claimed = await challenge_service.claim_challenge_rewards(db, redis, user)
    if isinstance(claimed, Failure):
        _raise_failure(claimed)
    receipt = claimed.value
    return ClaimResponse(
        tier=receipt.tier.value,
        coins=receipt.coins,
        xp=receipt.xp,
        is_premium_bonus=receipt.is_premium_bonus,
        new_balance=receipt.new_balance,
        level=receipt.level,
        leveled_up=receipt.leveled_up,
    )


@router.get("/challenges/history", response_model=ChallengeHistoryResponse)
async def get_challenge_history(
    limit: int = Query(30, ge=1, le=365),
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    rows = await challenge_service.get_challenge_history(db, user.id, limit)
    return ChallengeHistoryResponse(
        entries=[
            ChallengeHistoryEntry(
                date=progress.date_key,
                challenge_type=challenge.challenge_type,
                title=challenge.title,
                tier=progress.tier,
                best_value=progress.best_value,
                attempts=progress.attempts,
                rewards_claimed=progress.rewards_claimed,
            )
            for progress, challenge in rows
        ]
    )


@router.get("/challenges/stats", response_model=ChallengeStatsResponse)
async def get_challenge_stats(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return ChallengeStatsResponse(**await challenge_service.get_challenge_stats(db, user.id))


# ── Streak ──


@router.get("/streak", response_model=StreakResponse)
async def get_streak(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    view = await streak_service.get_streak(db, user.id)
    return StreakResponse(**asdict(view))


@router.post("/streak/activity", response_model=ActivityResponse)
async def record_activity(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Mark today as active. Repeat calls on the same day change nothing."""
    result = await streak_service.record_activity(db, redis, user)
    return ActivityResponse(**asdict(result))


@router.post("/streak/freeze/use", response_model=FreezeUseResponse)
async def use_streak_freeze(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    used = await streak_service.use_streak_freeze(db, user.id)
    if isinstance(used, Failure):
        _raise_failure(used)
    return FreezeUseResponse(freezes_remaining=used.value)


@router.post("/streak/freeze/purchase", response_model=FreezePurchaseResponse)
async def purchase_streak_freeze(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    purchased = await streak_service.purchase_streak_freeze(db, user)
    if isinstance(purchased, Failure):
        _raise_failure(purchased)
    return FreezePurchaseResponse(**asdict(purchased.value))


@router.get("/streak/leaderboard", response_model=StreakLeaderboardResponse)
async def get_streak_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    rows = await streak_service.get_streak_leaderboard(db, limit)
    return StreakLeaderboardResponse(
        entries=[StreakLeaderboardEntry(rank=i, **row) for i, row in enumerate(rows, start=1)]
    )


# ── Coins ──


@router.get("/coins/balance", response_model=BalanceResponse)
async def get_coin_balance(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return BalanceResponse(balance=await ledger_service.get_coin_balance(db, user.id))


@router.post("/coins/award", response_model=AwardResponse)
async def award_coins(
    body: AwardRequest,
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Credit earned coins. Premium users receive double."""
    awarded = await ledger_service.award_coins(db, user, body.amount, body.source, details=body.metadata)
    if isinstance(awarded, Failure):
        _raise_failure(awarded)
    return AwardResponse(**asdict(awarded.value))


@router.post("/coins/spend", response_model=SpendResponse)
async def spend_coins(
    body: SpendRequest,
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    spent = await ledger_service.spend_coins(db, user, body.amount, body.source, item_id=body.item_id)
    if isinstance(spent, Failure):
        _raise_failure(spent)
    return SpendResponse(new_balance=spent.value)


@router.get("/coins/transactions", response_model=TransactionHistoryResponse)
async def get_transaction_history(
    limit: int = Query(50, ge=1, le=500),
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    entries = await ledger_service.get_transaction_history(db, user.id, limit)
    return TransactionHistoryResponse(
        transactions=[
            TransactionEntry(
                seq=e.seq,
                type=e.type,
                amount=e.amount,
                source=e.source,
                item_id=e.item_id,
                metadata=e.details,
                balance_before=e.balance_before,
                balance_after=e.balance_after,
                created_at=e.created_at,
            )
            for e in entries
        ]
    )


@router.get("/coins/stats", response_model=CoinStatsResponse)
async def get_coin_stats(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return CoinStatsResponse(**await ledger_service.get_coin_stats(db, user.id))


# ── Power-ups ──


@router.get("/power-ups", response_model=ActivePowerUpsResponse)
async def get_active_power_ups(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    power_ups = await powerup_service.get_active_power_ups(db, user.id)
    return ActivePowerUpsResponse(
        power_ups=[_power_up_response(p) for p in power_ups],
        multipliers=await powerup_service.get_active_multipliers(db, user.id),
    )


@router.post("/power-ups/hint-token/use", response_model=HintTokenResponse)
async def use_hint_token(
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    used = await powerup_service.use_hint_token(db, user.id)
    if isinstance(used, Failure):
        _raise_failure(used)
    return HintTokenResponse(remaining_uses=used.value)


@router.post("/power-ups/{item_id}/activate", response_model=ActivationResponse)
async def activate_power_up(
    item_id: str,
    user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    activated = await powerup_service.activate_power_up(db, user.id, item_id)
    if isinstance(activated, Failure):
        _raise_failure(activated)
    activation = activated.value
    return ActivationResponse(
        item_id=activation.item_id,
        remaining_quantity=activation.remaining_quantity,
        power_up=_power_up_response(activation.power_up) if activation.power_up else None,
        freeze_count=activation.freeze_count,
    )
