"""Pydantic request and response models for progression endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from keyquest.progression.ledger_service import MAX_POSTING_AMOUNT
from keyquest.progression.reward_resolver import PREMIUM_COIN_MULTIPLIER

# Premium doubling must still fit a single posting.
MAX_AWARD_AMOUNT = MAX_POSTING_AMOUNT // PREMIUM_COIN_MULTIPLIER


# --- Challenges ---


class ChallengeRewardsResponse(BaseModel):
    bronze: int
    silver: int
    gold: int
    xp: int


class ChallengeResponse(BaseModel):
    date: str
    challenge_type: str
    title: str
    description: str
    target_value: int
    target_keys: list[str] | None = None
    rewards: ChallengeRewardsResponse
    stored: bool = True


class ChallengeProgressResponse(BaseModel):
    date: str
    tier: str
    best_value: float
    attempts: int
    completed_at: datetime | None = None
    rewards_claimed: bool
    claimed_at: datetime | None = None


class AttemptRequest(BaseModel):
    value: float = Field(ge=0, allow_inf_nan=False)


class AttemptResponse(BaseModel):
    tier: str
    recorded_tier: str
    is_new_best: bool
    is_new_tier: bool
    value: float
    target: int
    rewards: ChallengeRewardsResponse | None = None


class ClaimResponse(BaseModel):
    tier: str
    coins: int
    xp: int
    is_premium_bonus: bool
    new_balance: int
    level: int
    leveled_up: bool


class ChallengeHistoryEntry(BaseModel):
    date: str
    challenge_type: str
    title: str
    tier: str
    best_value: float
    attempts: int
    rewards_claimed: bool


class ChallengeHistoryResponse(BaseModel):
    entries: list[ChallengeHistoryEntry]


class ChallengeStatsResponse(BaseModel):
    total_completed: int
    gold: int
    silver: int
    bronze: int
    total_attempts: int
    current_day_streak: int


# --- Streak ---


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_activity_date: str | None = None
    freeze_count: int
    freeze_used_dates: list[str] = []
    total_days_active: int
    is_active_today: bool
    is_at_risk: bool
    next_milestone: int
    streak_multiplier: int


class ActivityResponse(BaseModel):
    streak: int
    is_new_day: bool
    coins_earned: int
    milestone_reached: int | None = None
    freeze_consumed: bool
    new_balance: int | None = None


class FreezeUseResponse(BaseModel):
    freezes_remaining: int


class FreezePurchaseResponse(BaseModel):
    cost: int
    new_balance: int
    freeze_count: int


class StreakLeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    display_name: str
    current_streak: int
    longest_streak: int


class StreakLeaderboardResponse(BaseModel):
    entries: list[StreakLeaderboardEntry]


# --- Coins ---


class BalanceResponse(BaseModel):
    balance: int


class AwardRequest(BaseModel):
    amount: int = Field(gt=0, le=MAX_AWARD_AMOUNT)
    source: str = Field(min_length=1, max_length=64)
    metadata: dict | None = None


class AwardResponse(BaseModel):
    new_balance: int
    awarded: int
    is_premium_bonus: bool


class SpendRequest(BaseModel):
    amount: int = Field(gt=0, le=MAX_POSTING_AMOUNT)
    source: str = Field(min_length=1, max_length=64)
    item_id: str | None = None


class SpendResponse(BaseModel):
    new_balance: int


class TransactionEntry(BaseModel):
    seq: int
    type: str
    amount: int
    source: str
    item_id: str | None = None
    metadata: dict | None = None
    balance_before: int
    balance_after: int
    created_at: datetime


class TransactionHistoryResponse(BaseModel):
    transactions: list[TransactionEntry]


class CoinStatsResponse(BaseModel):
    total_earned: int
    total_spent: int
    premium_bonus: int
    transaction_count: int


# --- Power-ups ---


class PowerUpResponse(BaseModel):
    power_up_type: str
    kind: str
    multiplier: float | None = None
    expires_at: datetime | None = None
    remaining_uses: int | None = None
    activated_at: datetime


class ActivePowerUpsResponse(BaseModel):
    power_ups: list[PowerUpResponse]
    multipliers: dict[str, float]


class ActivationResponse(BaseModel):
    item_id: str
    remaining_quantity: int
    power_up: PowerUpResponse | None = None
    freeze_count: int | None = None


class HintTokenResponse(BaseModel):
    remaining_uses: int
