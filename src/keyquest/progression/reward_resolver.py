"""Tier resolution and payout lookup for daily challenges."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from keyquest.progression.results import ValidationError

PREMIUM_COIN_MULTIPLIER = 2


class Tier(str, Enum):
    PENDING = "pending"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {Tier.PENDING: 0, Tier.BRONZE: 1, Tier.SILVER: 2, Tier.GOLD: 3}

# Checked top-down: the first ratio threshold met wins.
TIER_THRESHOLDS: tuple[tuple[Tier, float], ...] = (
    (Tier.GOLD, 1.0),
    (Tier.SILVER, 0.75),
    (Tier.BRONZE, 0.5),
)


@dataclass(frozen=True)
class RewardTable:
    bronze: int
    silver: int
    gold: int
    xp: int

    def coins_for(self, tier: Tier) -> int:
        if tier is Tier.PENDING:
            return 0
        return getattr(self, tier.value)

    def as_dict(self) -> dict[str, int]:
        return {"bronze": self.bronze, "silver": self.silver, "gold": self.gold, "xp": self.xp}


@dataclass(frozen=True)
class Payout:
    coins: int
    xp: int


def resolve_tier(value: float, target: float) -> Tier:
    """Map a performance value against its target to a tier."""
    if not math.isfinite(value):
        msg = f"Attempt value must be a finite number, got {value}"
        raise ValidationError(msg)
    if target <= 0:
        msg = f"Challenge target must be positive, got {target}"
        raise ValidationError(msg)
    if value < 0:
        msg = f"Attempt value must be non-negative, got {value}"
        raise ValidationError(msg)

    ratio = value / target
    for tier, threshold in TIER_THRESHOLDS:
        if ratio >= threshold:
            return tier
    return Tier.PENDING


def max_tier(current: Tier, candidate: Tier) -> Tier:
    """The higher of two tiers. Recorded tiers never go down."""
    return candidate if candidate.rank > current.rank else current


def payout_for(tier: Tier, table: RewardTable, is_premium: bool) -> Payout | None:
    """Coins and XP owed for a tier. Premium doubles coins only; pending pays nothing."""
    if tier is Tier.PENDING:
        return None
    coins = table.coins_for(tier)
    if is_premium:
        coins *= PREMIUM_COIN_MULTIPLIER
    return Payout(coins=coins, xp=table.xp)
