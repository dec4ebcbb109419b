"""Tier resolution and payout tests."""

import pytest

from keyquest.progression.results import ValidationError
from keyquest.progression.reward_resolver import (
    RewardTable,
    Tier,
    max_tier,
    payout_for,
    resolve_tier,
)

TABLE = RewardTable(bronze=50, silver=75, gold=100, xp=25)


class TestResolveTier:
    """Ratio thresholds against a target of 40."""

    def test_above_target_is_gold(self):
        assert resolve_tier(42, 40) is Tier.GOLD

    def test_exact_target_is_gold(self):
        assert resolve_tier(40, 40) is Tier.GOLD

    def test_three_quarters_is_silver(self):
        assert resolve_tier(30, 40) is Tier.SILVER

    def test_half_is_bronze(self):
        assert resolve_tier(21, 40) is Tier.BRONZE
        assert resolve_tier(20, 40) is Tier.BRONZE

    def test_below_half_is_pending(self):
        assert resolve_tier(19, 40) is Tier.PENDING
        assert resolve_tier(0, 40) is Tier.PENDING

    def test_non_positive_target_rejected(self):
        with pytest.raises(ValidationError):
            resolve_tier(10, 0)

    def test_negative_value_rejected(self):
        with pytest.raises(ValidationError):
            resolve_tier(-1, 40)

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_non_finite_value_rejected(self, value):
        with pytest.raises(ValidationError):
            resolve_tier(value, 40)


class TestMaxTier:
    def test_total_order(self):
        assert Tier.PENDING.rank < Tier.BRONZE.rank < Tier.SILVER.rank < Tier.GOLD.rank

    def test_never_downgrades(self):
        assert max_tier(Tier.GOLD, Tier.BRONZE) is Tier.GOLD
        assert max_tier(Tier.SILVER, Tier.PENDING) is Tier.SILVER

    def test_upgrades(self):
        assert max_tier(Tier.BRONZE, Tier.GOLD) is Tier.GOLD


class TestPayoutFor:
    def test_pending_pays_nothing(self):
        assert payout_for(Tier.PENDING, TABLE, is_premium=False) is None

    def test_regular_payout(self):
        payout = payout_for(Tier.SILVER, TABLE, is_premium=False)
        assert (payout.coins, payout.xp) == (75, 25)

    def test_premium_doubles_coins_only(self):
        payout = payout_for(Tier.GOLD, TABLE, is_premium=True)
        assert payout.coins == 200
        assert payout.xp == 25
