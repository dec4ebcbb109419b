"""Integration tests for streak_service: activity, freezes, purchases, leaderboard."""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from keyquest.db.models import CoinTransaction
from keyquest.progression import ledger_service, streak_service
from keyquest.progression.results import Failure, FailureReason, Success, ValidationError

DAY1 = date(2026, 10, 12)
NOW = datetime(2026, 10, 12, 9, 0, 0, tzinfo=timezone.utc)


def _day(n: int) -> date:
    return DAY1 + timedelta(days=n - 1)


async def _record(db, account, n, redis=None):
    return await streak_service.record_activity(db, redis, account, _day(n), NOW + timedelta(days=n - 1))


async def _bank_freezes(db, user_id, count):
    await streak_service.add_freezes(db, user_id, count, NOW)
    await db.commit()


class TestRecordActivity:
    @pytest.mark.asyncio
    async def test_fresh_user_then_same_day_repeat(self, db_session, account):
        first = await _record(db_session, account, 1)
        assert first.is_new_day
        assert first.streak == 1
        assert first.coins_earned == 5
        assert first.new_balance == 5

        again = await _record(db_session, account, 1)
        assert not again.is_new_day
        assert again.coins_earned == 0

        view = await streak_service.get_streak(db_session, account.id, _day(1))
        assert (view.current_streak, view.longest_streak, view.total_days_active) == (1, 1, 1)
        assert view.is_active_today
        assert await ledger_service.get_coin_balance(db_session, account.id) == 5

    @pytest.mark.asyncio
    async def test_missed_day_without_freeze_resets(self, db_session, account):
        await _record(db_session, account, 1)
        await _record(db_session, account, 2)
        result = await _record(db_session, account, 4)

        assert result.streak == 1
        assert not result.freeze_consumed
        view = await streak_service.get_streak(db_session, account.id, _day(4))
        assert view.longest_streak == 2
        assert view.total_days_active == 3

    @pytest.mark.asyncio
    async def test_missed_day_with_freeze_continues(self, db_session, account):
        await _record(db_session, account, 1)
        await _bank_freezes(db_session, account.id, 1)

        result = await _record(db_session, account, 3)

        assert result.streak == 2
        assert result.freeze_consumed
        view = await streak_service.get_streak(db_session, account.id, _day(3))
        assert view.freeze_count == 0
        assert view.freeze_used_dates == [_day(2).isoformat()]

    @pytest.mark.asyncio
    async def test_seven_day_milestone(self, db_session, account):
        redis = AsyncMock()
        results = [await _record(db_session, account, n, redis) for n in range(1, 8)]

        assert results[-1].milestone_reached == 7
        assert results[-1].coins_earned == 10
        assert all(r.milestone_reached is None for r in results[:-1])
        assert await ledger_service.get_coin_balance(db_session, account.id) == 6 * 5 + 10

        channel, payload = redis.publish.await_args.args
        assert channel == "pubsub:streak_update"
        assert json.loads(payload) == {"user_id": account.id, "event": "streak_milestone", "streak_length": 7}

    @pytest.mark.asyncio
    async def test_broken_streak_is_published(self, db_session, account):
        redis = AsyncMock()
        await _record(db_session, account, 1, redis)
        await _record(db_session, account, 2, redis)
        await _record(db_session, account, 5, redis)

        payload = json.loads(redis.publish.await_args.args[1])
        assert payload["event"] == "streak_broken"
        assert payload["streak_length"] == 2

    @pytest.mark.asyncio
    async def test_premium_streak_coins_doubled(self, db_session, premium_account):
        result = await _record(db_session, premium_account, 1)
        assert result.new_balance == 10
        entry = (await db_session.execute(
            select(CoinTransaction).where(CoinTransaction.user_id == premium_account.id)
        )).scalar_one()
        assert (entry.type, entry.amount, entry.source) == ("premium_bonus", 10, "daily_streak")

    @pytest.mark.asyncio
    async def test_unrecorded_user_reads_zeros(self, db_session, account):
        view = await streak_service.get_streak(db_session, account.id, _day(1))
        assert view.current_streak == 0
        assert view.last_activity_date is None
        assert not view.is_at_risk
        assert view.next_milestone == 7

    @pytest.mark.asyncio
    async def test_at_risk_after_yesterday(self, db_session, account):
        await _record(db_session, account, 1)
        view = await streak_service.get_streak(db_session, account.id, _day(2))
        assert view.is_at_risk
        assert not view.is_active_today


class TestUseStreakFreeze:
    @pytest.mark.asyncio
    async def test_no_streak(self, db_session, account):
        result = await streak_service.use_streak_freeze(db_session, account.id, _day(1), NOW)
        assert result.reason is FailureReason.NO_STREAK

    @pytest.mark.asyncio
    async def test_no_freezes(self, db_session, account):
        await _record(db_session, account, 1)
        result = await streak_service.use_streak_freeze(db_session, account.id, _day(2), NOW)
        assert result.reason is FailureReason.NO_FREEZES

    @pytest.mark.asyncio
    async def test_freeze_covers_today_once(self, db_session, account):
        await _record(db_session, account, 1)
        await _bank_freezes(db_session, account.id, 2)

        used = await streak_service.use_streak_freeze(db_session, account.id, _day(2), NOW)
        again = await streak_service.use_streak_freeze(db_session, account.id, _day(2), NOW)

        assert used == Success(1)
        assert again.reason is FailureReason.FREEZE_ALREADY_USED
        view = await streak_service.get_streak(db_session, account.id, _day(2))
        assert (view.current_streak, view.total_days_active, view.freeze_count) == (1, 1, 1)

        # The frozen day keeps the streak alive into the next one.
        assert (await _record(db_session, account, 3)).streak == 2


class TestPurchaseStreakFreeze:
    @pytest.mark.asyncio
    async def test_insufficient_coins_buys_nothing(self, db_session, account):
        await ledger_service.award_coins(db_session, account, 74, "lesson_complete")

        result = await streak_service.purchase_streak_freeze(db_session, account, NOW)

        assert isinstance(result, Failure)
        assert result.reason is FailureReason.INSUFFICIENT_FUNDS
        assert await streak_service.get_streak_row(db_session, account.id) is None
        assert await ledger_service.get_coin_balance(db_session, account.id) == 74

    @pytest.mark.asyncio
    async def test_purchase_spends_and_banks(self, db_session, account):
        await ledger_service.award_coins(db_session, account, 100, "lesson_complete")

        result = await streak_service.purchase_streak_freeze(db_session, account, NOW)

        assert result.value.cost == 75
        assert result.value.new_balance == 25
        assert result.value.freeze_count == 1
        history = await ledger_service.get_transaction_history(db_session, account.id, limit=1)
        assert (history[0].type, history[0].amount, history[0].source) == ("spend", -75, "streak_freeze_purchase")


class TestPremiumFreezes:
    @pytest.mark.asyncio
    async def test_requires_premium(self, db_session, account):
        result = await streak_service.grant_premium_freezes(db_session, account, NOW)
        assert result.reason is FailureReason.NOT_PREMIUM

    @pytest.mark.asyncio
    async def test_premium_grant(self, db_session, premium_account):
        assert await streak_service.grant_premium_freezes(db_session, premium_account, NOW) == Success(3)
        view = await streak_service.get_streak(db_session, premium_account.id, _day(1))
        assert view.freeze_count == 3

    @pytest.mark.asyncio
    async def test_add_freezes_rejects_non_positive(self, db_session, account):
        with pytest.raises(ValidationError):
            await streak_service.add_freezes(db_session, account.id, 0, NOW)


class TestLeaderboard:
    @pytest.mark.asyncio
    async def test_orders_by_current_streak(self, db_session, make_account):
        alice = await make_account("user_alice")
        bob = await make_account("user_bob")
        for n in range(1, 4):
            await _record(db_session, alice, n)
        await _record(db_session, bob, 3)

        board = await streak_service.get_streak_leaderboard(db_session, limit=10)

        assert [row["user_id"] for row in board] == [alice.id, bob.id]
        assert board[0]["current_streak"] == 3
        assert board[0]["display_name"] == "Anonymous"

    @pytest.mark.asyncio
    async def test_limit_must_be_positive(self, db_session):
        with pytest.raises(ValidationError):
            await streak_service.get_streak_leaderboard(db_session, limit=0)
