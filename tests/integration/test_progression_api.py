"""HTTP tests for the progression endpoints."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient

API = "/api/v1"


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get(f"{API}/coins/balance")
        assert response.status_code == 401
        assert response.json() == {"detail": "Not authenticated"}

    @pytest.mark.asyncio
    async def test_expired_token(self, client: AsyncClient, token_for):
        token = token_for("user_api_1", expires_in=timedelta(seconds=-60))
        response = await client.get(f"{API}/coins/balance", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json() == {"detail": "Token has expired"}

    @pytest.mark.asyncio
    async def test_wrong_issuer(self, client: AsyncClient, token_for):
        token = token_for("user_api_1", issuer="someone-else")
        response = await client.get(f"{API}/coins/balance", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_first_request_creates_user(self, client: AsyncClient, auth_headers):
        response = await client.get(f"{API}/coins/balance", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"balance": 0}


class TestChallengeEndpoints:
    @pytest.mark.asyncio
    async def test_today_is_generated_until_stored(self, client: AsyncClient, auth_headers):
        peek = await client.get(f"{API}/challenges/today")
        assert peek.status_code == 200
        assert peek.json()["stored"] is False

        ensured = await client.post(f"{API}/challenges/today", headers=auth_headers)
        assert ensured.status_code == 200
        assert ensured.json()["stored"] is True
        assert {k: v for k, v in ensured.json().items() if k != "stored"} == {
            k: v for k, v in peek.json().items() if k != "stored"
        }

        again = await client.get(f"{API}/challenges/today")
        assert again.json()["stored"] is True

    @pytest.mark.asyncio
    async def test_attempt_then_claim_once(self, client: AsyncClient, auth_headers):
        progress = await client.get(f"{API}/challenges/today/progress", headers=auth_headers)
        assert progress.status_code == 200
        assert progress.json() is None

        # Every target is positive, so this clears gold on any day.
        attempt = await client.post(f"{API}/challenges/today/attempts", json={"value": 10_000}, headers=auth_headers)
        assert attempt.status_code == 200
        data = attempt.json()
        assert data["tier"] == "gold"
        assert data["is_new_tier"] is True
        gold = data["rewards"]["gold"]

        claim = await client.post(f"{API}/challenges/today/claim", headers=auth_headers)
        assert claim.status_code == 200
        receipt = claim.json()
        assert receipt["coins"] == gold
        assert receipt["new_balance"] == gold
        assert receipt["is_premium_bonus"] is False

        second = await client.post(f"{API}/challenges/today/claim", headers=auth_headers)
        assert second.status_code == 409
        assert second.json()["detail"]["reason"] == "already_claimed"

        balance = await client.get(f"{API}/coins/balance", headers=auth_headers)
        assert balance.json() == {"balance": gold}

    @pytest.mark.asyncio
    async def test_claim_without_progress_is_404(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/challenges/today/claim", headers=auth_headers)
        assert response.status_code == 404
        assert response.json() == {"detail": {"reason": "no_progress", "message": "No progress found"}}

    @pytest.mark.asyncio
    async def test_claim_pending_is_409(self, client: AsyncClient, auth_headers):
        await client.post(f"{API}/challenges/today/attempts", json={"value": 0}, headers=auth_headers)
        response = await client.post(f"{API}/challenges/today/claim", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "not_completed"

    @pytest.mark.asyncio
    async def test_negative_attempt_rejected(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/challenges/today/attempts", json={"value": -1}, headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    @pytest.mark.parametrize("literal", ["Infinity", "NaN", "-Infinity"])
    async def test_non_finite_attempt_rejected(self, client: AsyncClient, auth_headers, literal):
        response = await client.post(
            f"{API}/challenges/today/attempts",
            content=f'{{"value": {literal}}}',
            headers={**auth_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["loc"] == ["body", "value"]

        progress = await client.get(f"{API}/challenges/today/progress", headers=auth_headers)
        assert progress.json() is None

    @pytest.mark.asyncio
    async def test_history_and_stats(self, client: AsyncClient, auth_headers):
        await client.post(f"{API}/challenges/today/attempts", json={"value": 10_000}, headers=auth_headers)

        history = await client.get(f"{API}/challenges/history", headers=auth_headers)
        [entry] = history.json()["entries"]
        assert entry["tier"] == "gold"
        assert entry["attempts"] == 1
        assert entry["rewards_claimed"] is False

        stats = await client.get(f"{API}/challenges/stats", headers=auth_headers)
        assert stats.json() == {
            "total_completed": 1,
            "gold": 1,
            "silver": 0,
            "bronze": 0,
            "total_attempts": 1,
            "current_day_streak": 1,
        }


class TestStreakEndpoints:
    @pytest.mark.asyncio
    async def test_activity_is_idempotent_within_a_day(self, client: AsyncClient, auth_headers):
        first = await client.post(f"{API}/streak/activity", headers=auth_headers)
        assert first.status_code == 200
        assert first.json()["streak"] == 1
        assert first.json()["is_new_day"] is True
        assert first.json()["coins_earned"] == 5
        assert first.json()["new_balance"] == 5

        second = await client.post(f"{API}/streak/activity", headers=auth_headers)
        assert second.json()["is_new_day"] is False
        assert second.json()["coins_earned"] == 0

        view = await client.get(f"{API}/streak", headers=auth_headers)
        assert view.json()["current_streak"] == 1
        assert view.json()["is_active_today"] is True

    @pytest.mark.asyncio
    async def test_freeze_use_without_freezes(self, client: AsyncClient, auth_headers):
        await client.post(f"{API}/streak/activity", headers=auth_headers)
        response = await client.post(f"{API}/streak/freeze/use", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "no_freezes"

    @pytest.mark.asyncio
    async def test_freeze_purchase_needs_coins(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/streak/freeze/purchase", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_leaderboard_is_public(self, client: AsyncClient, auth_headers):
        await client.post(f"{API}/streak/activity", headers=auth_headers)

        response = await client.get(f"{API}/streak/leaderboard")
        assert response.status_code == 200
        [entry] = response.json()["entries"]
        assert entry["rank"] == 1
        assert entry["current_streak"] == 1


class TestCoinEndpoints:
    @pytest.mark.asyncio
    async def test_award_spend_and_history(self, client: AsyncClient, auth_headers):
        awarded = await client.post(
            f"{API}/coins/award",
            json={"amount": 100, "source": "lesson_complete", "metadata": {"lesson": 3}},
            headers=auth_headers,
        )
        assert awarded.json() == {"new_balance": 100, "awarded": 100, "is_premium_bonus": False}

        spent = await client.post(
            f"{API}/coins/spend", json={"amount": 40, "source": "shop", "item_id": "theme-neon"}, headers=auth_headers
        )
        assert spent.json() == {"new_balance": 60}

        history = await client.get(f"{API}/coins/transactions", headers=auth_headers)
        rows = history.json()["transactions"]
        assert [(r["type"], r["amount"], r["balance_after"]) for r in rows] == [
            ("spend", -40, 60),
            ("earn", 100, 100),
        ]
        assert rows[1]["metadata"] == {"lesson": 3}

        stats = await client.get(f"{API}/coins/stats", headers=auth_headers)
        assert stats.json()["total_earned"] == 100
        assert stats.json()["total_spent"] == 40

    @pytest.mark.asyncio
    async def test_overspend_is_409(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/coins/spend", json={"amount": 500, "source": "shop"}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_award_above_cap_is_422(self, client: AsyncClient, auth_headers):
        response = await client.post(
            f"{API}/coins/award", json={"amount": 10**12, "source": "bonus"}, headers=auth_headers
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["loc"] == ["body", "amount"]

        balance = await client.get(f"{API}/coins/balance", headers=auth_headers)
        assert balance.json() == {"balance": 0}


class TestPowerUpEndpoints:
    @pytest.mark.asyncio
    async def test_nothing_active(self, client: AsyncClient, auth_headers):
        response = await client.get(f"{API}/power-ups", headers=auth_headers)
        assert response.json() == {"power_ups": [], "multipliers": {"xp": 1.0, "coins": 1.0}}

    @pytest.mark.asyncio
    async def test_activate_unowned(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/power-ups/xp-boost/activate", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "power_up_not_owned"

    @pytest.mark.asyncio
    async def test_activate_unknown_type(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/power-ups/rocket/activate", headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["reason"] == "validation_error"

    @pytest.mark.asyncio
    async def test_hint_token_without_tokens(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/power-ups/hint-token/use", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "no_hint_tokens"
