"""ORM models for users, wallets, the coin ledger, challenges, streaks and power-ups.

Column types stay portable (JSON instead of JSONB, string date keys) so the
same models run on PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from keyquest.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Local mirror of an identity-provider user, keyed by its opaque handle."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    handle: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    premium_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Coins: wallet projection + append-only ledger
# ---------------------------------------------------------------------------


class UserWallet(Base):
    """Cached balance projection over coin_transactions, single row per user."""

    __tablename__ = "user_wallets"
    __table_args__ = (CheckConstraint("coins >= 0", name="ck_user_wallets_coins_non_negative"),)

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CoinTransaction(Base):
    """Immutable coin ledger entry. seq numbers a user's entries 1, 2, 3, ..."""

    __tablename__ = "coin_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "seq", name="uq_coin_transactions_user_seq"),
        CheckConstraint("balance_after >= 0", name="ck_coin_transactions_balance_non_negative"),
        CheckConstraint("balance_after = balance_before + amount", name="ck_coin_transactions_chain"),
        Index("idx_coin_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Daily challenges
# ---------------------------------------------------------------------------


class DailyChallenge(Base):
    """One generated challenge per UTC calendar day. Immutable once inserted."""

    __tablename__ = "daily_challenges"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    date_key: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    challenge_type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    target_keys: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    reward_bronze: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_silver: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_gold: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_xp: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DailyChallengeProgress(Base):
    """Per-user, per-day challenge progress."""

    __tablename__ = "daily_challenge_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "date_key", name="uq_daily_challenge_progress_user_date"),
        Index("idx_daily_challenge_progress_date", "date_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("daily_challenges.id", ondelete="CASCADE"), nullable=False
    )
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    tier: Mapped[str] = mapped_column(String(8), nullable=False, default="pending", server_default="pending")
    best_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rewards_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class UserStreak(Base):
    """Daily activity streak, single row per user."""

    __tablename__ = "user_streaks"
    __table_args__ = (CheckConstraint("longest_streak >= current_streak", name="ck_user_streaks_longest"),)

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_activity_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    freeze_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    freeze_used_dates: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    total_days_active: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Power-ups and inventory
# ---------------------------------------------------------------------------


class ActivePowerUp(Base):
    """Activated power-up. Timed rows carry multiplier + expires_at, consumables remaining_uses."""

    __tablename__ = "active_power_ups"
    __table_args__ = (UniqueConstraint("user_id", "power_up_type", name="uq_active_power_ups_user_type"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    power_up_type: Mapped[str] = mapped_column(String(32), nullable=False)
    multiplier: Mapped[float | None] = mapped_column(Float, nullable=True)
    remaining_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class InventoryItem(Base):
    """Items owned by a user. Written by the shop, decremented on power-up activation."""

    __tablename__ = "inventory_items"
    __table_args__ = (UniqueConstraint("user_id", "item_id", name="uq_inventory_items_user_item"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
