"""Progression tables.

Creates users, user_wallets, coin_transactions, daily_challenges,
daily_challenge_progress, user_streaks, active_power_ups and inventory_items.

Revision ID: 001_progression_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            handle VARCHAR(128) UNIQUE NOT NULL,
            display_name VARCHAR(64),
            is_premium BOOLEAN NOT NULL DEFAULT false,
            premium_expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Wallets (cached balance) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_wallets (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            coins INTEGER NOT NULL DEFAULT 0,
            xp INTEGER NOT NULL DEFAULT 0,
            total_xp BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            last_seq INTEGER NOT NULL DEFAULT 0,
            version INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_wallets_coins_non_negative CHECK (coins >= 0)
        )
    """)

    # --- Coin ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS coin_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            seq INTEGER NOT NULL,
            type VARCHAR(16) NOT NULL,
            amount INTEGER NOT NULL,
            source VARCHAR(64) NOT NULL,
            item_id VARCHAR(64),
            metadata JSON,
            balance_before INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_coin_transactions_user_seq UNIQUE (user_id, seq),
            CONSTRAINT ck_coin_transactions_balance_non_negative CHECK (balance_after >= 0),
            CONSTRAINT ck_coin_transactions_chain CHECK (balance_after = balance_before + amount)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_coin_transactions_user_created
        ON coin_transactions(user_id, created_at)
    """)

    # --- Daily challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_challenges (
            id BIGSERIAL PRIMARY KEY,
            date_key VARCHAR(10) UNIQUE NOT NULL,
            challenge_type VARCHAR(16) NOT NULL,
            title VARCHAR(64) NOT NULL,
            description TEXT NOT NULL,
            target_value INTEGER NOT NULL,
            target_keys JSON,
            reward_bronze INTEGER NOT NULL,
            reward_silver INTEGER NOT NULL,
            reward_gold INTEGER NOT NULL,
            reward_xp INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_challenge_progress (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            challenge_id BIGINT NOT NULL REFERENCES daily_challenges(id) ON DELETE CASCADE,
            date_key VARCHAR(10) NOT NULL,
            tier VARCHAR(8) NOT NULL DEFAULT 'pending',
            best_value DOUBLE PRECISION NOT NULL DEFAULT 0,
            attempts INTEGER NOT NULL DEFAULT 0,
            completed_at TIMESTAMPTZ,
            rewards_claimed BOOLEAN NOT NULL DEFAULT false,
            claimed_at TIMESTAMPTZ,
            version INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_daily_challenge_progress_user_date UNIQUE (user_id, date_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_daily_challenge_progress_date
        ON daily_challenge_progress(date_key)
    """)

    # --- Streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_streaks (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity_date VARCHAR(10),
            freeze_count INTEGER NOT NULL DEFAULT 0,
            freeze_used_dates JSON NOT NULL DEFAULT '[]',
            total_days_active INTEGER NOT NULL DEFAULT 0,
            version INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_streaks_longest CHECK (longest_streak >= current_streak)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_streaks_current
        ON user_streaks(current_streak DESC)
    """)

    # --- Power-ups and inventory ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS active_power_ups (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            power_up_type VARCHAR(32) NOT NULL,
            multiplier DOUBLE PRECISION,
            remaining_uses INTEGER,
            expires_at TIMESTAMPTZ,
            activated_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_active_power_ups_user_type UNIQUE (user_id, power_up_type)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS inventory_items (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            item_id VARCHAR(64) NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 0,
            acquired_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_inventory_items_user_item UNIQUE (user_id, item_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS inventory_items CASCADE")
    op.execute("DROP TABLE IF EXISTS active_power_ups CASCADE")
    op.execute("DROP TABLE IF EXISTS user_streaks CASCADE")
    op.execute("DROP TABLE IF EXISTS daily_challenge_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS daily_challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS coin_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_wallets CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
