"""Coin ledger: append-only postings chained per user, with a cached wallet balance.

Every posting is a compare-and-swap on the wallet row (matching its version
and current coin count) followed by the ledger insert, inside the caller's
transaction. A concurrent writer that got there first makes the swap match no
row; the surrounding run_transaction then retries against the fresh balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keyquest.config import get_settings
from keyquest.db.models import CoinTransaction, UserWallet
from keyquest.progression.clock import utc_now
from keyquest.progression.level_thresholds import compute_level
from keyquest.progression.results import (
    Failure,
    FailureReason,
    StaleStateError,
    Success,
    ValidationError,
)
from keyquest.progression.reward_resolver import PREMIUM_COIN_MULTIPLIER
from keyquest.progression.transaction import run_transaction
from keyquest.users.service import Account, is_premium_active

logger = logging.getLogger(__name__)

EARN = "earn"
SPEND = "spend"
PURCHASE = "purchase"
PREMIUM_BONUS = "premium_bonus"

CREDIT_TYPES = frozenset({EARN, PREMIUM_BONUS})
DEBIT_TYPES = frozenset({SPEND, PURCHASE})
TRANSACTION_TYPES = CREDIT_TYPES | DEBIT_TYPES

# Largest single posting; keeps doubled premium credits inside a 32-bit column.
MAX_POSTING_AMOUNT = 1_000_000


@dataclass(frozen=True)
class AwardReceipt:
    new_balance: int
    awarded: int
    is_premium_bonus: bool


@dataclass(frozen=True)
class XPGrant:
    total_xp: int
    level: int
    old_level: int

    @property
    def leveled_up(self) -> bool:
        return self.level > self.old_level


@dataclass(frozen=True)
class LedgerAudit:
    entry_count: int
    ledger_balance: int
    wallet_balance: int
    first_broken_seq: int | None

    @property
    def consistent(self) -> bool:
        return self.first_broken_seq is None and self.ledger_balance == self.wallet_balance


async def get_wallet(db: AsyncSession, user_id: int) -> UserWallet | None:
    result = await db.execute(
        select(UserWallet).where(UserWallet.user_id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_wallet(db: AsyncSession, user_id: int) -> UserWallet:
    """Get or create the wallet row. A racing creator surfaces as IntegrityError at flush."""
    wallet = await get_wallet(db, user_id)
    if wallet is None:
        wallet = UserWallet(
            user_id=user_id,
            coins=0,
            xp=0,
            total_xp=0,
            level=1,
            last_seq=0,
            version=0,
            updated_at=utc_now(),
        )
        db.add(wallet)
        await db.flush()
    return wallet


async def _swap_wallet(db: AsyncSession, wallet: UserWallet, **values: Any) -> None:
    """Write new wallet values only if nobody else changed the row since it was read."""
    result = await db.execute(
        update(UserWallet)
        .where(UserWallet.user_id == wallet.user_id, UserWallet.version == wallet.version)
        .values(version=wallet.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        msg = f"wallet of user {wallet.user_id} changed since version {wallet.version}"
        raise StaleStateError(msg)


async def post(
    db: AsyncSession,
    user_id: int,
    amount: int,
    tx_type: str,
    source: str,
    *,
    item_id: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Success[CoinTransaction] | Failure:
    """Append one ledger entry and move the cached balance with it.

    Runs inside the caller's transaction; use award_coins/spend_coins for a
    standalone posting. The amount is recorded as given: premium doubling
    happens before posting, never here.
    """
    if tx_type not in TRANSACTION_TYPES:
        msg = f"Unknown transaction type: {tx_type!r}"
        raise ValidationError(msg)
    if tx_type in CREDIT_TYPES and amount <= 0:
        msg = f"{tx_type} amount must be positive, got {amount}"
        raise ValidationError(msg)
    if tx_type in DEBIT_TYPES and amount >= 0:
        msg = f"{tx_type} amount must be negative, got {amount}"
        raise ValidationError(msg)
    if abs(amount) > MAX_POSTING_AMOUNT:
        msg = f"Posting of {amount} exceeds the {MAX_POSTING_AMOUNT} limit"
        raise ValidationError(msg)

    now = now or utc_now()
    wallet = await get_or_create_wallet(db, user_id)
    balance_before = wallet.coins
    balance_after = balance_before + amount
    if balance_after < 0:
        return Failure(
            FailureReason.INSUFFICIENT_FUNDS,
            f"Insufficient coins: balance {balance_before}, needs {-amount}",
        )

    seq = wallet.last_seq + 1
    await _swap_wallet(db, wallet, coins=balance_after, last_seq=seq, updated_at=now)

    entry = CoinTransaction(
        user_id=user_id,
        seq=seq,
        type=tx_type,
        amount=amount,
        source=source,
        item_id=item_id,
        details=details,
        balance_before=balance_before,
        balance_after=balance_after,
        created_at=now,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "Ledger post user=%d seq=%d type=%s amount=%d balance %d -> %d (%s)",
        user_id, seq, tx_type, amount, balance_before, balance_after, source,
    )
    return Success(entry)


async def credit_earned(
    db: AsyncSession,
    user: Account,
    amount: int,
    source: str,
    *,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Success[AwardReceipt] | Failure:
    """Post an earned amount, doubled and tagged premium_bonus for premium users."""
    if amount <= 0:
        msg = "Amount must be positive"
        raise ValidationError(msg)

    now = now or utc_now()
    premium = is_premium_active(user, now)
    final_amount = amount * PREMIUM_COIN_MULTIPLIER if premium else amount
    posted = await post(
        db, user.id, final_amount, PREMIUM_BONUS if premium else EARN, source, details=details, now=now
    )
    if isinstance(posted, Failure):
        return posted
    return Success(AwardReceipt(
        new_balance=posted.value.balance_after,
        awarded=final_amount,
        is_premium_bonus=premium,
    ))


async def award_coins(
    db: AsyncSession,
    user: Account,
    amount: int,
    source: str,
    *,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Success[AwardReceipt] | Failure:
    """Award coins as one transaction."""
    return await run_transaction(
        db,
        lambda: credit_earned(db, user, amount, source, details=details, now=now),
        label="award_coins",
    )


async def spend_coins(
    db: AsyncSession,
    user: Account,
    amount: int,
    source: str,
    *,
    item_id: str | None = None,
    tx_type: str = SPEND,
    now: datetime | None = None,
) -> Success[int] | Failure:
    """Spend coins as one transaction. Returns the new balance or InsufficientFunds."""
    if amount <= 0:
        msg = "Amount must be positive"
        raise ValidationError(msg)
    if tx_type not in DEBIT_TYPES:
        msg = f"Spending requires a debit type, got {tx_type!r}"
        raise ValidationError(msg)

    async def _spend() -> Success[int] | Failure:
        posted = await post(db, user.id, -amount, tx_type, source, item_id=item_id, now=now)
        if isinstance(posted, Failure):
            return posted
        return Success(posted.value.balance_after)

    return await run_transaction(db, _spend, label="spend_coins")


async def grant_xp(db: AsyncSession, user_id: int, amount: int, now: datetime | None = None) -> XPGrant:
    """Add XP to the wallet and recompute the level, inside the caller's transaction."""
    if amount < 0:
        msg = f"XP amount must be non-negative, got {amount}"
        raise ValidationError(msg)

    wallet = await get_or_create_wallet(db, user_id)
    old_level = wallet.level
    total_xp = wallet.total_xp + amount
    level_info = compute_level(total_xp)
    await _swap_wallet(
        db,
        wallet,
        xp=level_info["xp_into_level"],
        total_xp=total_xp,
        level=level_info["level"],
        updated_at=now or utc_now(),
    )
    return XPGrant(total_xp=total_xp, level=level_info["level"], old_level=old_level)


async def get_coin_balance(db: AsyncSession, user_id: int) -> int:
    wallet = await get_wallet(db, user_id)
    return wallet.coins if wallet else 0


async def get_transaction_history(
    db: AsyncSession, user_id: int, limit: int | None = None
) -> list[CoinTransaction]:
    """Most recent ledger entries first."""
    if limit is None:
        limit = get_settings().transaction_history_default_limit
    if limit <= 0:
        msg = "Limit must be positive"
        raise ValidationError(msg)
    result = await db.execute(
        select(CoinTransaction)
        .where(CoinTransaction.user_id == user_id)
        .order_by(CoinTransaction.seq.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _all_entries(db: AsyncSession, user_id: int) -> list[CoinTransaction]:
    result = await db.execute(
        select(CoinTransaction).where(CoinTransaction.user_id == user_id).order_by(CoinTransaction.seq.asc())
    )
    return list(result.scalars().all())


async def get_coin_stats(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Lifetime totals. premium_bonus is the extra half of premium_bonus postings."""
    entries = await _all_entries(db, user_id)
    return {
        "total_earned": sum(e.amount for e in entries if e.type in CREDIT_TYPES),
        "total_spent": sum(-e.amount for e in entries if e.type in DEBIT_TYPES),
        "premium_bonus": sum(e.amount // PREMIUM_COIN_MULTIPLIER for e in entries if e.type == PREMIUM_BONUS),
        "transaction_count": len(entries),
    }


async def verify_ledger(db: AsyncSession, user_id: int) -> LedgerAudit:
    """Replay a user's ledger and compare it with the cached wallet balance."""
    entries = await _all_entries(db, user_id)
    wallet = await get_wallet(db, user_id)

    running = 0
    first_broken: int | None = None
    for entry in entries:
        if (
            entry.balance_before != running
            or entry.balance_after != entry.balance_before + entry.amount
            or entry.balance_after < 0
        ):
            first_broken = entry.seq
            break
        running = entry.balance_after

    if first_broken is not None:
        logger.warning("Ledger chain broken for user %d at seq %d", user_id, first_broken)

    return LedgerAudit(
        entry_count=len(entries),
        ledger_balance=running,
        wallet_balance=wallet.coins if wallet else 0,
        first_broken_seq=first_broken,
    )
