"""User lookup and premium status."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from keyquest.db.models import User
from keyquest.progression.clock import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Account:
    """Detached snapshot of a user.

    Services take this instead of the ORM row: a rolled-back transaction
    expires every loaded row, and the snapshot stays readable across retries.
    """

    id: int
    handle: str
    is_premium: bool = False
    premium_expires_at: datetime | None = None

    @classmethod
    def from_row(cls, user: User) -> Account:
        return cls(
            id=user.id,
            handle=user.handle,
            is_premium=user.is_premium,
            premium_expires_at=user.premium_expires_at,
        )


async def get_user_by_handle(db: AsyncSession, handle: str) -> User | None:
    result = await db.execute(
        select(User).where(User.handle == handle).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_user(db: AsyncSession, handle: str) -> tuple[User, bool]:
    """Get the user for an identity handle, creating it on first sight.

    Returns (user, created). A concurrent first login loses the unique-handle
    race and reads the winner's row.
    """
    user = await get_user_by_handle(db, handle)
    if user is not None:
        return user, False

    user = User(handle=handle, is_premium=False, created_at=utc_now())
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        user = await get_user_by_handle(db, handle)
        if user is None:
            raise
        return user, False

    logger.info("Created user for handle %s", handle)
    return user, True


async def load_account(db: AsyncSession, handle: str) -> Account:
    user, _ = await get_or_create_user(db, handle)
    return Account.from_row(user)


def is_premium_active(user: Account | User, now: datetime | None = None) -> bool:
    """Premium flag set and not past its expiry."""
    if not user.is_premium:
        return False
    if user.premium_expires_at is None:
        return True
    return as_utc(user.premium_expires_at) > (now or utc_now())


async def set_premium_status(
    db: AsyncSession,
    handle: str,
    is_premium: bool,
    expires_at: datetime | None = None,
) -> Account | None:
    """Apply premium status pushed by the payment sync. Returns None for unknown handles."""
    user = await get_user_by_handle(db, handle)
    if user is None:
        logger.warning("User not found for premium sync: %s", handle)
        return None
    user.is_premium = is_premium
    user.premium_expires_at = expires_at
    await db.commit()
    return Account.from_row(user)
