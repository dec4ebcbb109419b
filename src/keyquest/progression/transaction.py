"""Run a read-modify-write unit as one transaction with optimistic retry."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from keyquest.config import get_settings
from keyquest.progression.results import ConcurrencyError, Failure, StaleStateError

logger = logging.getLogger(__name__)

R = TypeVar("R")


async def run_transaction(
    db: AsyncSession,
    operation: Callable[[], Awaitable[R]],
    *,
    label: str,
    attempts: int | None = None,
) -> R:
    """Execute ``operation`` and commit it, or roll it back entirely.

    A ``Failure`` result rolls back so business rejections never leave partial
    writes. A lost compare-and-swap (StaleStateError) or a unique-key collision
    (IntegrityError) rolls back and re-runs the whole unit against fresh state.
    """
    if attempts is None:
        attempts = get_settings().optimistic_retry_attempts

    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
            if isinstance(result, Failure):
                await db.rollback()
            else:
                await db.commit()
            return result
        except (StaleStateError, IntegrityError) as exc:
            await db.rollback()
            logger.info("Transaction %s conflicted (attempt %d/%d): %s", label, attempt, attempts, exc)
        except Exception:
            await db.rollback()
            raise

    msg = f"Transaction {label} gave up after {attempts} conflicting attempts"
    raise ConcurrencyError(msg)
