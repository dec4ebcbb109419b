"""Power-up activation from inventory, multipliers and hint tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keyquest.db.models import ActivePowerUp, InventoryItem
from keyquest.progression import streak_service
from keyquest.progression.clock import utc_now
from keyquest.progression.power_ups import (
    HINT_TOKEN,
    STREAK_FREEZE,
    ConsumableConfig,
    ConsumablePowerUp,
    PowerUp,
    TimedPowerUp,
    config_for,
    extended,
    from_row,
    is_active,
    multipliers,
)
from keyquest.progression.results import (
    Failure,
    FailureReason,
    StaleStateError,
    Success,
    ValidationError,
)
from keyquest.progression.transaction import run_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Activation:
    item_id: str
    remaining_quantity: int
    power_up: PowerUp | None = None
    freeze_count: int | None = None


async def get_inventory_item(db: AsyncSession, user_id: int, item_id: str) -> InventoryItem | None:
    result = await db.execute(
        select(InventoryItem)
        .where(InventoryItem.user_id == user_id, InventoryItem.item_id == item_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def owns_item(db: AsyncSession, user_id: int, item_id: str) -> bool:
    item = await get_inventory_item(db, user_id, item_id)
    return item is not None and item.quantity > 0


async def grant_inventory_item(
    db: AsyncSession, user_id: int, item_id: str, quantity: int = 1, now: datetime | None = None
) -> int:
    """Add items to a user's inventory. Returns the quantity now owned."""
    if quantity <= 0:
        msg = "Quantity must be positive"
        raise ValidationError(msg)
    now = now or utc_now()

    async def _grant() -> int:
        item = await get_inventory_item(db, user_id, item_id)
        if item is None:
            db.add(InventoryItem(user_id=user_id, item_id=item_id, quantity=quantity, acquired_at=now))
            await db.flush()
            return quantity
        await _swap_quantity(db, item, item.quantity + quantity)
        return item.quantity + quantity

    return await run_transaction(db, _grant, label="grant_inventory_item")


async def _swap_quantity(db: AsyncSession, item: InventoryItem, quantity: int) -> None:
    """Set (or, at zero, delete) an inventory row if its quantity is still the one read."""
    if quantity <= 0:
        stmt = delete(InventoryItem)
    else:
        stmt = update(InventoryItem).values(quantity=quantity)
    result = await db.execute(
        stmt.where(InventoryItem.id == item.id, InventoryItem.quantity == item.quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        msg = f"inventory item {item.id} changed since quantity {item.quantity}"
        raise StaleStateError(msg)


async def _get_power_up_row(db: AsyncSession, user_id: int, power_up_type: str) -> ActivePowerUp | None:
    result = await db.execute(
        select(ActivePowerUp)
        .where(ActivePowerUp.user_id == user_id, ActivePowerUp.power_up_type == power_up_type)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _store_power_up(db: AsyncSession, user_id: int, row: ActivePowerUp | None, power_up: PowerUp) -> None:
    match power_up:
        case TimedPowerUp(multiplier=multiplier, expires_at=expires_at):
            values = {"multiplier": multiplier, "expires_at": expires_at, "remaining_uses": None}
        case ConsumablePowerUp(remaining_uses=remaining):
            values = {"multiplier": None, "expires_at": None, "remaining_uses": remaining}

    if row is None:
        db.add(ActivePowerUp(
            user_id=user_id,
            power_up_type=power_up.power_up_type,
            activated_at=power_up.activated_at,
            **values,
        ))
        await db.flush()
    else:
        await db.execute(
            update(ActivePowerUp)
            .where(ActivePowerUp.id == row.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )


async def activate_power_up(
    db: AsyncSession, user_id: int, item_id: str, now: datetime | None = None
) -> Success[Activation] | Failure:
    """Turn one owned inventory item into an active power-up.

    The inventory decrement is a compare-and-swap, so two activations of the
    same item serialize on the inventory row.
    """
    config = config_for(item_id)
    now = now or utc_now()

    async def _activate() -> Success[Activation] | Failure:
        item = await get_inventory_item(db, user_id, item_id)
        if item is None or item.quantity <= 0:
            return Failure(FailureReason.POWER_UP_NOT_OWNED, "You don't own this power-up")

        await _swap_quantity(db, item, item.quantity - 1)
        remaining = item.quantity - 1

        match config:
            case ConsumableConfig(uses=uses) if item_id == STREAK_FREEZE:
                freeze_count = await streak_service.add_freezes(db, user_id, uses, now)
                return Success(Activation(item_id, remaining, freeze_count=freeze_count))

        row = await _get_power_up_row(db, user_id, item_id)
        power_up = extended(from_row(row) if row else None, config, item_id, now)
        await _store_power_up(db, user_id, row, power_up)
        return Success(Activation(item_id, remaining, power_up=power_up))

    activated = await run_transaction(db, _activate, label="activate_power_up")
    if isinstance(activated, Success):
        logger.info("Activated %s for user %d (%d left)", item_id, user_id, activated.value.remaining_quantity)
    return activated


async def _power_ups(db: AsyncSession, user_id: int) -> list[PowerUp]:
    result = await db.execute(
        select(ActivePowerUp)
        .where(ActivePowerUp.user_id == user_id)
        .order_by(ActivePowerUp.power_up_type)
        .execution_options(populate_existing=True)
    )
    return [from_row(row) for row in result.scalars().all()]


async def get_active_power_ups(db: AsyncSession, user_id: int, now: datetime | None = None) -> list[PowerUp]:
    now = now or utc_now()
    return [p for p in await _power_ups(db, user_id) if is_active(p, now)]


async def get_active_multipliers(db: AsyncSession, user_id: int, now: datetime | None = None) -> dict[str, float]:
    now = now or utc_now()
    return multipliers(await _power_ups(db, user_id), now)


async def use_hint_token(db: AsyncSession, user_id: int) -> Success[int] | Failure:
    """Consume one hint. Returns the hints left."""

    async def _use() -> Success[int] | Failure:
        row = await _get_power_up_row(db, user_id, HINT_TOKEN)
        if row is None or not row.remaining_uses or row.remaining_uses <= 0:
            return Failure(FailureReason.NO_HINT_TOKENS, "No hint tokens available")

        result = await db.execute(
            update(ActivePowerUp)
            .where(ActivePowerUp.id == row.id, ActivePowerUp.remaining_uses == row.remaining_uses)
            .values(remaining_uses=row.remaining_uses - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            msg = f"hint tokens of user {user_id} changed since {row.remaining_uses}"
            raise StaleStateError(msg)
        return Success(row.remaining_uses - 1)

    return await run_transaction(db, _use, label="use_hint_token")


async def cleanup_expired_power_ups(db: AsyncSession, user_id: int, now: datetime | None = None) -> int:
    """Delete expired timed and used-up consumable power-ups. Returns how many went."""
    now = now or utc_now()

    async def _cleanup() -> int:
        result = await db.execute(
            select(ActivePowerUp)
            .where(ActivePowerUp.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        stale = [row.id for row in result.scalars().all() if not is_active(from_row(row), now)]
        if stale:
            await db.execute(
                delete(ActivePowerUp)
                .where(ActivePowerUp.id.in_(stale))
                .execution_options(synchronize_session=False)
            )
        return len(stale)

    cleaned = await run_transaction(db, _cleanup, label="cleanup_expired_power_ups")
    if cleaned:
        logger.info("Cleaned %d expired power-ups for user %d", cleaned, user_id)
    return cleaned
