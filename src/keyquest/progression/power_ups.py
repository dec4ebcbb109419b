"""Power-up kinds and their configuration.

A power-up is either timed (a multiplier until an expiry) or consumable (a
number of remaining uses). ``streak-freeze`` is consumable but is banked on
the streak row instead of living in active_power_ups.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from keyquest.db.models import ActivePowerUp
from keyquest.progression.clock import as_utc
from keyquest.progression.results import ValidationError

XP_BOOST = "xp-boost"
COIN_MAGNET = "coin-magnet"
HINT_TOKEN = "hint-token"
STREAK_FREEZE = "streak-freeze"


@dataclass(frozen=True)
class TimedConfig:
    multiplier: float
    duration: timedelta


@dataclass(frozen=True)
class ConsumableConfig:
    uses: int


PowerUpConfig = TimedConfig | ConsumableConfig

POWER_UP_CONFIG: dict[str, PowerUpConfig] = {
    XP_BOOST: TimedConfig(multiplier=1.5, duration=timedelta(minutes=30)),
    COIN_MAGNET: TimedConfig(multiplier=2.0, duration=timedelta(minutes=30)),
    HINT_TOKEN: ConsumableConfig(uses=3),
    STREAK_FREEZE: ConsumableConfig(uses=1),
}


@dataclass(frozen=True)
class TimedPowerUp:
    power_up_type: str
    multiplier: float
    expires_at: datetime
    activated_at: datetime


@dataclass(frozen=True)
class ConsumablePowerUp:
    power_up_type: str
    remaining_uses: int
    activated_at: datetime


PowerUp = TimedPowerUp | ConsumablePowerUp


def config_for(item_id: str) -> PowerUpConfig:
    try:
        return POWER_UP_CONFIG[item_id]
    except KeyError:
        msg = f"Invalid power-up type: {item_id!r}"
        raise ValidationError(msg) from None


def from_row(row: ActivePowerUp) -> PowerUp:
    match config_for(row.power_up_type):
        case TimedConfig():
            return TimedPowerUp(
                power_up_type=row.power_up_type,
                multiplier=row.multiplier or 1.0,
                expires_at=as_utc(row.expires_at),
                activated_at=as_utc(row.activated_at),
            )
        case ConsumableConfig():
            return ConsumablePowerUp(
                power_up_type=row.power_up_type,
                remaining_uses=row.remaining_uses or 0,
                activated_at=as_utc(row.activated_at),
            )


def is_active(power_up: PowerUp, now: datetime) -> bool:
    match power_up:
        case TimedPowerUp(expires_at=expires_at):
            return expires_at >= now
        case ConsumablePowerUp(remaining_uses=remaining):
            return remaining > 0


def extended(power_up: PowerUp | None, config: PowerUpConfig, item_id: str, now: datetime) -> PowerUp:
    """The power-up after one more activation.

    Timed ones run for another full duration from max(expiry, now);
    consumables gain the configured uses.
    """
    match power_up, config:
        case None, TimedConfig(multiplier=multiplier, duration=duration):
            return TimedPowerUp(item_id, multiplier, now + duration, now)
        case None, ConsumableConfig(uses=uses):
            return ConsumablePowerUp(item_id, uses, now)
        case TimedPowerUp() as timed, TimedConfig(duration=duration):
            return TimedPowerUp(
                timed.power_up_type,
                timed.multiplier,
                max(timed.expires_at, now) + duration,
                timed.activated_at,
            )
        case ConsumablePowerUp() as consumable, ConsumableConfig(uses=uses):
            return ConsumablePowerUp(
                consumable.power_up_type,
                consumable.remaining_uses + uses,
                consumable.activated_at,
            )
    msg = f"Power-up {item_id!r} does not match its configuration"
    raise ValidationError(msg)


def multipliers(power_ups: list[PowerUp], now: datetime) -> dict[str, float]:
    """Strongest active XP and coin multipliers, 1.0 when none is running."""
    xp = 1.0
    coins = 1.0
    for power_up in power_ups:
        match power_up:
            case TimedPowerUp(power_up_type=kind, multiplier=multiplier) if is_active(power_up, now):
                if kind == XP_BOOST:
                    xp = max(xp, multiplier)
                elif kind == COIN_MAGNET:
                    coins = max(coins, multiplier)
    return {"xp": xp, "coins": coins}
