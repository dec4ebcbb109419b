"""Deterministic daily challenge generation.

The challenge for a day is a pure function of its 'YYYY-MM-DD' key, so every
process produces the same challenge for the same date without coordination.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date

from keyquest.progression.clock import date_key, parse_date_key
from keyquest.progression.reward_resolver import RewardTable

CHALLENGE_CATEGORIES: tuple[str, ...] = ("speed", "accuracy", "endurance", "keys")

KEYS_BASE_ACCURACY = 90
KEYS_MAX_ACCURACY = 98
BASE_REWARD = 50
REWARD_SPREAD = 30


@dataclass(frozen=True)
class ChallengeTemplate:
    title: str
    description: str
    base_target: int | None = None
    target_keys: tuple[str, ...] | None = None


CHALLENGE_TEMPLATES: dict[str, tuple[ChallengeTemplate, ...]] = {
    "speed": (
        ChallengeTemplate("SPEED DEMON", "Achieve {target} WPM", base_target=40),
        ChallengeTemplate("QUICK FINGERS", "Type at {target} WPM or faster", base_target=35),
        ChallengeTemplate("VELOCITY MASTER", "Reach {target} WPM today", base_target=45),
    ),
    "accuracy": (
        ChallengeTemplate("PRECISION STRIKE", "Achieve {target}% accuracy", base_target=95),
        ChallengeTemplate("FLAWLESS RUN", "Complete a lesson with {target}% accuracy", base_target=98),
        ChallengeTemplate("PERFECT AIM", "Type with {target}% accuracy", base_target=90),
    ),
    "endurance": (
        ChallengeTemplate("MARATHON TYPER", "Type {target} words without errors", base_target=50),
        ChallengeTemplate("WORD WARRIOR", "Complete {target} words perfectly", base_target=30),
        ChallengeTemplate("STAMINA TEST", "Maintain accuracy for {target} words", base_target=75),
    ),
    "keys": (
        ChallengeTemplate("KEY FOCUS", "Master the {keys} keys today", target_keys=("q", "w", "e", "r")),
        ChallengeTemplate("FINGER TRAINING", "Practice {keys} until perfect", target_keys=("a", "s", "d", "f")),
        ChallengeTemplate("PINKY POWER", "Focus on {keys} keys", target_keys=("p", ";", "z", "/")),
    ),
}


@dataclass(frozen=True)
class GeneratedChallenge:
    date_key: str
    challenge_type: str
    title: str
    description: str
    target_value: int
    rewards: RewardTable
    target_keys: tuple[str, ...] | None = field(default=None)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def date_seed(key: str) -> int:
    """Sum of the numeric components of a date key: '2026-10-19' -> 2055."""
    parse_date_key(key)
    return sum(int(part) for part in key.split("-"))


def challenge_for(day: date | str) -> GeneratedChallenge:
    """Build the challenge for a calendar day. Same day, same challenge."""
    key = day if isinstance(day, str) else date_key(day)
    seed = date_seed(key)
    day_of_month = int(key.split("-")[2])

    challenge_type = CHALLENGE_CATEGORIES[seed % len(CHALLENGE_CATEGORIES)]
    templates = CHALLENGE_TEMPLATES[challenge_type]
    template = templates[(seed * 7) % len(templates)]

    if template.target_keys is not None:
        # Key drills are scored on accuracy percentage.
        target_value = min(KEYS_MAX_ACCURACY, KEYS_BASE_ACCURACY + (day_of_month % 5) * 2)
        description = template.description.replace("{keys}", ", ".join(template.target_keys).upper())
    else:
        variation = 1 + (day_of_month % 5) * 0.1
        target_value = _round_half_up(template.base_target * variation)
        description = template.description.replace("{target}", str(target_value))

    base_reward = BASE_REWARD + seed % REWARD_SPREAD
    rewards = RewardTable(
        bronze=base_reward,
        silver=_round_half_up(base_reward * 1.5),
        gold=base_reward * 2,
        xp=_round_half_up(base_reward * 0.5),
    )

    return GeneratedChallenge(
        date_key=key,
        challenge_type=challenge_type,
        title=template.title,
        description=description,
        target_value=target_value,
        rewards=rewards,
        target_keys=template.target_keys,
    )
