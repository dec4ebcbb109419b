"""Level computation: one level per fixed XP step.

Must match the client's level bar: level 1 at 0 XP, +1 every 100 XP.
"""

from __future__ import annotations

XP_PER_LEVEL = 100


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP."""
    total_xp = max(total_xp, 0)
    return {
        "level": 1 + total_xp // XP_PER_LEVEL,
        "xp_into_level": total_xp % XP_PER_LEVEL,
        "xp_for_level": XP_PER_LEVEL,
        "next_level": 2 + total_xp // XP_PER_LEVEL,
    }
