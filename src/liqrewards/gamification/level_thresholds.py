"""Level thresholds and computation.

Account levels and guild levels use separate tables. Both are cumulative XP
thresholds: level = number of thresholds <= xp, and never below 1.
"""

from __future__ import annotations

from bisect import bisect_right

LEVEL_THRESHOLDS: tuple[int, ...] = (0, 100, 250, 500, 1000, 2000, 3500, 5500, 8000, 11000, 15000)

GUILD_LEVEL_THRESHOLDS: tuple[int, ...] = (0, 1000, 5000, 15000, 40000, 100000, 250000, 500000, 1000000)

MAX_LEVEL = len(LEVEL_THRESHOLDS)


def level(xp: int) -> int:
    """Level for a cumulative XP total. Negative XP is treated as zero."""
    return max(1, bisect_right(LEVEL_THRESHOLDS, max(xp, 0)))


def target_xp(lvl: int) -> int:
    """Cumulative XP needed to leave ``lvl``.

    Past the end of the table the last threshold is returned.
    """
    if lvl < 1:
        lvl = 1
    if lvl >= len(LEVEL_THRESHOLDS):
        return LEVEL_THRESHOLDS[-1]
    return LEVEL_THRESHOLDS[lvl]


def level_progress(xp: int) -> dict:
    """Level info used by the stats endpoints."""
    current = level(xp)
    floor = LEVEL_THRESHOLDS[current - 1]
    ceiling = target_xp(current)
    xp_for_level = ceiling - floor
    # At max level, avoid division by zero
    if xp_for_level <= 0:
        xp_for_level = 1

    return {
        "level": current,
        "xp_into_level": xp - floor,
        "xp_for_level": xp_for_level,
        "target_xp": ceiling,
        "is_max_level": current >= MAX_LEVEL,
    }


def guild_level(total_xp: int) -> int:
    """Guild level derived from aggregate guild XP."""
    return max(1, bisect_right(GUILD_LEVEL_THRESHOLDS, max(total_xp, 0)))
