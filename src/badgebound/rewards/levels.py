"""Level computation.

Levels are flat: every `xp_per_level` XP is one level, starting at level 1.
"""

from __future__ import annotations

DEFAULT_XP_PER_LEVEL = 1000


def compute_level(xp: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    """level = floor(xp / xp_per_level) + 1. Negative XP is treated as zero."""
    return max(int(xp), 0) // xp_per_level + 1
