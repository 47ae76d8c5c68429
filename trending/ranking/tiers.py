from enum import Enum
from typing import Optional, Tuple

# Zero-based rank boundaries: HIGH [0, 20), MEDIUM [20, 100), LOW [100, inf)
HIGH_TIER_SIZE = 20
MEDIUM_TIER_END = 100


class Tier(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


def classify(position: int) -> Tier:
    """Maps a zero-based rank position to its update-frequency tier."""
    if position < 0:
        raise ValueError(f"rank position must be >= 0, got {position}")
    if position < HIGH_TIER_SIZE:
        return Tier.HIGH
    if position < MEDIUM_TIER_END:
        return Tier.MEDIUM
    return Tier.LOW


def tier_window(tier: Tier) -> Tuple[int, Optional[int]]:
    """Rank window [start, end) covered by a tier. LOW is open-ended (end=None)."""
    if tier is Tier.HIGH:
        return 0, HIGH_TIER_SIZE
    if tier is Tier.MEDIUM:
        return HIGH_TIER_SIZE, MEDIUM_TIER_END
    return MEDIUM_TIER_END, None
