"""
Due-set selection: which tracked tokens need a refresh right now.

Tiers are read from the snapshot position on every call, so a token promoted by the
latest re-rank is judged by its new tier immediately.
"""
from datetime import datetime, timedelta
from typing import Collection, Dict, List, Mapping, Optional

from trending.models import RankedSnapshot, Tier, TokenScoreRecord
from trending.ranking.tiers import tier_window


def _is_stale(last: Optional[datetime], now: datetime, interval: timedelta) -> bool:
    return last is None or now - last >= interval


def select_onchain_due(
    snapshot: RankedSnapshot,
    records: Mapping[str, TokenScoreRecord],
    now: datetime,
    intervals: Dict[Tier, timedelta],
) -> List[TokenScoreRecord]:
    due = []
    for position, entry in snapshot.window(0):
        record = records.get(entry.address)
        if record is None:
            continue
        tier = snapshot.tier_of(position)
        if _is_stale(record.last_updated, now, intervals[tier]):
            due.append(record.with_tier(tier))
    return due


def select_social_due(
    snapshot: RankedSnapshot,
    records: Mapping[str, TokenScoreRecord],
    now: datetime,
    tier: Tier,
    intervals: Dict[Tier, timedelta],
    eligible_tiers: Collection[Tier] = (Tier.HIGH,),
    end: Optional[int] = None,
) -> List[TokenScoreRecord]:
    """Social due-set for one tier. `end` optionally caps the tier window (bootstrap catch-up)."""
    if tier not in eligible_tiers:
        return []
    start, tier_end = tier_window(tier)
    if end is not None:
        tier_end = end if tier_end is None else min(end, tier_end)
    due = []
    for _, entry in snapshot.window(start, tier_end):
        record = records.get(entry.address)
        if record is None:
            continue
        if _is_stale(record.social_last_updated, now, intervals[tier]):
            due.append(record.with_tier(tier))
    return due


def select_window(
    snapshot: RankedSnapshot,
    records: Mapping[str, TokenScoreRecord],
    start: int,
    end: Optional[int] = None,
) -> List[TokenScoreRecord]:
    """Every record in ranks [start, end), regardless of staleness."""
    selected = []
    for position, entry in snapshot.window(start, end):
        record = records.get(entry.address)
        if record is not None:
            selected.append(record.with_tier(snapshot.tier_of(position)))
    return selected
