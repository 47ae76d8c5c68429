from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from trending.ranking.scoring import RiskLevel, ScoringEngine
from trending.ranking.tiers import Tier, classify

__all__ = [
    "Tier", "RiskLevel", "OnChainMetrics", "SocialSignals",
    "TokenScoreRecord", "RankedEntry", "RankedSnapshot",
]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class OnChainMetrics:
    activity: float
    liquidity: float
    distribution: float
    momentum: float  # [-100, 100]
    risk: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "activity": self.activity,
            "liquidity": self.liquidity,
            "distribution": self.distribution,
            "momentum": self.momentum,
            "risk": self.risk,
        }


@dataclass(frozen=True)
class SocialSignals:
    sentiment_score: float  # [-1, 1]
    trending_score: float
    mention_count: int
    avg_engagement: float
    confidence: float  # [0, 1]
    risk_level: Optional[str] = RiskLevel.MEDIUM.value
    sentiment: str = "neutral"
    recommendation: str = "hold"
    reasoning: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SocialSignals":
        return cls(
            sentiment_score=float(data.get("sentimentScore", 0) or 0),
            trending_score=float(data.get("trendingScore", 0) or 0),
            mention_count=int(data.get("mentionCount", 0) or 0),
            avg_engagement=float(data.get("avgEngagement", 0) or 0),
            confidence=float(data.get("confidence", 0) or 0),
            risk_level=data.get("riskLevel", RiskLevel.MEDIUM.value),
            sentiment=data.get("sentiment", "neutral"),
            recommendation=data.get("recommendation", "hold"),
            reasoning=data.get("reasoning", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment,
            "sentimentScore": self.sentiment_score,
            "trendingScore": self.trending_score,
            "mentionCount": self.mention_count,
            "avgEngagement": self.avg_engagement,
            "confidence": self.confidence,
            "riskLevel": self.risk_level,
            "recommendation": self.recommendation,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class TokenScoreRecord:
    """
    One tracked token in the Score Store.

    final_score is derived from the sub-scores on every access, so it can never
    drift from its inputs. tier is attached from the current ranked order and is
    not persisted.
    """
    address: str
    name: str
    symbol: str
    onchain_score: float
    last_updated: datetime
    social_score: Optional[float] = None
    social_last_updated: Optional[datetime] = None
    onchain_metrics: Optional[OnChainMetrics] = None
    social_analysis: Optional[Dict[str, Any]] = None
    tier: Optional[Tier] = None

    @property
    def final_score(self) -> float:
        return ScoringEngine.final_score(self.onchain_score, self.social_score)

    @property
    def ticker(self) -> str:
        return self.symbol or self.name or ""

    def with_onchain(self, metrics: OnChainMetrics, now: datetime) -> "TokenScoreRecord":
        return replace(
            self,
            onchain_score=ScoringEngine.onchain_score(metrics),
            onchain_metrics=metrics,
            last_updated=now,
        )

    def with_social(self, social_score: float, analysis: Optional[Dict[str, Any]],
                    now: datetime) -> "TokenScoreRecord":
        return replace(
            self,
            social_score=social_score,
            social_analysis=analysis,
            social_last_updated=now,
        )

    def with_tier(self, tier: Optional[Tier]) -> "TokenScoreRecord":
        return replace(self, tier=tier)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "onChainScore": self.onchain_score,
            "socialScore": self.social_score,
            "finalScore": self.final_score,
            "lastUpdated": _iso(self.last_updated),
            "socialLastUpdated": _iso(self.social_last_updated),
            "onChainMetrics": self.onchain_metrics.to_dict() if self.onchain_metrics else None,
            "socialAnalysis": self.social_analysis,
        }
        if self.tier is not None:
            data["tier"] = self.tier.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenScoreRecord":
        # finalScore and tier are derived; whatever was stored is ignored
        metrics = data.get("onChainMetrics")
        social = data.get("socialScore")
        return cls(
            address=data["address"],
            name=data.get("name") or "",
            symbol=data.get("symbol") or "",
            onchain_score=float(data.get("onChainScore") or 0),
            last_updated=_parse_dt(data.get("lastUpdated")),
            social_score=float(social) if social is not None else None,
            social_last_updated=_parse_dt(data.get("socialLastUpdated")),
            onchain_metrics=OnChainMetrics(**metrics) if metrics else None,
            social_analysis=data.get("socialAnalysis"),
        )


@dataclass(frozen=True)
class RankedEntry:
    address: str
    final_score: float


@dataclass(frozen=True)
class RankedSnapshot:
    """Immutable full ranked order, descending by score, ties by address."""
    entries: Tuple[RankedEntry, ...]
    built_at: Optional[datetime]
    _positions: Dict[str, int] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        self._positions.update({e.address: i for i, e in enumerate(self.entries)})

    @classmethod
    def build(cls, records: Iterable[TokenScoreRecord], built_at: datetime) -> "RankedSnapshot":
        ordered = sorted(records, key=lambda r: (-r.final_score, r.address))
        return cls(tuple(RankedEntry(r.address, r.final_score) for r in ordered), built_at)

    @classmethod
    def empty(cls) -> "RankedSnapshot":
        return cls((), None)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def addresses(self) -> List[str]:
        return [e.address for e in self.entries]

    def position_of(self, address: str) -> Optional[int]:
        return self._positions.get(address)

    def tier_of(self, position: int) -> Tier:
        return classify(position)

    def tier_for(self, address: str) -> Optional[Tier]:
        position = self.position_of(address)
        return classify(position) if position is not None else None

    def window(self, start: int, end: Optional[int] = None) -> List[Tuple[int, RankedEntry]]:
        """(position, entry) pairs for ranks [start, end)."""
        stop = len(self.entries) if end is None else min(end, len(self.entries))
        start = max(start, 0)
        return [(i, self.entries[i]) for i in range(start, stop)]

    def top(self, limit: int) -> List[RankedEntry]:
        return list(self.entries[:max(limit, 0)])

