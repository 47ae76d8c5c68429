import math
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from trending.models import OnChainMetrics, SocialSignals


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"

    @classmethod
    def parse(cls, value) -> Optional["RiskLevel"]:
        """Returns the matching level, or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


RISK_PENALTY: Dict[RiskLevel, float] = {
    RiskLevel.LOW: 1.0,
    RiskLevel.MEDIUM: 0.8,
    RiskLevel.HIGH: 0.5,
    RiskLevel.EXTREME: 0.2,
}
DEFAULT_RISK_PENALTY = 0.8

# Fusion weights once a social score exists
ONCHAIN_WEIGHT = 0.6
SOCIAL_WEIGHT = 0.4


def round_half_up(value: float) -> int:
    # round() is banker's rounding; scores round x.5 upwards
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


class ScoringEngine:
    """
    Score fusion for the trending ranking.

    On-chain (0-100):
      30% activity + 20% liquidity + 10% distribution
      + 30% momentum (mapped from [-100, 100] onto [0, 100])
      + 10% inverted risk

    Social (0-100), scaled by a risk penalty:
      30% trending + 25% sentiment + 20% mentions + 15% engagement + 10% confidence

    Final:
      on-chain only until a social score exists, then 60% on-chain + 40% social.
    """

    @staticmethod
    def onchain_score(metrics: "OnChainMetrics") -> float:
        # Upstream owns the metric ranges; out-of-range values are absorbed by the clamp
        momentum_component = 50 + metrics.momentum / 2
        score = (
            metrics.activity * 0.3
            + metrics.liquidity * 0.2
            + metrics.distribution * 0.1
            + momentum_component * 0.3
            + (100 - metrics.risk) * 0.1
        )
        return round(clamp(score), 2)

    @staticmethod
    def risk_penalty(risk_level) -> float:
        level = RiskLevel.parse(risk_level)
        if level is None:
            return DEFAULT_RISK_PENALTY
        return RISK_PENALTY[level]

    @staticmethod
    def social_score(signals: "SocialSignals") -> int:
        sentiment_component = (signals.sentiment_score + 1) * 50
        mention_component = min(signals.mention_count, 100)
        engagement_component = min(signals.avg_engagement / 10, 100)
        confidence_component = signals.confidence * 100

        base = (
            signals.trending_score * 0.3
            + sentiment_component * 0.25
            + mention_component * 0.2
            + engagement_component * 0.15
            + confidence_component * 0.1
        )
        penalised = base * ScoringEngine.risk_penalty(signals.risk_level)
        return int(clamp(round_half_up(penalised)))

    @staticmethod
    def final_score(onchain_score: float, social_score: Optional[float]) -> float:
        if social_score is None:
            return onchain_score
        return float(round_half_up(onchain_score * ONCHAIN_WEIGHT + social_score * SOCIAL_WEIGHT))
