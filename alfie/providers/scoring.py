"""
Provider scoring policy: weighted heuristic plus a UCB exploration term.

    heuristic = wQ*quality - wC*normalized_cost + wL*latency_score + wS*success_score
    score     = heuristic + avg_reward + bonus

    bonus = c * sqrt(ln(total_trials + 1) / trials)   if trials > 0
          = c * 2                                      otherwise (cold start)

The selector only depends on the ScoringPolicy protocol, so the ranking
strategy can be swapped without touching admission or the worker.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol

from alfie.core.enums import QualityTier


@dataclass(frozen=True)
class Weights:
    quality: float
    cost: float
    latency: float
    success: float


DEFAULT_WEIGHTS = {
    QualityTier.STANDARD: Weights(quality=0.3, cost=0.3, latency=0.2, success=0.2),
    QualityTier.PREMIUM: Weights(quality=0.5, cost=0.1, latency=0.2, success=0.2),
    QualityTier.DRAFT: Weights(quality=0.1, cost=0.4, latency=0.4, success=0.1),
}

EXPLORATION_CONSTANT = 1.5
COLD_START_FACTOR = 2.0

LATENCY_CEILING_S = 200.0
NORMALIZED_COST_CAP = 2.0


@dataclass
class ScoredCandidate:
    """A provider with everything the policy needs, plus the result."""

    provider_id: str
    cost: int
    quality_score: float
    avg_latency_s: float
    fail_rate: float
    trials: int = 0
    avg_reward: float = 0.0
    heuristic: float = 0.0
    bonus: float = 0.0

    @property
    def score(self) -> float:
        return self.heuristic + self.avg_reward + self.bonus


class ScoringPolicy(Protocol):
    def score(
        self,
        candidate: ScoredCandidate,
        *,
        quality: str,
        budget: int,
        total_trials: int,
    ) -> float: ...


@dataclass
class UCBScoringPolicy:
    weights: dict = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    exploration_constant: float = EXPLORATION_CONSTANT
    cold_start_factor: float = COLD_START_FACTOR

    def weights_for(self, quality: str) -> Weights:
        return self.weights.get(quality, self.weights[QualityTier.STANDARD])

    def heuristic(self, candidate: ScoredCandidate, quality: str, budget: int) -> float:
        w = self.weights_for(quality)
        latency_score = 1 - min(candidate.avg_latency_s / LATENCY_CEILING_S, 1.0)
        success_score = 1 - candidate.fail_rate
        normalized_cost = min(candidate.cost / budget, NORMALIZED_COST_CAP) if budget > 0 else NORMALIZED_COST_CAP
        return (
            w.quality * candidate.quality_score
            - w.cost * normalized_cost
            + w.latency * latency_score
            + w.success * success_score
        )

    def exploration_bonus(self, trials: int, total_trials: int) -> float:
        if trials <= 0:
            return self.exploration_constant * self.cold_start_factor
        return self.exploration_constant * math.sqrt(math.log(total_trials + 1) / trials)

    def score(self, candidate, *, quality, budget, total_trials):
        """Fill in heuristic and bonus on the candidate and return its score."""
        candidate.heuristic = self.heuristic(candidate, quality, budget)
        candidate.bonus = self.exploration_bonus(candidate.trials, total_trials)
        return candidate.score
