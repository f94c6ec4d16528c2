"""
Provider selection: pick the best affordable back-end for a generation.

1. Filter enabled providers by modality + format capability
2. Estimate each candidate's cost from its cost model
3. Score with the injected policy (heuristic + UCB exploration)
4. Drop candidates over budget
5. Nothing left -> KO with ordered, actionable suggestions
6. Otherwise -> OK with the best candidate, its cost and expected latency

A KO is a normal decision, not an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from alfie.core.enums import Modality, QualityTier

from .costs import estimate_cost, is_hi_res
from .scoring import ScoredCandidate, ScoringPolicy, UCBScoringPolicy
from .stores import ProviderMetricsStore, ProviderStore

logger = logging.getLogger(__name__)

NO_PROVIDERS_AVAILABLE = "NO_PROVIDERS_AVAILABLE"
INSUFFICIENT_BUDGET = "INSUFFICIENT_BUDGET"

DEFAULT_USE_CASE = "general"
DEFAULT_DURATION_S = 10

# Lower tier to suggest for each tier
LOWER_QUALITY = {
    QualityTier.PREMIUM: QualityTier.STANDARD,
    QualityTier.STANDARD: QualityTier.DRAFT,
}


class Brief(BaseModel):
    model_config = ConfigDict(extra="ignore")

    use_case: str = DEFAULT_USE_CASE
    style: str | None = None


class SelectionRequest(BaseModel):
    """Provider selection input; accepts camelCase or snake_case names."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    brief: Brief = Field(default_factory=Brief)
    modality: Modality
    format: str = Field(min_length=1)
    duration_s: int = Field(default=DEFAULT_DURATION_S, ge=1, alias="durationSeconds")
    quality: QualityTier = QualityTier.STANDARD
    budget: int = Field(gt=0, alias="budgetUnits")


@dataclass
class SelectionDecision:
    decision: str
    provider_id: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    cost: int | None = None
    eta_s: float | None = None
    quality_score: float | None = None
    reason: str | None = None
    min_cost: int | None = None
    suggestions: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.decision == "OK"

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {
                "decision": "OK",
                "providerId": self.provider_id,
                "params": self.params,
                "costUnits": self.cost,
                "etaSeconds": self.eta_s,
                "qualityScore": self.quality_score,
            }
        body: dict[str, Any] = {
            "decision": "KO",
            "reason": self.reason,
            "suggestions": self.suggestions,
        }
        if self.min_cost is not None:
            body["minCost"] = self.min_cost
        return body


class ProviderSelector:
    """Ranks providers through a ScoringPolicy and closes the bandit loop."""

    def __init__(
        self,
        providers: ProviderStore,
        metrics: ProviderMetricsStore,
        policy: ScoringPolicy | None = None,
    ):
        self.providers = providers
        self.metrics = metrics
        self.policy = policy or UCBScoringPolicy()

    def select(self, request: SelectionRequest) -> SelectionDecision:
        providers = self.providers.enabled_for(request.modality, request.format)
        if not providers:
            return SelectionDecision(
                decision="KO",
                reason=NO_PROVIDERS_AVAILABLE,
                suggestions=[
                    f"No enabled provider supports {request.modality.value} in {request.format}; "
                    "try a different format",
                ],
            )

        use_case = request.brief.use_case
        metrics = self.metrics.get_many([p.id for p in providers], use_case, request.format)
        total_trials = self.metrics.total_trials()

        candidates = []
        for provider in providers:
            arm = metrics.get(provider.id)
            candidate = ScoredCandidate(
                provider_id=provider.id,
                cost=estimate_cost(
                    provider.cost_json,
                    request.modality,
                    request.format,
                    request.duration_s,
                    request.quality,
                ),
                quality_score=provider.quality_score,
                avg_latency_s=provider.avg_latency_s,
                fail_rate=provider.fail_rate,
                trials=arm.trials if arm else 0,
                avg_reward=arm.avg_reward if arm else 0.0,
            )
            self.policy.score(
                candidate,
                quality=request.quality,
                budget=request.budget,
                total_trials=total_trials,
            )
            candidates.append(candidate)

        affordable = [c for c in candidates if c.cost <= request.budget]
        if not affordable:
            min_cost = min(c.cost for c in candidates)
            return SelectionDecision(
                decision="KO",
                reason=INSUFFICIENT_BUDGET,
                min_cost=min_cost,
                suggestions=self._suggestions(request, providers, min_cost),
            )

        # Stable tie-break on provider id
        best = max(affordable, key=lambda c: (c.score, c.provider_id))
        logger.info(
            "PROVIDER_SELECTED provider=%s modality=%s format=%s cost=%d budget=%d "
            "score=%.3f trials=%d",
            best.provider_id,
            request.modality,
            request.format,
            best.cost,
            request.budget,
            best.score,
            best.trials,
        )
        return SelectionDecision(
            decision="OK",
            provider_id=best.provider_id,
            params={
                "duration": request.duration_s,
                "resolution": request.format,
                "style": request.brief.style or "standard",
            },
            cost=best.cost,
            eta_s=best.avg_latency_s,
            quality_score=best.quality_score,
        )

    def _cheapest(self, providers, request: SelectionRequest, **overrides) -> int:
        duration_s = overrides.get("duration_s", request.duration_s)
        quality = overrides.get("quality", request.quality)
        format = overrides.get("format", request.format)
        return min(
            estimate_cost(p.cost_json, request.modality, format, duration_s, quality)
            for p in providers
        )

    def _suggestions(self, request: SelectionRequest, providers, min_cost: int) -> list[str]:
        """Ordered: duration, quality tier, resolution, then budget."""
        suggestions = []

        if request.modality == Modality.VIDEO and request.duration_s > 1:
            # Longest duration (whole seconds) that fits the budget
            fitting = None
            for duration_s in range(request.duration_s - 1, 0, -1):
                if self._cheapest(providers, request, duration_s=duration_s) <= request.budget:
                    fitting = duration_s
                    break
            if fitting is not None:
                suggestions.append(
                    f"Reduce duration to {fitting}s or less to fit the budget of "
                    f"{request.budget} credits"
                )
            else:
                suggestions.append("Reduce duration: even the shortest clip exceeds the budget")

        lower = LOWER_QUALITY.get(request.quality)
        while lower is not None:
            cost = self._cheapest(providers, request, quality=lower)
            if cost <= request.budget:
                suggestions.append(f"Lower the quality tier to '{lower.value}' ({cost} credits)")
                break
            lower = LOWER_QUALITY.get(lower)

        if is_hi_res(request.format):
            suggestions.append(f"Use a lower resolution than {request.format}")

        gap = min_cost - request.budget
        suggestions.append(
            f"Increase the budget by at least {gap} credits (cheapest option costs {min_cost})"
        )
        return suggestions

    def record_outcome(self, provider_id: str, use_case: str, format: str, success: bool) -> None:
        """Feed one generation outcome back into the bandit statistics."""
        reward = 1.0 if success else 0.0
        self.metrics.record(provider_id, use_case, format, reward)
        logger.debug(
            "Recorded outcome provider=%s use_case=%s format=%s reward=%.1f",
            provider_id,
            use_case,
            format,
            reward,
        )

