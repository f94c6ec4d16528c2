"""
Provider catalog and per-context bandit statistics.

Providers are maintained by configuration (sync_providers); the
orchestrator only reads them. ProviderMetrics is written after every
generation outcome.
"""

from __future__ import annotations

from django.db import models

from alfie.core.models import TimestampedModel


class Provider(TimestampedModel):
    """
    A generation back-end with its capability and cost/quality profile.

    cost_json keys by modality:
    - image: base_per_image, hi_res_multiplier
    - video: base_per_chunk, chunk_seconds, quality_multipliers
    - audio: base_per_request
    """

    id = models.CharField(max_length=100, primary_key=True)
    name = models.CharField(max_length=255)
    modalities = models.JSONField(default=list)
    formats = models.JSONField(default=list)
    cost_json = models.JSONField(default=dict)
    quality_score = models.FloatField(default=0.8)
    avg_latency_s = models.FloatField(default=60.0)
    fail_rate = models.FloatField(default=0.03)
    enabled = models.BooleanField(default=True)

    class Meta:
        db_table = "alfie_provider"

    def __str__(self) -> str:
        return self.name or self.id

    def supports(self, modality: str, format: str) -> bool:
        return modality in (self.modalities or []) and format in (self.formats or [])


class ProviderMetrics(models.Model):
    """Bandit arm statistics for one (provider, use_case, format) context."""

    provider = models.ForeignKey(
        Provider,
        on_delete=models.CASCADE,
        related_name="metrics",
    )
    use_case = models.CharField(max_length=100)
    format = models.CharField(max_length=50)
    trials = models.PositiveIntegerField(default=0)
    avg_reward = models.FloatField(default=0.0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "alfie_provider_metrics"
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "use_case", "format"],
                name="uniq_provider_metrics_context",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.provider_id}/{self.use_case}/{self.format}: {self.trials} trials"
