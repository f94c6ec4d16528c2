"""
Provider catalog and bandit metrics stores.

record() is a single UPDATE computing the new running mean from the row's
own columns, so concurrent workers never lose an outcome.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from django.db import IntegrityError, transaction
from django.db.models import F, Sum

if TYPE_CHECKING:
    from alfie.providers.models import Provider, ProviderMetrics


class ProviderStore(Protocol):
    def enabled_for(self, modality: str, format: str) -> list["Provider"]: ...


class ProviderMetricsStore(Protocol):
    def get_many(self, provider_ids: list[str], use_case: str, format: str) -> dict[str, "ProviderMetrics"]: ...
    def total_trials(self) -> int: ...
    def record(self, provider_id: str, use_case: str, format: str, reward: float) -> None: ...


class DjangoProviderStore:
    def enabled_for(self, modality, format):
        from alfie.providers.models import Provider

        # JSON containment is not portable to SQLite; filter capabilities here
        return [
            provider
            for provider in Provider.objects.filter(enabled=True).order_by("id")
            if provider.supports(modality, format)
        ]


class DjangoProviderMetricsStore:
    def get_many(self, provider_ids, use_case, format):
        from alfie.providers.models import ProviderMetrics

        rows = ProviderMetrics.objects.filter(
            provider_id__in=provider_ids,
            use_case=use_case,
            format=format,
        )
        return {row.provider_id: row for row in rows}

    def total_trials(self):
        from alfie.providers.models import ProviderMetrics

        return ProviderMetrics.objects.aggregate(total=Sum("trials"))["total"] or 0

    def record(self, provider_id, use_case, format, reward):
        from alfie.providers.models import ProviderMetrics

        context = {"provider_id": provider_id, "use_case": use_case, "format": format}
        running_mean = {
            "avg_reward": (F("avg_reward") * F("trials") + reward) / (F("trials") + 1),
            "trials": F("trials") + 1,
        }

        if ProviderMetrics.objects.filter(**context).update(**running_mean):
            return
        try:
            with transaction.atomic():
                ProviderMetrics.objects.create(**context, trials=1, avg_reward=reward)
        except IntegrityError:
            # Another worker created the row first
            ProviderMetrics.objects.filter(**context).update(**running_mean)
