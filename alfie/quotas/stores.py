"""
QuotaStore interface and its Django ORM backing.

Consumption is one conditional UPDATE per counter: the row is only touched
if the limit still has the value the caller read and the usage is still
low enough to absorb the increment.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from django.db.models import F, Q
from django.db.models.functions import Greatest

if TYPE_CHECKING:
    from alfie.quotas.models import QuotaAccount


class QuotaStore(Protocol):
    def get_or_create(self, brand_id: UUID) -> "QuotaAccount": ...
    def increment_if_within(
        self,
        brand_id: UUID,
        used_field: str,
        limit_field: str,
        limit: int,
        max_used_before: int,
        amount: int,
    ) -> bool: ...
    def increment(self, brand_id: UUID, field: str, amount: int) -> int: ...
    def raise_limit_if_capped(self, brand_id: UUID, limit_field: str, amount: int) -> bool: ...
    def decrement(self, brand_id: UUID, field: str, amount: int) -> int: ...
    def reset_if_due(self, brand_id: UUID, today: date, next_reset: date) -> bool: ...
    def due_brand_ids(self, today: date) -> list[UUID]: ...


class DjangoQuotaStore:
    def get_or_create(self, brand_id):
        from alfie.quotas.models import QuotaAccount

        account, _ = QuotaAccount.objects.get_or_create(brand_id=brand_id)
        return account

    def increment_if_within(self, brand_id, used_field, limit_field, limit, max_used_before, amount):
        from alfie.quotas.models import QuotaAccount

        return QuotaAccount.objects.filter(
            brand_id=brand_id,
            **{limit_field: limit, f"{used_field}__lte": max_used_before},
        ).update(**{used_field: F(used_field) + amount}) == 1

    def increment(self, brand_id, field, amount):
        from alfie.quotas.models import QuotaAccount

        return QuotaAccount.objects.filter(brand_id=brand_id).update(
            **{field: F(field) + amount}
        )

    def raise_limit_if_capped(self, brand_id, limit_field, amount):
        """Add to a limit; an unrestricted (<= 0) limit stays unrestricted."""
        from alfie.quotas.models import QuotaAccount

        return QuotaAccount.objects.filter(
            brand_id=brand_id,
            **{f"{limit_field}__gt": 0},
        ).update(**{limit_field: F(limit_field) + amount}) == 1

    def decrement(self, brand_id, field, amount):
        """Give usage back, floored at zero (a reset may have happened since)."""
        from alfie.quotas.models import QuotaAccount

        return QuotaAccount.objects.filter(brand_id=brand_id).update(
            **{field: Greatest(F(field) - amount, 0)}
        )

    def reset_if_due(self, brand_id, today, next_reset):
        from alfie.quotas.models import QuotaAccount

        return QuotaAccount.objects.filter(
            Q(resets_on__isnull=True) | Q(resets_on__lte=today),
            brand_id=brand_id,
        ).update(
            images_used=0,
            videos_used=0,
            credits_used=0,
            resets_on=next_reset,
        ) == 1

    def due_brand_ids(self, today):
        from alfie.quotas.models import QuotaAccount

        return list(
            QuotaAccount.objects.filter(
                Q(resets_on__isnull=True) | Q(resets_on__lte=today)
            ).values_list("brand_id", flat=True)
        )
