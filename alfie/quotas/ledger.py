"""
Quota Ledger: admission control against per-brand monthly counters.

Provides:
- reserve(): consume one counter, soft overage included
- reserve_for_job(): consume every counter a job needs, all-or-nothing
- status(): used / limit / remaining per counter plus an alert level
- credit(): top up credits (billing collaborators)
- refund_for_job(): return a canceled job's admission cost
- reset() / reset_due_accounts(): zero usage at the billing boundary

Admission rule:
    allowed  <=>  limit <= 0  or  used + amount <= limit * 1.10

Remaining quota is reported as max(0, limit - used), never negative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from alfie.core.enums import JobKind

from .stores import QuotaStore

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Soft overage tolerance, expressed as tenths so the check stays integral
SOFT_OVERAGE_TENTHS = 11

# counter name -> (limit field, used field)
COUNTERS = {
    "images": ("quota_images", "images_used"),
    "videos": ("quota_videos", "videos_used"),
    "credits": ("quota_credits", "credits_used"),
}

# Credit ("woof") cost of admitting one job of each kind
WOOF_COSTS = {
    JobKind.IMAGE: 1,
    JobKind.CAROUSEL: 10,
    JobKind.VIDEO: 25,
}

WARNING_PERCENT = 80
ERROR_PERCENT = 100

# A reservation racing with a limit change re-reads this many times
MAX_RESERVE_RETRIES = 3


class QuotaExceededError(Exception):
    """Admission would push a counter past its soft limit."""

    code = "quota_exceeded"

    def __init__(self, kind: str, limit: int, used: int, requested: int):
        self.kind = kind
        self.limit = limit
        self.used = used
        self.requested = requested
        self.remaining = max(0, limit - used)
        super().__init__(
            f"Quota exceeded for {kind}: {used}/{limit} used, "
            f"{requested} requested ({self.remaining} remaining this month)"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "limit": self.limit,
            "used": self.used,
            "requested": self.requested,
            "remaining": self.remaining,
        }


def is_admissible(limit: int, used: int, amount: int) -> bool:
    if limit <= 0:
        return True
    return (used + amount) * 10 <= limit * SOFT_OVERAGE_TENTHS


def max_used_before(limit: int, amount: int) -> int:
    """Highest current usage that still admits `amount`."""
    return (limit * SOFT_OVERAGE_TENTHS) // 10 - amount


def next_reset_date(today: date) -> date:
    """First day of the month after `today`."""
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


def admission_cost(kind: str, payload) -> dict[str, int]:
    """
    Counters consumed by admitting a job.

    image: one image per rendered image; carousel: one image per slide;
    video: one video. Each job also costs its flat woof price.
    """
    if kind == JobKind.VIDEO:
        return {"videos": 1, "credits": WOOF_COSTS[JobKind.VIDEO]}
    images = getattr(payload, "image_count", 1)
    if kind == JobKind.CAROUSEL:
        return {"images": images, "credits": WOOF_COSTS[JobKind.CAROUSEL]}
    return {"images": images, "credits": WOOF_COSTS[JobKind.IMAGE] * images}


@dataclass
class CounterStatus:
    used: int
    limit: int

    @property
    def unrestricted(self) -> bool:
        return self.limit <= 0

    @property
    def remaining(self) -> int | None:
        if self.unrestricted:
            return None
        return max(0, self.limit - self.used)

    @property
    def percentage(self) -> int:
        if self.unrestricted:
            return 0
        return round(self.used / self.limit * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "percentage": self.percentage,
        }


class QuotaLedger:
    """Admission checks and counter maintenance over a QuotaStore."""

    def __init__(self, store: QuotaStore):
        self.store = store

    def reserve(self, brand_id: UUID, kind: str, amount: int) -> None:
        """
        Consume `amount` of one counter ("images", "videos" or "credits").

        Raises:
            QuotaExceededError: used + amount would exceed limit * 1.10
        """
        if kind not in COUNTERS:
            raise ValueError(f"Unknown quota counter: {kind}")
        if amount <= 0:
            return

        limit_field, used_field = COUNTERS[kind]

        for _ in range(MAX_RESERVE_RETRIES):
            account = self.store.get_or_create(brand_id)
            limit = getattr(account, limit_field)
            used = getattr(account, used_field)

            if limit <= 0:
                self.store.increment(brand_id, used_field, amount)
                return

            if not is_admissible(limit, used, amount):
                logger.info(
                    "QUOTA_REJECTED brand_id=%s kind=%s used=%d limit=%d requested=%d",
                    brand_id,
                    kind,
                    used,
                    limit,
                    amount,
                )
                raise QuotaExceededError(kind, limit, used, amount)

            if self.store.increment_if_within(
                brand_id,
                used_field,
                limit_field,
                limit,
                max_used_before(limit, amount),
                amount,
            ):
                return
            # Lost a race against another reservation or a limit change

        account = self.store.get_or_create(brand_id)
        raise QuotaExceededError(
            kind,
            getattr(account, limit_field),
            getattr(account, used_field),
            amount,
        )

    def reserve_for_job(self, brand_id: UUID, kind: str, payload) -> dict[str, int]:
        """
        Reserve every counter a job needs; nothing is consumed if one fails.

        Returns the consumed amounts per counter.
        """
        costs = admission_cost(kind, payload)
        with transaction.atomic():
            for counter, amount in costs.items():
                self.reserve(brand_id, counter, amount)
        return costs

    def status(self, brand_id: UUID) -> dict[str, Any]:
        account = self.store.get_or_create(brand_id)
        counters = {
            name: CounterStatus(
                used=getattr(account, used_field),
                limit=getattr(account, limit_field),
            )
            for name, (limit_field, used_field) in COUNTERS.items()
        }

        alert = None
        peak = max(
            (c.percentage for c in counters.values() if not c.unrestricted),
            default=0,
        )
        if peak >= ERROR_PERCENT:
            alert = "error"
        elif peak >= WARNING_PERCENT:
            alert = "warning"

        return {
            "brandId": str(brand_id),
            "counters": {name: c.to_dict() for name, c in counters.items()},
            "resetsOn": account.resets_on.isoformat() if account.resets_on else None,
            "alert": alert,
        }

    def credit(self, brand_id: UUID, amount: int) -> bool:
        """
        Raise the credit limit (purchase or plan upgrade).

        An unrestricted account (limit <= 0) is left unrestricted; returns
        whether the limit moved.
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")
        self.store.get_or_create(brand_id)
        if not self.store.raise_limit_if_capped(brand_id, "quota_credits", amount):
            logger.info("Brand %s has unrestricted credits; top-up of %d not applied", brand_id, amount)
            return False
        logger.info("Credited %d woofs to brand %s", amount, brand_id)
        return True

    def refund_for_job(self, brand_id: UUID, kind: str, payload) -> dict[str, int]:
        """
        Give back what admitting a job consumed (job canceled before finishing).

        Counters never go below zero. Returns the refunded amounts per counter.
        """
        costs = admission_cost(kind, payload)
        with transaction.atomic():
            for counter, amount in costs.items():
                _, used_field = COUNTERS[counter]
                self.store.decrement(brand_id, used_field, amount)
        logger.info("QUOTA_REFUNDED brand_id=%s kind=%s costs=%s", brand_id, kind, costs)
        return costs

    def reset(self, brand_id: UUID, today: date | None = None) -> bool:
        """
        Zero usage and move resets_on to the next boundary.

        No-op (returns False) while resets_on is still in the future, so a
        periodic trigger may call this as often as it likes.
        """
        today = today or timezone.localdate()
        self.store.get_or_create(brand_id)
        was_reset = self.store.reset_if_due(brand_id, today, next_reset_date(today))
        if was_reset:
            logger.info("Reset quota counters for brand %s", brand_id)
        return was_reset

    def reset_due_accounts(self, today: date | None = None) -> int:
        today = today or timezone.localdate()
        reset_count = 0
        for brand_id in self.store.due_brand_ids(today):
            if self.reset(brand_id, today):
                reset_count += 1
        return reset_count
