"""
QuotaAccount: monthly consumption counters per brand.

A non-positive limit means unrestricted. Counters are only ever changed by
conditional F() updates (see alfie.quotas.stores).
"""

from __future__ import annotations

from django.db import models

from alfie.core.models import TimestampedModel


class QuotaAccount(TimestampedModel):
    """Per-brand usage ledger: images, videos and credits ("woofs")."""

    brand = models.OneToOneField(
        "core.Brand",
        on_delete=models.CASCADE,
        related_name="quota_account",
    )

    quota_images = models.IntegerField(default=0)
    images_used = models.IntegerField(default=0)
    quota_videos = models.IntegerField(default=0)
    videos_used = models.IntegerField(default=0)
    quota_credits = models.IntegerField(default=0)
    credits_used = models.IntegerField(default=0)

    # Next billing boundary; reset is a no-op before this date
    resets_on = models.DateField(null=True, blank=True)

    class Meta:
        db_table = "alfie_quota_account"
        indexes = [
            models.Index(fields=["resets_on"], name="idx_quota_resets_on"),
        ]

    def __str__(self) -> str:
        return f"QuotaAccount for {self.brand_id}"
