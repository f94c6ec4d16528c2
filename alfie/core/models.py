"""
Alfie canonical domain models.

Scoping hierarchy:
- Tenant -> has many Brands
- Brand -> has many Orders, Jobs and one QuotaAccount
- Order -> groups the Jobs of one campaign for one user
"""

import uuid

from django.db import models

from .enums import OrderStatus


# =============================================================================
# ABSTRACT BASE CLASSES
# =============================================================================


class TimestampedModel(models.Model):
    """
    Abstract base class with created_at and updated_at timestamps.
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# =============================================================================
# TENANT
# =============================================================================


class Tenant(TimestampedModel):
    """
    Top-level tenant / organization.

    All brand-scoped data flows through Brand -> Tenant.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True)

    class Meta:
        db_table = "tenant"
        verbose_name = "Tenant"
        verbose_name_plural = "Tenants"

    def __str__(self):
        return self.name


# =============================================================================
# BRAND
# =============================================================================


class Brand(TimestampedModel):
    """
    Brand entity: the unit that owns media jobs and consumes quota.

    Scoped to Tenant via FK. The owner is the user allowed to spend the
    brand's quota; members of the same tenant share access.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="brands",
    )
    # String reference avoids the circular import with alfie.users
    owner = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        related_name="owned_brands",
        null=True,
        blank=True,
        help_text="User who owns this brand",
    )
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=100)
    metadata = models.JSONField(default=dict, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "brand"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "slug"],
                name="uniq_tenant_brand_slug",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "created_at"], name="idx_brand_tenant_created"),
        ]

    def __str__(self):
        return self.name

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def is_accessible_by(self, user) -> bool:
        """Owner or any member of the brand's tenant."""
        if user is None:
            return False
        if self.owner_id is not None and self.owner_id == user.id:
            return True
        return user.tenant_id is not None and user.tenant_id == self.tenant_id


# =============================================================================
# ORDER
# =============================================================================


class Order(TimestampedModel):
    """
    A generation order: groups the jobs requested for one campaign.

    Created implicitly by job admission when the caller does not pass one.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        "users.User",
        on_delete=models.CASCADE,
        related_name="orders",
    )
    brand = models.ForeignKey(
        Brand,
        on_delete=models.CASCADE,
        related_name="orders",
    )
    campaign_name = models.CharField(max_length=255)
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.IN_PROGRESS,
    )
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "alfie_order"
        indexes = [
            models.Index(fields=["user", "-created_at"], name="idx_order_user_created"),
        ]

    def __str__(self):
        return f"Order {self.campaign_name} ({self.id})"
