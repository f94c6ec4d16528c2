"""
User model for Alfie authentication.

- User links to the identity provider via supabase_uid
- Users belong to Tenants for multi-tenancy
- Operators may read the queue monitor
"""

import uuid

from django.db import models

from alfie.core.models import Tenant, TimestampedModel


class User(TimestampedModel):
    """
    Alfie user account.

    Authentication itself happens at the identity provider; the
    supabase_uid is the stable identifier carried in its JWT `sub` claim.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    supabase_uid = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique identifier from the identity provider",
    )
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="users",
        null=True,
        blank=True,
    )

    display_name = models.CharField(max_length=255, blank=True)

    is_active = models.BooleanField(default=True)
    is_operator = models.BooleanField(
        default=False,
        help_text="May read queue diagnostics",
    )

    class Meta:
        db_table = "alfie_user"
        verbose_name = "User"
        verbose_name_plural = "Users"

    def __str__(self) -> str:
        return self.email
