"""
Quota API views.

- GET /api/brands/:id/quota - counters, remaining, alert level (read-path)
"""

from __future__ import annotations

import logging
from uuid import UUID

from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from alfie.middleware.supabase_auth import get_current_user, require_auth
from alfie.quotas.ledger import QuotaLedger
from alfie.quotas.stores import DjangoQuotaStore

logger = logging.getLogger(__name__)


@require_http_methods(["GET"])
@require_auth
def quota_status(request, brand_id: str) -> JsonResponse:
    from alfie.core.models import Brand

    try:
        parsed_brand_id = UUID(brand_id)
    except (ValueError, TypeError):
        return JsonResponse({"error": "invalid_brand", "message": "Invalid brand id"}, status=400)

    brand = Brand.objects.filter(id=parsed_brand_id, deleted_at__isnull=True).first()
    if brand is None or not brand.is_accessible_by(get_current_user(request)):
        return JsonResponse({"error": "brand_not_found", "message": "Brand not found"}, status=404)

    return JsonResponse(QuotaLedger(DjangoQuotaStore()).status(brand.id))
