"""
Provider API views.

- POST /api/providers/select - pick a generation back-end for a request

Request body:
    {
        "brief": {"use_case": "ads", "style": "cinematic"},
        "modality": "video",
        "format": "1080x1920",
        "durationSeconds": 15,
        "quality": "standard",
        "budgetUnits": 20
    }

Response (200, both decisions):
    {"decision": "OK", "providerId": ..., "params": {...}, "costUnits": ...,
     "etaSeconds": ..., "qualityScore": ...}
    {"decision": "KO", "reason": "INSUFFICIENT_BUDGET", "minCost": 25,
     "suggestions": [...]}
"""

from __future__ import annotations

import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from pydantic import ValidationError

from alfie.middleware.supabase_auth import require_auth
from alfie.providers.selection import ProviderSelector, SelectionRequest
from alfie.providers.stores import DjangoProviderMetricsStore, DjangoProviderStore

logger = logging.getLogger(__name__)


@csrf_exempt
@require_http_methods(["POST"])
@require_auth
def select_provider(request) -> JsonResponse:
    try:
        body = json.loads(request.body or b"{}")
    except json.JSONDecodeError:
        return JsonResponse({"error": "invalid_json", "message": "Invalid JSON body"}, status=400)

    try:
        selection_request = SelectionRequest.model_validate(body)
    except ValidationError as e:
        return JsonResponse(
            {
                "error": "invalid_request",
                "message": "Invalid provider selection request",
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ],
            },
            status=400,
        )

    selector = ProviderSelector(DjangoProviderStore(), DjangoProviderMetricsStore())
    decision = selector.select(selection_request)
    return JsonResponse(decision.to_dict())
