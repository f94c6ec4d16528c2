"""
Job API views.

- POST /api/jobs/enqueue - admit an image / carousel / video job
- POST /api/jobs/unblock - reset the caller's jobs to queued
- POST /api/jobs/:id/cancel - cancel one of the caller's jobs
- GET /api/jobs/:id/progress - progress snapshot (steps, percent, events)
- POST /api/jobs/:id/steps/:step_id/retry - retry one pipeline step
- GET /api/jobs/monitor - queue diagnostics (operators only)

Every operation is scoped to the authenticated caller; another user's job
answers 404 exactly like a missing one.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import UUID

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from alfie.jobs.exceptions import (
    JobNotFoundError,
    JobQueueError,
    PayloadValidationError,
    StepTransitionError,
)
from alfie.jobs.idempotency import extract_brand_id, extract_order_id
from alfie.jobs.services import build_orchestrator
from alfie.middleware.supabase_auth import get_current_user, require_auth
from alfie.quotas.ledger import QuotaExceededError

logger = logging.getLogger(__name__)


def _error(code: str, message: str, status: int, **extra: Any) -> JsonResponse:
    return JsonResponse({"error": code, "message": message, **extra}, status=status)


def _parse_body(request) -> dict | None:
    try:
        body = json.loads(request.body or b"{}")
    except json.JSONDecodeError:
        return None
    return body if isinstance(body, dict) else None


def _parse_uuid(value: Any) -> UUID | None:
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        return None


@csrf_exempt
@require_http_methods(["POST"])
@require_auth
def enqueue(request) -> JsonResponse:
    """
    Admit a generation job.

    Request body:
        {"tenantId": "<brand uuid>", "kind": "image|carousel|video",
         "payload": {...}, "orderId": "<uuid>"?}

    Returns 201 for a new job, 200 when an identical request already
    created one (same jobId).
    """
    from alfie.core.models import Brand

    user = get_current_user(request)
    body = _parse_body(request)
    if body is None:
        return _error("invalid_json", "Invalid JSON body", 400)

    payload = body.get("payload")
    raw_brand_id = body.get("tenantId") or body.get("brandId") or extract_brand_id(payload)
    if not raw_brand_id:
        return _error("missing_tenant", "tenantId is required", 400)

    brand_id = _parse_uuid(raw_brand_id)
    if brand_id is None:
        return _error("missing_tenant", f"Invalid tenantId: {raw_brand_id}", 400)

    brand = Brand.objects.filter(id=brand_id, deleted_at__isnull=True).first()
    if brand is None or not brand.is_accessible_by(user):
        return _error("unauthorized", "Brand not accessible", 403)

    orchestrator = build_orchestrator()
    try:
        result = orchestrator.queue.enqueue(
            user_id=user.id,
            brand_id=brand.id,
            kind=body.get("kind"),
            payload=payload,
            order_id=body.get("orderId") or extract_order_id(payload),
        )
    except PayloadValidationError as e:
        return _error(e.code, str(e), 400, errors=e.errors)
    except QuotaExceededError as e:
        return _error(e.code, str(e), 402, quota=e.to_dict())
    except JobQueueError as e:
        status = 404 if e.code == "order_not_found" else 400
        return _error(e.code, str(e), status)

    return JsonResponse(result.to_dict(), status=201 if result.created else 200)


@csrf_exempt
@require_http_methods(["POST"])
@require_auth
def unblock(request) -> JsonResponse:
    """
    Request body: {"jobIds": ["<uuid>", ...]}

    Only the caller's own jobs are touched; other ids are ignored.
    """
    body = _parse_body(request)
    if body is None:
        return _error("invalid_json", "Invalid JSON body", 400)

    job_ids = body.get("jobIds")
    if not isinstance(job_ids, list):
        return _error("invalid_request", "jobIds must be a list", 400)

    result = build_orchestrator().queue.unblock(get_current_user(request).id, job_ids)
    return JsonResponse(result.to_dict())


@csrf_exempt
@require_http_methods(["POST"])
@require_auth
def cancel(request, job_id: str) -> JsonResponse:
    queue = build_orchestrator().queue
    user = get_current_user(request)
    try:
        canceled = queue.cancel(user.id, job_id)
        job = queue.get_job(user.id, job_id)
    except JobNotFoundError as e:
        return _error(e.code, str(e), 404)

    return JsonResponse({"jobId": str(job.id), "canceled": canceled, "status": job.status})


@require_http_methods(["GET"])
@require_auth
def progress(request, job_id: str) -> JsonResponse:
    orchestrator = build_orchestrator()
    try:
        job = orchestrator.queue.get_job(get_current_user(request).id, job_id)
    except JobNotFoundError as e:
        return _error(e.code, str(e), 404)

    return JsonResponse(orchestrator.publisher.snapshot(job.id).to_dict())


@csrf_exempt
@require_http_methods(["POST"])
@require_auth
def retry_step(request, job_id: str, step_id: str) -> JsonResponse:
    queue = build_orchestrator().queue
    try:
        step = queue.retry_step(get_current_user(request).id, job_id, step_id)
    except JobNotFoundError as e:
        return _error(e.code, str(e), 404)
    except StepTransitionError as e:
        return _error(e.code, str(e), 409)

    return JsonResponse({
        "jobId": str(step.job_id),
        "stepId": str(step.id),
        "status": step.status,
        "attempt": step.attempt,
    })


@require_http_methods(["GET"])
@require_auth
def monitor(request) -> JsonResponse:
    if not get_current_user(request).is_operator:
        return _error("forbidden", "Operator access required", 403)
    return JsonResponse(build_orchestrator().monitor.summary())
