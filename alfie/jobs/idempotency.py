"""
Idempotency keys for job admission.

A key fingerprints one logical request: brand, order, user, job type and the
validated payload. Canonicalization rules:
- object keys sorted lexicographically
- absent and None-valued fields are the same thing (None entries dropped)
- NaN / +inf / -inf become the strings "NaN" / "Infinity" / "-Infinity"
- integral floats collapse to ints (1.0 == 1)
- lists keep their order, nested objects are canonicalized recursively

The canonical JSON is hashed with 64-bit FNV-1a and prefixed with the scheme
version, so the scheme can change without invalidating stored keys.
"""

from __future__ import annotations

import json
import math
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

KEY_VERSION = "v1"

FNV64_OFFSET_BASIS = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

# Payload fields that may carry the brand / order id, in lookup order
BRAND_ID_FIELDS = ("brandId", "brand_id", "brandID", "brand", "tenantId", "tenant_id")
ORDER_ID_FIELDS = ("orderId", "order_id")


def canonicalize(value: Any) -> Any:
    """Return a JSON-ready structure with a single representation per value."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        number = float(value)
        if math.isnan(number):
            return "NaN"
        if math.isinf(number):
            return "Infinity" if number > 0 else "-Infinity"
        if number.is_integer():
            return int(number)
        return number
    if isinstance(value, (UUID, datetime, date)):
        return str(value) if isinstance(value, UUID) else value.isoformat()
    if isinstance(value, dict):
        return {
            str(key): canonicalize(item)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    raise TypeError(f"Cannot canonicalize value of type {type(value).__name__}")


def _stable_json_dumps(obj) -> str:
    """Serialize with deterministic key ordering and no whitespace."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def fnv1a_64(data: bytes) -> int:
    h = FNV64_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * FNV64_PRIME) & _MASK_64
    return h


def build_idempotency_key(
    *,
    brand_id: Any,
    order_id: Any,
    user_id: Any,
    job_type: str,
    payload: Any,
) -> str:
    """
    Compute the versioned idempotency key of a job request.

    Pure and deterministic. Pass the payload after schema validation
    (e.g. `model.model_dump(mode="json")`) so defaults are filled in.

    Returns:
        "v1:<16 hex chars>"
    """
    canonical = canonicalize({
        "b": brand_id,
        "o": order_id,
        "u": user_id,
        "t": job_type,
        "p": payload,
    })
    digest = fnv1a_64(_stable_json_dumps(canonical).encode("utf-8"))
    return f"{KEY_VERSION}:{digest:016x}"


def _first_present(raw: Any, fields: tuple[str, ...]) -> str | None:
    if not isinstance(raw, dict):
        return None
    for field in fields:
        value = raw.get(field)
        if value not in (None, ""):
            return str(value)
    return None


def extract_brand_id(raw_payload: Any) -> str | None:
    """Find a brand id in a loosely-shaped request payload (also under `brief`)."""
    found = _first_present(raw_payload, BRAND_ID_FIELDS)
    if found is None and isinstance(raw_payload, dict):
        found = _first_present(raw_payload.get("brief"), ("brandId", "brand_id"))
    return found


def extract_order_id(raw_payload: Any) -> str | None:
    return _first_present(raw_payload, ORDER_ID_FIELDS)
