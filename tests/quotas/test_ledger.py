"""
Quota ledger tests.

Tests for:
A) Admission rule - soft 10% overage, unrestricted limits
B) Job admission cost - all-or-nothing across counters
C) Status - remaining, percentage, alert level
D) Credits and monthly reset
E) API - GET /api/brands/:id/quota
F) reset_quotas command
"""

from __future__ import annotations

from datetime import date
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from alfie.core.enums import JobKind
from alfie.jobs.payloads import parse_payload
from alfie.quotas.ledger import (
    QuotaExceededError,
    QuotaLedger,
    admission_cost,
    is_admissible,
    next_reset_date,
)
from alfie.quotas.stores import DjangoQuotaStore


@pytest.fixture
def ledger(db):
    return QuotaLedger(DjangoQuotaStore())


def _account(brand, **fields):
    from alfie.quotas.models import QuotaAccount

    return QuotaAccount.objects.create(brand=brand, **fields)


def _refresh(brand):
    from alfie.quotas.models import QuotaAccount

    return QuotaAccount.objects.get(brand=brand)


# =============================================================================
# A) ADMISSION RULE
# =============================================================================


class TestAdmissionRule:
    """used + amount <= limit * 1.10, or limit <= 0."""

    @pytest.mark.parametrize("limit,used,amount,allowed", [
        (100, 95, 10, True),
        (100, 100, 10, True),
        (100, 95, 20, False),
        (100, 101, 10, False),
        (10, 10, 1, True),
        (10, 10, 2, False),
        (0, 5000, 500, True),
        (-1, 5000, 500, True),
    ])
    def test_is_admissible(self, limit, used, amount, allowed):
        assert is_admissible(limit, used, amount) is allowed


@pytest.mark.db
class TestReserve:
    """Reservations consume counters or raise without consuming."""

    def test_within_overage_admitted(self, db, ledger, brand):
        _account(brand, quota_images=100, images_used=95)

        ledger.reserve(brand.id, "images", 10)

        assert _refresh(brand).images_used == 105

    def test_over_overage_rejected(self, db, ledger, brand):
        _account(brand, quota_images=100, images_used=95)

        with pytest.raises(QuotaExceededError) as exc:
            ledger.reserve(brand.id, "images", 20)

        assert _refresh(brand).images_used == 95
        assert exc.value.to_dict() == {
            "kind": "images",
            "limit": 100,
            "used": 95,
            "requested": 20,
            "remaining": 5,
        }

    def test_remaining_never_negative(self):
        assert QuotaExceededError("videos", 10, 12, 1).remaining == 0

    def test_unrestricted_counts_usage(self, db, ledger, brand):
        ledger.reserve(brand.id, "videos", 3)
        assert _refresh(brand).videos_used == 3

    def test_zero_amount_noop(self, db, ledger, brand):
        _account(brand, quota_credits=1, credits_used=50)
        ledger.reserve(brand.id, "credits", 0)
        assert _refresh(brand).credits_used == 50

    def test_unknown_counter(self, db, ledger, brand):
        with pytest.raises(ValueError):
            ledger.reserve(brand.id, "minutes", 1)


# =============================================================================
# B) JOB ADMISSION COST
# =============================================================================


class TestAdmissionCost:
    """Counters consumed per job kind."""

    def test_image(self):
        payload = parse_payload("image", {"prompt": "fox", "count": 4})
        assert admission_cost(JobKind.IMAGE, payload) == {"images": 4, "credits": 4}

    def test_carousel(self):
        payload = parse_payload("carousel", {"prompt": "launch", "slides": [{}, {}, {}]})
        assert admission_cost(JobKind.CAROUSEL, payload) == {"images": 3, "credits": 10}

    def test_video(self):
        payload = parse_payload("video", {"scenes": [{"visual_prompt": "sea"}]})
        assert admission_cost(JobKind.VIDEO, payload) == {"videos": 1, "credits": 25}


@pytest.mark.db
class TestReserveForJob:
    """A job's counters are consumed together or not at all."""

    def test_all_counters_consumed(self, db, ledger, brand):
        _account(brand, quota_images=100, quota_credits=100)
        payload = parse_payload("image", {"prompt": "fox", "count": 3})

        consumed = ledger.reserve_for_job(brand.id, JobKind.IMAGE, payload)

        assert consumed == {"images": 3, "credits": 3}
        account = _refresh(brand)
        assert account.images_used == 3
        assert account.credits_used == 3

    def test_second_counter_failure_rolls_back_first(self, db, ledger, brand):
        _account(brand, quota_images=100, quota_credits=5)
        payload = parse_payload("image", {"prompt": "fox", "count": 10})

        with pytest.raises(QuotaExceededError) as exc:
            ledger.reserve_for_job(brand.id, JobKind.IMAGE, payload)

        assert exc.value.kind == "credits"
        account = _refresh(brand)
        assert account.images_used == 0
        assert account.credits_used == 0


# =============================================================================
# C) STATUS
# =============================================================================


@pytest.mark.db
class TestStatus:
    """Read-path view of the counters."""

    def test_fresh_account(self, db, ledger, brand):
        status = ledger.status(brand.id)

        assert status["brandId"] == str(brand.id)
        assert status["alert"] is None
        assert status["resetsOn"] is None
        assert status["counters"]["images"] == {"used": 0, "limit": 0, "remaining": None, "percentage": 0}

    def test_remaining_and_percentage(self, db, ledger, brand):
        _account(brand, quota_videos=10, videos_used=4)

        videos = ledger.status(brand.id)["counters"]["videos"]

        assert videos == {"used": 4, "limit": 10, "remaining": 6, "percentage": 40}

    def test_remaining_clamped_in_overage(self, db, ledger, brand):
        _account(brand, quota_videos=10, videos_used=11)
        assert ledger.status(brand.id)["counters"]["videos"]["remaining"] == 0

    @pytest.mark.parametrize("used,alert", [(79, None), (80, "warning"), (99, "warning"), (100, "error"), (108, "error")])
    def test_alert_level(self, db, ledger, brand, used, alert):
        _account(brand, quota_credits=100, credits_used=used)
        assert ledger.status(brand.id)["alert"] == alert


# =============================================================================
# D) CREDITS AND RESET
# =============================================================================


@pytest.mark.db
class TestCreditAndReset:
    """Top-ups raise the limit; resets zero usage once per period."""

    def test_credit_raises_limit(self, db, ledger, brand):
        _account(brand, quota_credits=100, credits_used=100)

        ledger.credit(brand.id, 50)

        assert _refresh(brand).quota_credits == 150
        ledger.reserve(brand.id, "credits", 50)

    def test_credit_keeps_unrestricted_account_unrestricted(self, db, ledger, brand):
        _account(brand, quota_credits=0, credits_used=500)
        ledger.reserve(brand.id, "credits", 10)

        assert ledger.credit(brand.id, 50) is False

        account = _refresh(brand)
        assert account.quota_credits == 0
        assert account.credits_used == 510
        ledger.reserve(brand.id, "credits", 1)

    def test_credit_must_be_positive(self, db, ledger, brand):
        with pytest.raises(ValueError):
            ledger.credit(brand.id, 0)

    def test_refund_for_job_returns_admission_cost(self, db, ledger, brand):
        _account(brand, quota_images=10, quota_credits=10)
        payload = parse_payload("image", {"prompt": "fox", "count": 3})
        ledger.reserve_for_job(brand.id, JobKind.IMAGE, payload)

        refunded = ledger.refund_for_job(brand.id, JobKind.IMAGE, payload)

        assert refunded == {"images": 3, "credits": 3}
        account = _refresh(brand)
        assert account.images_used == 0
        assert account.credits_used == 0

    def test_refund_floored_at_zero(self, db, ledger, brand):
        """A reset between admission and cancel leaves nothing to give back."""
        _account(brand, images_used=1, credits_used=0)
        payload = parse_payload("image", {"prompt": "fox", "count": 3})

        ledger.refund_for_job(brand.id, JobKind.IMAGE, payload)

        account = _refresh(brand)
        assert account.images_used == 0
        assert account.credits_used == 0

    def test_first_reset_applies(self, db, ledger, brand):
        _account(brand, quota_images=10, images_used=9, videos_used=2, credits_used=30)

        assert ledger.reset(brand.id, date(2026, 10, 17)) is True

        account = _refresh(brand)
        assert (account.images_used, account.videos_used, account.credits_used) == (0, 0, 0)
        assert account.quota_images == 10
        assert account.resets_on == date(2026, 11, 1)

    def test_reset_idempotent_within_period(self, db, ledger, brand):
        _account(brand)
        ledger.reset(brand.id, date(2026, 10, 17))
        ledger.reserve(brand.id, "images", 4)

        assert ledger.reset(brand.id, date(2026, 10, 31)) is False
        assert _refresh(brand).images_used == 4

        assert ledger.reset(brand.id, date(2026, 11, 1)) is True
        account = _refresh(brand)
        assert account.images_used == 0
        assert account.resets_on == date(2026, 12, 1)

    def test_next_reset_date_wraps_year(self):
        assert next_reset_date(date(2026, 12, 15)) == date(2027, 1, 1)
        assert next_reset_date(date(2026, 1, 31)) == date(2026, 2, 1)

    def test_reset_due_accounts(self, db, ledger, brand, other_brand):
        _account(brand, images_used=5, resets_on=date(2026, 11, 1))
        _account(other_brand, images_used=7, resets_on=date(2026, 12, 1))

        assert ledger.reset_due_accounts(date(2026, 11, 1)) == 1

        assert _refresh(brand).images_used == 0
        assert _refresh(other_brand).images_used == 7


# =============================================================================
# E) API
# =============================================================================


@pytest.mark.db
class TestQuotaEndpoint:
    """GET /api/brands/:id/quota"""

    def test_status(self, db, api_client, brand):
        _account(brand, quota_images=100, images_used=85)

        response = api_client.get(f"/api/brands/{brand.id}/quota")

        assert response.status_code == 200
        body = response.json()
        assert body["counters"]["images"]["remaining"] == 15
        assert body["alert"] == "warning"

    def test_foreign_brand(self, db, api_client, other_brand):
        response = api_client.get(f"/api/brands/{other_brand.id}/quota")
        assert response.status_code == 404
        assert response.json()["error"] == "brand_not_found"

    def test_malformed_brand_id(self, db, api_client):
        response = api_client.get("/api/brands/not-a-uuid/quota")
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_brand"


# =============================================================================
# F) RESET COMMAND
# =============================================================================


@pytest.mark.db
class TestResetQuotasCommand:
    """reset_quotas resets every due account."""

    def test_resets_due_accounts(self, db, brand):
        _account(brand, videos_used=3, resets_on=date(2026, 11, 1))
        out = StringIO()

        call_command("reset_quotas", "--date", "2026-11-02", stdout=out)

        assert "Reset 1 quota account(s)" in out.getvalue()
        assert _refresh(brand).videos_used == 0

    def test_invalid_date(self, db):
        with pytest.raises(CommandError):
            call_command("reset_quotas", "--date", "next tuesday")
