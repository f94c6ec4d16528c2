"""
Pytest configuration for Alfie tests.

Shared fixtures:
- tenant / user / brand: a caller that owns a brand
- other_user / other_brand: a second tenant, for ownership scoping
- make_token / api_client: signed identity tokens for view tests
- fake_backend: in-memory generation gateway
- orchestrator: the job subsystem wired over Django stores + fake_backend
"""

import os
import time
from uuid import uuid4

import django
import jwt
import pytest


def pytest_configure():
    """Configure Django settings before tests run."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "alfie.settings_test")
    django.setup()


@pytest.fixture
def client():
    """Django test client fixture."""
    from django.test import Client
    return Client()


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


@pytest.fixture
def tenant(db):
    """Create a test tenant."""
    from alfie.core.models import Tenant

    return Tenant.objects.create(
        name="Test Tenant",
        slug=f"test-tenant-{uuid4().hex[:8]}",
    )


@pytest.fixture
def user(db, tenant):
    """Create a test user in the test tenant."""
    from alfie.users.models import User

    return User.objects.create(
        email="owner@example.com",
        supabase_uid=f"sb-{uuid4().hex}",
        tenant=tenant,
    )


@pytest.fixture
def brand(db, tenant, user):
    """Create a brand owned by the test user."""
    from alfie.core.models import Brand

    return Brand.objects.create(
        tenant=tenant,
        owner=user,
        name="Test Brand",
        slug=f"test-brand-{uuid4().hex[:8]}",
    )


@pytest.fixture
def other_user(db):
    """A user from a different tenant."""
    from alfie.core.models import Tenant
    from alfie.users.models import User

    other_tenant = Tenant.objects.create(
        name="Other Tenant",
        slug=f"other-tenant-{uuid4().hex[:8]}",
    )
    return User.objects.create(
        email="other@example.com",
        supabase_uid=f"sb-{uuid4().hex}",
        tenant=other_tenant,
    )


@pytest.fixture
def other_brand(db, other_user):
    """A brand owned by other_user."""
    from alfie.core.models import Brand

    return Brand.objects.create(
        tenant=other_user.tenant,
        owner=other_user,
        name="Other Brand",
        slug=f"other-brand-{uuid4().hex[:8]}",
    )


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def make_token(settings):
    """Mint a signed identity token for a user."""

    def _make_token(user, **overrides):
        claims = {
            "sub": user.supabase_uid,
            "email": user.email,
            "aud": "authenticated",
            "exp": int(time.time()) + 3600,
            **overrides,
        }
        return jwt.encode(claims, settings.SUPABASE_JWT_SECRET, algorithm="HS256")

    return _make_token


@pytest.fixture
def api_client(user, make_token):
    """Test client authenticated as `user`."""
    from django.test import Client

    return Client(HTTP_AUTHORIZATION=f"Bearer {make_token(user)}")


# =============================================================================
# GENERATION BACKEND
# =============================================================================


class FakeBackend:
    """
    In-memory stand-in for BackendClient.

    Returns a fresh asset url per call. `failures[task] = n` makes the next
    n calls for that task raise BackendError; `on_call` runs before each
    call returns (used to cancel a job mid-step).
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.on_call = None

    def generate(self, task, params, *, provider=None):
        from alfie.integrations.backends import BackendError

        self.calls.append({"task": task, "params": params, "provider": provider})
        if self.on_call is not None:
            self.on_call(task, params)
        if self.failures.get(task, 0) > 0:
            self.failures[task] -= 1
            raise BackendError(f"{task} backend unavailable", status_code=503)
        return {"url": f"https://cdn.example.com/{task}/{len(self.calls)}", "durationSeconds": 8}

    def tasks(self):
        return [call["task"] for call in self.calls]


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def orchestrator(db, fake_backend):
    """Job subsystem wired over the Django stores with the fake backend."""
    from alfie.jobs.services import build_orchestrator

    return build_orchestrator(backend_client=fake_backend)
