"""
Identity token middleware tests.

Tests for:
A) Token validation - expiry, signature, audience, missing claims
B) User provisioning - first request creates the user, email sync
C) Exempt paths and inactive users
"""

import time

import jwt
import pytest

QUOTA_URL = "/api/brands/{}/quota"


def _get(client, url, token):
    return client.get(url, HTTP_AUTHORIZATION=f"Bearer {token}")


@pytest.mark.db
class TestTokenValidation:
    """Bad tokens answer 401 before any view runs."""

    def test_missing_header(self, db, client, brand):
        response = client.get(QUOTA_URL.format(brand.id))
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_expired_token(self, db, client, user, brand, make_token):
        token = make_token(user, exp=int(time.time()) - 60)

        response = _get(client, QUOTA_URL.format(brand.id), token)

        assert response.status_code == 401
        assert response.json()["message"] == "Token has expired"

    def test_wrong_secret(self, db, client, user, brand):
        token = jwt.encode(
            {"sub": user.supabase_uid, "aud": "authenticated", "exp": int(time.time()) + 60},
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )
        assert _get(client, QUOTA_URL.format(brand.id), token).status_code == 401

    def test_wrong_audience(self, db, client, user, brand, make_token):
        token = make_token(user, aud="service_role")
        assert _get(client, QUOTA_URL.format(brand.id), token).status_code == 401

    def test_missing_sub(self, db, client, user, brand, make_token):
        token = make_token(user, sub="")
        response = _get(client, QUOTA_URL.format(brand.id), token)
        assert response.status_code == 401
        assert "sub" in response.json()["message"]


@pytest.mark.db
class TestUserProvisioning:
    """The token's subject maps to exactly one user."""

    def test_valid_token(self, db, client, user, brand, make_token):
        response = _get(client, QUOTA_URL.format(brand.id), make_token(user))
        assert response.status_code == 200

    def test_first_request_creates_user(self, db, client, settings):
        from alfie.users.models import User

        token = jwt.encode(
            {"sub": "sb-new-user", "email": "new@example.com", "aud": "authenticated", "exp": int(time.time()) + 60},
            settings.SUPABASE_JWT_SECRET,
            algorithm="HS256",
        )

        # Unknown brand id: the user is still provisioned before the view answers
        response = _get(client, "/api/brands/00000000-0000-0000-0000-000000000000/quota", token)

        assert response.status_code == 404
        assert User.objects.get(supabase_uid="sb-new-user").email == "new@example.com"

    def test_email_synced(self, db, client, user, brand, make_token):
        _get(client, QUOTA_URL.format(brand.id), make_token(user, email="renamed@example.com"))
        user.refresh_from_db()
        assert user.email == "renamed@example.com"

    def test_inactive_user_rejected(self, db, client, user, brand, make_token):
        user.is_active = False
        user.save(update_fields=["is_active"])

        response = _get(client, QUOTA_URL.format(brand.id), make_token(user))

        assert response.status_code == 401
        assert response.json()["message"] == "User is inactive"


@pytest.mark.db
class TestExemptPaths:
    """Health checks never need a token."""

    def test_health_exempt(self, db, client):
        assert client.get("/health/").status_code == 200

    def test_auth_disabled_still_scopes(self, db, client, brand, settings):
        """Without a caller there is nobody to scope to: 401 from the view."""
        settings.AUTH_DISABLED = True
        response = client.get(QUOTA_URL.format(brand.id))
        assert response.status_code == 401
        assert response.json()["message"] == "Authentication required"
