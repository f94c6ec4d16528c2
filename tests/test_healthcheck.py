"""
Healthcheck and project wiring tests.

A) /health/ answers without a token
B) Settings: apps, middleware order, test database
"""

from django.test import Client


# =============================================================================
# A) HEALTHCHECK
# =============================================================================


class TestHealthcheck:
    """Load balancers call /health/ without credentials."""

    def test_ok_without_token(self, client: Client):
        response = client.get("/health/")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "alfie-backend"}

    def test_no_timing_headers_outside_api(self, client: Client):
        response = client.get("/health/")

        assert "X-Request-Time-Ms" not in response


# =============================================================================
# B) SETTINGS
# =============================================================================


class TestProjectWiring:
    """The project is assembled the way the worker and API expect."""

    def test_apps_installed(self, settings):
        for app in ("alfie.core", "alfie.users", "alfie.jobs", "alfie.providers", "alfie.quotas"):
            assert app in settings.INSTALLED_APPS
        assert "django.contrib.admin" not in settings.INSTALLED_APPS

    def test_timing_wraps_auth(self, settings):
        """Rejected requests are timed too."""
        middleware = settings.MIDDLEWARE
        timing = middleware.index("alfie.middleware.timing.RequestTimingMiddleware")
        auth = middleware.index("alfie.middleware.supabase_auth.SupabaseAuthMiddleware")
        assert timing < auth

    def test_in_memory_sqlite(self, settings):
        """Once a test database exists pytest-django names it file:memorydb_...?mode=memory."""
        database = settings.DATABASES["default"]
        assert database["ENGINE"] == "django.db.backends.sqlite3"
        assert "memory" in database["NAME"]
