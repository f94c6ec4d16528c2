"""
Test settings for Alfie.

Overrides the main settings to:
1. Use SQLite in-memory database (fast, no network)
2. Disable DEBUG to catch production-like issues
3. Pin a JWT secret so tests can mint tokens

Usage:
    pytest uses this automatically via pyproject.toml:
    [tool.pytest.ini_options]
    DJANGO_SETTINGS_MODULE = "alfie.settings_test"
"""

from alfie.settings import *  # noqa: F401, F403

# =============================================================================
# TEST DATABASE CONFIGURATION
# =============================================================================

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# =============================================================================
# TEST-SPECIFIC SETTINGS
# =============================================================================

DEBUG = False

AUTH_DISABLED = False
SUPABASE_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"

# No real back-end in tests; clients are injected
ALFIE_BACKEND_BASE_URL = ""
