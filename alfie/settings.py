"""
Django settings for the Alfie orchestration backend.

- Loads secrets from environment variables
- Database via DATABASE_URL (postgres/supabase)
- Job queue, step runner, provider selection and quota knobs are env-driven
"""

import os
from pathlib import Path

import dj_database_url
from dotenv import load_dotenv

# Load .env file if present (for local dev)
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "False") -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes")


# =============================================================================
# SECURITY SETTINGS (env-driven)
# =============================================================================

SECRET_KEY = os.environ.get(
    "DJANGO_SECRET_KEY",
    "dev-insecure-key-do-not-use-in-production",
)

DEBUG = _env_bool("DJANGO_DEBUG")

ALLOWED_HOSTS = os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# =============================================================================
# APPLICATION DEFINITION
# =============================================================================

# JSON API only: no admin, sessions or templates; identity comes from the JWT
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    # Third-party
    "corsheaders",
    # Alfie apps
    "alfie.core",
    "alfie.users",
    "alfie.quotas",
    "alfie.providers",
    "alfie.jobs",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "alfie.middleware.timing.RequestTimingMiddleware",
    "alfie.middleware.supabase_auth.SupabaseAuthMiddleware",
]

ROOT_URLCONF = "alfie.urls"

WSGI_APPLICATION = "alfie.wsgi.application"


# =============================================================================
# DATABASE (via DATABASE_URL)
# =============================================================================

# SQLite for local runs; deployments point DATABASE_URL at Postgres
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
)

DATABASES = {
    "default": dj_database_url.parse(
        DATABASE_URL,
        conn_max_age=600,
        conn_health_checks=True,
    )
}


# =============================================================================
# INTERNATIONALIZATION
# =============================================================================

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True


# =============================================================================
# DEFAULT PRIMARY KEY FIELD TYPE
# =============================================================================

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# =============================================================================
# CORS SETTINGS
# =============================================================================

CORS_ALLOWED_ORIGINS = os.environ.get(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000",
).split(",")

CORS_ALLOW_CREDENTIALS = True


# =============================================================================
# AUTHENTICATION (identity provider JWT)
# =============================================================================

SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "")

# Dev-only escape hatch: requests pass through with no resolved user
AUTH_DISABLED = _env_bool("AUTH_DISABLED")


# =============================================================================
# JOB QUEUE + WORKER
# =============================================================================

ALFIE_WORKER_POLL_INTERVAL_S = float(os.environ.get("ALFIE_WORKER_POLL_INTERVAL_S", "1.5"))

# Lease granted on claim; a crashed worker's job is reclaimable after expiry
ALFIE_JOB_LEASE_SECONDS = int(os.environ.get("ALFIE_JOB_LEASE_SECONDS", "300"))
ALFIE_JOB_HEARTBEAT_S = int(os.environ.get("ALFIE_JOB_HEARTBEAT_S", "30"))
ALFIE_LEASE_CHECK_INTERVAL_S = int(os.environ.get("ALFIE_LEASE_CHECK_INTERVAL_S", "60"))

ALFIE_JOB_MAX_ATTEMPTS = int(os.environ.get("ALFIE_JOB_MAX_ATTEMPTS", "3"))
ALFIE_STEP_MAX_ATTEMPTS = int(os.environ.get("ALFIE_STEP_MAX_ATTEMPTS", "3"))

# Exponential backoff between attempts: base * 2^(attempts-1), capped
ALFIE_BACKOFF_BASE_S = int(os.environ.get("ALFIE_BACKOFF_BASE_S", "15"))
ALFIE_BACKOFF_MAX_S = int(os.environ.get("ALFIE_BACKOFF_MAX_S", "900"))

# Queue monitor: processing longer than this counts as stuck
ALFIE_STUCK_THRESHOLD_S = int(os.environ.get("ALFIE_STUCK_THRESHOLD_S", "300"))

# Progress polling fallback (bounded)
ALFIE_PROGRESS_POLL_INTERVAL_S = float(os.environ.get("ALFIE_PROGRESS_POLL_INTERVAL_S", "2"))
ALFIE_PROGRESS_POLL_MAX_ATTEMPTS = int(os.environ.get("ALFIE_PROGRESS_POLL_MAX_ATTEMPTS", "150"))

# Timing middleware: warn when one caller hits one route this often
ALFIE_POLL_STORM_WINDOW_S = int(os.environ.get("ALFIE_POLL_STORM_WINDOW_S", "10"))
ALFIE_POLL_STORM_THRESHOLD = int(os.environ.get("ALFIE_POLL_STORM_THRESHOLD", "20"))


# =============================================================================
# GENERATION BACK-ENDS
# =============================================================================

ALFIE_BACKEND_BASE_URL = os.environ.get("ALFIE_BACKEND_BASE_URL", "")
ALFIE_BACKEND_TOKEN = os.environ.get("ALFIE_BACKEND_TOKEN", "")
# Explicit wall clock limit for every outbound generation call
ALFIE_BACKEND_TIMEOUT_S = int(os.environ.get("ALFIE_BACKEND_TIMEOUT_S", "120"))


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "alfie": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
