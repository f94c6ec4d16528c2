"""
Identity provider JWT authentication middleware.

Every request outside /health/ must carry `Authorization: Bearer <jwt>`
issued by the identity provider (Supabase Auth, HS256, audience
"authenticated"). The token's `sub` maps to User.supabase_uid; the first
request from a new subject creates the User. The result is attached as
request.alfie_user.

With AUTH_DISABLED (local development) no user is attached, and views
wrapped in require_auth answer 401 since every job operation is scoped to
a caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING

import jwt
from django.conf import settings
from django.http import JsonResponse

if TYPE_CHECKING:
    from django.http import HttpRequest, HttpResponse

    from alfie.users.models import User

logger = logging.getLogger(__name__)


PUBLIC_PATH_PREFIXES = ("/health/",)

JWT_ALGORITHMS = ["HS256"]
JWT_AUDIENCE = "authenticated"


class AuthenticationError(Exception):
    """The bearer token or its user was rejected."""


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    email: str | None = None


def decode_access_token(token: str) -> TokenClaims:
    secret = getattr(settings, "SUPABASE_JWT_SECRET", "")
    if not secret:
        raise AuthenticationError("SUPABASE_JWT_SECRET not configured")

    try:
        claims = jwt.decode(token, secret, algorithms=JWT_ALGORITHMS, audience=JWT_AUDIENCE)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {e}")

    subject = claims.get("sub")
    if not subject:
        raise AuthenticationError("Token missing 'sub' claim")
    return TokenClaims(subject=subject, email=claims.get("email"))


def resolve_user(claims: TokenClaims) -> "User":
    """Fetch or create the User for a token subject, keeping its email current."""
    from alfie.users.models import User

    user, created = User.objects.get_or_create(
        supabase_uid=claims.subject,
        defaults={"email": claims.email or f"{claims.subject}@unknown.local"},
    )
    if created:
        logger.info("Registered user %s on first request", user.id)
    elif claims.email and user.email != claims.email:
        user.email = claims.email
        user.save(update_fields=["email", "updated_at"])

    if not user.is_active:
        raise AuthenticationError("User is inactive")
    return user


def _unauthorized(message: str) -> JsonResponse:
    return JsonResponse({"error": "unauthorized", "message": message}, status=401)


class SupabaseAuthMiddleware:
    """Resolves request.alfie_user from the bearer token; 401 on failure."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if request.path.startswith(PUBLIC_PATH_PREFIXES):
            return self.get_response(request)

        request.alfie_user = None
        if getattr(settings, "AUTH_DISABLED", False):
            return self.get_response(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme != "Bearer" or not token:
            return _unauthorized("Missing or invalid Authorization header")

        try:
            request.alfie_user = resolve_user(decode_access_token(token))
        except AuthenticationError as e:
            logger.warning("Rejected %s %s: %s", request.method, request.path, e)
            return _unauthorized(str(e))

        return self.get_response(request)


def get_current_user(request: HttpRequest):
    """The authenticated User, or None when auth is disabled."""
    return getattr(request, "alfie_user", None)


def require_auth(view_func):
    """Answer 401 unless the middleware resolved a caller."""

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        if get_current_user(request) is None:
            return _unauthorized("Authentication required")
        return view_func(request, *args, **kwargs)

    return wrapper
