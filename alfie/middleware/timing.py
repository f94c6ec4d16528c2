"""
Request timing middleware for API paths.

Every /api/ response gets X-Request-Time-Ms and X-Response-Bytes headers
and one log line (method, route, status, ms, bytes, caller).

Progress pages poll /api/jobs/<id>/progress; a client stuck in a tight
loop shows up as a POLL_STORM warning once one caller exceeds
ALFIE_POLL_STORM_THRESHOLD requests to the same route inside
ALFIE_POLL_STORM_WINDOW_S seconds.

Usage:
    Add to MIDDLEWARE in settings.py, before SupabaseAuthMiddleware:
    "alfie.middleware.timing.RequestTimingMiddleware"
"""

import logging
import threading
import time
from collections import deque
from typing import Callable

from django.conf import settings
from django.http import HttpRequest, HttpResponse

logger = logging.getLogger("alfie.timing")


class SlidingWindow:
    """Timestamps of recent hits on one (caller, route) pair."""

    def __init__(self, window_s: float):
        self.window_s = window_s
        self._hits: deque[float] = deque()

    def hit(self, now: float) -> int:
        self._hits.append(now)
        while self._hits and self._hits[0] <= now - self.window_s:
            self._hits.popleft()
        return len(self._hits)


class RequestTimingMiddleware:
    """Times /api/ requests and flags callers that poll too hard."""

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]):
        self.get_response = get_response
        self.window_s = getattr(settings, "ALFIE_POLL_STORM_WINDOW_S", 10)
        self.threshold = getattr(settings, "ALFIE_POLL_STORM_THRESHOLD", 20)
        self._windows: dict[tuple[str, str], SlidingWindow] = {}
        self._lock = threading.Lock()

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if not request.path.startswith("/api/"):
            return self.get_response(request)

        started = time.perf_counter()
        response = self.get_response(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        body_size = 0 if getattr(response, "streaming", False) else len(response.content)
        # URL pattern rather than the concrete path, so job ids do not split counts
        match = getattr(request, "resolver_match", None)
        route = f"/{match.route}" if match is not None else request.path
        user = getattr(request, "alfie_user", None)
        caller = str(user.id) if user is not None else "anonymous"

        logger.info(
            "%s %s status=%d ms=%.1f bytes=%d user=%s",
            request.method,
            route,
            response.status_code,
            elapsed_ms,
            body_size,
            caller,
        )
        self._check_storm(caller, route)

        response["X-Request-Time-Ms"] = f"{elapsed_ms:.1f}"
        response["X-Response-Bytes"] = str(body_size)
        return response

    def _check_storm(self, caller: str, route: str) -> None:
        with self._lock:
            window = self._windows.setdefault((caller, route), SlidingWindow(self.window_s))
            hits = window.hit(time.monotonic())
        if hits == self.threshold + 1:
            logger.warning(
                "POLL_STORM route=%s user=%s hits=%d window_s=%s",
                route,
                caller,
                hits,
                self.window_s,
            )
