"""
HTTP client for the media generation gateway.

The gateway fronts the concrete image / video / audio providers and the
asset storage; Alfie only needs one primitive:

    generate(task, params) -> dict

    POST {base_url}/v1/generate/{task}
    body:     {"provider": ..., "params": {...}}
    response: {"url": ..., ...task specific fields}

Every call carries an explicit wall-clock timeout (ALFIE_BACKEND_TIMEOUT_S).
That timeout is the per-attempt limit of a job or step; the retry budget
covers the rest.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120


class BackendError(Exception):
    """Raised when the generation gateway fails or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body[:500] if body else None
        super().__init__(message)


class BackendTimeoutError(BackendError):
    """Raised when a generation call exceeds its wall-clock timeout."""

    pass


class BackendClient:
    """
    HTTP client for the generation gateway.

    Authentication via Bearer token.
    """

    def __init__(self, base_url: str, token: str = "", timeout_s: int = DEFAULT_TIMEOUT_S):
        if not base_url:
            raise ValueError("Generation backend base URL is required")
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def generate(
        self,
        task: str,
        params: dict[str, Any],
        *,
        provider: str | None = None,
    ) -> dict[str, Any]:
        """
        Run one generation task and return the gateway's JSON result.

        Raises:
            BackendTimeoutError: the call exceeded timeout_s
            BackendError: network failure, HTTP error or non-JSON response
        """
        url = f"{self.base_url}/v1/generate/{quote(task, safe='')}"

        call_start_ms = time.monotonic() * 1000
        logger.info("BACKEND_CALL_START task=%s provider=%s", task, provider)

        try:
            response = self._session.post(
                url,
                json={"provider": provider, "params": params},
                timeout=self.timeout_s,
            )
        except requests.exceptions.Timeout as e:
            duration_ms = int(time.monotonic() * 1000 - call_start_ms)
            logger.error(
                "BACKEND_CALL_END task=%s status=TIMEOUT duration_ms=%d error=%s",
                task,
                duration_ms,
                str(e),
            )
            raise BackendTimeoutError(
                f"Generation task {task} timed out after {self.timeout_s}s"
            ) from e
        except requests.exceptions.ConnectionError as e:
            duration_ms = int(time.monotonic() * 1000 - call_start_ms)
            logger.error(
                "BACKEND_CALL_END task=%s status=CONNECTION_ERROR duration_ms=%d error=%s",
                task,
                duration_ms,
                str(e),
            )
            raise BackendError("Could not connect to the generation backend") from e
        except requests.RequestException as e:
            duration_ms = int(time.monotonic() * 1000 - call_start_ms)
            logger.error(
                "BACKEND_CALL_END task=%s status=ERROR duration_ms=%d error=%s",
                task,
                duration_ms,
                str(e),
            )
            raise BackendError(f"Request failed: {e}") from e

        duration_ms = int(time.monotonic() * 1000 - call_start_ms)

        if not response.ok:
            logger.error(
                "BACKEND_CALL_END task=%s status=HTTP_ERROR duration_ms=%d http_status=%d error=%s",
                task,
                duration_ms,
                response.status_code,
                response.text[:200],
            )
            raise BackendError(
                f"Generation task {task} failed with HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(
                f"Generation task {task} returned invalid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from e

        if not isinstance(data, dict):
            raise BackendError(f"Generation task {task} returned {type(data).__name__}, expected object")

        logger.info(
            "BACKEND_CALL_END task=%s status=OK duration_ms=%d",
            task,
            duration_ms,
        )
        return data


def get_backend_client() -> BackendClient:
    """Client configured from ALFIE_BACKEND_* settings."""
    from django.conf import settings

    return BackendClient(
        base_url=settings.ALFIE_BACKEND_BASE_URL,
        token=settings.ALFIE_BACKEND_TOKEN,
        timeout_s=settings.ALFIE_BACKEND_TIMEOUT_S,
    )
