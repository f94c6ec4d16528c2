"""
Generation back-end integration.

Exports:
- BackendClient: HTTP client for the generation gateway
- BackendError, BackendTimeoutError
- get_backend_client(): client built from settings
"""

from alfie.integrations.backends.client import (
    BackendClient,
    BackendError,
    BackendTimeoutError,
    get_backend_client,
)

__all__ = [
    "BackendClient",
    "BackendError",
    "BackendTimeoutError",
    "get_backend_client",
]
