"""
Generation gateway client tests.

HTTP is mocked at the requests.Session level; no network access.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from alfie.integrations.backends import (
    BackendClient,
    BackendError,
    BackendTimeoutError,
    get_backend_client,
)


def _response(status_code=200, json_data=None, text="", json_error=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def backend():
    return BackendClient("https://gateway.example.com/", token="secret", timeout_s=30)


class TestBackendClient:
    """generate() posts one task and returns its JSON object."""

    def test_generate_ok(self, backend):
        body = {"url": "https://cdn.example.com/a.png", "width": 1024}
        with patch.object(backend._session, "post", return_value=_response(json_data=body)) as post:
            result = backend.generate("image", {"prompt": "fox"}, provider="pixel-forge")

        assert result == body
        post.assert_called_once_with(
            "https://gateway.example.com/v1/generate/image",
            json={"provider": "pixel-forge", "params": {"prompt": "fox"}},
            timeout=30,
        )

    def test_bearer_token_sent(self, backend):
        assert backend._session.headers["Authorization"] == "Bearer secret"

    def test_no_token_no_header(self):
        assert "Authorization" not in BackendClient("https://gateway.example.com")._session.headers

    def test_timeout(self, backend):
        with patch.object(backend._session, "post", side_effect=requests.exceptions.Timeout("slow")):
            with pytest.raises(BackendTimeoutError) as exc:
                backend.generate("video", {})
        assert "timed out after 30s" in str(exc.value)

    def test_connection_error(self, backend):
        with patch.object(backend._session, "post", side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(BackendError) as exc:
                backend.generate("video", {})
        assert not isinstance(exc.value, BackendTimeoutError)

    def test_http_error(self, backend):
        with patch.object(backend._session, "post", return_value=_response(503, text="x" * 2000)):
            with pytest.raises(BackendError) as exc:
                backend.generate("music", {})

        assert exc.value.status_code == 503
        assert len(exc.value.body) == 500

    def test_invalid_json(self, backend):
        response = _response(json_error=ValueError("no json"), text="<html>")
        with patch.object(backend._session, "post", return_value=response):
            with pytest.raises(BackendError, match="invalid JSON"):
                backend.generate("mix", {})

    def test_non_object_json(self, backend):
        with patch.object(backend._session, "post", return_value=_response(json_data=["a"])):
            with pytest.raises(BackendError, match="expected object"):
                backend.generate("mix", {})

    def test_base_url_required(self):
        with pytest.raises(ValueError):
            BackendClient("")

    def test_from_settings(self, settings):
        settings.ALFIE_BACKEND_BASE_URL = "https://gw.internal"
        settings.ALFIE_BACKEND_TOKEN = ""
        settings.ALFIE_BACKEND_TIMEOUT_S = 45

        client = get_backend_client()

        assert client.base_url == "https://gw.internal"
        assert client.timeout_s == 45
