"""HTTP transport shared by provider integrations.

Every provider call goes through request_json(), which enforces a bounded
timeout and splits failures into two kinds: the request never produced a
response (TransportError), or the provider answered non-2xx
(ProviderResponseError, carrying the parsed error envelope).

No retries happen here. Retry policy belongs to the caller.
"""

import os
from typing import Any

import requests

# Timeout for provider HTTP requests (seconds)
HTTP_TIMEOUT = float(os.environ.get("PROVIDER_HTTP_TIMEOUT", "10"))


class TransportError(Exception):
    """Raised on network failure or timeout (no provider response)."""

    pass


class ProviderResponseError(Exception):
    """Raised when the provider answers with a non-2xx status.

    Attributes:
        status_code: HTTP status code.
        body: Parsed JSON body, or {} if the body was not JSON.
    """

    def __init__(self, status_code: int, body: dict[str, Any], text: str = "") -> None:
        super().__init__(f"provider returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.text = text


def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    json_body: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Execute an HTTP request and return the parsed JSON body.

    Args:
        method: HTTP method ("GET", "POST").
        url: Absolute URL. May embed secrets (Telegram): NEVER log it.
        headers: Request headers.
        json_body: JSON body for POST requests.
        params: Query string parameters.
        timeout: Override for HTTP_TIMEOUT.

    Returns:
        Parsed JSON object ({} for an empty or non-object body).

    Raises:
        TransportError: On connection error or timeout.
        ProviderResponseError: On non-2xx response.
    """
    try:
        resp = requests.request(
            method,
            url,
            headers=headers,
            json=json_body,
            params=params,
            timeout=timeout if timeout is not None else HTTP_TIMEOUT,
        )
    except requests.Timeout as e:
        raise TransportError(f"timeout after {timeout or HTTP_TIMEOUT}s") from e
    except requests.RequestException as e:
        # str(e) of a ConnectionError includes the URL; keep only the type
        raise TransportError(f"{type(e).__name__}: connection failed") from e

    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    if not 200 <= resp.status_code < 300:
        raise ProviderResponseError(resp.status_code, body, resp.text)

    return body
