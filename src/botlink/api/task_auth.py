"""Authentication for worker task endpoints.

Tasks arrive from the http tasks backend with a Google OIDC token, or with
X-Internal-Task-Secret when running with the local dev audience.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context
from botlink.tasks.http_backend import LOCAL_DEV_AUDIENCE

logger = get_logger(__name__)


def extract_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header, None if absent or malformed."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:]


def verify_task_oidc(token: str) -> bool:
    """Verify an OIDC token against TASKS_OIDC_AUDIENCE.

    Optionally pins the caller's service account via TASKS_OIDC_SERVICE_ACCOUNT.
    Fails closed when the audience is not configured.
    """
    if not token:
        return False

    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(
            token, google_requests.Request(), audience=audience
        )
    except ValueError as e:
        logger.warning(
            "OIDC token verification failed",
            extra={
                "extra_fields": safe_log_context(error=str(e), expected_audience=audience)
            },
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(expected_email=expected_email)},
        )
        return False

    return True


def verify_task_auth(request: Request) -> bool:
    """Verify task authentication via OIDC, or the internal secret in local dev.

    Returns:
        True if authenticated, False otherwise.
    """
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE:
        internal_secret = os.environ.get("INTERNAL_TASK_SECRET", "")
        request_secret = request.headers.get("X-Internal-Task-Secret", "")
        if internal_secret and hmac.compare_digest(request_secret, internal_secret):
            return True

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)
