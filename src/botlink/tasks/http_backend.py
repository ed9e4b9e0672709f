"""HTTP backend for tasks - sends tasks to the worker via HTTP POST.

Used where the webhook (public) and worker roles run as separate services.
"""

import os
from datetime import datetime

import google.auth.exceptions
import requests
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.id_token import fetch_id_token

from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context

logger = get_logger(__name__)

WORKER_BASE_URL = os.environ.get("WORKER_BASE_URL", "http://worker:8000")
INTERNAL_TASK_SECRET = os.environ.get("INTERNAL_TASK_SECRET", "")
HTTP_TIMEOUT = int(os.environ.get("TASKS_HTTP_TIMEOUT", "30"))

# Must match task_auth.LOCAL_DEV_AUDIENCE
LOCAL_DEV_AUDIENCE = "botlink-tasks-local"


def _fetch_oidc_token(audience: str) -> str | None:
    """Fetch a Google ID token for the given audience.

    Relies on the metadata server or application default credentials.
    Not used in local dev (see LOCAL_DEV_AUDIENCE).

    Returns:
        Signed ID token string, or None if fetching fails.
    """
    try:
        return fetch_id_token(GoogleRequest(), audience)
    except google.auth.exceptions.GoogleAuthError as e:
        logger.error(
            "failed to fetch OIDC ID token",
            extra={"extra_fields": safe_log_context(audience=audience, error=str(e))},
        )
        return None


def build_auth_headers(task_id: str) -> dict[str, str] | None:
    """Authentication headers for a worker call, or None if unavailable.

    Shared secret when TASKS_OIDC_AUDIENCE is the local dev audience,
    otherwise a Google OIDC bearer token for WORKER_BASE_URL.
    """
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE:
        if INTERNAL_TASK_SECRET:
            return {"X-Internal-Task-Secret": INTERNAL_TASK_SECRET}
        return {}

    token = _fetch_oidc_token(WORKER_BASE_URL)
    if not token:
        logger.error(
            "HTTP task enqueue aborted: OIDC token unavailable",
            extra={"extra_fields": safe_log_context(task_id=task_id)},
        )
        return None
    return {"Authorization": f"Bearer {token}"}


def enqueue_http(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Enqueue task via HTTP POST to the worker.

    Args:
        task_id: Unique task identifier (for logging/tracing).
        url_path: Worker endpoint path (e.g., "/tasks/inbound/handle-event").
        payload: Task payload.
        correlation_id: Optional correlation ID for tracing.
        schedule_time: Not supported by this backend; the task is sent now.

    Returns:
        True if the worker answered 2xx, False otherwise.
    """
    log_ctx = safe_log_context(task_id=task_id, url_path=url_path, correlationId=correlation_id)

    if schedule_time is not None:
        logger.warning(
            "HTTP backend does not support scheduled tasks, sending now",
            extra={"extra_fields": log_ctx},
        )

    auth_headers = build_auth_headers(task_id)
    if auth_headers is None:
        return False

    headers = {
        "Content-Type": "application/json",
        "X-Correlation-Id": correlation_id or "",
        "X-Task-Id": task_id,
        **auth_headers,
    }

    try:
        response = requests.post(
            f"{WORKER_BASE_URL}{url_path}",
            json=payload,
            headers=headers,
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(
            "HTTP task enqueue failed",
            extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
        )
        return False

    logger.info("HTTP task enqueued", extra={"extra_fields": log_ctx})
    return True
