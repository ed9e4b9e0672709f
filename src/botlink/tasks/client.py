"""Tasks client with idempotent enqueue.

Hands normalized inbound events from the webhook (public) role to the
worker role. Backend selectable via TASKS_BACKEND env var:
- inline (default): records tasks without executing them (dev/tests)
- http: POSTs tasks to the worker (see http_backend)
"""

import os
from datetime import datetime

from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context

logger = get_logger(__name__)

TASKS_BACKEND = os.environ.get("TASKS_BACKEND", "inline")

_BACKENDS = ("inline", "http")


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    The same task_id is a no-op for the lifetime of the client. Across
    processes, the worker's idempotent event store is the real guard.
    """

    def __init__(self, backend: str | None = None) -> None:
        self._backend = backend or TASKS_BACKEND
        if self._backend not in _BACKENDS:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")
        self._seen_ids: set[str] = set()
        self._recorded: list[dict] = []

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue a task for an HTTP worker endpoint.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g., "/tasks/inbound/handle-event").
            payload: Task data. Must not contain credentials.
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if the task was enqueued (new task_id).
            False if no-op (task_id already seen) or delivery to the worker failed.
        """
        if task_id in self._seen_ids:
            logger.info(
                "duplicate task ignored",
                extra={"extra_fields": safe_log_context(task_id=task_id)},
            )
            return False

        if self._backend == "inline":
            self._seen_ids.add(task_id)
            self._recorded.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            return True

        from botlink.tasks.http_backend import enqueue_http

        enqueued = enqueue_http(task_id, url_path, payload, correlation_id, schedule_time)
        if enqueued:
            # Failed deliveries stay eligible so a provider redelivery can retry them.
            self._seen_ids.add(task_id)
        return enqueued

    def was_enqueued(self, task_id: str) -> bool:
        return task_id in self._seen_ids

    def get_recorded_tasks(self) -> list[dict]:
        """Tasks recorded by the inline backend (useful for testing)."""
        return list(self._recorded)

    def clear(self) -> None:
        """Forget seen task_ids and recorded tasks (useful for testing)."""
        self._seen_ids.clear()
        self._recorded.clear()
