"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from botlink.api.routes import tasks_inbound

router = APIRouter()
router.include_router(tasks_inbound.router)


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}
