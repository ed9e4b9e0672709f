"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from botlink.api.routes import integrations, messages, webhooks

router = APIRouter()
router.include_router(webhooks.router)
router.include_router(integrations.router)
router.include_router(messages.router)


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
