"""Health check endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()

SERVICE = "forwarder"
VERSION = "0.1.0"


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": SERVICE}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with configuration and session info."""
    settings = request.app.state.settings
    processor = getattr(request.app.state, "processor", None)
    return {
        "status": "healthy",
        "service": SERVICE,
        "version": VERSION,
        "config": settings.get_safe_dict(),
        "sessions": processor.stats() if processor is not None else None,
    }
