from fastapi import APIRouter
from typing import Any

from app.core.config import settings

router = APIRouter()

@router.get("", response_model=dict[str, Any])
def health_check() -> Any:
    """
    Health check endpoint.
    """
    return {"status": "ok", "service": settings.PROJECT_NAME, "version": settings.VERSION}
