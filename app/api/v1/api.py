from fastapi import APIRouter
from app.api.v1.endpoints import auth, calendar, events, health, tasks

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# Resource endpoints
api_router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(calendar.router, prefix="/calendar", tags=["calendar"])
