"""API router package."""

from fastapi import APIRouter

from taskboard.api.v1 import (
    auth,
    inbox,
    organizations,
    projects,
    recurrences,
    tasks,
    websocket,
)

router = APIRouter()

# Include all API routers
router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(organizations.router, prefix="/organizations", tags=["Organizations"])
router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(recurrences.router, prefix="/recurrences", tags=["Recurrences"])
router.include_router(inbox.router, prefix="/inbox", tags=["Inbox"])
router.include_router(websocket.router, tags=["WebSocket"])
