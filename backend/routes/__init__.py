"""FastAPI API endpoints under /api.

Endpoint groups: health + settings, story types, and story sessions. Every
engine operation of a session is nested under /api/sessions/{session_id}/.
Engine errors are mapped to HTTP status codes by the handler in
backend.app (generation failure 502, staleness/gate/busy 409,
preconditions 400).
"""

from fastapi import APIRouter

from .sessions import router as sessions_router
from .settings import router as settings_router
from .story_types import router as story_types_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(story_types_router)
router.include_router(sessions_router)
