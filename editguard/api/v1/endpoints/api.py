from fastapi import APIRouter

from editguard.api.v1.endpoints import edit_sessions, resources

api_router = APIRouter()

api_router.include_router(edit_sessions.router, prefix="/edit-sessions", tags=["Presence"])
api_router.include_router(resources.router, prefix="/resources", tags=["Resources"])
