from fastapi import APIRouter

from app.api.routes.appointments import router as appointments_router
from app.api.routes.conversations import router as conversations_router
from app.api.routes.health import router as health_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Unversioned routes used by the chat widget.
api_router.include_router(appointments_router)
api_router.include_router(conversations_router)

# Versioned routes for long-term API evolution.
v1_router.include_router(appointments_router)
v1_router.include_router(conversations_router)
api_router.include_router(v1_router)
