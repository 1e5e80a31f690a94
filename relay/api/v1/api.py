from fastapi import APIRouter
from relay.api.v1.endpoints import gmail_events, gmail_watch, sync_status

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(gmail_events.router)
api_router.include_router(gmail_watch.router)
api_router.include_router(sync_status.router)
