from fastapi import APIRouter, Request

router = APIRouter(prefix="/gmail/sync", tags=["Sync Status"])


@router.get("/status")
def sync_status(request: Request):
    """Cursor, lock flags and queue depth of every active mailbox engine."""
    return {"mailboxes": request.app.state.registry.snapshot()}
