"""
Gmail Push Notification Webhook

This endpoint receives real-time notifications from Google Cloud Pub/Sub
whenever Gmail detects changes in the mailbox.

Pipeline:
1. Receive push notification with historyId
2. Queue it on the mailbox's sync engine
3. Wait for the engine to resolve it (bounded by RESPONSE_TIMEOUT_SECONDS)
4. Answer with a status code telling Pub/Sub whether to redeliver
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from relay.errors import MalformedNotificationError, QueueFullError, RelayError
from relay.sync.models import HTTP_STATUS, Notification, OutcomeStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gmail", tags=["Gmail Push"])


async def receive_notification(request: Request) -> JSONResponse:
    """
    Intake for one Pub/Sub push.

    Returns:
        200 once resolved (forwarded, baseline, or stale), 202 if still
        pending when the response timeout hits, 400 for a malformed
        envelope, 503/500 when Pub/Sub should redeliver
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Bad Request: body is not JSON")

    response = asyncio.get_running_loop().create_future()
    try:
        notification = Notification.from_envelope(body, headers=request.headers, response=response)
    except MalformedNotificationError as e:
        logger.warning(f"[Intake] Rejected push: {e}")
        raise HTTPException(status_code=400, detail=f"Bad Request: {e}")

    logger.info(f"[Intake] 📧 Gmail notification for {notification.email_address}, historyId {notification.cursor}")

    registry = request.app.state.registry
    try:
        engine = await registry.resolve(notification.email_address)
    except RelayError as e:
        logger.error(f"[Intake] Could not determine the served mailbox: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    if engine is None:
        logger.warning(f"[Intake] Rejected push for unserved mailbox {notification.email_address}")
        raise HTTPException(status_code=400, detail="Bad Request: mailbox not served by this relay")

    try:
        engine.submit(notification)
    except QueueFullError as e:
        logger.warning(f"[Intake] Dropping historyId {notification.cursor}: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    timeout = request.app.state.settings.response_timeout
    try:
        outcome = await asyncio.wait_for(asyncio.shield(response), timeout=timeout)
    except asyncio.TimeoutError:
        return JSONResponse(
            status_code=HTTP_STATUS[OutcomeStatus.DEFERRED],
            content={
                "status": OutcomeStatus.DEFERRED.value,
                "historyId": notification.cursor,
                "detail": "accepted, still queued",
            },
        )

    return JSONResponse(status_code=outcome.http_status, content=outcome.to_dict())


@router.post("/events")
async def gmail_events(request: Request):
    """
    Webhook endpoint for Gmail push notifications via Pub/Sub.

    When Gmail detects mailbox changes, it publishes to Pub/Sub,
    which pushes to this endpoint.
    """
    return await receive_notification(request)
