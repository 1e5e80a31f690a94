"""
Gmail Watch Management

Endpoints to register and manage Gmail push notification watches.
"""

import datetime
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from googleapiclient.errors import HttpError

from relay.errors import RelayError
from relay.services.gmail_service import get_gmail_service, register_gmail_watch, stop_gmail_watch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gmail", tags=["Gmail Watch"])


def _gmail_service(request: Request):
    settings = request.app.state.settings
    token = request.app.state.token_provider.get_token()
    return get_gmail_service(token, settings.request_timeout)


@router.post("/watch/start")
async def start_gmail_watch(request: Request):
    """
    Register Gmail push notifications (watch).

    This tells Gmail to send real-time notifications to your Pub/Sub topic
    whenever mailbox changes occur.

    Prerequisites:
    1. Pub/Sub topic created (PUBSUB_TOPIC)
    2. Gmail publisher permission granted
    3. Push subscription created with this relay's URL
    4. GCP_PROJECT_ID set in .env

    Important:
    - Watch expires in ~7 days and must be renewed
    - The returned historyId is informational; the sync engine takes its
      own baseline on the first notification
    """
    settings = request.app.state.settings
    topic_name = settings.topic_name

    if not topic_name:
        raise HTTPException(
            status_code=500,
            detail="GCP_PROJECT_ID not configured in .env file"
        )

    def _register():
        service = _gmail_service(request)
        return register_gmail_watch(service, topic_name, list(settings.watch_label_ids))

    try:
        response = await run_in_threadpool(_register)
    except (RelayError, HttpError) as e:
        logger.error(f"[Watch] Registration failed: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to register Gmail watch: {str(e)}"
        )

    history_id = response.get("historyId")
    expiration = response.get("expiration")

    # Convert expiration from ms to human-readable
    expiration_date = None
    if expiration:
        expiration_date = datetime.datetime.fromtimestamp(
            int(expiration) / 1000, tz=datetime.timezone.utc
        ).isoformat()

    logger.info(f"[Watch] Registered on {topic_name}, expires {expiration_date}")
    return {
        "status": "success",
        "message": "Gmail watch registered successfully",
        "topicName": topic_name,
        "historyId": history_id,
        "expiration": expiration,
        "expiration_date": expiration_date,
    }


@router.post("/watch/stop")
async def stop_watch(request: Request):
    """
    Stop Gmail push notifications.

    This cancels the active watch and stops receiving notifications.
    """
    def _stop():
        stop_gmail_watch(_gmail_service(request))

    try:
        await run_in_threadpool(_stop)
    except (RelayError, HttpError) as e:
        logger.error(f"[Watch] Stop failed: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to stop Gmail watch: {str(e)}"
        )

    return {
        "status": "success",
        "message": "Gmail watch stopped successfully"
    }
