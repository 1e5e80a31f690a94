import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from relay.api.v1.api import api_router
from relay.api.v1.endpoints.gmail_events import receive_notification
from relay.config import Settings, load_settings
from relay.database import create_db_engine, create_session_factory, create_tables
from relay.services.cursor_store import SqlCursorStore
from relay.services.forwarder import WebhookForwarder
from relay.services.gmail_service import GmailChangeSource
from relay.services.qualification import LabelPredicate
from relay.services.token_provider import build_token_provider
from relay.sync import EngineRegistry, SyncEngine

logger = logging.getLogger(__name__)


def build_registry(settings: Settings, token_provider, cursor_store=None) -> EngineRegistry:
    """Wire the Gmail collaborators into one engine per mailbox."""
    forwarder = WebhookForwarder(settings.forward_webhook_url, timeout=settings.request_timeout)
    predicate = LabelPredicate.of(settings.required_labels)

    def change_source_factory(token: str) -> GmailChangeSource:
        return GmailChangeSource.from_token(token, timeout=settings.request_timeout)

    def engine_factory(email_address: str) -> SyncEngine:
        return SyncEngine(
            email_address=email_address,
            token_provider=token_provider,
            change_source_factory=change_source_factory,
            forwarder=forwarder,
            predicate=predicate,
            cursor_store=cursor_store,
            max_queue_length=settings.max_queue_length,
        )

    def mailbox_lookup() -> str:
        return change_source_factory(token_provider.get_token()).get_mailbox_address()

    return EngineRegistry(
        engine_factory,
        mailbox_address=settings.mailbox_address,
        mailbox_lookup=mailbox_lookup,
    )


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[EngineRegistry] = None,
    token_provider=None,
) -> FastAPI:
    """
    Build the relay application.

    Missing pieces are built from the environment at startup; tests pass
    their own registry and token provider.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or load_settings()
        logging.basicConfig(
            level=app_settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        provider = token_provider or build_token_provider(app_settings)

        app_registry = registry
        if app_registry is None:
            cursor_store = None
            if app_settings.database_url:
                engine = create_db_engine(app_settings.database_url)
                create_tables(engine)
                cursor_store = SqlCursorStore(create_session_factory(engine))
                logger.info("✅ Cursor store tables created/verified")
            else:
                logger.warning("DATABASE_URL not set; historyId is kept in memory only")
            app_registry = build_registry(app_settings, provider, cursor_store)

        app.state.settings = app_settings
        app.state.token_provider = provider
        app.state.registry = app_registry
        logger.info(f"Gmail relay ready, forwarding to {app_settings.forward_webhook_url or '(unset)'}")

        yield

        await app_registry.stop_all()

    app = FastAPI(
        title="Gmail Push Relay",
        description="Forwards qualifying new Gmail messages to a downstream webhook",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(api_router)

    @app.get("/")
    def health_check():
        return {"status": "ok"}

    @app.post("/")
    async def push_root(request: Request):
        """Pub/Sub push subscriptions pointed at the bare service URL."""
        return await receive_notification(request)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=load_settings().port)
