import asyncio
import logging
from typing import Callable, Dict, Optional

from relay.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class EngineRegistry:
    """
    Sync engines keyed by mailbox, created on first notification.

    Only the mailbox the Gmail token reads is served: either the configured
    `mailbox_address`, or the address `mailbox_lookup` returns (looked up
    once, then cached). Notifications for any other address get no engine.

    Must be used from the event loop thread; engines start their worker
    task on creation.
    """

    def __init__(
        self,
        engine_factory: Callable[[str], SyncEngine],
        mailbox_address: Optional[str] = None,
        mailbox_lookup: Optional[Callable[[], str]] = None,
    ):
        if mailbox_address is None and mailbox_lookup is None:
            raise ValueError("mailbox_address or mailbox_lookup is required")
        self._engine_factory = engine_factory
        self._mailbox_address = mailbox_address.lower() if mailbox_address else None
        self._mailbox_lookup = mailbox_lookup
        self._engines: Dict[str, SyncEngine] = {}

    async def mailbox_address(self) -> str:
        """
        Address of the served mailbox.

        Raises:
            RelayError: the lookup could not reach Gmail; nothing is cached
        """
        if self._mailbox_address is None:
            address = await asyncio.to_thread(self._mailbox_lookup)
            self._mailbox_address = address.lower()
            logger.info(f"[Registry] Serving mailbox {self._mailbox_address}")
        return self._mailbox_address

    async def resolve(self, email_address: str) -> Optional[SyncEngine]:
        """Engine for `email_address`, or None if this relay does not serve it."""
        key = email_address.lower()
        if key != await self.mailbox_address():
            return None
        return self.get(key)

    def get(self, email_address: str) -> SyncEngine:
        key = email_address.lower()
        engine = self._engines.get(key)
        if engine is None:
            engine = self._engine_factory(key)
            engine.start()
            self._engines[key] = engine
            logger.info(f"[Registry] Started sync engine for {key}")
        return engine

    def snapshot(self) -> Dict[str, dict]:
        return {
            key: {**engine.state.snapshot(), "queueDepth": len(engine.queue)}
            for key, engine in self._engines.items()
        }

    async def stop_all(self) -> None:
        for key, engine in list(self._engines.items()):
            await engine.stop()
            logger.info(f"[Registry] Stopped sync engine for {key}")
        self._engines.clear()
