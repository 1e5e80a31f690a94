"""
Incremental sync engine for one mailbox.

Pipeline per notification:
1. Get a bearer token
2. Cold start: establish the baseline historyId (store, else Gmail profile)
3. Otherwise drop stale/duplicate historyIds, list messages added since the
   last processed historyId, check each distinct message's labels and
   forward the qualifying ones
4. Advance and persist the last processed historyId

Exactly one notification is resolved at a time. A single worker task pulls
from the queue in a loop; `processing_in_flight` guards `try_drain` against
any second caller.
"""

import asyncio
import logging
from typing import Callable, Optional

from relay.errors import (
    ChangeSourceError,
    CursorExpiredError,
    CursorStoreError,
    RelayError,
)
from relay.services.cursor_store import CursorStore, history_key
from relay.services.forwarder import ForwardSink
from relay.services.qualification import LabelPredicate
from relay.services.token_provider import TokenProvider
from relay.sync.models import Notification, OutcomeStatus, SyncOutcome, SyncState
from relay.sync.queue import NotificationQueue

logger = logging.getLogger(__name__)

# Builds a change source (GmailChangeSource in production) for a bearer token
ChangeSourceFactory = Callable[[str], object]


class SyncEngine:
    def __init__(
        self,
        email_address: str,
        token_provider: TokenProvider,
        change_source_factory: ChangeSourceFactory,
        forwarder: ForwardSink,
        predicate: LabelPredicate,
        cursor_store: Optional[CursorStore] = None,
        max_queue_length: Optional[int] = None,
    ):
        self.email_address = email_address
        self.token_provider = token_provider
        self.change_source_factory = change_source_factory
        self.forwarder = forwarder
        self.predicate = predicate
        self.cursor_store = cursor_store
        self.store_key = history_key(email_address)

        self.state = SyncState()
        self.queue = NotificationQueue(max_length=max_queue_length)

        self._wake = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None

    # ============ WORKER ============

    def submit(self, notification: Notification) -> None:
        """
        Queue a notification and wake the worker. Never waits for resolution.

        Raises:
            QueueFullError: the queue is at max_queue_length
        """
        self.queue.enqueue(notification)
        self._wake.set()

    def start(self) -> None:
        """Start the worker task on the running event loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"sync-{self.email_address}")

    async def stop(self) -> None:
        """Cancel the worker and ask Pub/Sub to redeliver whatever is still queued."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        while True:
            pending = self.queue.dequeue_oldest()
            if pending is None:
                break
            pending.respond(SyncOutcome(
                OutcomeStatus.TRANSIENT_ERROR,
                cursor=pending.cursor,
                detail="relay shutting down",
            ))

    async def _run(self) -> None:
        while True:
            await self._wake.wait()
            self._wake.clear()
            while len(self.queue):
                await self.try_drain()
                # Let intake requests enqueue between cycles
                await asyncio.sleep(0)

    async def try_drain(self) -> bool:
        """
        Resolve the oldest queued notification.

        Returns:
            True if a notification was taken off the queue, False if another
            drain is active or the queue is empty
        """
        if self.state.processing_in_flight:
            return False
        self.state.processing_in_flight = True

        try:
            notification = self.queue.dequeue_oldest()
            if notification is None:
                return False

            try:
                outcome = await self._resolve(notification)
            except asyncio.CancelledError:
                notification.respond(SyncOutcome(
                    OutcomeStatus.TRANSIENT_ERROR,
                    cursor=notification.cursor,
                    detail="relay shutting down",
                ))
                raise
            except Exception as e:
                logger.exception(f"[SyncEngine] Unexpected error resolving historyId {notification.cursor}")
                outcome = SyncOutcome(OutcomeStatus.SERVER_ERROR, cursor=notification.cursor, detail=str(e))

            # None means the notification went back on the queue
            if outcome is not None:
                notification.respond(outcome)
            return True
        finally:
            self.state.processing_in_flight = False

    # ============ RESOLUTION ============

    async def _resolve(self, notification: Notification) -> Optional[SyncOutcome]:
        try:
            token = await asyncio.to_thread(self.token_provider.get_token)
            source = await asyncio.to_thread(self.change_source_factory, token)
        except RelayError as e:
            logger.error(f"[SyncEngine] Token acquisition failed for {self.email_address}: {e}")
            return SyncOutcome(OutcomeStatus.TRANSIENT_ERROR, cursor=notification.cursor, detail=str(e))

        if not self.state.initialized:
            return await self._cold_start(notification, source)
        return await self._resolve_window(notification, source)

    async def _cold_start(self, notification: Notification, source) -> Optional[SyncOutcome]:
        if self.state.initialization_in_flight:
            logger.info(f"[SyncEngine] Cold start in progress, deferring historyId {notification.cursor}")
            self.queue.enqueue_front(notification)
            self._wake.set()
            return None

        self.state.initialization_in_flight = True
        try:
            baseline = await self._read_stored_cursor()
            origin = "store"

            if baseline is None:
                baseline = await asyncio.to_thread(source.get_current_cursor)
                origin = "mailbox"
                if self.cursor_store is not None:
                    await asyncio.to_thread(self.cursor_store.write, self.store_key, str(baseline))

            self.state.last_processed_cursor = baseline
            self.state.initialized = True
            logger.info(f"[SyncEngine] 🆕 Baseline historyId {baseline} for {self.email_address} (from {origin})")

            return SyncOutcome(
                OutcomeStatus.BASELINE,
                cursor=notification.cursor,
                detail=f"baseline historyId {baseline} established",
            )
        except RelayError as e:
            logger.error(f"[SyncEngine] Cold start failed for {self.email_address}: {e}")
            return SyncOutcome(OutcomeStatus.SERVER_ERROR, cursor=notification.cursor, detail=str(e))
        finally:
            self.state.initialization_in_flight = False

    async def _read_stored_cursor(self) -> Optional[int]:
        if self.cursor_store is None:
            return None

        raw = await asyncio.to_thread(self.cursor_store.read, self.store_key)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"[SyncEngine] Ignoring unparseable stored historyId {raw!r}")
            return None

    async def _resolve_window(self, notification: Notification, source) -> SyncOutcome:
        last = self.state.last_processed_cursor
        cursor = notification.cursor

        if cursor <= last:
            logger.info(f"[SyncEngine] Skipping stale historyId {cursor} (last processed {last})")
            return SyncOutcome(OutcomeStatus.STALE, cursor=cursor, detail=f"already processed up to {last}")

        try:
            message_ids = await asyncio.to_thread(source.list_changes, last, cursor)
        except CursorExpiredError as e:
            logger.warning(f"[SyncEngine] {e}; re-baselining {self.email_address} at {cursor}")
            return await self._commit(
                cursor,
                SyncOutcome(OutcomeStatus.REBASELINED, cursor=cursor, detail=f"history before {cursor} unavailable"),
            )
        except ChangeSourceError as e:
            logger.error(f"[SyncEngine] History listing failed from {last}: {e}")
            return SyncOutcome(OutcomeStatus.TRANSIENT_ERROR, cursor=cursor, detail=str(e))

        # Same message can appear in several history records
        distinct_ids = list(dict.fromkeys(message_ids))
        logger.info(f"[SyncEngine] 📬 historyId {last} → {cursor}: {len(distinct_ids)} new messages")

        forwarded = skipped = failed = 0
        for item_id in distinct_ids:
            try:
                labels = await asyncio.to_thread(source.get_tags, item_id)
            except RelayError as e:
                failed += 1
                logger.error(f"[SyncEngine] Label fetch failed for {item_id}: {e}")
                continue

            if not self.predicate.matches(labels):
                skipped += 1
                logger.info(f"[SyncEngine] Skipped message {item_id}, missing {self.predicate.missing(labels)}")
                continue

            try:
                payload = notification.forward_payload(item_id, labels)
                await asyncio.to_thread(self.forwarder.forward, payload)
            except RelayError as e:
                failed += 1
                logger.error(f"[SyncEngine] Forward failed for {item_id}: {e}")
                continue

            forwarded += 1
            logger.info(f"[SyncEngine] ✅ Forwarded message {item_id}")

        # Per-item failures do not hold the cursor back
        return await self._commit(
            cursor,
            SyncOutcome(
                OutcomeStatus.RESOLVED,
                cursor=cursor,
                detail=f"{forwarded} forwarded, {skipped} skipped, {failed} failed",
                forwarded=forwarded,
                skipped=skipped,
                failed=failed,
            ),
        )

    async def _commit(self, cursor: int, outcome: SyncOutcome) -> SyncOutcome:
        """
        Advance the cursor in memory, then persist it.

        A failed write keeps the in-memory advance, so a redelivery of the
        same notification is answered as stale instead of forwarding again.
        """
        self.state.advance(cursor)
        logger.info(f"[SyncEngine] 📝 Updated historyId to: {self.state.last_processed_cursor}")

        if self.cursor_store is None:
            return outcome

        try:
            await asyncio.to_thread(self.cursor_store.write, self.store_key, str(self.state.last_processed_cursor))
        except CursorStoreError as e:
            logger.error(f"[SyncEngine] Could not persist historyId {cursor}: {e}")
            return SyncOutcome(
                OutcomeStatus.TRANSIENT_ERROR,
                cursor=cursor,
                detail=f"{outcome.detail}; cursor not persisted: {e}",
                forwarded=outcome.forwarded,
                skipped=outcome.skipped,
                failed=outcome.failed,
            )
        return outcome
