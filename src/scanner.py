"""Discover media in a chat's history and queue it for download."""

from __future__ import annotations

from typing import NamedTuple

from errors import ClientNotReadyError
from log_utils import get_logger
from media_utils import classify_media, new_id
from messaging import MessagingClient, normalize_chat_id
from models import DEFAULT_MAX_RETRIES, Job
from store_actor import StoreActor

log = get_logger().bind(module=__name__)


class ScanResult(NamedTuple):
    chat_id: str
    scanned: int
    queued: list[Job]


class Scanner:
    def __init__(
        self,
        client: MessagingClient,
        store: StoreActor,
        worker,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.client = client
        self.store = store
        self.worker = worker
        self.max_retries = max_retries

    async def scan(self, chat_id: str) -> ScanResult:
        """Queue every unseen media message of ``chat_id``.

        Raises :class:`ClientNotReadyError` without touching anything when the
        client is offline.  Otherwise the worker is woken up however the scan
        ends; a failed history fetch queues nothing.
        """
        chat_id = normalize_chat_id(chat_id)
        if not self.client.is_connected():
            log.error("Messaging client not connected", chat=chat_id)
            raise ClientNotReadyError(f"client not connected, cannot scan {chat_id}")

        log.info("Starting scan", chat=chat_id)
        try:
            return await self._scan(chat_id)
        finally:
            log.debug("Scan finished, waking worker", chat=chat_id)
            self.worker.start()

    async def _scan(self, chat_id: str) -> ScanResult:
        processed = {e.message_id for e in await self.store.read_ledger(chat_id)}
        queued_ids = {
            j.message_id
            for j in await self.store.read_pending_queue()
            if j.chat_id == chat_id
        }

        drafts: list[Job] = []
        scanned = 0
        async for msg in self.client.list_messages(chat_id):
            scanned += 1
            if not msg or not msg.media_kind:
                continue
            if msg.id in processed or msg.id in queued_ids:
                continue
            media_type = classify_media(msg.media_kind, msg.mime_type)
            if media_type is None:
                log.debug("Unsupported media", chat=chat_id, id=msg.id)
                continue
            drafts.append(
                Job(
                    id=new_id(),
                    chat_id=chat_id,
                    message_id=msg.id,
                    timestamp=msg.timestamp_ms,
                    retry_count=0,
                    max_retries=self.max_retries,
                    media_type=media_type,
                    mime_type=msg.mime_type,
                    sequence_number=0,
                )
            )
            queued_ids.add(msg.id)

        if not drafts:
            log.info("No new files", chat=chat_id, scanned=scanned)
            return ScanResult(chat_id, scanned, [])

        added = await self.store.enqueue_jobs(drafts)
        log.info("Queued new files", chat=chat_id, scanned=scanned, queued=len(added))
        return ScanResult(chat_id, scanned, added)
