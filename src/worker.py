"""Background worker draining the pending download queue."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from errors import DownloadError, MediaFetchError
from job_state import AttemptOutcome, JobState, Transition, next_state
from log_utils import get_logger
from media_utils import content_hash, format_bytes, stored_name
from messaging import MessageDescriptor, MessagingClient
from models import Job, LedgerEntry
from serde_utils import write_bytes
from store_actor import StoreActor

log = get_logger().bind(module=__name__)


class DownloadWorker:
    """Download queued jobs one at a time in ``sequence_number`` order.

    Only one loop runs per worker; :meth:`start` is safe to call whenever new
    work might exist.  The loop ends when the queue is empty.
    """

    def __init__(
        self,
        client: MessagingClient,
        store: StoreActor,
        download_dir: Path,
        *,
        retry_backoff: float = 0.0,
        download_timeout: float | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.download_dir = Path(download_dir)
        self.retry_backoff = retry_backoff
        self.download_timeout = download_timeout
        self._running = False
        self._task: asyncio.Task | None = None

    def is_running(self) -> bool:
        return self._running

    def start(self) -> asyncio.Task:
        """Schedule :meth:`run_loop` unless a loop task is already active."""
        if self._task is not None and not self._task.done():
            log.debug("Worker already scheduled")
            return self._task
        self._task = asyncio.create_task(self.run_loop())
        return self._task

    async def run_loop(self) -> int:
        """Process the queue until it is empty and return completed count."""
        if self._running:
            log.info("Worker is already running")
            return 0
        self._running = True
        completed = 0
        log.info("Download worker started")
        try:
            while True:
                transition = await self.process_next()
                if transition is None:
                    break
                if transition.state is JobState.COMPLETED:
                    completed += 1
                elif transition.state is JobState.QUEUED:
                    await self._backoff(transition.job)
        except Exception:
            log.exception("Download worker stopped", completed=completed)
        finally:
            self._running = False
            log.info("Download worker finished", completed=completed)
        return completed

    async def process_next(self) -> Transition | None:
        """Attempt the oldest queued job once; ``None`` when the queue is empty."""
        queue = await self.store.read_pending_queue()
        if not queue:
            return None
        job = min(queue, key=lambda j: j.sequence_number)
        transition = await self._attempt(job)
        await self.store.resolve_attempt(transition)
        if transition.state is JobState.ABANDONED:
            log.warning(
                "Giving up on job",
                job=job.id,
                seq=job.sequence_number,
                chat=job.chat_id,
                id=job.message_id,
                retries=transition.job.retry_count,
            )
        return transition

    async def _backoff(self, job: Job) -> None:
        if self.retry_backoff <= 0:
            return
        delay = self.retry_backoff * 2 ** max(job.retry_count - 1, 0)
        log.debug("Retry backoff", job=job.id, delay=delay)
        await asyncio.sleep(delay)

    async def _attempt(self, job: Job) -> Transition:
        log.info(
            "Processing job",
            seq=job.sequence_number,
            chat=job.chat_id,
            id=job.message_id,
            retry=job.retry_count,
        )
        try:
            await self._process(job)
        except Exception as exc:
            transition = next_state(job, AttemptOutcome.FAILURE)
            log.error(
                "Failed to download job",
                seq=job.sequence_number,
                job=job.id,
                chat=job.chat_id,
                id=job.message_id,
                retry=transition.job.retry_count,
                max_retries=job.max_retries,
                error=f"{type(exc).__name__}: {exc}",
            )
            return transition
        return next_state(job, AttemptOutcome.SUCCESS)

    async def _process(self, job: Job) -> None:
        message = await self.client.get_message(job.chat_id, job.message_id)
        if message is None:
            raise MediaFetchError("message not found or inaccessible")
        data = await self._download(message)

        name = stored_name(message.file_ext)
        path = self.download_dir / name
        write_bytes(path, data)
        try:
            record = await self.store.append_registry_entry(
                {
                    "downloaded": True,
                    "source_chat_id": job.chat_id,
                    "captured_date": datetime.now(timezone.utc).date(),
                    "media_type": job.media_type,
                    "caption": message.text or "",
                    "stored_file_name": name,
                    "human_size": format_bytes(len(data)),
                    "mime_type": job.mime_type,
                    "storage_path": str(path),
                    "content_hash": content_hash(data),
                }
            )
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        log.info("Stored media", file=name, bytes=len(data), registry=record.id)

        entry = LedgerEntry.from_job(
            job,
            registry_id=record.id,
            stored_file_name=name,
            storage_path=str(path),
        )
        await self.store.append_ledger_entry(job.chat_id, entry)

    async def _download(self, message: MessageDescriptor) -> bytes:
        try:
            if self.download_timeout:
                data = await asyncio.wait_for(
                    self.client.download_payload(message),
                    timeout=self.download_timeout,
                )
            else:
                data = await self.client.download_payload(message)
        except asyncio.TimeoutError as exc:
            raise DownloadError("download timed out") from exc
        except DownloadError:
            raise
        except Exception as exc:
            raise DownloadError(str(exc) or type(exc).__name__) from exc
        if not isinstance(data, (bytes, bytearray)) or not data:
            raise DownloadError("empty payload")
        return bytes(data)
