"""Durable pending queue, content registry and per-chat ledgers.

Layout under the data directory::

    download.json       pending queue, array of jobs
    database.json       content registry, array of content records
    ID/<chat>.json      ledger of completed jobs for one chat

Every read and write holds the file lock from :mod:`lock_utils` and rewrites
the whole file.  Registry ids are ``max + 1`` inside the lock, which is only
safe while a single worker process owns the data directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from job_state import Transition
from lock_utils import LOCK_BACKOFF, LOCK_RETRIES, with_lock
from log_utils import get_logger
from models import ContentRecord, Job, LedgerEntry, parse_rows
from serde_utils import load_json_list, write_json

log = get_logger().bind(module=__name__)

QUEUE_FILE = "download.json"
REGISTRY_FILE = "database.json"
LEDGER_DIR = "ID"
REJECTED_SUFFIX = ".rejected.json"


def rejected_path(path: Path) -> Path:
    """Return the quarantine file for rows dropped from ``path``."""
    return path.with_name(path.stem + REJECTED_SUFFIX)


class Store:
    """Typed access to the three durable collections."""

    def __init__(
        self,
        root: Path,
        *,
        lock_retries: int = LOCK_RETRIES,
        lock_backoff: float = LOCK_BACKOFF,
    ) -> None:
        self.root = Path(root)
        self.queue_path = self.root / QUEUE_FILE
        self.registry_path = self.root / REGISTRY_FILE
        self.ledger_dir = self.root / LEDGER_DIR
        self._lock_opts = {"retries": lock_retries, "backoff": lock_backoff}

    def ledger_path(self, chat_id: str) -> Path:
        chat_id = str(chat_id)
        if not chat_id or chat_id in {".", ".."} or "/" in chat_id or "\\" in chat_id:
            raise ValueError(f"invalid chat id {chat_id!r}")
        return self.ledger_dir / f"{chat_id}.json"

    def _locked(self, path: Path, fn):
        return with_lock(path, fn, **self._lock_opts)

    def _load(self, path: Path, model):
        """Return validated rows from ``path``; caller holds the lock."""
        rows = load_json_list(path)
        good, bad = parse_rows(model, rows)
        if bad:
            quarantine = rejected_path(path)
            kept = load_json_list(quarantine)
            kept.extend({"row": row, "reason": reason} for row, reason in bad)
            write_json(quarantine, kept)
            write_json(path, [r.to_json() for r in good])
            for row, reason in bad:
                log.warning(
                    "Quarantined malformed row",
                    file=str(path),
                    reason=reason,
                    row=str(row)[:200],
                )
        return good

    @staticmethod
    def _dump(path: Path, records: Iterable) -> None:
        write_json(path, [r.to_json() for r in records])

    # --- pending queue -------------------------------------------------------

    def read_pending_queue(self) -> list[Job]:
        return self._locked(self.queue_path, lambda: self._load(self.queue_path, Job))

    def write_pending_queue(self, jobs: list[Job]) -> None:
        self._locked(self.queue_path, lambda: self._dump(self.queue_path, jobs))
        log.debug("Wrote pending queue", jobs=len(jobs))

    def enqueue_jobs(self, drafts: list[Job]) -> list[Job]:
        """Append ``drafts`` to the queue in one write and return them.

        Sequence numbers continue from the largest one in the queue.  Drafts
        whose ``(chat_id, message_id)`` is already queued are dropped.  Nothing
        is written when no draft survives.
        """

        def commit() -> list[Job]:
            queue = self._load(self.queue_path, Job)
            keys = {job.key for job in queue}
            seq = max((job.sequence_number for job in queue), default=0)
            added: list[Job] = []
            for draft in drafts:
                if draft.key in keys:
                    log.debug("Already queued", chat=draft.chat_id, id=draft.message_id)
                    continue
                seq += 1
                added.append(draft.model_copy(update={"sequence_number": seq}))
                keys.add(draft.key)
            if added:
                self._dump(self.queue_path, queue + added)
            return added

        return self._locked(self.queue_path, commit)

    def resolve_attempt(self, transition: Transition) -> bool:
        """Apply ``transition`` to the queue row of its job.

        The queue is re-read so rows added meanwhile are preserved.  Returns
        ``False`` when the row is no longer queued.
        """
        job = transition.job

        def commit() -> bool:
            queue = self._load(self.queue_path, Job)
            for i, row in enumerate(queue):
                if row.id != job.id:
                    continue
                if transition.keeps_row:
                    queue[i] = row.model_copy(update={"retry_count": job.retry_count})
                else:
                    del queue[i]
                self._dump(self.queue_path, queue)
                return True
            log.warning("Job vanished from queue", job=job.id, chat=job.chat_id)
            return False

        return self._locked(self.queue_path, commit)

    # --- content registry ----------------------------------------------------

    def read_registry(self) -> list[ContentRecord]:
        return self._locked(
            self.registry_path, lambda: self._load(self.registry_path, ContentRecord)
        )

    def append_registry_entry(self, fields: dict) -> ContentRecord:
        """Store a new record built from ``fields`` and return it with its id."""

        def commit() -> ContentRecord:
            records = self._load(self.registry_path, ContentRecord)
            next_id = max((r.id for r in records), default=0) + 1
            record = ContentRecord(**{**fields, "id": next_id})
            self._dump(self.registry_path, records + [record])
            return record

        return self._locked(self.registry_path, commit)

    # --- ledgers -------------------------------------------------------------

    def read_ledger(self, chat_id: str) -> list[LedgerEntry]:
        path = self.ledger_path(chat_id)
        return self._locked(path, lambda: self._load(path, LedgerEntry))

    def append_ledger_entry(self, chat_id: str, entry: LedgerEntry) -> None:
        if entry.chat_id != str(chat_id):
            raise ValueError(f"entry for chat {entry.chat_id} written to {chat_id}")
        path = self.ledger_path(chat_id)

        def commit() -> None:
            entries = self._load(path, LedgerEntry)
            self._dump(path, entries + [entry])

        self._locked(path, commit)

    def ledger_chats(self) -> list[str]:
        """Return chat ids that have a ledger file."""
        if not self.ledger_dir.exists():
            return []
        return sorted(
            p.stem
            for p in self.ledger_dir.glob("*.json")
            if not p.name.endswith(REJECTED_SUFFIX)
        )
