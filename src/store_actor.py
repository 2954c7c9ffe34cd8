"""Single task that owns every access to the durable store."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from job_state import Transition
from log_utils import get_logger
from models import ContentRecord, Job, LedgerEntry
from store import Store

log = get_logger().bind(module=__name__)


class StoreActor:
    """Serialise store calls from the scanner and worker.

    Requests are queued and executed one at a time in submission order by a
    background task.  The blocking file I/O runs in a thread so the event
    loop keeps serving Telethon while a lock is contended.
    """

    def __init__(self, store: Store) -> None:
        self.store = store
        self._commands: asyncio.Queue | None = None
        self._task: asyncio.Task | None = None

    def _ensure_running(self) -> asyncio.Queue:
        if self._task is None or self._task.done():
            self._commands = asyncio.Queue()
            self._task = asyncio.create_task(self._run(self._commands))
            log.debug("Store actor started", root=str(self.store.root))
        return self._commands

    async def _run(self, commands: asyncio.Queue) -> None:
        try:
            while True:
                item = await commands.get()
                if item is None:
                    break
                fn, args, fut = item
                try:
                    result = await asyncio.to_thread(fn, *args)
                except Exception as exc:
                    if not fut.done():
                        fut.set_exception(exc)
                else:
                    if not fut.done():
                        fut.set_result(result)
        finally:
            while not commands.empty():
                item = commands.get_nowait()
                if item is not None and not item[2].done():
                    item[2].cancel()

    async def call(self, fn: Callable[..., Any], *args) -> Any:
        """Run ``fn(*args)`` on the actor and return its result."""
        commands = self._ensure_running()
        fut = asyncio.get_running_loop().create_future()
        commands.put_nowait((fn, args, fut))
        return await fut

    async def stop(self) -> None:
        """Finish queued requests and stop the background task."""
        if self._task is None or self._task.done():
            return
        self._commands.put_nowait(None)
        await self._task
        self._task = None

    async def read_pending_queue(self) -> list[Job]:
        return await self.call(self.store.read_pending_queue)

    async def enqueue_jobs(self, drafts: list[Job]) -> list[Job]:
        return await self.call(self.store.enqueue_jobs, drafts)

    async def resolve_attempt(self, transition: Transition) -> bool:
        return await self.call(self.store.resolve_attempt, transition)

    async def read_registry(self) -> list[ContentRecord]:
        return await self.call(self.store.read_registry)

    async def append_registry_entry(self, fields: dict) -> ContentRecord:
        return await self.call(self.store.append_registry_entry, fields)

    async def read_ledger(self, chat_id: str) -> list[LedgerEntry]:
        return await self.call(self.store.read_ledger, chat_id)

    async def append_ledger_entry(self, chat_id: str, entry: LedgerEntry) -> None:
        await self.call(self.store.append_ledger_entry, chat_id, entry)
