import asyncio
import hashlib
import json

from downloader_test_utils import FakeClient, WorkerStub, make_store

from errors import LockTimeoutError
from job_state import JobState
from scanner import Scanner
from store_actor import StoreActor
from worker import DownloadWorker


def make_stack(tmp_path, client, **kwargs):
    store = make_store(tmp_path)
    actor = StoreActor(store)
    worker = DownloadWorker(client, actor, tmp_path / "media", **kwargs)
    scanner = Scanner(client, actor, WorkerStub())
    return store, actor, worker, scanner


def three_photos():
    client = FakeClient()
    for mid in (1, 2, 3):
        client.add("12345", mid, payload=f"photo-{mid}".encode(), text=f"pic {mid}")
    return client


def test_download_lifecycle(tmp_path):
    client = three_photos()
    store, _, worker, scanner = make_stack(tmp_path, client)
    asyncio.run(scanner.scan("12345"))
    first, second, third = store.read_pending_queue()

    # job #1 succeeds
    transition = asyncio.run(worker.process_next())
    assert transition.state is JobState.COMPLETED
    assert [j.id for j in store.read_pending_queue()] == [second.id, third.id]

    (record,) = store.read_registry()
    assert record.id == 1
    assert record.source_chat_id == "12345"
    assert record.caption == "pic 1"
    assert record.human_size == "7 Bytes"
    assert record.content_hash == hashlib.sha256(b"photo-1").hexdigest()
    stored = tmp_path / "media" / record.stored_file_name
    assert stored.read_bytes() == b"photo-1"
    assert stored.suffix == ".jpg"
    assert record.storage_path == str(stored)

    (entry,) = store.read_ledger("12345")
    assert entry.completed is True
    assert entry.registry_id == 1
    assert entry.id == first.id
    assert entry.message_id == 1
    assert entry.storage_path == str(stored)

    # job #2 fails once and keeps its place
    client.failures[("12345", 2)] = None
    transition = asyncio.run(worker.process_next())
    assert transition.state is JobState.QUEUED
    queue = store.read_pending_queue()
    assert [(j.id, j.retry_count) for j in queue] == [(second.id, 1), (third.id, 0)]

    # four more failures exhaust the retries
    states = [asyncio.run(worker.process_next()).state for _ in range(4)]
    assert states == [JobState.QUEUED] * 3 + [JobState.ABANDONED]
    assert client.downloads.count(("12345", 2)) == 5
    assert [j.id for j in store.read_pending_queue()] == [third.id]
    assert [e.message_id for e in store.read_ledger("12345")] == [1]
    assert len(store.read_registry()) == 1
    assert len(list((tmp_path / "media").iterdir())) == 1

    # rescanning brings the abandoned message back as a new job
    result = asyncio.run(scanner.scan("12345"))
    (again,) = result.queued
    assert again.message_id == 2
    assert again.id != second.id
    assert again.sequence_number == 4
    assert again.retry_count == 0


def test_run_loop_is_global_fifo(tmp_path):
    client = FakeClient()
    client.add("111", 1)
    client.add("111", 2)
    client.add("222", 1)
    store, _, worker, scanner = make_stack(tmp_path, client)

    async def run():
        await scanner.scan("111")
        await scanner.scan("222")
        client.add("111", 3)
        await scanner.scan("111")
        return await worker.run_loop()

    assert asyncio.run(run()) == 4
    assert client.downloads == [("111", 1), ("111", 2), ("222", 1), ("111", 3)]
    assert store.read_pending_queue() == []
    assert [r.id for r in store.read_registry()] == [1, 2, 3, 4]
    assert [e.sequence_number for e in store.read_ledger("111")] == [1, 2, 4]
    assert not worker.is_running()


def test_run_loop_abandons_and_continues(tmp_path):
    client = three_photos()
    client.failures[("12345", 1)] = None
    client.failures[("12345", 2)] = 2
    store, _, worker, scanner = make_stack(tmp_path, client)

    async def run():
        await scanner.scan("12345")
        return await worker.run_loop()

    assert asyncio.run(run()) == 2
    assert client.downloads == [("12345", 1)] * 5 + [("12345", 2)] * 3 + [("12345", 3)]
    assert store.read_pending_queue() == []
    (entry_2, entry_3) = store.read_ledger("12345")
    assert entry_2.message_id == 2
    assert entry_2.retry_count == 2
    assert entry_3.message_id == 3


def test_missing_message_counts_as_failure(tmp_path):
    client = three_photos()
    store, _, worker, scanner = make_stack(tmp_path, client)
    asyncio.run(scanner.scan("12345"))
    client.history["12345"] = client.history["12345"][1:]

    transition = asyncio.run(worker.process_next())

    assert transition.state is JobState.QUEUED
    assert client.downloads == []
    assert store.read_pending_queue()[0].retry_count == 1


def test_empty_payload_counts_as_failure(tmp_path):
    client = FakeClient()
    client.add("12345", 1, payload=b"")
    store, _, worker, scanner = make_stack(tmp_path, client)
    asyncio.run(scanner.scan("12345"))

    assert asyncio.run(worker.process_next()).state is JobState.QUEUED
    assert store.read_registry() == []


def test_download_timeout(tmp_path):
    client = FakeClient()
    client.add("12345", 1)
    store, _, worker, scanner = make_stack(tmp_path, client, download_timeout=0.01)

    async def slow(message):
        await asyncio.sleep(5)
        return b"late"

    client.download_payload = slow
    asyncio.run(scanner.scan("12345"))

    assert asyncio.run(worker.process_next()).state is JobState.QUEUED
    assert store.read_pending_queue()[0].retry_count == 1


def test_registry_failure_removes_stored_file(tmp_path, monkeypatch):
    client = FakeClient()
    client.add("12345", 1)
    store, actor, worker, scanner = make_stack(tmp_path, client)
    asyncio.run(scanner.scan("12345"))

    async def locked(fields):
        raise LockTimeoutError(store.registry_path, 3)

    monkeypatch.setattr(actor, "append_registry_entry", locked)

    assert asyncio.run(worker.process_next()).state is JobState.QUEUED
    assert list((tmp_path / "media").iterdir()) == []
    assert store.read_ledger("12345") == []


def test_run_loop_not_reentrant(tmp_path):
    client = three_photos()
    store, _, worker, scanner = make_stack(tmp_path, client)
    asyncio.run(scanner.scan("12345"))

    worker._running = True
    assert asyncio.run(worker.run_loop()) == 0
    assert client.downloads == []
    assert len(store.read_pending_queue()) == 3


def test_start_returns_active_task(tmp_path):
    client = three_photos()
    store, _, worker, scanner = make_stack(tmp_path, client)

    async def run():
        await scanner.scan("12345")
        first = worker.start()
        second = worker.start()
        assert first is second
        completed = await first
        assert worker.start() is not first
        return completed, await worker.start()

    assert asyncio.run(run()) == (3, 0)
    assert client.downloads == [("12345", 1), ("12345", 2), ("12345", 3)]


def test_bookkeeping_error_clears_running_flag(tmp_path, monkeypatch):
    client = three_photos()
    store, actor, worker, scanner = make_stack(tmp_path, client)
    asyncio.run(scanner.scan("12345"))

    async def broken():
        raise LockTimeoutError(store.queue_path, 6)

    monkeypatch.setattr(actor, "read_pending_queue", broken)
    assert asyncio.run(worker.run_loop()) == 0
    assert not worker.is_running()

    monkeypatch.undo()
    assert asyncio.run(worker.run_loop()) == 3


def test_queue_file_stays_valid_json(tmp_path):
    client = three_photos()
    client.failures[("12345", 2)] = 1
    store, _, worker, scanner = make_stack(tmp_path, client)

    async def run():
        await scanner.scan("12345")
        await worker.run_loop()

    asyncio.run(run())
    assert json.loads(store.queue_path.read_text(encoding="utf-8")) == []
