import asyncio
import types

from downloader_test_utils import FakeClient, WorkerStub, make_store

import downloader
from scanner import Scanner
from store_actor import StoreActor
from worker import DownloadWorker


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, text):
        self.sent.append(text)


def make_scanner(tmp_path, client):
    worker = WorkerStub()
    return Scanner(client, StoreActor(make_store(tmp_path)), worker), worker


def test_start_scan_reports_queued(tmp_path):
    client = FakeClient()
    client.add("-100123", 1)
    client.add("-100123", 2)
    scanner, worker = make_scanner(tmp_path, client)
    notifier = RecordingNotifier()

    result = asyncio.run(downloader.start_scan(scanner, notifier, " -100123 "))

    assert len(result.queued) == 2
    assert worker.started == 1
    assert notifier.sent[0].startswith("✅ Starting scan for chat -100123")
    assert notifier.sent[1] == "📥 Queued 2 new files from chat -100123."


def test_start_scan_reports_nothing_new(tmp_path):
    scanner, _ = make_scanner(tmp_path, FakeClient())
    notifier = RecordingNotifier()

    asyncio.run(downloader.start_scan(scanner, notifier, "12345"))

    assert notifier.sent[-1] == "No new files to download from chat 12345."


def test_start_scan_rejects_invalid_id(tmp_path):
    scanner, worker = make_scanner(tmp_path, FakeClient())
    notifier = RecordingNotifier()

    assert asyncio.run(downloader.start_scan(scanner, notifier, "12 34")) is None
    assert notifier.sent == ["⚠️ Invalid chat id: '12 34'"]
    assert worker.started == 0


def test_start_scan_client_not_ready(tmp_path):
    scanner, worker = make_scanner(tmp_path, FakeClient(connected=False))
    notifier = RecordingNotifier()

    assert asyncio.run(downloader.start_scan(scanner, notifier, "12345")) is None
    assert "not connected" in notifier.sent[-1]
    assert worker.started == 0


def test_start_scan_reports_errors(tmp_path):
    client = FakeClient()
    client.add("12345", 1)
    client.history_error = ConnectionError("boom")
    scanner, worker = make_scanner(tmp_path, client)
    notifier = RecordingNotifier()

    assert asyncio.run(downloader.start_scan(scanner, notifier, "12345")) is None
    assert notifier.sent[-1].startswith("❌ An error occurred during the scan")
    assert worker.started == 1


def test_start_scan_timeout(tmp_path):
    client = FakeClient()

    async def endless(chat_id):
        while True:
            await asyncio.sleep(1)
            yield None

    client.list_messages = endless
    scanner, worker = make_scanner(tmp_path, client)
    notifier = RecordingNotifier()

    result = asyncio.run(
        downloader.start_scan(scanner, notifier, "12345", timeout=0.05)
    )

    assert result is None
    assert notifier.sent[-1].startswith("⌛ Scan of chat 12345 timed out after 0.05s.")
    assert "may already be queued" in notifier.sent[-1]
    assert worker.started == 1


def test_notifier_failure_is_logged(tmp_path):
    class Broken:
        async def notify(self, text):
            raise RuntimeError("bot blocked")

    scanner, _ = make_scanner(tmp_path, FakeClient())
    result = asyncio.run(downloader.start_scan(scanner, Broken(), "12345"))
    assert result.queued == []


def test_valid_chat_id():
    assert downloader.valid_chat_id("-1001234567890")
    assert downloader.valid_chat_id("12345")
    assert downloader.valid_chat_id("@some_channel")
    assert not downloader.valid_chat_id("")
    assert not downloader.valid_chat_id("../etc")


def test_build_pipeline_uses_config(tmp_path):
    cfg = types.ModuleType("config")
    cfg.DATA_DIR = str(tmp_path / "data")
    cfg.DOWNLOAD_DIR = str(tmp_path / "media")
    cfg.MAX_RETRIES = 2
    cfg.RETRY_BACKOFF = 0.5

    actor, worker, scanner = downloader.build_pipeline(cfg, FakeClient())

    assert actor.store.queue_path == tmp_path / "data" / "download.json"
    assert isinstance(worker, DownloadWorker)
    assert worker.download_dir == tmp_path / "media"
    assert worker.retry_backoff == 0.5
    assert worker.download_timeout is None
    assert scanner.worker is worker
    assert scanner.max_retries == 2


def test_format_status(tmp_path):
    client = FakeClient()
    client.add("12345", 1)
    client.add("12345", 2)
    actor, worker, scanner = downloader.build_pipeline(
        types.SimpleNamespace(
            DATA_DIR=str(tmp_path / "data"), DOWNLOAD_DIR=str(tmp_path / "media")
        ),
        client,
    )
    client.failures[("12345", 2)] = 1

    async def run():
        await scanner.scan("12345")
        await worker.start()
        client.add("12345", 3)
        scanner.worker = WorkerStub()
        await scanner.scan("12345")

    asyncio.run(run())
    text = downloader.format_status(actor.store)
    assert text.splitlines() == [
        "pending: 1",
        "retrying: 0",
        "registry: 2",
        "ledger 12345: 2",
    ]


def test_launch_scan_runs_detached(tmp_path):
    client = FakeClient()
    client.add("12345", 1)
    scanner, worker = make_scanner(tmp_path, client)
    notifier = RecordingNotifier()

    async def run():
        task = downloader.launch_scan(scanner, notifier, "12345")
        assert notifier.sent == []
        return await task

    result = asyncio.run(run())
    assert [j.message_id for j in result.queued] == [1]
    assert len(notifier.sent) == 2


def test_username_aliases_share_one_queue(tmp_path):
    client = FakeClient()
    client.add("chan", 1)
    client.add("chan", 2)
    scanner, _ = make_scanner(tmp_path, client)
    notifier = RecordingNotifier()

    async def run():
        first = await downloader.start_scan(scanner, notifier, "@Chan")
        second = await downloader.start_scan(scanner, notifier, "chan")
        return first, second

    first, second = asyncio.run(run())

    assert first.chat_id == "chan"
    assert len(first.queued) == 2
    assert second.queued == []
    queue = scanner.store.store.read_pending_queue()
    assert [(j.chat_id, j.message_id) for j in queue] == [("chan", 1), ("chan", 2)]
    assert notifier.sent[0].startswith("✅ Starting scan for chat chan.")


def test_listen_stops_retriggering_on_exit():
    worker = WorkerStub()

    async def run():
        await downloader.listen(worker, asyncio.sleep(0.05), 0.01)
        started = worker.started
        await asyncio.sleep(0.05)
        return started

    started = asyncio.run(run())

    assert started >= 2
    assert worker.started == started
