from __future__ import annotations

"""Scan Telegram chats for media and download it in the background."""

import argparse
import asyncio
import contextlib
import re

from telethon import TelegramClient

from config_utils import data_dir, download_dir, load_config
from errors import ClientNotReadyError
from log_utils import get_logger, install_excepthook
from messaging import MessagingClient, TelethonMessagingClient, normalize_chat_id
from models import DEFAULT_MAX_RETRIES
from notifier import Notifier, build_notifier
from scanner import ScanResult, Scanner
from store import Store
from store_actor import StoreActor
from worker import DownloadWorker

log = get_logger().bind(script=__file__)
install_excepthook(log)

SCAN_TIMEOUT = 30 * 60
WORKER_INTERVAL = 300

# Numeric ids (negative for groups and channels) or public usernames.
_CHAT_ID_RE = re.compile(r"^(-?\d+|@?[A-Za-z][A-Za-z0-9_]{3,31})$")


def valid_chat_id(text: str) -> bool:
    return bool(_CHAT_ID_RE.match(text.strip()))


async def _notify(notifier: Notifier, text: str) -> None:
    try:
        await notifier.notify(text)
    except Exception:
        log.exception("Notifier failed", text=text[:80])


async def start_scan(
    scanner: Scanner,
    notifier: Notifier,
    chat_id: str,
    *,
    timeout: float | None = SCAN_TIMEOUT,
) -> ScanResult | None:
    """Scan ``chat_id`` and tell a human how it went.

    Returns the scan result or ``None`` when the scan did not complete.
    Errors are reported through ``notifier`` instead of being raised so this
    can run as a detached task.
    """
    chat_id = str(chat_id).strip()
    if not valid_chat_id(chat_id):
        await _notify(notifier, f"⚠️ Invalid chat id: {chat_id!r}")
        return None
    chat_id = normalize_chat_id(chat_id)

    await _notify(notifier, f"✅ Starting scan for chat {chat_id}. This may take a while.")
    try:
        result = await asyncio.wait_for(scanner.scan(chat_id), timeout)
    except ClientNotReadyError:
        await _notify(
            notifier, f"❌ Messaging client is not connected, scan of {chat_id} not started."
        )
        return None
    except asyncio.TimeoutError:
        log.error("Scan timed out", chat=chat_id, timeout=timeout)
        await _notify(
            notifier,
            f"⌛ Scan of chat {chat_id} timed out after {timeout:g}s. "
            "Files found before the timeout may already be queued; "
            "scan again to pick up the rest.",
        )
        return None
    except Exception:
        log.exception("Scan failed", chat=chat_id)
        await _notify(
            notifier,
            f"❌ An error occurred during the scan for chat {chat_id}. Please check the logs.",
        )
        return None

    if result.queued:
        await _notify(
            notifier,
            f"📥 Queued {len(result.queued)} new files from chat {chat_id}.",
        )
    else:
        await _notify(notifier, f"No new files to download from chat {chat_id}.")
    return result


def launch_scan(
    scanner: Scanner, notifier: Notifier, chat_id: str, **kwargs
) -> asyncio.Task:
    """Run :func:`start_scan` as a detached task."""
    return asyncio.create_task(start_scan(scanner, notifier, chat_id, **kwargs))


def build_pipeline(
    cfg, client: MessagingClient
) -> tuple[StoreActor, DownloadWorker, Scanner]:
    """Wire the store actor, worker and scanner from ``cfg``."""
    store = Store(
        data_dir(cfg),
        lock_retries=getattr(cfg, "LOCK_RETRIES", 5),
        lock_backoff=getattr(cfg, "LOCK_BACKOFF", 0.1),
    )
    actor = StoreActor(store)
    worker = DownloadWorker(
        client,
        actor,
        download_dir(cfg),
        retry_backoff=getattr(cfg, "RETRY_BACKOFF", 0.0),
        download_timeout=getattr(cfg, "DOWNLOAD_TIMEOUT", None),
    )
    scanner = Scanner(
        client,
        actor,
        worker,
        max_retries=getattr(cfg, "MAX_RETRIES", DEFAULT_MAX_RETRIES),
    )
    return actor, worker, scanner


def format_status(store: Store) -> str:
    """Return a short report of queue, registry and ledger sizes."""
    queue = store.read_pending_queue()
    lines = [
        f"pending: {len(queue)}",
        f"retrying: {sum(1 for j in queue if j.retry_count)}",
        f"registry: {len(store.read_registry())}",
    ]
    for chat in store.ledger_chats():
        lines.append(f"ledger {chat}: {len(store.read_ledger(chat))}")
    return "\n".join(lines)


async def _retrigger(worker: DownloadWorker, interval: float) -> None:
    """Periodically restart the worker so failed jobs get retried."""

    while True:
        await asyncio.sleep(interval)
        if not worker.is_running():
            log.debug("Periodic worker trigger")
            worker.start()


async def listen(worker: DownloadWorker, until, interval: float) -> None:
    """Keep re-triggering ``worker`` until the awaitable ``until`` finishes."""
    worker.start()
    retrigger = asyncio.create_task(_retrigger(worker, interval))
    try:
        await until
    finally:
        retrigger.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await retrigger


async def main(argv: list[str] | None = None) -> None:
    """Run the downloader CLI."""

    parser = argparse.ArgumentParser(description="Download media from Telegram chats")
    parser.add_argument("chats", nargs="*", metavar="CHAT", help="chat ids to scan")
    parser.add_argument("--listen", action="store_true", help="stay running")
    parser.add_argument(
        "--interval", type=float, default=None, help="seconds between worker runs"
    )
    parser.add_argument("--status", action="store_true", help="print queue status")
    args = parser.parse_args(argv)

    cfg = load_config()
    if args.status:
        print(format_status(Store(data_dir(cfg))))
        return

    client = TelegramClient(cfg.TG_SESSION, cfg.TG_API_ID, cfg.TG_API_HASH)
    await client.start()
    log.info("Logged in")

    actor, worker, scanner = build_pipeline(cfg, TelethonMessagingClient(client))
    notifier = build_notifier(cfg)
    timeout = getattr(cfg, "SCAN_TIMEOUT", SCAN_TIMEOUT)

    try:
        for chat in args.chats:
            await start_scan(scanner, notifier, chat, timeout=timeout)

        if not args.listen:
            completed = await worker.start()
            log.info("Queue drained", completed=completed)
            return

        interval = args.interval or getattr(cfg, "WORKER_INTERVAL", WORKER_INTERVAL)
        log.info("Listening", interval=interval)
        await listen(worker, client.run_until_disconnected(), interval)
    finally:
        await actor.stop()
        await client.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
