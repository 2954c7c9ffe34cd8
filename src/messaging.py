"""Messaging client capability and its Telethon implementation."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Protocol

from telethon import TelegramClient
from telethon.tl.custom import Message
from telethon.tl.types import (
    Document,
    DocumentAttributeVideo,
    MessageMediaDocument,
    MessageMediaPhoto,
    Photo,
)

from log_utils import get_logger

log = get_logger().bind(module=__name__)

PROGRESS_INTERVAL = 5


@dataclass
class MessageDescriptor:
    """What the pipeline needs to know about one chat message."""

    chat_id: str
    id: int
    date: datetime
    text: str = ""
    media_kind: str | None = None
    mime_type: str = ""
    file_ext: str = ""
    raw: object = field(default=None, repr=False, compare=False)

    @property
    def timestamp_ms(self) -> int:
        return int(self.date.timestamp() * 1000)


class MessagingClient(Protocol):
    def is_connected(self) -> bool: ...

    def list_messages(self, chat_id: str) -> AsyncIterator[MessageDescriptor]: ...

    async def get_message(
        self, chat_id: str, message_id: int
    ) -> MessageDescriptor | None: ...

    async def download_payload(self, message: MessageDescriptor) -> bytes: ...


def peer(chat_id: str) -> int | str:
    """Return ``chat_id`` as Telethon expects it: numeric ids as ``int``."""
    text = str(chat_id).strip()
    if text.removeprefix("-").isdigit():
        return int(text)
    return text


def normalize_chat_id(chat_id) -> str:
    """Return the one spelling of ``chat_id`` used for storage.

    Numeric ids keep their sign.  Usernames lose a leading ``@`` and are
    lowercased, since Telegram treats them case-insensitively.
    """
    text = str(chat_id).strip()
    if text.removeprefix("-").isdigit():
        return str(int(text))
    return text.lstrip("@").lower()


def progress_logger(chat_id: str, msg_id: int):
    """Return a progress callback that logs received bytes."""

    last = 0.0

    def cb(received: int, total: int) -> None:
        nonlocal last
        now = time.monotonic()
        if now - last >= PROGRESS_INTERVAL:
            last = now
            log.info(
                "Downloading", chat=chat_id, id=msg_id, received=received, total=total
            )

    return cb


def media_kind(msg: Message) -> str | None:
    """Return ``photo``, ``video``, ``document`` or ``None`` for ``msg``.

    Only media attached to the message itself counts.  Link previews and
    service messages such as a changed chat photo have no payload of their
    own and give ``None``.
    """
    media = getattr(msg, "media", None)
    if isinstance(media, MessageMediaPhoto):
        return "photo" if isinstance(media.photo, Photo) else None
    if isinstance(media, MessageMediaDocument) and isinstance(media.document, Document):
        if any(isinstance(a, DocumentAttributeVideo) for a in media.document.attributes):
            return "video"
        return "document"
    return None


def describe(chat_id: str, msg: Message) -> MessageDescriptor:
    kind = media_kind(msg)
    file = getattr(msg, "file", None) if kind else None
    return MessageDescriptor(
        chat_id=str(chat_id),
        id=msg.id,
        date=msg.date,
        text=getattr(msg, "text", None) or getattr(msg, "message", None) or "",
        media_kind=kind,
        mime_type=(getattr(file, "mime_type", "") or "").lower(),
        file_ext=getattr(file, "ext", "") or "",
        raw=msg,
    )


class TelethonMessagingClient:
    """Adapter exposing a logged in :class:`TelegramClient`."""

    def __init__(self, client: TelegramClient) -> None:
        self.client = client

    def is_connected(self) -> bool:
        return bool(self.client.is_connected())

    async def list_messages(self, chat_id: str) -> AsyncIterator[MessageDescriptor]:
        count = 0
        async for msg in self.client.iter_messages(peer(chat_id), limit=None):
            count += 1
            yield describe(chat_id, msg)
        log.debug("Listed history", chat=chat_id, messages=count)

    async def get_message(
        self, chat_id: str, message_id: int
    ) -> MessageDescriptor | None:
        msg = await self.client.get_messages(peer(chat_id), ids=message_id)
        if not msg:
            return None
        return describe(chat_id, msg)

    async def download_payload(self, message: MessageDescriptor) -> bytes:
        raw = message.raw
        if raw is None:
            raw = await self.client.get_messages(peer(message.chat_id), ids=message.id)
        return await self.client.download_media(
            raw,
            file=bytes,
            progress_callback=progress_logger(message.chat_id, message.id),
        )
