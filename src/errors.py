"""Exceptions raised by the scan and download pipeline."""


class DownloaderError(Exception):
    """Base class for all pipeline errors."""


class ClientNotReadyError(DownloaderError):
    """The messaging client is not connected; nothing was scanned."""


class LockTimeoutError(DownloaderError):
    """A durable file stayed locked after every acquisition attempt."""

    def __init__(self, path, attempts: int):
        super().__init__(f"could not lock {path} after {attempts} attempts")
        self.path = path
        self.attempts = attempts


class MediaFetchError(DownloaderError):
    """The source message is gone or inaccessible."""


class DownloadError(DownloaderError):
    """The message payload could not be downloaded or stored."""


class StoreFormatError(DownloaderError):
    """A durable file holds something other than a JSON array."""
