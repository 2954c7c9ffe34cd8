"""Cross-process locking for the durable JSON files."""

from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from filelock import FileLock, Timeout

from errors import LockTimeoutError
from log_utils import get_logger

log = get_logger().bind(module=__name__)

T = TypeVar("T")

LOCK_RETRIES = 5
LOCK_BACKOFF = 0.1
# How long one acquisition attempt blocks before backing off.
ATTEMPT_TIMEOUT = 1.0


def lock_path(path: Path) -> Path:
    """Return the sidecar lock file guarding ``path``."""
    return path.with_name(path.name + ".lock")


@contextmanager
def locked(
    path: Path,
    *,
    retries: int = LOCK_RETRIES,
    backoff: float = LOCK_BACKOFF,
    attempt_timeout: float = ATTEMPT_TIMEOUT,
) -> Iterator[None]:
    """Hold the exclusive lock for ``path`` for the duration of the block.

    ``path`` itself does not need to exist.  Acquisition is attempted
    ``retries + 1`` times, sleeping ``backoff`` seconds after the first
    failure and doubling the delay after each further one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_path(path)), timeout=attempt_timeout)
    delay = backoff
    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        try:
            lock.acquire()
            break
        except Timeout:
            if attempt == attempts:
                log.error("Lock timeout", path=str(path), attempts=attempts)
                raise LockTimeoutError(path, attempts) from None
            log.debug("Lock busy", path=str(path), attempt=attempt, delay=delay)
            time.sleep(delay)
            delay *= 2
    try:
        yield
    finally:
        lock.release()


def with_lock(path: Path, fn: Callable[[], T], **kwargs) -> T:
    """Run ``fn`` while holding the lock for ``path`` and return its result.

    ``fn`` should read ``path`` itself so it always sees the latest content.
    """
    with locked(path, **kwargs):
        return fn()
