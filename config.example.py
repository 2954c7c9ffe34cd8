"""Example configuration for the media downloader.

Copy this file to ``config.py`` and replace the placeholder values with your
own credentials.  Secrets should never be committed to the repository.
"""

# Telethon client credentials.  ``TG_API_ID`` and ``TG_API_HASH`` identify the
# application, while ``TG_SESSION`` is a filename where the user session will be
# saved after the first login.  Only a user session can read chat history.
TG_API_ID = 123456
TG_API_HASH = "0123456789abcdef0123456789abcdef"
TG_SESSION = "session"

# Bot token and recipients for status messages ("scan started", "queued 3
# new files", errors).  Leave ``NOTIFY_CHAT_IDS`` empty to only log them.
TG_TOKEN = "123:ABC"
NOTIFY_CHAT_IDS = []

# Where the pending queue (download.json), content registry (database.json)
# and per-chat ledgers (ID/<chat>.json) live.  Exactly one downloader process
# may use a given directory.
DATA_DIR = "data/downloads"

# Downloaded files are stored here under random names.
DOWNLOAD_DIR = "data/media"

# Failed attempts allowed per message before it is dropped from the queue.
MAX_RETRIES = 5

# Seconds to wait after a failed attempt, doubled for every further failure
# of the same job.  ``0`` retries immediately.
RETRY_BACKOFF = 0

# Optional limit in seconds for a single download.  ``None`` waits forever.
DOWNLOAD_TIMEOUT = None

# How long a scan may walk a chat's history before it is reported as timed out.
SCAN_TIMEOUT = 1800

# With ``--listen`` the worker is restarted this often to retry failed jobs.
WORKER_INTERVAL = 300

# File lock acquisition attempts and initial backoff in seconds.
LOCK_RETRIES = 5
LOCK_BACKOFF = 0.1

# Default log verbosity. Use "DEBUG", "INFO" or "ERROR".
LOG_LEVEL = "INFO"
