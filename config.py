# Configuration constants for the media downloader.
# Secrets must be kept outside the repository.

# Telethon client configuration.  ``TG_API_ID`` and ``TG_API_HASH`` identify
# the application while ``TG_SESSION`` stores the logged in user session.
TG_API_ID   = 123456
TG_API_HASH = "0123456789abcdef0123456789abcdef"
TG_SESSION  = "session"

TG_TOKEN = "123:ABC"  # Used for status notifications
NOTIFY_CHAT_IDS = []

DATA_DIR = "data/downloads"
DOWNLOAD_DIR = "data/media"

MAX_RETRIES = 5
