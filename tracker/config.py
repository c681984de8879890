"""
Tracker configuration. Dropbox app values and storage locations come from env.
No secrets in this file; the app key is a public identifier for a PKCE client.
"""
import os

# Dropbox app key (public client; PKCE, no client secret)
DROPBOX_CLIENT_ID = os.environ.get("DROPBOX_CLIENT_ID", "kt1vtwzua07s4mc")

# Must match a redirect URI registered in the Dropbox App Console exactly
REDIRECT_URI = os.environ.get("TRACKER_REDIRECT_URI", "http://127.0.0.1:8000/")

AUTHORIZE_URL = os.environ.get("DROPBOX_AUTHORIZE_URL", "https://www.dropbox.com/oauth2/authorize")
TOKEN_URL = os.environ.get("DROPBOX_TOKEN_URL", "https://api.dropboxapi.com/oauth2/token")
CONTENT_URL = os.environ.get("DROPBOX_CONTENT_URL", "https://content.dropboxapi.com/2").rstrip("/")

# Durable credential storage (SQLite by default)
DATABASE_URL = os.environ.get("TRACKER_DATABASE_URL", "sqlite:///./tracker.db")

# Dropbox folder holding one Data/ directory per course number
DATA_ROOT = os.environ.get("TRACKER_DATA_ROOT", "/Teaching").rstrip("/")

# Optional JSON file with the course list; built-in list used when unset
COURSES_FILE = os.environ.get("TRACKER_COURSES_FILE", "").strip() or None

LOG_LEVEL = os.environ.get("TRACKER_LOG_LEVEL", "INFO").upper()

# Access token counts as expired this long before its real expiry
TOKEN_EXPIRY_BUFFER_MS = 300_000

# Used when the provider omits expires_in, and always after a refresh
DEFAULT_TOKEN_LIFETIME_SECONDS = 14_400

# Pending PKCE verifier lifetime (user has this long to finish the Dropbox consent)
VERIFIER_TTL_SECONDS = 600

SAVE_DEBOUNCE_SECONDS = 0.5
SAVE_RETRY_DELAY_SECONDS = 2.0

# Present taps on absent students become late after this many minutes
GRACE_MINUTES = 3

PAST_SESSIONS_TO_SHOW = 3

HTTP_TIMEOUT_SECONDS = 10.0
