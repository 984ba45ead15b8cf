# constants.py - Define constants used throughout the application

# --- API Endpoints ---
API_PATH_PREFIX = "/v1"
ENTRIES_ENDPOINT = "/entries"
CURRENT_USER_ENDPOINT = "/me"
YOUTUBE_THUMBNAIL_URL = "https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

# --- File/Directory Names ---
DEFAULT_DOWNLOAD_DIR = "entries"
DEFAULT_QUEUE_FILENAME = "status_queue.json"
DEFAULT_LOG_FILE = "reader.log"
ENTRY_HTML_FILENAME = "entry.html"
METADATA_FILENAME = "metadata.json"
PARTIAL_SUFFIX = ".part" # Suffix for files that are still being written
DELETING_PREFIX = ".deleting-" # Prefix for bundle dirs that are being removed
UNTITLED_ENTRY = "Untitled Entry"

# --- Images ---
IMAGE_FILENAME_TEMPLATE = "image_{index:03d}.{ext}"
DEFAULT_IMAGE_EXTENSION = "jpg"
VALID_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "svg"}
IMAGE_MIN_BYTES = 10
DEFAULT_IMAGE_MAX_BYTES = 50 * 1024 * 1024
IMAGE_CHUNK_SIZE = 64 * 1024
ACCEPTED_IMAGE_CONTENT_TYPES = ("image/", "application/octet-stream")

# --- HTML ---
STRIPPED_TAGS = ["iframe", "script", "form", "object", "embed", "video", "style"]

# --- Entry Status ---
STATUS_READ = "read"
STATUS_UNREAD = "unread"
VALID_STATUSES = {STATUS_READ, STATUS_UNREAD}
SYNC_SYNCED = "synced"
SYNC_PENDING_UPLOAD = "pending_upload"

# --- Request Defaults ---
DEFAULT_USER_AGENT = "OfflineEntryReader/1.0"
DEFAULT_REQUEST_DELAY = 1.0 # Default base seconds between retries
DEFAULT_MAX_RETRIES = 3 # Default max retries for requests
DEFAULT_API_CONNECT_TIMEOUT = 10
DEFAULT_API_TIMEOUT = 30 # Total timeout for API calls
DEFAULT_IMAGE_CONNECT_TIMEOUT = 15
DEFAULT_IMAGE_TIMEOUT = 60 # Total transfer timeout per image
DEFAULT_IMAGE_MAX_RETRIES = 1
DEFAULT_CONNECTIVITY_MAX_RETRIES = 0

# --- Sync / Materialization ---
DEFAULT_QUEUE_RETRY_LIMIT = 3
DEFAULT_CANCEL_CHECK_INTERVAL = 1.0 # Seconds of download time between cancellation checks
DEFAULT_MAX_WORKERS = 2
