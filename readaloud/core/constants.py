"""
Shared constants for ReadAloud.
Single source of truth, imported by every other module.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "ReadAloud"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path(os.environ.get("READALOUD_HOME", pathlib.Path.home() / ".readaloud"))

APP_SUPPORT_DIR = HOME
APP_CACHE_DIR = HOME / "cache"
TEMP_DIR = APP_CACHE_DIR / "tmp"
LOG_DIR = HOME / "logs"
DB_PATH = APP_SUPPORT_DIR / "readaloud.db"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
DEFAULT_STORAGE_ROOT = HOME / "storage"
DEFAULT_STORAGE_BASE_URL = "/storage"

# yt-dlp cookies (Netscape format)
DEFAULT_COOKIES_PATH = APP_SUPPORT_DIR / "cookies.txt"

# ── Secrets (environment) ─────────────────────────────────────────────
API_KEY_ENV = "READALOUD_API_KEY"
API_BASE_ENV = "READALOUD_API_BASE"
COOKIES_B64_ENV = "YOUTUBE_COOKIES_B64"
DEFAULT_API_BASE = "https://api.naga.ac"

# ── Article values ────────────────────────────────────────────────────
class SourceType:
    WEB = "web"
    YOUTUBE = "youtube"

class ExtractionStatus:
    PENDING = "pending"
    EXTRACTING = "extracting"
    READY = "ready"
    FAILED = "failed"

# ── Audio job status values ───────────────────────────────────────────
class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    DOWNLOADING = "downloading"

IN_FLIGHT_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.DOWNLOADING)

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Retryable
    NETWORK_TIMEOUT = "network_timeout"
    API_RATE_LIMIT = "api_rate_limit"
    STORAGE_FAILED = "storage_failed"
    AUTH_REQUIRED = "auth_required"
    MEDIA_TIMEOUT = "media_timeout"
    DOWNLOAD_FAILED = "download_failed"
    UNKNOWN = "unknown"

    # Non-retryable
    API_QUOTA_EXCEEDED = "api_quota_exceeded"
    API_AUTH_FAILED = "api_auth_failed"
    CONTENT_TOO_LONG = "content_too_long"
    INVALID_CONTENT = "invalid_content"
    INVALID_URL = "invalid_url"
    VIDEO_UNAVAILABLE = "video_unavailable"
    PRIVATE_VIDEO = "private_video"
    AGE_RESTRICTED = "age_restricted"
    COPYRIGHT = "copyright"
    EXCEEDS_DURATION = "exceeds_duration"

RETRYABLE_ERRORS = {
    ErrorCode.NETWORK_TIMEOUT,
    ErrorCode.API_RATE_LIMIT,
    ErrorCode.STORAGE_FAILED,
    ErrorCode.AUTH_REQUIRED,
    ErrorCode.MEDIA_TIMEOUT,
    ErrorCode.DOWNLOAD_FAILED,
    ErrorCode.UNKNOWN,
}

# Seconds until the retry sweep may pick a failed job up again
RETRY_DELAYS = {
    ErrorCode.NETWORK_TIMEOUT: 10,
    ErrorCode.API_RATE_LIMIT: 30,
    ErrorCode.STORAGE_FAILED: 5,
    ErrorCode.AUTH_REQUIRED: 60,
    ErrorCode.MEDIA_TIMEOUT: 20,
    ErrorCode.DOWNLOAD_FAILED: 15,
}
DEFAULT_RETRY_DELAY = 15

USER_MESSAGES = {
    ErrorCode.NETWORK_TIMEOUT: "Connection timed out. Will retry automatically.",
    ErrorCode.API_RATE_LIMIT: "Service busy. Will retry in a moment.",
    ErrorCode.API_QUOTA_EXCEEDED: "Daily limit reached. Try again tomorrow.",
    ErrorCode.API_AUTH_FAILED: "Service configuration error. Contact support.",
    ErrorCode.CONTENT_TOO_LONG: "Article too long for audio generation.",
    ErrorCode.INVALID_CONTENT: "Could not process article content.",
    ErrorCode.STORAGE_FAILED: "Failed to save audio file. Will retry.",
    ErrorCode.INVALID_URL: "This link is not a valid YouTube video.",
    ErrorCode.VIDEO_UNAVAILABLE: "Video not found or unavailable.",
    ErrorCode.PRIVATE_VIDEO: "This video is private.",
    ErrorCode.AGE_RESTRICTED: "This video is age-restricted and cannot be downloaded.",
    ErrorCode.COPYRIGHT: "This video is unavailable due to copyright restrictions.",
    ErrorCode.EXCEEDS_DURATION: "Video is longer than the maximum allowed duration.",
    ErrorCode.AUTH_REQUIRED: "Video requires authentication. Please try again later.",
    ErrorCode.MEDIA_TIMEOUT: "Video download timed out. Will retry.",
    ErrorCode.DOWNLOAD_FAILED: "Failed to download video audio. Will retry.",
    ErrorCode.UNKNOWN: "Something went wrong. Will retry automatically.",
}

# Ordered (substring, code) pairs matched case-insensitively against an
# exception message. First hit wins.
ERROR_PATTERNS = [
    ("private video", ErrorCode.PRIVATE_VIDEO),
    ("age-restricted", ErrorCode.AGE_RESTRICTED),
    ("sign in to confirm your age", ErrorCode.AGE_RESTRICTED),
    ("video unavailable", ErrorCode.VIDEO_UNAVAILABLE),
    ("not available", ErrorCode.VIDEO_UNAVAILABLE),
    ("copyright", ErrorCode.COPYRIGHT),
    ("exceeds maximum duration", ErrorCode.EXCEEDS_DURATION),
    ("timeout", ErrorCode.NETWORK_TIMEOUT),
    ("timed out", ErrorCode.NETWORK_TIMEOUT),
    ("429", ErrorCode.API_RATE_LIMIT),
    ("rate limit", ErrorCode.API_RATE_LIMIT),
    ("quota", ErrorCode.API_QUOTA_EXCEEDED),
    ("401", ErrorCode.API_AUTH_FAILED),
    ("403", ErrorCode.API_AUTH_FAILED),
    ("too long", ErrorCode.CONTENT_TOO_LONG),
    ("too large", ErrorCode.CONTENT_TOO_LONG),
]

# LLM failures that make another extraction attempt pointless
NON_RETRYABLE_LLM_PATTERNS = [
    "401", "403", "429", "rate limit", "invalid api key",
    "unauthorized", "authentication", "quota exceeded",
]

# ── Retry / concurrency ───────────────────────────────────────────────
MAX_AUDIO_RETRIES = 3
EXTRACTOR_MAX_RETRIES = 2
EXTRACTION_BACKOFF = (60, 120)
LOCK_LEASE_SEC = 600
AUDIO_RETENTION_DAYS = 30

# ── Text chunking ─────────────────────────────────────────────────────
MAX_CHUNK_SIZE = 4000
SENTENCE_TERMINATORS = (". ", "? ", "! ", "\n\n")
MIN_SENTENCE_CUT_RATIO = 0.5

# ── Progress estimation ───────────────────────────────────────────────
CHARS_PER_SECOND = 50
OVERHEAD_MS = 3000
DEFAULT_POLL_INTERVAL_MS = 3000
POLL_INTERVALS = [          # (eta below, interval ms)
    (5, 1000),
    (30, 2000),
    (60, 3000),
]
SLOW_POLL_INTERVAL_MS = 5000

PROGRESS_YOUTUBE_DOWNLOADED = 50

# ── Extraction ────────────────────────────────────────────────────────
EXTRACTOR_MAX_LENGTH = 15000
FALLBACK_BODY_CHARS = 5000
TRUNCATION_MARKER = "..."

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9,nl;q=0.8",
    "Referer": "https://www.google.com",
    "DNT": "1",
    "Cache-Control": "no-cache",
}

# Elements that never carry article text
BOILERPLATE_TAGS = [
    "script", "style", "nav", "footer", "header", "aside",
    "form", "svg", "iframe", "noscript",
]
BOILERPLATE_ATTR_RE = r"(?:^|[\s_-])(?:ads?|advert\w*|sidebar|comments?|newsletter)(?:$|[\s_-])"

# ── TTS ───────────────────────────────────────────────────────────────
TTS_MODEL = "gpt-4o-mini-tts:free"
TTS_DEFAULT_VOICE = "alloy"
TTS_FORMAT = "mp3"

TTS_VOICES = {
    "alloy": "Alloy (Neutral)",
    "ash": "Ash (Warm)",
    "ballad": "Ballad (Expressive)",
    "coral": "Coral (Friendly)",
    "echo": "Echo (Clear)",
    "fable": "Fable (Storytelling)",
    "nova": "Nova (Bright)",
    "onyx": "Onyx (Deep)",
    "sage": "Sage (Calm)",
    "shimmer": "Shimmer (Gentle)",
    "verse": "Verse (Dynamic)",
}

YOUTUBE_VOICE = "youtube"

# ── LLM ───────────────────────────────────────────────────────────────
EXTRACTOR_MODEL = "google/gemini-2.5-flash-lite"

# ── Storage layout ────────────────────────────────────────────────────
AUDIO_PREFIX = "audio"
YOUTUBE_PREFIX = "youtube"

# ── YouTube ───────────────────────────────────────────────────────────
YOUTUBE_MAX_DURATION_SEC = 7200
YOUTUBE_DOWNLOAD_TIMEOUT_SEC = 300
YOUTUBE_METADATA_TIMEOUT_SEC = 60
YOUTUBE_AUDIO_QUALITY = 0
YOUTUBE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
YOUTUBE_CANONICAL_URL = "https://www.youtube.com/watch?v={video_id}"
VIDEO_ID_PATTERN = r'^[a-zA-Z0-9_-]{11}$'
YOUTUBE_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.|m\.)?youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/shorts/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/embed/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/v/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/live/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?youtu\.be/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?music\.youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
]

# Characters forbidden in blob paths
UNSAFE_FILENAME_CHARS = r'[<>:"\\|?*\x00-\x1f]'
