"""
YouTube URL parsing and normalization.
"""

import re

from readaloud.core.constants import (
    YOUTUBE_URL_PATTERNS, VIDEO_ID_PATTERN, YOUTUBE_CANONICAL_URL,
    SourceType, ErrorCode,
)
from readaloud.core.error_codes import JobError

_URL_RES = [re.compile(p) for p in YOUTUBE_URL_PATTERNS]
_VIDEO_ID_RE = re.compile(VIDEO_ID_PATTERN)


def extract_video_id(url: str) -> str | None:
    """
    Extract the 11-character video_id from a YouTube URL or a bare id.
    Returns None if the input is not a recognised YouTube shape.
    """
    url = (url or "").strip()
    if not url:
        return None

    if _VIDEO_ID_RE.match(url):
        return url

    for pattern in _URL_RES:
        m = pattern.search(url)
        if m:
            return m.group(1)

    return None


def normalize_youtube_url(url: str) -> str | None:
    """Canonical https://www.youtube.com/watch?v=<id> form, or None."""
    video_id = extract_video_id(url)
    if video_id is None:
        return None
    return YOUTUBE_CANONICAL_URL.format(video_id=video_id)


def validate_youtube_url(url: str) -> str:
    """
    Validate a YouTube URL and return its canonical form.
    Raises JobError if invalid.
    """
    normalized = normalize_youtube_url(url)
    if not normalized:
        raise JobError(ErrorCode.INVALID_URL, f"Invalid YouTube URL: {url}")
    return normalized


def is_youtube_url(url: str) -> bool:
    """Quick check if a string looks like a YouTube URL."""
    return extract_video_id(url) is not None


def detect_source_type(url: str) -> str:
    return SourceType.YOUTUBE if is_youtube_url(url) else SourceType.WEB
