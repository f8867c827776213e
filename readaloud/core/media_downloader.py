"""
YouTube audio extraction via yt-dlp.
Metadata first (duration gate), then an MP3 download to a caller-chosen path.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from readaloud.core.config import YouTubeSettings
from readaloud.core.constants import ErrorCode, YOUTUBE_USER_AGENT
from readaloud.core.error_codes import JobError
from readaloud.core.security_utils import run_subprocess_capture
from readaloud.core.url_parse import validate_youtube_url

logger = logging.getLogger(__name__)

# Ordered: age-restriction wording also contains "sign in to confirm"
_STDERR_PATTERNS = [
    (("video unavailable", "not available"), ErrorCode.VIDEO_UNAVAILABLE,
     "Video not found or unavailable"),
    (("private video",), ErrorCode.PRIVATE_VIDEO, "This video is private"),
    (("age-restricted", "sign in to confirm your age"), ErrorCode.AGE_RESTRICTED,
     "This video is age-restricted and cannot be downloaded"),
    (("sign in to confirm",), ErrorCode.AUTH_REQUIRED,
     "Video requires authentication. Please try again later."),
    (("copyright",), ErrorCode.COPYRIGHT,
     "This video is unavailable due to copyright restrictions"),
    (("timeout", "timed out"), ErrorCode.MEDIA_TIMEOUT, "YouTube download timed out"),
]


@dataclass
class MediaResult:
    title: str
    duration_seconds: int
    audio_path: Path


def classify_download_error(stderr: str) -> JobError:
    """Turn yt-dlp stderr into a typed JobError."""
    lowered = (stderr or "").lower()
    for needles, code, message in _STDERR_PATTERNS:
        if any(n in lowered for n in needles):
            return JobError(code, message)
    return JobError(ErrorCode.DOWNLOAD_FAILED,
                    f"Failed to extract audio from YouTube: {(stderr or '').strip()[:300]}")


class MediaDownloader:

    def __init__(self, settings: YouTubeSettings):
        self.settings = settings

    def _common_args(self) -> list[str]:
        args = [
            "--no-playlist",
            "--no-warnings",
            "--user-agent", YOUTUBE_USER_AGENT,
            "--extractor-args", "youtube:player_client=android",
            "--retries", "3",
        ]
        cp = self.settings.cookies_path
        if cp and cp.exists():
            args.extend(["--cookies", str(cp)])
        elif cp:
            logger.info("Cookies file %s not found, continuing without cookies", cp)
        return args

    def _run(self, args: list[str], timeout: int) -> subprocess.CompletedProcess:
        try:
            result = run_subprocess_capture([self.settings.yt_dlp_path] + args,
                                            timeout=timeout)
        except subprocess.TimeoutExpired:
            raise JobError(ErrorCode.MEDIA_TIMEOUT,
                           f"yt-dlp timed out after {timeout}s")
        except FileNotFoundError:
            raise JobError(ErrorCode.DOWNLOAD_FAILED,
                           f"yt-dlp not found at {self.settings.yt_dlp_path!r}")

        if result.returncode != 0:
            logger.error("yt-dlp failed (rc=%d): %s", result.returncode,
                         (result.stderr or "")[:500])
            raise classify_download_error(result.stderr)
        return result

    def fetch_metadata(self, url: str) -> dict:
        """title + duration_seconds via --dump-json, nothing downloaded."""
        args = ["--dump-json", "--no-download"] + self._common_args() + [url]
        result = self._run(args, timeout=self.settings.metadata_timeout)

        try:
            data = json.loads(result.stdout)
        except (TypeError, ValueError):
            raise JobError(ErrorCode.DOWNLOAD_FAILED, "Failed to parse YouTube metadata")

        return {
            'title': data.get('title') or 'Untitled',
            'duration_seconds': int(data.get('duration') or 0),
        }

    def validate_duration(self, duration_seconds: int):
        max_duration = self.settings.max_duration_sec
        if duration_seconds > max_duration:
            raise JobError(ErrorCode.EXCEEDS_DURATION,
                           f"Video exceeds maximum duration ({max_duration // 60} minutes)")

    def download(self, url: str, output_path: Path):
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading YouTube audio %s -> %s", url, output_path)

        args = [
            "-x",
            "--audio-format", "mp3",
            "--audio-quality", str(self.settings.audio_quality),
            "--retry-sleep", "10",
            "--ffmpeg-location", self.settings.ffmpeg_path,
            "-o", str(output_path),
        ] + self._common_args() + [url]
        self._run(args, timeout=self.settings.timeout)

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise JobError(ErrorCode.DOWNLOAD_FAILED, "Audio file was not created")

        logger.info("Downloaded %s (%d bytes)", output_path, output_path.stat().st_size)

    def extract(self, url: str, output_path: Path) -> MediaResult:
        normalized = validate_youtube_url(url)

        meta = self.fetch_metadata(normalized)
        self.validate_duration(meta['duration_seconds'])
        self.download(normalized, output_path)

        return MediaResult(
            title=meta['title'],
            duration_seconds=meta['duration_seconds'],
            audio_path=output_path,
        )
