"""
Diagnostics: tool version detection, cookie-file checks and setup.
"""

import base64
import binascii
import os
import logging
from datetime import datetime, timezone
from pathlib import Path

from readaloud.core.security_utils import run_subprocess_capture
from readaloud.core.constants import DEFAULT_COOKIES_PATH, COOKIES_B64_ENV

logger = logging.getLogger(__name__)


def _tool_version(args: list[str]) -> str:
    try:
        result = run_subprocess_capture(args, timeout=10)
    except FileNotFoundError:
        return "Not installed"
    except OSError as e:
        return f"Error: {e}"
    if result.returncode != 0:
        return f"Error (rc={result.returncode})"
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else "Unknown"


def get_ytdlp_version(yt_dlp_path: str = "yt-dlp") -> str:
    """Return yt-dlp version string, or error message."""
    return _tool_version([yt_dlp_path, "--version"])


def get_ffmpeg_version(ffmpeg_path: str = "ffmpeg") -> str:
    """First line of `ffmpeg -version`, or error message."""
    return _tool_version([ffmpeg_path, "-version"])


def check_cookies_file(cookies_path: Path | None = None) -> dict:
    path = cookies_path or DEFAULT_COOKIES_PATH
    info = {"detected": False, "path": str(path), "size": None, "last_modified": None}
    if path.exists():
        stat = path.stat()
        info["detected"] = True
        info["size"] = stat.st_size
        info["last_modified"] = datetime.fromtimestamp(
            stat.st_mtime, tz=timezone.utc
        ).isoformat()
    return info


def install_cookies_from_env(cookies_path: Path | None = None,
                             env_var: str = COOKIES_B64_ENV) -> Path | None:
    """
    Write a base64-encoded cookies.txt from the environment to disk (mode 0600).
    Returns the written path, or None when the variable is unset.
    Raises ValueError if the value is not valid base64.
    """
    encoded = os.environ.get(env_var)
    if not encoded:
        logger.info("%s not set, skipping cookies setup", env_var)
        return None

    try:
        decoded = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Failed to decode base64 cookies from {env_var}: {e}")

    path = cookies_path or DEFAULT_COOKIES_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(decoded)
    os.chmod(path, 0o600)
    logger.info("YouTube cookies written to %s (%d bytes)", path, len(decoded))
    return path


def get_diagnostics(yt_dlp_path: str = "yt-dlp", ffmpeg_path: str = "ffmpeg",
                    cookies_path: Path | None = None) -> dict:
    """Gather all diagnostic information."""
    return {
        "ytdlp_version": get_ytdlp_version(yt_dlp_path),
        "ffmpeg_version": get_ffmpeg_version(ffmpeg_path),
        "cookies": check_cookies_file(cookies_path),
    }
