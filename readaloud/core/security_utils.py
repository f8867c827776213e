"""
Security utilities for ReadAloud.
- Blob key validation and path traversal protection
- Safe subprocess execution (argument arrays only)
"""

import re
import subprocess
import pathlib
import logging

from readaloud.core.constants import UNSAFE_FILENAME_CHARS

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(UNSAFE_FILENAME_CHARS)


# ── Blob path safety ──────────────────────────────────────────────────

def validate_blob_key(key: str) -> str:
    """
    Check a storage key like "audio/12.mp3".
    Relative, '/'-separated, no '..' segments, no control/reserved chars.
    """
    if not key or not isinstance(key, str):
        raise ValueError("Blob key must be a non-empty string")
    if key.startswith('/') or '\\' in key:
        raise ValueError(f"Blob key must be relative: {key!r}")
    if _UNSAFE_RE.search(key):
        raise ValueError(f"Blob key contains unsafe characters: {key!r}")
    parts = key.split('/')
    if any(p in ('', '.', '..') for p in parts):
        raise ValueError(f"Blob key has an invalid segment: {key!r}")
    return key


def safe_join(root: pathlib.Path, key: str) -> pathlib.Path:
    """
    Resolve `key` under `root`, refusing anything that escapes it.
    """
    validate_blob_key(key)
    real_root = root.resolve(strict=False)
    candidate = (real_root / key).resolve(strict=False)
    if not candidate.is_relative_to(real_root):
        raise ValueError(f"Path traversal detected: {key!r}")
    return candidate


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr as text."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )
