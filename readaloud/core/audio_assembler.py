"""
Join synthesized MP3 segments and probe the result's duration.
"""

import io
import logging

from mutagen import MutagenError
from mutagen.mp3 import MP3

logger = logging.getLogger(__name__)


def assemble(chunks: list[bytes]) -> bytes:
    """
    Concatenate MP3 segments in order.
    MP3 frames are self-delimiting so plain byte concatenation plays back.
    """
    return b''.join(chunks)


def mp3_duration_seconds(data: bytes) -> int:
    """Rounded playtime of an MP3 byte stream, 0 when it cannot be read."""
    if not data:
        return 0
    try:
        return int(round(MP3(io.BytesIO(data)).info.length))
    except MutagenError as e:
        logger.debug("Could not read MP3 duration: %s", e)
        return 0
