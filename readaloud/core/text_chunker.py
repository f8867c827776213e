"""
Text chunking for speech synthesis.
Splits long article text into TTS-safe segments, preferring sentence and
paragraph boundaries, then whitespace, then a hard cut.
"""

import logging

from readaloud.core.constants import (
    MAX_CHUNK_SIZE, SENTENCE_TERMINATORS, MIN_SENTENCE_CUT_RATIO,
)

logger = logging.getLogger(__name__)


def needs_chunking(text: str, max_size: int = MAX_CHUNK_SIZE) -> bool:
    return len(text) > max_size


def find_break_point(window: str, max_size: int = MAX_CHUNK_SIZE) -> int:
    """
    Return the index at which to cut `window` (always >= 1).

    A sentence terminator at or past the halfway mark wins and the cut
    lands after it; otherwise the last whitespace; otherwise the window end.
    """
    sentence_end = max(window.rfind(t) for t in SENTENCE_TERMINATORS)
    if sentence_end > 0 and sentence_end >= max_size * MIN_SENTENCE_CUT_RATIO:
        return sentence_end + 2  # keep terminator + following space

    for i in range(len(window) - 1, 0, -1):
        if window[i].isspace():
            return i

    return len(window)


def chunk_text(text: str, max_size: int = MAX_CHUNK_SIZE) -> list[str]:
    """
    Split text into ordered segments of at most `max_size` characters.
    Text that already fits is returned untouched as a single segment.
    """
    if max_size < 1:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if not needs_chunking(text, max_size):
        return [text]

    chunks = []
    remaining = text.strip()

    while remaining:
        if len(remaining) <= max_size:
            chunks.append(remaining)
            break

        window = remaining[:max_size]
        cut = find_break_point(window, max_size)

        piece = remaining[:cut].strip()
        if piece:
            chunks.append(piece)
        remaining = remaining[cut:].lstrip()

    logger.debug("Split %d chars into %d chunks", len(text), len(chunks))
    return chunks
