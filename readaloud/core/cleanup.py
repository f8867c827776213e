"""
Cleanup: stale temp downloads and retention expiry of stored audio.
"""

import logging
import time
from datetime import timedelta
from pathlib import Path

from readaloud.core.blob_store import LocalBlobStore
from readaloud.core.db_sqlite import Database, utc_now

logger = logging.getLogger(__name__)

_TEMP_PATTERNS = ("yt_*.mp3", "yt_*.part", "yt_*.mp3.part")


def cleanup_temp_files(temp_dir: Path, older_than_sec: int = 3600) -> int:
    """
    Delete leftover YouTube downloads older than `older_than_sec`.
    Returns the number of files removed.
    """
    if not temp_dir.exists():
        return 0

    cutoff = time.time() - older_than_sec
    removed = 0
    for pattern in _TEMP_PATTERNS:
        for path in temp_dir.glob(pattern):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.debug("Deleted stale temp file: %s", path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to delete %s: %s", path, e)
    return removed


def expire_old_audio(db: Database, store: LocalBlobStore, retention_days: int,
                     now=None) -> list[int]:
    """
    Remove ready audio completed more than `retention_days` ago.
    The job row and blob are deleted and the article's audio_url cleared,
    so a later request synthesizes afresh. Returns expired article ids.
    """
    cutoff = (now or utc_now()) - timedelta(days=retention_days)
    expired = []
    for job in db.expired_jobs(cutoff):
        if not db.expire_job(job.id, cutoff):
            # regenerated since the scan
            continue
        store.delete(job.audio_path)
        db.update_article(job.article_id, audio_url=None)
        expired.append(job.article_id)
        logger.info("Expired audio for article %d (%s)", job.article_id, job.audio_path)
    return expired
