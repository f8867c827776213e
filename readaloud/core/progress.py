"""
Progress, ETA and client polling cadence for audio jobs.
"""

from datetime import datetime

from readaloud.core.constants import (
    JobStatus, CHARS_PER_SECOND, OVERHEAD_MS, DEFAULT_POLL_INTERVAL_MS, POLL_INTERVALS,
    SLOW_POLL_INTERVAL_MS,
)
from readaloud.core.db_sqlite import from_iso, utc_now
from readaloud.core.models_sqlite import AudioJob


def estimate_duration_ms(content_length: int) -> int:
    """Expected synthesis time: CHARS_PER_SECOND throughput plus fixed overhead."""
    return int(content_length / CHARS_PER_SECOND * 1000 + OVERHEAD_MS)


def calculate_progress(job: AudioJob) -> int:
    if (job.total_chunks or 0) <= 1:
        return job.progress_percent or 0
    return int(job.completed_chunks / job.total_chunks * 100)


def calculate_eta_seconds(job: AudioJob, now: datetime | None = None) -> int | None:
    """Seconds remaining for an in-flight run, or None when there is no estimate."""
    if job.status not in (JobStatus.PROCESSING, JobStatus.DOWNLOADING):
        return None
    started = from_iso(job.processing_started_at)
    if started is None or not job.estimated_duration_ms:
        return None
    now = now or utc_now()
    elapsed_ms = max(0, int((now - started).total_seconds() * 1000))
    remaining_ms = max(0, job.estimated_duration_ms - elapsed_ms)
    return remaining_ms // 1000


def polling_interval_ms(eta_seconds: int | None) -> int:
    if eta_seconds is None:
        return DEFAULT_POLL_INTERVAL_MS
    for below, interval in POLL_INTERVALS:
        if eta_seconds < below:
            return interval
    return SLOW_POLL_INTERVAL_MS
