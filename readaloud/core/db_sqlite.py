"""
SQLite database layer for ReadAloud.
Thread-safe via check_same_thread=False + explicit locking.

Job state transitions are single UPDATE statements with a precondition in
the WHERE clause, so two workers can never both win the same transition.
"""

import sqlite3
import threading
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from readaloud.core.constants import DB_PATH, JobStatus, ExtractionStatus
from readaloud.core.models_sqlite import Article, AudioJob

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS articles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id TEXT NOT NULL,
    url TEXT NOT NULL,
    source_type TEXT NOT NULL DEFAULT 'web',
    title TEXT,
    body TEXT,
    extraction_status TEXT NOT NULL DEFAULT 'pending',
    audio_url TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (device_id, url)
);

CREATE TABLE IF NOT EXISTS article_audio (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id INTEGER NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'pending',
    voice TEXT,
    content_hash TEXT,
    content_length INTEGER DEFAULT 0,
    audio_path TEXT,
    duration_seconds INTEGER DEFAULT 0,
    progress_percent INTEGER DEFAULT 0,
    estimated_duration_ms INTEGER,
    total_chunks INTEGER DEFAULT 0,
    completed_chunks INTEGER DEFAULT 0,
    retry_count INTEGER DEFAULT 0,
    next_retry_at TEXT,
    error_code TEXT,
    error_message TEXT,
    processing_started_at TEXT,
    processing_completed_at TEXT,
    run_token TEXT,
    created_at TEXT,
    updated_at TEXT,
    FOREIGN KEY (article_id) REFERENCES articles(id)
);

CREATE INDEX IF NOT EXISTS idx_audio_retry ON article_audio(status, next_retry_at);
CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(extraction_status);
"""


# ── Time helpers ──────────────────────────────────────────────────────
# All timestamps are stored as fixed-width ISO-8601 UTC strings so that
# string comparison in SQL matches chronological order.

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class Database:
    """SQLite database wrapper: article repository + audio job store."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._lock = threading.RLock()
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return to_iso(utc_now())

    @staticmethod
    def _row_to_article(row: sqlite3.Row) -> Article:
        return Article(**dict(row))

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> AudioJob:
        return AudioJob(**dict(row))

    def _execute(self, sql: str, params=()) -> int:
        """Run one write statement and return the affected row count."""
        with self._lock:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur.rowcount

    def _fetchone(self, sql: str, params=()):
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params=()):
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # ── Article repository ────────────────────────────────────────────

    def upsert_article(self, device_id: str, url: str, source_type: str,
                       extraction_status: str = ExtractionStatus.EXTRACTING,
                       title: str | None = None) -> tuple[Article, str | None]:
        """
        Create or update the article for (device_id, url).
        Returns the article and its extraction status before this call
        (None when newly created).
        """
        now = self._now()
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM articles WHERE device_id = ? AND url = ?",
                (device_id, url),
            ).fetchone()

            if row:
                previous = row['extraction_status']
                fields = {'extraction_status': extraction_status,
                          'source_type': source_type,
                          'updated_at': now}
                if title:
                    fields['title'] = title
                sets = ', '.join(f"{k} = ?" for k in fields)
                self.conn.execute(
                    f"UPDATE articles SET {sets} WHERE id = ?",
                    list(fields.values()) + [row['id']],
                )
                article_id = row['id']
            else:
                previous = None
                cur = self.conn.execute(
                    """INSERT INTO articles
                       (device_id, url, source_type, title, extraction_status,
                        created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (device_id, url, source_type, title or None,
                     extraction_status, now, now),
                )
                article_id = cur.lastrowid
            self.conn.commit()
            return self.get_article(article_id), previous

    def get_article(self, article_id: int) -> Article | None:
        row = self._fetchone("SELECT * FROM articles WHERE id = ?", (article_id,))
        return self._row_to_article(row) if row else None

    def update_article(self, article_id: int, **kwargs):
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [article_id]
        self._execute(f"UPDATE articles SET {sets} WHERE id = ?", vals)

    def articles_for_extraction_retry(self, stuck_before: datetime,
                                      only_failed: bool = False) -> list[Article]:
        """Failed extractions, plus ones stuck in 'extracting' since before the cutoff."""
        if only_failed:
            rows = self._fetchall(
                "SELECT * FROM articles WHERE extraction_status = ? AND source_type = 'web'",
                (ExtractionStatus.FAILED,),
            )
        else:
            rows = self._fetchall(
                """SELECT * FROM articles
                   WHERE source_type = 'web'
                     AND (extraction_status = ?
                          OR (extraction_status = ? AND updated_at < ?))""",
                (ExtractionStatus.FAILED, ExtractionStatus.EXTRACTING,
                 to_iso(stuck_before)),
            )
        return [self._row_to_article(r) for r in rows]

    # ── Audio job CRUD ────────────────────────────────────────────────

    def get_or_create_job(self, article_id: int, voice: str | None = None) -> AudioJob:
        """Return the article's job, creating a pending one if absent."""
        now = self._now()
        with self._lock:
            self.conn.execute(
                """INSERT OR IGNORE INTO article_audio
                   (article_id, status, voice, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (article_id, JobStatus.PENDING, voice, now, now),
            )
            self.conn.commit()
            return self.get_job_for_article(article_id)

    def get_job(self, job_id: int) -> AudioJob | None:
        row = self._fetchone("SELECT * FROM article_audio WHERE id = ?", (job_id,))
        return self._row_to_job(row) if row else None

    def get_job_for_article(self, article_id: int) -> AudioJob | None:
        row = self._fetchone(
            "SELECT * FROM article_audio WHERE article_id = ?", (article_id,)
        )
        return self._row_to_job(row) if row else None

    # ── Atomic transitions ────────────────────────────────────────────

    def claim_job(self, job_id: int, run_token: str, *, content_hash: str,
                  content_length: int, total_chunks: int,
                  estimated_duration_ms: int | None, voice: str | None,
                  lease_sec: int, status: str = JobStatus.PROCESSING,
                  now: datetime | None = None) -> bool:
        """
        Reset the job for a fresh run and mark it in flight.
        Refused (returns False) while another run holds an unexpired lease.
        """
        now = now or utc_now()
        lease_cutoff = to_iso(now - timedelta(seconds=lease_sec))
        stamp = to_iso(now)
        count = self._execute(
            """UPDATE article_audio SET
                   status = ?, run_token = ?, voice = ?,
                   content_hash = ?, content_length = ?,
                   error_code = NULL, error_message = NULL,
                   progress_percent = 0, total_chunks = ?, completed_chunks = 0,
                   estimated_duration_ms = ?,
                   processing_started_at = ?, processing_completed_at = NULL,
                   next_retry_at = NULL, updated_at = ?
               WHERE id = ?
                 AND NOT (status IN (?, ?)
                          AND COALESCE(processing_started_at, '') > ?)""",
            (status, run_token, voice, content_hash, content_length,
             total_chunks, estimated_duration_ms, stamp, stamp, job_id,
             JobStatus.PROCESSING, JobStatus.DOWNLOADING, lease_cutoff),
        )
        return count == 1

    def update_run(self, job_id: int, run_token: str, **kwargs) -> bool:
        """Update fields only while this run still owns the job."""
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [job_id, run_token]
        count = self._execute(
            f"UPDATE article_audio SET {sets} WHERE id = ? AND run_token = ?", vals
        )
        return count == 1

    def complete_job(self, job_id: int, run_token: str, audio_path: str,
                     duration_seconds: int, now: datetime | None = None) -> bool:
        """processing -> ready."""
        stamp = to_iso(now or utc_now())
        count = self._execute(
            """UPDATE article_audio SET
                   status = ?, audio_path = ?, duration_seconds = ?,
                   progress_percent = 100, processing_completed_at = ?,
                   retry_count = 0, next_retry_at = NULL,
                   error_code = NULL, error_message = NULL, updated_at = ?
               WHERE id = ? AND run_token = ?""",
            (JobStatus.READY, audio_path, duration_seconds, stamp, stamp,
             job_id, run_token),
        )
        return count == 1

    def fail_job(self, job_id: int, run_token: str, error_code: str,
                 error_message: str, *, retryable: bool, max_retries: int,
                 retry_delay_sec: int, now: datetime | None = None) -> bool:
        """
        processing -> failed. Bumps retry_count and schedules next_retry_at
        when the error is retryable and the bumped count is still under the cap.
        """
        now = now or utc_now()
        stamp = to_iso(now)
        next_retry = to_iso(now + timedelta(seconds=retry_delay_sec))
        count = self._execute(
            """UPDATE article_audio SET
                   status = ?, error_code = ?, error_message = ?,
                   next_retry_at = CASE WHEN ? AND retry_count + 1 < ?
                                        THEN ? ELSE NULL END,
                   retry_count = retry_count + 1,
                   processing_completed_at = ?, updated_at = ?
               WHERE id = ? AND run_token = ?""",
            (JobStatus.FAILED, error_code, error_message[:2000],
             1 if retryable else 0, max_retries, next_retry,
             stamp, stamp, job_id, run_token),
        )
        return count == 1

    def requeue_job(self, job_id: int) -> bool:
        """failed -> pending, for the retry sweep or a manual retry."""
        count = self._execute(
            """UPDATE article_audio SET status = ?, next_retry_at = NULL, updated_at = ?
               WHERE id = ? AND status = ?""",
            (JobStatus.PENDING, self._now(), job_id, JobStatus.FAILED),
        )
        return count == 1

    # ── Sweeps ────────────────────────────────────────────────────────

    def jobs_due_for_retry(self, now: datetime | None = None,
                           max_retries: int = 3) -> list[AudioJob]:
        rows = self._fetchall(
            """SELECT * FROM article_audio
               WHERE status = ?
                 AND next_retry_at IS NOT NULL
                 AND next_retry_at <= ?
                 AND retry_count < ?
               ORDER BY next_retry_at ASC""",
            (JobStatus.FAILED, to_iso(now or utc_now()), max_retries),
        )
        return [self._row_to_job(r) for r in rows]

    def expired_jobs(self, completed_before: datetime) -> list[AudioJob]:
        rows = self._fetchall(
            """SELECT * FROM article_audio
               WHERE status = ? AND processing_completed_at < ?""",
            (JobStatus.READY, to_iso(completed_before)),
        )
        return [self._row_to_job(r) for r in rows]

    def expire_job(self, job_id: int, completed_before: datetime) -> bool:
        """Delete a ready job, but only if it is still the expired result."""
        count = self._execute(
            """DELETE FROM article_audio
               WHERE id = ? AND status = ? AND processing_completed_at < ?""",
            (job_id, JobStatus.READY, to_iso(completed_before)),
        )
        return count == 1
