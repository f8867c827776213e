"""
Article service: the operations a playback client or CLI drives.
Submits articles, dispatches extraction/audio work onto the task queue and
reports job state.
"""

import logging
from datetime import datetime, timedelta
from concurrent.futures import Future

from readaloud.core.blob_store import LocalBlobStore
from readaloud.core.cleanup import expire_old_audio
from readaloud.core.config import Settings
from readaloud.core.constants import (
    ExtractionStatus, JobStatus, IN_FLIGHT_STATUSES, EXTRACTION_BACKOFF,
    DEFAULT_POLL_INTERVAL_MS, SourceType,
)
from readaloud.core.content_extractor import ContentExtractor
from readaloud.core.db_sqlite import Database, from_iso, utc_now
from readaloud.core.error_codes import is_retryable, user_message
from readaloud.core.media_downloader import MediaDownloader
from readaloud.core.models_sqlite import Article, AudioJob
from readaloud.core.pipeline import ArticleAudioPipeline, YouTubeAudioPipeline, content_hash
from readaloud.core.progress import calculate_eta_seconds, calculate_progress, polling_interval_ms
from readaloud.core.speech_synthesizer import SpeechSynthesizer
from readaloud.core.task_queue import TaskQueue
from readaloud.core.url_parse import detect_source_type, normalize_youtube_url

logger = logging.getLogger(__name__)


class ArticleNotFound(LookupError):
    http_status = 404

    def __init__(self, article_id: int):
        self.article_id = article_id
        super().__init__(f"Article {article_id} not found")


class AudioNotReady(Exception):
    """Audio requested before the job reached 'ready'."""
    http_status = 409

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Audio is not ready yet (status: {status})")


class AudioMissing(Exception):
    """Job says ready but the blob is gone."""
    http_status = 404

    def __init__(self, audio_path: str | None):
        self.audio_path = audio_path
        super().__init__(f"Audio file not found: {audio_path}")


class ArticleService:

    def __init__(self, db: Database, store: LocalBlobStore, extractor: ContentExtractor,
                 article_pipeline: ArticleAudioPipeline,
                 youtube_pipeline: YouTubeAudioPipeline, queue: TaskQueue,
                 retention_days: int | None = None):
        self.db = db
        self.store = store
        self.extractor = extractor
        self.article_pipeline = article_pipeline
        self.youtube_pipeline = youtube_pipeline
        self.queue = queue
        self.retention_days = retention_days or article_pipeline.settings.retention_days

    @classmethod
    def from_settings(cls, settings: Settings) -> 'ArticleService':
        """Wire every component from one Settings object."""
        db = Database(settings.db_path)
        store = LocalBlobStore(settings.storage_root, settings.storage_base_url)
        return cls(
            db=db,
            store=store,
            extractor=ContentExtractor(settings.extractor),
            article_pipeline=ArticleAudioPipeline(
                db, store, SpeechSynthesizer(settings.tts), settings.pipeline),
            youtube_pipeline=YouTubeAudioPipeline(
                db, store, MediaDownloader(settings.youtube), settings.pipeline),
            queue=TaskQueue(settings.max_workers),
            retention_days=settings.pipeline.retention_days,
        )

    @property
    def max_retries(self) -> int:
        return self.article_pipeline.settings.max_retries

    def _article(self, article_id: int) -> Article:
        article = self.db.get_article(article_id)
        if article is None:
            raise ArticleNotFound(article_id)
        return article

    # ── Submission / extraction ───────────────────────────────────────

    def submit_article(self, device_id: str, url: str, title: str | None = None,
                       body: str | None = None) -> Article:
        """
        Save (or re-save) an article and dispatch the work it needs.
        Nothing is dispatched while a previous submission is still extracting.
        """
        source_type = detect_source_type(url)
        if source_type == SourceType.YOUTUBE:
            url = normalize_youtube_url(url)

        article, previous = self.db.upsert_article(
            device_id, url, source_type,
            extraction_status=ExtractionStatus.EXTRACTING,
            title=title or None,
        )
        logger.info("Article %d saved (%s, previous status %s)",
                    article.id, source_type, previous)

        if previous == ExtractionStatus.EXTRACTING:
            logger.info("Article %d already extracting, not dispatching", article.id)
        elif source_type == SourceType.YOUTUBE:
            self.dispatch_audio(article.id)
        elif body and body.strip():
            self._dispatch_extraction(self.run_cleanup, article.id, body, title)
        else:
            self._dispatch_extraction(self.run_extraction, article.id)

        return article

    def _dispatch_extraction(self, fn, article_id: int, *args) -> Future | None:
        return self.queue.enqueue(fn, article_id, *args,
                                  unique_key=f"extract:{article_id}",
                                  backoff=EXTRACTION_BACKOFF)

    def run_extraction(self, article_id: int) -> Article:
        article = self._article(article_id)
        return self._extract_and_store(
            article, lambda: self.extractor.extract(article.url), "extraction")

    def run_cleanup(self, article_id: int, raw_content: str,
                    title: str | None = None) -> Article:
        article = self._article(article_id)
        return self._extract_and_store(
            article, lambda: self.extractor.clean(raw_content, title, article.url), "cleanup")

    def _extract_and_store(self, article: Article, extract, stage: str) -> Article:
        if article.extraction_status == ExtractionStatus.READY and article.body:
            logger.info("Article %d already extracted, skipping %s", article.id, stage)
            return article

        logger.info("Article %d: %s started (%s)", article.id, stage, article.url)
        try:
            result = extract()
        except Exception as e:
            logger.error("Article %d: %s failed: %s", article.id, stage, e)
            self.db.update_article(article.id, extraction_status=ExtractionStatus.FAILED)
            raise

        self.db.update_article(article.id, title=result['title'], body=result['body'],
                               extraction_status=ExtractionStatus.READY)
        logger.info("Article %d: %s completed (%r)", article.id, stage, result['title'])
        self.dispatch_audio(article.id)
        return self._article(article.id)

    def retry_failed_extractions(self, stuck_minutes: int = 10, only_failed: bool = False,
                                 article_id: int | None = None) -> list[int]:
        """Re-dispatch failed extractions and ones stuck in 'extracting'."""
        if article_id is not None:
            articles = [self._article(article_id)]
        else:
            cutoff = utc_now() - timedelta(minutes=stuck_minutes)
            articles = self.db.articles_for_extraction_retry(cutoff, only_failed)

        retried = []
        for article in articles:
            self.db.update_article(article.id, extraction_status=ExtractionStatus.EXTRACTING)
            if article.is_youtube:
                self.dispatch_audio(article.id)
            else:
                self._dispatch_extraction(self.run_extraction, article.id)
            retried.append(article.id)
        logger.info("Re-dispatched extraction for %d article(s)", len(retried))
        return retried

    # ── Audio ─────────────────────────────────────────────────────────

    def dispatch_audio(self, article_id: int) -> Future | None:
        return self.queue.enqueue(
            self.generate_audio, article_id,
            unique_key=f"audio:{article_id}",
            lease_seconds=self.article_pipeline.settings.lock_lease_sec,
        )

    def generate_audio(self, article_id: int) -> AudioJob | None:
        """Run the right pipeline for the article synchronously."""
        article = self._article(article_id)
        pipeline = self.youtube_pipeline if article.is_youtube else self.article_pipeline
        return pipeline.generate_audio(article)

    def _audio_is_current(self, article: Article, job: AudioJob) -> bool:
        if job.status != JobStatus.READY or not self.store.exists(job.audio_path):
            return False
        if article.is_youtube:
            return True
        return bool(article.body) and job.content_hash == content_hash(article.body)

    def request_audio(self, article_id: int) -> dict:
        """{'status': 'ready'} when current audio exists, else dispatch and 'pending'."""
        article = self._article(article_id)
        job = self.db.get_job_for_article(article_id)

        if job and self._audio_is_current(article, job):
            return {"status": JobStatus.READY}

        # in-flight jobs are dispatched again; queue key + job lease coalesce
        if job is None or job.status not in IN_FLIGHT_STATUSES:
            logger.info("Dispatching audio for article %d", article_id)
        self.dispatch_audio(article_id)
        return {"status": JobStatus.PENDING}

    def fetch_audio(self, article_id: int) -> bytes:
        self._article(article_id)
        job = self.db.get_job_for_article(article_id)
        if job is None or job.status != JobStatus.READY:
            raise AudioNotReady(job.status if job else JobStatus.PENDING)
        if not self.store.exists(job.audio_path):
            logger.error("Audio for article %d missing from storage: %s",
                         article_id, job.audio_path)
            raise AudioMissing(job.audio_path)
        return self.store.get(job.audio_path)

    def job_status(self, article_id: int, now: datetime | None = None) -> dict:
        self._article(article_id)
        job = self.db.get_job_for_article(article_id)
        if job is None:
            return {
                "status": "not_started",
                "progress_percent": 0,
                "polling_interval": DEFAULT_POLL_INTERVAL_MS,
            }

        now = now or utc_now()
        eta = calculate_eta_seconds(job, now)
        status = {
            "status": job.status,
            "progress_percent": calculate_progress(job),
            "completed_chunks": job.completed_chunks or 0,
            "total_chunks": job.total_chunks or 1,
            "eta_seconds": eta,
            "polling_interval": polling_interval_ms(eta),
            "retry_count": job.retry_count or 0,
        }

        if job.status == JobStatus.FAILED and job.error_code:
            status["error_code"] = job.error_code
            status["error_message"] = user_message(job.error_code)
            status["can_retry"] = is_retryable(job.error_code)

        next_retry = from_iso(job.next_retry_at)
        if next_retry:
            status["next_retry_at"] = job.next_retry_at
            status["retry_countdown_seconds"] = max(0, int((next_retry - now).total_seconds()))

        return status

    # ── Sweeps ────────────────────────────────────────────────────────

    def retry_sweep(self, now: datetime | None = None) -> list[int]:
        """Requeue and dispatch failed jobs whose retry time has come."""
        retried = []
        for job in self.db.jobs_due_for_retry(now, self.max_retries):
            if not self.db.requeue_job(job.id):
                continue
            self.dispatch_audio(job.article_id)
            retried.append(job.article_id)
            logger.info("Retrying audio for article %d (attempt %d)",
                        job.article_id, job.retry_count + 1)
        return retried

    def expire_old_audio(self, retention_days: int | None = None,
                         now: datetime | None = None) -> list[int]:
        return expire_old_audio(self.db, self.store,
                                retention_days or self.retention_days, now)

    def close(self, wait: bool = True):
        self.queue.shutdown(wait=wait)
        self.db.close()
