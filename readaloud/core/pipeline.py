"""
Audio pipelines.

ArticleAudioPipeline: article body -> chunks -> TTS -> one MP3 blob.
YouTubeAudioPipeline: video URL -> yt-dlp MP3 -> blob.

Both share the job lifecycle: get-or-create the article's job, skip when
the stored result is still valid, claim the job for this run, report
progress, then complete or fail (with retry scheduling) and re-raise.
"""

import hashlib
import logging
import uuid
from pathlib import Path

from readaloud.core.audio_assembler import assemble, mp3_duration_seconds
from readaloud.core.blob_store import LocalBlobStore
from readaloud.core.config import PipelineSettings
from readaloud.core.constants import (
    JobStatus, ExtractionStatus, ErrorCode, AUDIO_PREFIX, YOUTUBE_PREFIX,
    YOUTUBE_VOICE, PROGRESS_YOUTUBE_DOWNLOADED, TEMP_DIR,
)
from readaloud.core.db_sqlite import Database
from readaloud.core.error_codes import (
    JobError, classify_error, is_retryable, retry_delay_seconds, user_message,
)
from readaloud.core.media_downloader import MediaDownloader
from readaloud.core.models_sqlite import Article, AudioJob
from readaloud.core.progress import estimate_duration_ms
from readaloud.core.speech_synthesizer import SpeechSynthesizer
from readaloud.core.text_chunker import chunk_text
from readaloud.core.url_parse import normalize_youtube_url

logger = logging.getLogger(__name__)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def build_narration(article: Article, announce_title: bool = True) -> str:
    """Body, prefixed with a spoken title announcement when there is a title."""
    title = (article.title or '').strip()
    if not announce_title or not title:
        return article.body
    return f"Now playing: {title}. {article.body}"


class _BasePipeline:

    blob_prefix = AUDIO_PREFIX

    def __init__(self, db: Database, store: LocalBlobStore, settings: PipelineSettings):
        self.db = db
        self.store = store
        self.settings = settings

    def blob_key(self, article_id: int, run_token: str) -> str:
        """Run-scoped key, so two runs of one article never share a blob."""
        return f"{self.blob_prefix}/{article_id}-{run_token[:8]}.mp3"

    def _publish(self, job: AudioJob, run_token: str, data: bytes,
                 duration_seconds: int | None, **article_fields) -> bool:
        """
        Store this run's audio and mark the job ready.

        The article and the previous blob are only touched once the
        completion is recorded; a superseded run removes its own blob.
        """
        key = self.blob_key(job.article_id, run_token)
        previous = self.db.get_job(job.id).audio_path
        url = self.store.put(key, data)

        if not self.db.complete_job(job.id, run_token, key, duration_seconds):
            logger.warning("Job %d was superseded before completion, discarding %s",
                           job.id, key)
            self.store.delete(key)
            return False

        self.db.update_article(job.article_id, audio_url=url, **article_fields)
        if previous and previous != key:
            self.store.delete(previous)
        return True

    def _is_complete(self, job: AudioJob, digest: str) -> bool:
        return (job.status == JobStatus.READY
                and job.content_hash == digest
                and self.store.exists(job.audio_path))

    def _claim(self, job: AudioJob, run_token: str, **fields) -> bool:
        claimed = self.db.claim_job(job.id, run_token,
                                    lease_sec=self.settings.lock_lease_sec, **fields)
        if not claimed:
            logger.info("Job %d for article %d is already running, coalescing",
                        job.id, job.article_id)
        return claimed

    def _record_failure(self, job: AudioJob, run_token: str, exc: Exception) -> bool:
        code = classify_error(exc)
        if isinstance(exc, JobError) and exc.code:
            retryable = exc.retryable
        else:
            retryable = is_retryable(code)

        logger.error("Audio job %d (article %d) failed [%s]: %s",
                     job.id, job.article_id, code, exc)

        recorded = self.db.fail_job(
            job.id, run_token, code, user_message(code),
            retryable=retryable,
            max_retries=self.settings.max_retries,
            retry_delay_sec=retry_delay_seconds(code),
        )
        if not recorded:
            logger.warning("Job %d was superseded; failure not recorded", job.id)
        return recorded


class ArticleAudioPipeline(_BasePipeline):
    """Narrate an article's body with TTS."""

    blob_prefix = AUDIO_PREFIX

    def __init__(self, db: Database, store: LocalBlobStore, synthesizer: SpeechSynthesizer,
                 settings: PipelineSettings, voice: str | None = None):
        super().__init__(db, store, settings)
        self.synthesizer = synthesizer
        self.voice = voice or synthesizer.settings.voice

    def generate_audio(self, article: Article) -> AudioJob | None:
        if not article.body or not article.body.strip():
            logger.info("Article %d has no body, nothing to narrate", article.id)
            return None

        digest = content_hash(article.body)
        job = self.db.get_or_create_job(article.id, self.voice)

        if self._is_complete(job, digest):
            logger.info("Audio for article %d is up to date, skipping", article.id)
            return job

        narration = build_narration(article, self.settings.announce_title)
        chunks = chunk_text(narration, self.settings.chunk_size)
        total = len(chunks)

        run_token = uuid.uuid4().hex
        if not self._claim(job, run_token,
                           content_hash=digest,
                           content_length=len(narration),
                           total_chunks=total,
                           estimated_duration_ms=estimate_duration_ms(len(narration)),
                           voice=self.voice):
            return self.db.get_job(job.id)

        logger.info("Generating audio for article %d: %d chars in %d chunk(s)",
                    article.id, len(narration), total)
        try:
            segments = []
            for index, chunk in enumerate(chunks, start=1):
                segments.append(self.synthesizer.synthesize(chunk, self.voice))
                self.db.update_run(job.id, run_token,
                                   completed_chunks=index,
                                   progress_percent=int(index / total * 100))
                logger.debug("Article %d: chunk %d/%d done", article.id, index, total)

            data = assemble(segments)
            published = self._publish(job, run_token, data, mp3_duration_seconds(data))
        except Exception as e:
            self._record_failure(job, run_token, e)
            raise

        if published:
            logger.info("Audio ready for article %d (%d bytes)", article.id, len(data))
        return self.db.get_job(job.id)


class YouTubeAudioPipeline(_BasePipeline):
    """Pull a video's soundtrack instead of synthesizing speech."""

    blob_prefix = YOUTUBE_PREFIX

    def __init__(self, db: Database, store: LocalBlobStore, downloader: MediaDownloader,
                 settings: PipelineSettings, temp_dir: Path | None = None):
        super().__init__(db, store, settings)
        self.downloader = downloader
        self.temp_dir = temp_dir or TEMP_DIR

    def generate_audio(self, article: Article) -> AudioJob | None:
        canonical = normalize_youtube_url(article.url)
        digest = content_hash(canonical or article.url)
        job = self.db.get_or_create_job(article.id, YOUTUBE_VOICE)

        if self._is_complete(job, digest):
            logger.info("YouTube audio for article %d already stored, skipping", article.id)
            self._mark_article_ready(article, job)
            return job

        run_token = uuid.uuid4().hex
        if not self._claim(job, run_token,
                           content_hash=digest,
                           content_length=0,
                           total_chunks=1,
                           estimated_duration_ms=None,
                           voice=YOUTUBE_VOICE,
                           status=JobStatus.DOWNLOADING):
            # the live run writes the article state when it finishes
            current = self.db.get_job(job.id)
            if self._is_complete(current, digest):
                self._mark_article_ready(article, current)
            return current

        logger.info("Extracting YouTube audio for article %d: %s", article.id, article.url)
        temp_path = self.temp_dir / f"yt_{article.id}_{run_token[:8]}.mp3"
        try:
            if canonical is None:
                raise JobError(ErrorCode.INVALID_URL, f"Invalid YouTube URL: {article.url}")

            result = self.downloader.extract(canonical, temp_path)
            self.db.update_run(job.id, run_token, status=JobStatus.PROCESSING,
                               progress_percent=PROGRESS_YOUTUBE_DOWNLOADED)

            published = self._publish(job, run_token, temp_path.read_bytes(),
                                      result.duration_seconds,
                                      title=result.title,
                                      extraction_status=ExtractionStatus.READY)
        except Exception as e:
            if self._record_failure(job, run_token, e):
                self.db.update_article(article.id, extraction_status=ExtractionStatus.FAILED)
            raise
        finally:
            temp_path.unlink(missing_ok=True)

        if published:
            logger.info("YouTube audio ready for article %d: %s (%ss)",
                        article.id, result.title, result.duration_seconds)
        return self.db.get_job(job.id)

    def _mark_article_ready(self, article: Article, job: AudioJob):
        """Undo a resubmission's 'extracting' flag when nothing needs downloading."""
        self.db.update_article(article.id,
                               extraction_status=ExtractionStatus.READY,
                               audio_url=self.store.url(job.audio_path))
