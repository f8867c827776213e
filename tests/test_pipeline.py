#!/usr/bin/env python3
"""
Integration tests for the audio job lifecycle.
Tests cover: job store transitions, article and YouTube pipelines,
single-flight generation, retry scheduling, expiry, and the article service.
"""

import sys
import os
import tempfile
import threading
import time
from datetime import timedelta
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from readaloud.core.constants import (
    ErrorCode, JobStatus, ExtractionStatus, SourceType, EXTRACTION_BACKOFF,
)
from readaloud.core.config import PipelineSettings, TtsSettings, ExtractorSettings
from readaloud.core.db_sqlite import Database, utc_now, to_iso
from readaloud.core.blob_store import LocalBlobStore
from readaloud.core.error_codes import JobError, TtsApiError, FetchError, user_message
from readaloud.core.media_downloader import MediaResult
from readaloud.core.pipeline import (
    ArticleAudioPipeline, YouTubeAudioPipeline, build_narration, content_hash,
)
from readaloud.core.cleanup import cleanup_temp_files, expire_old_audio
from readaloud.core.content_extractor import ContentExtractor
from readaloud.core.models_sqlite import Article
from readaloud.core.task_queue import TaskQueue
from readaloud.service.articles import (
    ArticleService, ArticleNotFound, AudioNotReady, AudioMissing,
)


VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
LONG_BODY = "Hello world. " * 20


class FakeSynth:
    """Returns '[text]' as audio bytes; optionally fails on the Nth call."""

    def __init__(self, fail_on=None, error=None):
        self.settings = TtsSettings(api_key="test-key")
        self.calls = []
        self.fail_on = fail_on
        self.error = error or JobError(ErrorCode.NETWORK_TIMEOUT, "TTS request timed out")

    def synthesize(self, text, voice=None):
        self.calls.append(text)
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise self.error
        return f"[{text}]".encode()

    def expected_audio(self):
        return b"".join(f"[{c}]".encode() for c in self.calls)


class BlockingSynth(FakeSynth):
    """Holds the first call until released."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def synthesize(self, text, voice=None):
        self.started.set()
        self.release.wait(5)
        return super().synthesize(text, voice)


class FakeDownloader:

    def __init__(self, title="A Video", duration=212, error=None):
        self.title = title
        self.duration = duration
        self.error = error
        self.calls = []

    def extract(self, url, output_path):
        self.calls.append(url)
        if self.error:
            raise self.error
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"ytaudio")
        return MediaResult(self.title, self.duration, output_path)


class FakeChat:

    def __init__(self, reply='{"title": "Clean Title", "body": "Clean body text."}'):
        self.reply = reply
        self.calls = 0

    def complete(self, system_prompt, user_prompt):
        self.calls += 1
        return self.reply


class FakeQueue:
    """Records enqueued work; run_all() executes it in FIFO order."""

    def __init__(self):
        self.tasks = []

    def keys(self):
        return [t[2] for t in self.tasks]

    def enqueue(self, fn, *args, unique_key=None, lease_seconds=None, backoff=()):
        if unique_key is not None and unique_key in self.keys():
            return None
        self.tasks.append((fn, args, unique_key, backoff))
        return mock.Mock()

    def run_all(self):
        while self.tasks:
            fn, args, _key, _backoff = self.tasks.pop(0)
            fn(*args)

    def join(self, timeout=None):
        self.run_all()
        return True

    def shutdown(self, wait=True):
        self.tasks.clear()


def _page_response(status_code=200):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.text = "<html><body><p>Raw page text.</p></body></html>"
    return resp


class StoreTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.db = Database(self.tmp / "test.db")
        self.store = LocalBlobStore(self.tmp / "storage", "/storage")
        self.settings = PipelineSettings(chunk_size=100)

    def tearDown(self):
        self.db.close()
        self._tmp.cleanup()

    def make_article(self, body=LONG_BODY, title="T", url="https://example.com/post"):
        article, _ = self.db.upsert_article("device-1", url, SourceType.WEB,
                                            extraction_status=ExtractionStatus.READY,
                                            title=title)
        self.db.update_article(article.id, body=body)
        return self.db.get_article(article.id)

    def claim(self, job_id, token, **kwargs):
        return self.db.claim_job(job_id, token, content_hash="h", content_length=10,
                                 total_chunks=1, estimated_duration_ms=None,
                                 voice="alloy", lease_sec=600, **kwargs)


class TestJobStore(StoreTestCase):
    """Test conditional job transitions."""

    def test_one_job_per_article(self):
        article = self.make_article()
        first = self.db.get_or_create_job(article.id, "alloy")
        second = self.db.get_or_create_job(article.id, "nova")
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.status, JobStatus.PENDING)

    def test_claim_refused_while_leased(self):
        job = self.db.get_or_create_job(self.make_article().id)
        self.assertTrue(self.claim(job.id, "run-a"))
        self.assertFalse(self.claim(job.id, "run-b"))
        later = utc_now() + timedelta(seconds=601)
        self.assertTrue(self.claim(job.id, "run-b", now=later))

        # run-a lost ownership: all its writes are rejected
        self.assertFalse(self.db.update_run(job.id, "run-a", progress_percent=10))
        self.assertFalse(self.db.complete_job(job.id, "run-a", "audio/1.mp3", 5))
        self.assertTrue(self.db.update_run(job.id, "run-b", progress_percent=10))
        self.assertEqual(self.db.get_job(job.id).run_token, "run-b")

    def test_retry_cap(self):
        job = self.db.get_or_create_job(self.make_article().id)
        expected_next = [True, True, False]
        for attempt, has_next in enumerate(expected_next, start=1):
            token = f"run-{attempt}"
            self.assertTrue(self.claim(job.id, token))
            self.assertTrue(self.db.fail_job(
                job.id, token, ErrorCode.NETWORK_TIMEOUT, "timed out",
                retryable=True, max_retries=3, retry_delay_sec=10))
            current = self.db.get_job(job.id)
            self.assertEqual(current.status, JobStatus.FAILED)
            self.assertEqual(current.retry_count, attempt)
            self.assertEqual(current.next_retry_at is not None, has_next, attempt)

            due = self.db.jobs_due_for_retry(utc_now() + timedelta(hours=1), max_retries=3)
            self.assertEqual([j.id for j in due], [job.id] if has_next else [])

    def test_non_retryable_never_scheduled(self):
        job = self.db.get_or_create_job(self.make_article().id)
        self.claim(job.id, "run-1")
        self.db.fail_job(job.id, "run-1", ErrorCode.API_AUTH_FAILED, "bad key",
                         retryable=False, max_retries=3, retry_delay_sec=15)
        self.assertIsNone(self.db.get_job(job.id).next_retry_at)
        self.assertEqual(self.db.jobs_due_for_retry(utc_now() + timedelta(hours=1)), [])

    def test_retry_not_due_yet(self):
        job = self.db.get_or_create_job(self.make_article().id)
        self.claim(job.id, "run-1")
        self.db.fail_job(job.id, "run-1", ErrorCode.API_RATE_LIMIT, "429",
                         retryable=True, max_retries=3, retry_delay_sec=30)
        self.assertEqual(self.db.jobs_due_for_retry(utc_now()), [])
        self.assertEqual(len(self.db.jobs_due_for_retry(utc_now() + timedelta(seconds=31))), 1)

    def test_requeue_only_failed(self):
        job = self.db.get_or_create_job(self.make_article().id)
        self.assertFalse(self.db.requeue_job(job.id))
        self.claim(job.id, "run-1")
        self.db.fail_job(job.id, "run-1", ErrorCode.UNKNOWN, "boom",
                         retryable=True, max_retries=3, retry_delay_sec=15)
        self.assertTrue(self.db.requeue_job(job.id))
        requeued = self.db.get_job(job.id)
        self.assertEqual(requeued.status, JobStatus.PENDING)
        self.assertIsNone(requeued.next_retry_at)
        self.assertFalse(self.db.requeue_job(job.id))

    def test_upsert_reports_previous_status(self):
        article, previous = self.db.upsert_article("d", "https://x.com/a", SourceType.WEB)
        self.assertIsNone(previous)
        again, previous = self.db.upsert_article("d", "https://x.com/a", SourceType.WEB,
                                                 extraction_status=ExtractionStatus.READY)
        self.assertEqual(again.id, article.id)
        self.assertEqual(previous, ExtractionStatus.EXTRACTING)
        other, _ = self.db.upsert_article("other-device", "https://x.com/a", SourceType.WEB)
        self.assertNotEqual(other.id, article.id)


class TestArticleAudioPipeline(StoreTestCase):
    """Test chunked TTS generation."""

    def setUp(self):
        super().setUp()
        self.synth = FakeSynth()
        self.pipeline = ArticleAudioPipeline(self.db, self.store, self.synth, self.settings)

    def test_build_narration(self):
        article = Article(1, "d", "u", title=" My Title ", body="Body.")
        self.assertEqual(build_narration(article), "Now playing: My Title. Body.")
        self.assertEqual(build_narration(article, announce_title=False), "Body.")
        untitled = Article(1, "d", "u", title=None, body="Body.")
        self.assertEqual(build_narration(untitled), "Body.")

    def test_generates_and_stores(self):
        article = self.make_article()
        job = self.pipeline.generate_audio(article)

        self.assertEqual(job.status, JobStatus.READY)
        self.assertGreater(len(self.synth.calls), 1)
        self.assertTrue(self.synth.calls[0].startswith("Now playing: T."))
        self.assertEqual(job.total_chunks, len(self.synth.calls))
        self.assertEqual(job.completed_chunks, job.total_chunks)
        self.assertEqual(job.progress_percent, 100)
        self.assertEqual(job.content_hash, content_hash(LONG_BODY))
        self.assertRegex(job.audio_path, rf"^audio/{article.id}-[0-9a-f]{{8}}\.mp3$")
        self.assertIsNotNone(job.processing_completed_at)
        self.assertIsNone(job.error_code)
        self.assertEqual(self.store.get(job.audio_path), self.synth.expected_audio())
        self.assertEqual(self.db.get_article(article.id).audio_url,
                         f"/storage/{job.audio_path}")

    def test_second_run_is_noop(self):
        article = self.make_article()
        first = self.pipeline.generate_audio(article)
        calls = len(self.synth.calls)
        second = self.pipeline.generate_audio(article)
        self.assertEqual(len(self.synth.calls), calls)
        self.assertEqual(second.id, first.id)
        self.assertEqual(second.status, JobStatus.READY)

    def test_changed_body_regenerates(self):
        article = self.make_article()
        old = self.pipeline.generate_audio(article)
        self.db.update_article(article.id, body="A completely different body.")
        self.synth.calls.clear()

        job = self.pipeline.generate_audio(self.db.get_article(article.id))
        self.assertEqual(job.content_hash, content_hash("A completely different body."))
        self.assertEqual(self.synth.calls, ["Now playing: T. A completely different body."])
        self.assertEqual(self.store.get(job.audio_path), self.synth.expected_audio())
        self.assertNotEqual(job.audio_path, old.audio_path)
        self.assertFalse(self.store.exists(old.audio_path))

    def test_missing_blob_regenerates(self):
        article = self.make_article()
        job = self.pipeline.generate_audio(article)
        self.store.delete(job.audio_path)
        self.synth.calls.clear()

        job = self.pipeline.generate_audio(article)
        self.assertTrue(self.synth.calls)
        self.assertTrue(self.store.exists(job.audio_path))

    def test_title_announcement_disabled(self):
        pipeline = ArticleAudioPipeline(self.db, self.store, self.synth,
                                        PipelineSettings(announce_title=False))
        pipeline.generate_audio(self.make_article(body="Short body."))
        self.assertEqual(self.synth.calls, ["Short body."])

    def test_empty_body_is_skipped(self):
        self.assertIsNone(self.pipeline.generate_audio(self.make_article(body="   ")))
        self.assertEqual(self.synth.calls, [])

    def test_chunk_failure_schedules_retry(self):
        self.synth.fail_on = 2
        article = self.make_article()
        with self.assertRaises(JobError):
            self.pipeline.generate_audio(article)

        job = self.db.get_job_for_article(article.id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_code, ErrorCode.NETWORK_TIMEOUT)
        self.assertEqual(job.error_message, user_message(ErrorCode.NETWORK_TIMEOUT))
        self.assertEqual(job.retry_count, 1)
        self.assertEqual(job.completed_chunks, 1)
        self.assertIsNotNone(job.next_retry_at)
        self.assertEqual(list((self.tmp / "storage").rglob("*.mp3")), [])

    def test_restart_after_failure_starts_over(self):
        self.synth.fail_on = 2
        article = self.make_article()
        with self.assertRaises(JobError):
            self.pipeline.generate_audio(article)

        self.synth.calls.clear()
        self.synth.fail_on = None
        job = self.pipeline.generate_audio(article)
        self.assertEqual(job.status, JobStatus.READY)
        self.assertEqual(len(self.synth.calls), job.total_chunks)
        self.assertEqual(job.retry_count, 0)

    def test_non_retryable_failure(self):
        self.synth.fail_on = 1
        self.synth.error = TtsApiError(401, "invalid api key")
        article = self.make_article()
        with self.assertRaises(TtsApiError):
            self.pipeline.generate_audio(article)

        job = self.db.get_job_for_article(article.id)
        self.assertEqual(job.error_code, ErrorCode.API_AUTH_FAILED)
        self.assertIsNone(job.next_retry_at)

    def test_untyped_failure_is_classified(self):
        self.synth.fail_on = 1
        self.synth.error = RuntimeError("socket read timeout")
        article = self.make_article()
        with self.assertRaises(RuntimeError):
            self.pipeline.generate_audio(article)
        job = self.db.get_job_for_article(article.id)
        self.assertEqual(job.error_code, ErrorCode.NETWORK_TIMEOUT)
        self.assertIsNotNone(job.next_retry_at)

    def test_concurrent_requests_synthesize_once(self):
        synth = BlockingSynth()
        pipeline = ArticleAudioPipeline(self.db, self.store, synth, self.settings)
        article = self.make_article(body="Short body.")

        worker = threading.Thread(target=pipeline.generate_audio, args=(article,))
        worker.start()
        self.assertTrue(synth.started.wait(5))

        in_flight = pipeline.generate_audio(article)
        self.assertEqual(in_flight.status, JobStatus.PROCESSING)

        synth.release.set()
        worker.join(5)
        self.assertFalse(worker.is_alive())
        self.assertEqual(len(synth.calls), 1)
        self.assertEqual(self.db.get_job_for_article(article.id).status, JobStatus.READY)

    def test_superseded_run_keeps_newer_audio(self):
        settings = PipelineSettings(lock_lease_sec=0)
        stale_synth = BlockingSynth()
        stale = ArticleAudioPipeline(self.db, self.store, stale_synth, settings)
        fresh_synth = FakeSynth()
        fresh = ArticleAudioPipeline(self.db, self.store, fresh_synth, settings)
        article = self.make_article(body="Old body.")

        worker = threading.Thread(target=stale.generate_audio, args=(article,))
        worker.start()
        self.assertTrue(stale_synth.started.wait(5))

        self.db.update_article(article.id, body="New body.")
        job = fresh.generate_audio(self.db.get_article(article.id))
        self.assertEqual(job.status, JobStatus.READY)

        stale_synth.release.set()
        worker.join(5)
        self.assertFalse(worker.is_alive())

        job = self.db.get_job_for_article(article.id)
        self.assertEqual(job.status, JobStatus.READY)
        self.assertEqual(job.content_hash, content_hash("New body."))
        self.assertEqual(self.store.get(job.audio_path), fresh_synth.expected_audio())
        self.assertEqual(self.db.get_article(article.id).audio_url,
                         f"/storage/{job.audio_path}")
        self.assertEqual([p.name for p in (self.tmp / "storage").rglob("*.mp3")],
                         [Path(job.audio_path).name])


class TestYouTubeAudioPipeline(StoreTestCase):
    """Test YouTube audio extraction jobs."""

    def setUp(self):
        super().setUp()
        self.temp_dir = self.tmp / "tmp"

    def make_video(self):
        article, _ = self.db.upsert_article("device-1", VIDEO_URL, SourceType.YOUTUBE)
        return article

    def test_success(self):
        downloader = FakeDownloader()
        pipeline = YouTubeAudioPipeline(self.db, self.store, downloader, self.settings,
                                        temp_dir=self.temp_dir)
        article = self.make_video()
        job = pipeline.generate_audio(article)

        self.assertEqual(job.status, JobStatus.READY)
        self.assertEqual(job.voice, "youtube")
        self.assertTrue(job.audio_path.startswith(f"youtube/{article.id}-"))
        self.assertEqual(job.duration_seconds, 212)
        self.assertEqual(job.content_hash, content_hash(VIDEO_URL))
        self.assertEqual(self.store.get(job.audio_path), b"ytaudio")
        self.assertEqual(downloader.calls, [VIDEO_URL])

        stored = self.db.get_article(article.id)
        self.assertEqual(stored.title, "A Video")
        self.assertEqual(stored.extraction_status, ExtractionStatus.READY)
        self.assertEqual(stored.audio_url, f"/storage/{job.audio_path}")
        self.assertEqual(list(self.temp_dir.iterdir()), [])

        pipeline.generate_audio(self.db.get_article(article.id))
        self.assertEqual(len(downloader.calls), 1)

    def test_failure(self):
        downloader = FakeDownloader(error=JobError(ErrorCode.PRIVATE_VIDEO, "This video is private"))
        pipeline = YouTubeAudioPipeline(self.db, self.store, downloader, self.settings,
                                        temp_dir=self.temp_dir)
        article = self.make_video()
        with self.assertRaises(JobError):
            pipeline.generate_audio(article)

        job = self.db.get_job_for_article(article.id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_code, ErrorCode.PRIVATE_VIDEO)
        self.assertIsNone(job.next_retry_at)
        self.assertEqual(self.db.get_article(article.id).extraction_status,
                         ExtractionStatus.FAILED)


class TestCleanup(StoreTestCase):

    def test_expire_old_audio(self):
        synth = FakeSynth()
        pipeline = ArticleAudioPipeline(self.db, self.store, synth, self.settings)
        article = self.make_article()
        job = pipeline.generate_audio(article)

        self.assertEqual(expire_old_audio(self.db, self.store, 30), [])
        later = utc_now() + timedelta(days=31)
        self.assertEqual(expire_old_audio(self.db, self.store, 30, now=later), [article.id])
        self.assertIsNone(self.db.get_job_for_article(article.id))
        self.assertFalse(self.store.exists(job.audio_path))
        self.assertIsNone(self.db.get_article(article.id).audio_url)

    def test_cleanup_temp_files(self):
        temp_dir = self.tmp / "tmp"
        temp_dir.mkdir()
        old = time.time() - 7200
        for name in ("yt_1_abc.mp3", "yt_2_def.mp3.part", "notes.txt"):
            path = temp_dir / name
            path.write_bytes(b"x")
            os.utime(path, (old, old))
        (temp_dir / "yt_3_fresh.mp3").write_bytes(b"x")

        self.assertEqual(cleanup_temp_files(temp_dir), 2)
        self.assertEqual(sorted(p.name for p in temp_dir.iterdir()),
                         ["notes.txt", "yt_3_fresh.mp3"])
        self.assertEqual(cleanup_temp_files(self.tmp / "missing"), 0)


class TestArticleService(StoreTestCase):
    """Test the service operations with a synchronous fake queue."""

    def setUp(self):
        super().setUp()
        self.synth = FakeSynth()
        self.chat = FakeChat()
        self.session = mock.Mock()
        self.session.get.return_value = _page_response()
        self.downloader = FakeDownloader()
        self.queue = FakeQueue()
        extractor = ContentExtractor(ExtractorSettings(api_key="k"),
                                     chat_client=self.chat, session=self.session)
        self.service = ArticleService(
            self.db, self.store, extractor,
            ArticleAudioPipeline(self.db, self.store, self.synth, self.settings),
            YouTubeAudioPipeline(self.db, self.store, self.downloader, self.settings,
                                 temp_dir=self.tmp / "tmp"),
            self.queue,
        )

    def test_submit_web_article(self):
        article = self.service.submit_article("device-1", "https://example.com/post")
        self.assertEqual(article.extraction_status, ExtractionStatus.EXTRACTING)
        self.assertEqual(self.queue.keys(), [f"extract:{article.id}"])
        self.assertEqual(self.queue.tasks[0][3], EXTRACTION_BACKOFF)

        self.queue.run_all()
        stored = self.db.get_article(article.id)
        self.assertEqual(stored.extraction_status, ExtractionStatus.READY)
        self.assertEqual(stored.title, "Clean Title")
        self.assertEqual(stored.body, "Clean body text.")
        self.session.get.assert_called_once()
        self.assertEqual(self.service.job_status(article.id)["status"], JobStatus.READY)
        self.assertEqual(self.synth.calls, ["Now playing: Clean Title. Clean body text."])

    def test_submit_with_body_skips_fetch(self):
        article = self.service.submit_article("device-1", "https://example.com/shared",
                                              title="Shared", body="Some shared text.")
        self.assertEqual(article.title, "Shared")
        self.queue.run_all()
        self.session.get.assert_not_called()
        self.assertEqual(self.chat.calls, 1)
        self.assertEqual(self.db.get_article(article.id).extraction_status,
                         ExtractionStatus.READY)

    def test_submit_youtube(self):
        article = self.service.submit_article("device-1", "https://youtu.be/dQw4w9WgXcQ")
        self.assertEqual(article.url, VIDEO_URL)
        self.assertEqual(article.source_type, SourceType.YOUTUBE)
        self.assertEqual(self.queue.keys(), [f"audio:{article.id}"])

        self.queue.run_all()
        stored = self.db.get_article(article.id)
        self.assertEqual(stored.title, "A Video")
        self.assertEqual(self.service.fetch_audio(article.id), b"ytaudio")

    def test_resubmit_youtube_with_stored_audio(self):
        article = self.service.submit_article("device-1", "https://youtu.be/dQw4w9WgXcQ")
        self.queue.run_all()
        audio_url = self.db.get_article(article.id).audio_url

        for _ in range(2):
            again = self.service.submit_article("device-1", "https://youtu.be/dQw4w9WgXcQ")
            self.assertEqual(again.extraction_status, ExtractionStatus.EXTRACTING)
            self.assertEqual(self.queue.keys(), [f"audio:{article.id}"])
            self.queue.run_all()

            stored = self.db.get_article(article.id)
            self.assertEqual(stored.extraction_status, ExtractionStatus.READY)
            self.assertEqual(stored.audio_url, audio_url)
        self.assertEqual(len(self.downloader.calls), 1)

    def test_youtube_retry_with_stored_audio_settles(self):
        article = self.service.submit_article("device-1", "https://youtu.be/dQw4w9WgXcQ")
        self.queue.run_all()

        self.assertEqual(self.service.retry_failed_extractions(article_id=article.id),
                         [article.id])
        self.queue.run_all()
        self.assertEqual(self.db.get_article(article.id).extraction_status,
                         ExtractionStatus.READY)
        self.assertEqual(len(self.downloader.calls), 1)

    def test_resubmit_while_extracting_dispatches_nothing(self):
        first = self.service.submit_article("device-1", "https://example.com/post")
        self.queue.tasks.clear()
        second = self.service.submit_article("device-1", "https://example.com/post")
        self.assertEqual(second.id, first.id)
        self.assertEqual(self.queue.tasks, [])

    def test_extraction_failure_marks_article(self):
        self.session.get.return_value = _page_response(500)
        article = self.service.submit_article("device-1", "https://example.com/broken")
        with self.assertRaises(FetchError):
            self.service.run_extraction(article.id)
        self.assertEqual(self.db.get_article(article.id).extraction_status,
                         ExtractionStatus.FAILED)

    def test_retry_failed_extractions(self):
        self.session.get.return_value = _page_response(500)
        article = self.service.submit_article("device-1", "https://example.com/broken")
        self.queue.tasks.clear()
        with self.assertRaises(FetchError):
            self.service.run_extraction(article.id)

        self.assertEqual(self.service.retry_failed_extractions(only_failed=True), [article.id])
        self.assertEqual(self.db.get_article(article.id).extraction_status,
                         ExtractionStatus.EXTRACTING)
        self.assertEqual(self.queue.keys(), [f"extract:{article.id}"])

        self.session.get.return_value = _page_response()
        self.queue.run_all()
        self.assertEqual(self.db.get_article(article.id).extraction_status,
                         ExtractionStatus.READY)

    def test_stuck_extraction_is_retried(self):
        article = self.service.submit_article("device-1", "https://example.com/post")
        self.assertEqual(self.service.retry_failed_extractions(stuck_minutes=10), [])

        with self.db._lock:
            self.db.conn.execute("UPDATE articles SET updated_at = ? WHERE id = ?",
                                 (to_iso(utc_now() - timedelta(minutes=20)), article.id))
            self.db.conn.commit()
        self.assertEqual(self.service.retry_failed_extractions(stuck_minutes=10), [article.id])
        self.assertEqual(self.service.retry_failed_extractions(article_id=article.id),
                         [article.id])

    def test_fetch_audio_states(self):
        article = self.make_article()
        with self.assertRaises(AudioNotReady) as ctx:
            self.service.fetch_audio(article.id)
        self.assertEqual(ctx.exception.http_status, 409)

        self.service.generate_audio(article.id)
        self.assertEqual(self.service.fetch_audio(article.id), self.synth.expected_audio())

        self.store.delete(self.db.get_job_for_article(article.id).audio_path)
        with self.assertRaises(AudioMissing) as ctx:
            self.service.fetch_audio(article.id)
        self.assertEqual(ctx.exception.http_status, 404)

    def test_request_audio(self):
        article = self.make_article()
        self.assertEqual(self.service.request_audio(article.id), {"status": JobStatus.PENDING})
        self.assertEqual(self.queue.keys(), [f"audio:{article.id}"])
        self.assertEqual(self.service.request_audio(article.id), {"status": JobStatus.PENDING})
        self.assertEqual(len(self.queue.tasks), 1)

        self.queue.run_all()
        self.assertEqual(self.service.request_audio(article.id), {"status": JobStatus.READY})
        self.assertEqual(self.queue.tasks, [])

        self.db.update_article(article.id, body="Edited body.")
        self.assertEqual(self.service.request_audio(article.id), {"status": JobStatus.PENDING})

    def test_job_status(self):
        article = self.make_article()
        status = self.service.job_status(article.id)
        self.assertEqual(status["status"], "not_started")
        self.assertEqual(status["progress_percent"], 0)

        self.synth.fail_on = 1
        with self.assertRaises(JobError):
            self.service.generate_audio(article.id)

        status = self.service.job_status(article.id)
        self.assertEqual(status["status"], JobStatus.FAILED)
        self.assertEqual(status["error_code"], ErrorCode.NETWORK_TIMEOUT)
        self.assertEqual(status["error_message"], user_message(ErrorCode.NETWORK_TIMEOUT))
        self.assertTrue(status["can_retry"])
        self.assertEqual(status["retry_count"], 1)
        self.assertIn("next_retry_at", status)
        self.assertTrue(0 <= status["retry_countdown_seconds"] <= 10)

    def test_retry_sweep(self):
        article = self.make_article(body="Short body.")
        self.synth.fail_on = 1
        with self.assertRaises(JobError):
            self.service.generate_audio(article.id)

        self.assertEqual(self.service.retry_sweep(), [])
        later = utc_now() + timedelta(seconds=11)
        self.assertEqual(self.service.retry_sweep(now=later), [article.id])
        self.assertEqual(self.db.get_job_for_article(article.id).status, JobStatus.PENDING)

        self.queue.run_all()
        self.assertEqual(self.db.get_job_for_article(article.id).status, JobStatus.READY)
        self.assertEqual(self.service.retry_sweep(now=later), [])

    def test_expire_via_service(self):
        article = self.make_article()
        self.service.generate_audio(article.id)
        later = utc_now() + timedelta(days=31)
        self.assertEqual(self.service.expire_old_audio(now=later), [article.id])
        self.assertEqual(self.service.job_status(article.id)["status"], "not_started")

    def test_unknown_article(self):
        for call in (self.service.job_status, self.service.request_audio,
                     self.service.fetch_audio, self.service.run_extraction):
            with self.assertRaises(ArticleNotFound) as ctx:
                call(999)
            self.assertEqual(ctx.exception.http_status, 404)


class TestServiceWithWorkerThreads(StoreTestCase):
    """End-to-end through the real thread pool."""

    def test_submit_to_ready(self):
        synth = FakeSynth()
        extractor = ContentExtractor(ExtractorSettings(api_key="k"), chat_client=FakeChat(),
                                     session=mock.Mock())
        queue = TaskQueue(max_workers=2)
        service = ArticleService(
            self.db, self.store, extractor,
            ArticleAudioPipeline(self.db, self.store, synth, self.settings),
            YouTubeAudioPipeline(self.db, self.store, FakeDownloader(), self.settings,
                                 temp_dir=self.tmp / "tmp"),
            queue,
        )
        try:
            article = service.submit_article("device-1", "https://example.com/post",
                                             body="Raw text to clean.")
            self.assertTrue(queue.join(timeout=10))
            self.assertEqual(service.job_status(article.id)["status"], JobStatus.READY)
            self.assertEqual(service.fetch_audio(article.id), synth.expected_audio())
        finally:
            queue.shutdown(wait=True)


if __name__ == "__main__":
    unittest.main()
