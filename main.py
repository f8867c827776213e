#!/usr/bin/env python3
"""
ReadAloud v1.0.0: main entry point.
Command-line front end for the article-to-audio worker and its sweeps.
"""

import sys
import json
import time
import logging
import argparse
import traceback
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from readaloud.core.constants import APP_NAME, APP_VERSION, LOG_DIR, TEMP_DIR
from readaloud.core.config import AppConfig, build_settings
from readaloud.core.cleanup import cleanup_temp_files
from readaloud.core.diagnostics import get_diagnostics, install_cookies_from_env
from readaloud.service.articles import ArticleService

logger = logging.getLogger("readaloud")

SWEEP_INTERVAL_SEC = 30
EXPIRE_INTERVAL_SEC = 24 * 3600


def setup_logging(verbose: bool = False):
    """Log to <app home>/logs/readaloud.log and stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "readaloud.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def _print(data):
    print(json.dumps(data, indent=2, default=str))


# ── Commands ──────────────────────────────────────────────────────────

def cmd_worker(service: ArticleService, args) -> int:
    """Run the queue plus periodic retry/expiry sweeps until interrupted."""
    logger.info("Worker started (sweep every %ss)", args.interval)
    last_expire = 0.0
    try:
        while True:
            service.retry_sweep()
            if time.monotonic() - last_expire >= EXPIRE_INTERVAL_SEC:
                service.expire_old_audio()
                cleanup_temp_files(TEMP_DIR)
                last_expire = time.monotonic()
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Worker interrupted, waiting for running tasks")
    return 0


def cmd_submit(service: ArticleService, args) -> int:
    body = None
    if args.body_file:
        body = Path(args.body_file).read_text(encoding='utf-8')
    article = service.submit_article(args.device, args.url, title=args.title, body=body)
    if args.wait:
        service.queue.join()
        article = service.db.get_article(article.id)
    _print({
        "id": article.id,
        "title": article.title or article.url,
        "extraction_status": article.extraction_status,
        "audio": service.job_status(article.id),
    })
    return 0


def cmd_status(service: ArticleService, args) -> int:
    _print(service.job_status(args.article_id))
    return 0


def cmd_tts(service: ArticleService, args) -> int:
    _print(service.request_audio(args.article_id))
    if args.wait:
        service.queue.join()
        _print(service.job_status(args.article_id))
    return 0


def cmd_fetch(service: ArticleService, args) -> int:
    data = service.fetch_audio(args.article_id)
    out = Path(args.output or f"article-audio-{args.article_id}.mp3")
    out.write_bytes(data)
    print(out)
    return 0


def cmd_sweep(service: ArticleService, args) -> int:
    retried = service.retry_sweep()
    print(f"Dispatched {len(retried)} retry job(s)")
    service.queue.join()
    return 0


def cmd_retry_extractions(service: ArticleService, args) -> int:
    retried = service.retry_failed_extractions(
        stuck_minutes=args.stuck_for, only_failed=args.failed, article_id=args.id)
    print(f"Re-dispatched {len(retried)} article(s)")
    service.queue.join()
    return 0


def cmd_expire(service: ArticleService, args) -> int:
    expired = service.expire_old_audio(args.days)
    removed = cleanup_temp_files(TEMP_DIR)
    print(f"Expired {len(expired)} audio file(s), removed {removed} temp file(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="readaloud",
                                     description=f"{APP_NAME} v{APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("worker", help="Run the background worker")
    p.add_argument("--interval", type=int, default=SWEEP_INTERVAL_SEC)
    p.set_defaults(func=cmd_worker)

    p = sub.add_parser("submit", help="Save an article and start processing")
    p.add_argument("url")
    p.add_argument("--device", default="cli")
    p.add_argument("--title")
    p.add_argument("--body-file", help="Use this file's contents instead of fetching")
    p.add_argument("--wait", action="store_true")
    p.set_defaults(func=cmd_submit)

    p = sub.add_parser("status", help="Show audio progress for an article")
    p.add_argument("article_id", type=int)
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("tts", help="Request audio generation for an article")
    p.add_argument("article_id", type=int)
    p.add_argument("--wait", action="store_true")
    p.set_defaults(func=cmd_tts)

    p = sub.add_parser("fetch", help="Write an article's MP3 to disk")
    p.add_argument("article_id", type=int)
    p.add_argument("-o", "--output")
    p.set_defaults(func=cmd_fetch)

    p = sub.add_parser("sweep", help="Retry failed audio jobs that are due")
    p.set_defaults(func=cmd_sweep)

    p = sub.add_parser("retry-extractions", help="Retry failed or stuck extractions")
    p.add_argument("--failed", action="store_true", help="Only failed articles")
    p.add_argument("--stuck-for", type=int, default=10, help="Minutes in 'extracting'")
    p.add_argument("--id", type=int, help="A single article id")
    p.set_defaults(func=cmd_retry_extractions)

    p = sub.add_parser("expire", help="Delete audio past the retention window")
    p.add_argument("--days", type=int)
    p.set_defaults(func=cmd_expire)

    sub.add_parser("doctor", help="Show tool versions and cookie status")
    sub.add_parser("setup-cookies", help="Write cookies.txt from YOUTUBE_COOKIES_B64")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    logger.info("%s v%s starting at %s (%s)", APP_NAME, APP_VERSION,
                datetime.now().isoformat(), args.command)

    config = AppConfig(args.config) if args.config else AppConfig()
    settings = build_settings(config)

    if args.command == "doctor":
        yt = settings.youtube
        _print(get_diagnostics(yt.yt_dlp_path, yt.ffmpeg_path, yt.cookies_path))
        return 0
    if args.command == "setup-cookies":
        path = install_cookies_from_env(settings.youtube.cookies_path)
        print(path or "YOUTUBE_COOKIES_B64 not set, nothing written")
        return 0

    service = ArticleService.from_settings(settings)
    try:
        return args.func(service, args)
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
