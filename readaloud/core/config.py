"""
Application configuration manager.
Stores settings in a JSON file under the app support dir and turns them
into immutable per-component settings at startup.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from readaloud.core.constants import (
    CONFIG_PATH, DB_PATH, DEFAULT_STORAGE_ROOT, DEFAULT_STORAGE_BASE_URL,
    DEFAULT_COOKIES_PATH, API_KEY_ENV, API_BASE_ENV, DEFAULT_API_BASE,
    TTS_MODEL, TTS_DEFAULT_VOICE, TTS_VOICES, EXTRACTOR_MODEL,
    EXTRACTOR_MAX_LENGTH, EXTRACTOR_MAX_RETRIES, MAX_AUDIO_RETRIES,
    LOCK_LEASE_SEC, AUDIO_RETENTION_DAYS, MAX_CHUNK_SIZE,
    YOUTUBE_MAX_DURATION_SEC, YOUTUBE_DOWNLOAD_TIMEOUT_SEC,
    YOUTUBE_METADATA_TIMEOUT_SEC, YOUTUBE_AUDIO_QUALITY,
)

# Validation bounds
_TIMEOUT_MIN = 5
_TIMEOUT_MAX = 900
_RETRIES_MIN = 1
_RETRIES_MAX = 10
_MAX_DURATION_MIN = 60
_MAX_DURATION_MAX = 6 * 3600
_WORKERS_MIN = 1
_WORKERS_MAX = 32
_CHUNK_MIN = 500

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'db_path': str(DB_PATH),
    'storage_root': str(DEFAULT_STORAGE_ROOT),
    'storage_base_url': DEFAULT_STORAGE_BASE_URL,
    'max_workers': 4,
    'lock_lease_sec': LOCK_LEASE_SEC,
    'audio_max_retries': MAX_AUDIO_RETRIES,
    'audio_retention_days': AUDIO_RETENTION_DAYS,
    'announce_title': True,
    'chunk_size': MAX_CHUNK_SIZE,
    'tts_model': TTS_MODEL,
    'tts_voice': TTS_DEFAULT_VOICE,
    'tts_timeout': 120,
    'extractor_model': EXTRACTOR_MODEL,
    'extractor_timeout': 30,
    'extractor_url_timeout': 20,
    'extractor_max_length': EXTRACTOR_MAX_LENGTH,
    'extractor_max_retries': EXTRACTOR_MAX_RETRIES,
    'extractor_temperature': 0.1,
    'extractor_max_tokens': 8000,
    'youtube_timeout': YOUTUBE_DOWNLOAD_TIMEOUT_SEC,
    'youtube_metadata_timeout': YOUTUBE_METADATA_TIMEOUT_SEC,
    'youtube_max_duration_sec': YOUTUBE_MAX_DURATION_SEC,
    'youtube_audio_quality': YOUTUBE_AUDIO_QUALITY,
    'yt_dlp_path': 'yt-dlp',
    'ffmpeg_path': 'ffmpeg',
    'cookies_path': str(DEFAULT_COOKIES_PATH),
}

_TIMEOUT_KEYS = {
    'tts_timeout', 'extractor_timeout', 'extractor_url_timeout',
    'youtube_timeout', 'youtube_metadata_timeout',
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _TIMEOUT_KEYS:
            return _clamp_int(key, value, _TIMEOUT_MIN, _TIMEOUT_MAX)

        if key in ('extractor_max_retries', 'audio_max_retries'):
            return _clamp_int(key, value, _RETRIES_MIN, _RETRIES_MAX)

        if key == 'youtube_max_duration_sec':
            return _clamp_int(key, value, _MAX_DURATION_MIN, _MAX_DURATION_MAX)

        if key == 'max_workers':
            return _clamp_int(key, value, _WORKERS_MIN, _WORKERS_MAX)

        if key == 'chunk_size':
            return _clamp_int(key, value, _CHUNK_MIN, MAX_CHUNK_SIZE)

        if key == 'tts_voice':
            if value not in TTS_VOICES:
                logger.warning("Unknown tts_voice %r, using %s", value, TTS_DEFAULT_VOICE)
                return TTS_DEFAULT_VOICE

        if key == 'announce_title':
            return bool(value)

        return value

    @property
    def api_key(self) -> str | None:
        return os.environ.get(API_KEY_ENV) or self._data.get('api_key')

    @property
    def api_base(self) -> str:
        return os.environ.get(API_BASE_ENV) or self._data.get('api_base', DEFAULT_API_BASE)


def _clamp_int(key: str, value, low: int, high: int) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r, using default", key, value)
        return _DEFAULTS[key]
    return max(low, min(high, value))


# ── Immutable settings handed to components ───────────────────────────

@dataclass(frozen=True)
class ExtractorSettings:
    api_key: str | None
    api_base: str = DEFAULT_API_BASE
    model: str = EXTRACTOR_MODEL
    timeout: int = 30
    url_timeout: int = 20
    max_length: int = EXTRACTOR_MAX_LENGTH
    max_retries: int = EXTRACTOR_MAX_RETRIES
    temperature: float = 0.1
    max_tokens: int = 8000


@dataclass(frozen=True)
class TtsSettings:
    api_key: str | None
    api_base: str = DEFAULT_API_BASE
    model: str = TTS_MODEL
    voice: str = TTS_DEFAULT_VOICE
    timeout: int = 120


@dataclass(frozen=True)
class YouTubeSettings:
    yt_dlp_path: str = 'yt-dlp'
    ffmpeg_path: str = 'ffmpeg'
    cookies_path: Path | None = None
    timeout: int = YOUTUBE_DOWNLOAD_TIMEOUT_SEC
    metadata_timeout: int = YOUTUBE_METADATA_TIMEOUT_SEC
    max_duration_sec: int = YOUTUBE_MAX_DURATION_SEC
    audio_quality: int = YOUTUBE_AUDIO_QUALITY


@dataclass(frozen=True)
class PipelineSettings:
    max_retries: int = MAX_AUDIO_RETRIES
    lock_lease_sec: int = LOCK_LEASE_SEC
    chunk_size: int = MAX_CHUNK_SIZE
    announce_title: bool = True
    retention_days: int = AUDIO_RETENTION_DAYS


@dataclass(frozen=True)
class Settings:
    db_path: Path
    storage_root: Path
    storage_base_url: str
    max_workers: int
    extractor: ExtractorSettings
    tts: TtsSettings
    youtube: YouTubeSettings
    pipeline: PipelineSettings


def build_settings(config: AppConfig) -> Settings:
    """Assemble the immutable Settings once at startup."""
    get = config.get
    cookies = get('cookies_path')
    return Settings(
        db_path=Path(get('db_path')),
        storage_root=Path(get('storage_root')),
        storage_base_url=get('storage_base_url'),
        max_workers=get('max_workers'),
        extractor=ExtractorSettings(
            api_key=config.api_key,
            api_base=config.api_base,
            model=get('extractor_model'),
            timeout=get('extractor_timeout'),
            url_timeout=get('extractor_url_timeout'),
            max_length=get('extractor_max_length'),
            max_retries=get('extractor_max_retries'),
            temperature=get('extractor_temperature'),
            max_tokens=get('extractor_max_tokens'),
        ),
        tts=TtsSettings(
            api_key=config.api_key,
            api_base=config.api_base,
            model=get('tts_model'),
            voice=get('tts_voice'),
            timeout=get('tts_timeout'),
        ),
        youtube=YouTubeSettings(
            yt_dlp_path=get('yt_dlp_path'),
            ffmpeg_path=get('ffmpeg_path'),
            cookies_path=Path(cookies) if cookies else None,
            timeout=get('youtube_timeout'),
            metadata_timeout=get('youtube_metadata_timeout'),
            max_duration_sec=get('youtube_max_duration_sec'),
            audio_quality=get('youtube_audio_quality'),
        ),
        pipeline=PipelineSettings(
            max_retries=get('audio_max_retries'),
            lock_lease_sec=get('lock_lease_sec'),
            chunk_size=get('chunk_size'),
            announce_title=get('announce_title'),
            retention_days=get('audio_retention_days'),
        ),
    )
