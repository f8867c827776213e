"""
SQLite data models (plain dataclasses) for ReadAloud.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Article:
    id: int
    device_id: str
    url: str
    source_type: str = "web"
    title: Optional[str] = None
    body: Optional[str] = None
    extraction_status: str = "pending"
    audio_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_youtube(self) -> bool:
        return self.source_type == "youtube"


@dataclass
class AudioJob:
    id: int
    article_id: int
    status: str = "pending"
    voice: Optional[str] = None
    content_hash: Optional[str] = None
    content_length: int = 0
    audio_path: Optional[str] = None
    duration_seconds: int = 0
    progress_percent: int = 0
    estimated_duration_ms: Optional[int] = None
    total_chunks: int = 0
    completed_chunks: int = 0
    retry_count: int = 0
    next_retry_at: Optional[str] = None     # ISO-8601 UTC
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    processing_started_at: Optional[str] = None
    processing_completed_at: Optional[str] = None
    run_token: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
