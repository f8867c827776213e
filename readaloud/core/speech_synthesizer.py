"""
Text-to-speech via an OpenAI-compatible /v1/audio/speech endpoint.
One request per call; retries are the pipeline's business.
"""

import logging

import requests

from readaloud.core.config import TtsSettings
from readaloud.core.constants import ErrorCode, TTS_FORMAT
from readaloud.core.error_codes import JobError, TtsApiError
from readaloud.core.llm_client import redact

logger = logging.getLogger(__name__)


class SpeechSynthesizer:

    def __init__(self, settings: TtsSettings, session: requests.Session | None = None):
        self.settings = settings
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.settings.api_base.rstrip('/')}/v1/audio/speech"

    def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Return MP3 bytes for `text`."""
        if not self.settings.api_key:
            raise JobError(ErrorCode.API_AUTH_FAILED, "TTS API key is not configured")

        voice = voice or self.settings.voice
        payload = {
            "model": self.settings.model,
            "input": text,
            "voice": voice,
            "response_format": TTS_FORMAT,
        }
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug("TTS request: %d chars, voice=%s", len(text), voice)
        try:
            resp = self.session.post(self.endpoint, json=payload, headers=headers,
                                     timeout=self.settings.timeout)
        except requests.exceptions.Timeout:
            raise JobError(ErrorCode.NETWORK_TIMEOUT, "TTS request timed out")
        except requests.exceptions.ConnectionError as e:
            raise JobError(ErrorCode.UNKNOWN, f"TTS connection failed: {redact(str(e))}")

        if not 200 <= resp.status_code < 300:
            body = redact(resp.text or "")
            logger.error("TTS failed: HTTP %d %s", resp.status_code, body[:300])
            raise TtsApiError(resp.status_code, body)

        if not resp.content:
            raise TtsApiError(resp.status_code, "", "TTS returned an empty audio body")

        return resp.content
