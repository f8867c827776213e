"""
Chat-completions client (OpenAI-compatible endpoint).
Used by the content extractor; one request per call, no internal retry.
"""

import logging
import re

import requests

from readaloud.core.error_codes import LlmApiError

logger = logging.getLogger(__name__)

_MAX_ERROR_BODY = 300


def redact(text: str) -> str:
    """Mask API-key-like tokens before text reaches logs or error messages."""
    text = re.sub(r'\bsk-[A-Za-z0-9_-]{8,}\b', '[redacted-key]', text)
    return re.sub(r'(?i)bearer\s+[A-Za-z0-9._-]{12,}', 'Bearer [redacted-token]', text)


class ChatClient:
    """Minimal chat-completions caller returning the first choice's content."""

    def __init__(self, api_key: str | None, api_base: str, model: str,
                 timeout: int = 30, temperature: float = 0.1,
                 max_tokens: int = 8000, session: requests.Session | None = None):
        self.api_key = api_key.strip() if api_key else ""
        self.api_base = api_base.rstrip('/')
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.session = session or requests.Session()

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        if not self.api_key:
            raise LlmApiError("LLM API key is not configured (HTTP 401)", status_code=401)

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            resp = self.session.post(
                f"{self.api_base}/v1/chat/completions",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise LlmApiError("LLM request timed out")
        except requests.exceptions.RequestException as e:
            raise LlmApiError(f"LLM request failed: {redact(str(e))}")

        if not resp.ok:
            body = redact(resp.text[:_MAX_ERROR_BODY]) if resp.text else "No response body"
            logger.error("LLM request failed: HTTP %d %s", resp.status_code, body)
            raise LlmApiError(f"LLM request failed (HTTP {resp.status_code}): {body}",
                              status_code=resp.status_code)

        try:
            data = resp.json()
            content = data['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError):
            raise LlmApiError("LLM response had no message content")

        return content or ""
