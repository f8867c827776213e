"""
Standardised error handling for ReadAloud.

Every pipeline failure ends up as one ErrorCode. Typed JobErrors carry their
code; anything else is sniffed against ERROR_PATTERNS.
"""

from readaloud.core.constants import (
    ErrorCode, RETRYABLE_ERRORS, RETRY_DELAYS, DEFAULT_RETRY_DELAY,
    USER_MESSAGES, ERROR_PATTERNS,
)


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str | None, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        if retryable is None:
            retryable = is_retryable(code) if code else True
        self.retryable = retryable
        super().__init__(f"[{code}] {message}" if code else message)


class FetchError(JobError):
    """Source page could not be fetched."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(None, message)


class LlmApiError(JobError):
    """Chat-completions endpoint failed or returned nothing usable."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(None, message)


class TtsApiError(JobError):
    """Speech endpoint returned a non-2xx response."""

    def __init__(self, status_code: int | None, body: str, message: str | None = None):
        self.status_code = status_code
        self.body = body
        if message is None:
            message = f"TTS request failed (HTTP {status_code}): {body[:300]}"
        super().__init__(_code_for_status(status_code, body), message)


def _code_for_status(status_code: int | None, body: str) -> str | None:
    if status_code == 429:
        if "quota" in (body or "").lower():
            return ErrorCode.API_QUOTA_EXCEEDED
        return ErrorCode.API_RATE_LIMIT
    if status_code in (401, 403):
        return ErrorCode.API_AUTH_FAILED
    if status_code in (408, 504):
        return ErrorCode.NETWORK_TIMEOUT
    if status_code == 413:
        return ErrorCode.CONTENT_TOO_LONG
    return None


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


def retry_delay_seconds(code: str) -> int:
    return RETRY_DELAYS.get(code, DEFAULT_RETRY_DELAY)


def user_message(code: str | None) -> str:
    return USER_MESSAGES.get(code, "An error occurred")


def classify_message(message: str) -> str:
    """Map a raw error message onto an ErrorCode via the substring table."""
    lowered = (message or "").lower()
    for needle, code in ERROR_PATTERNS:
        if needle in lowered:
            return code
    return ErrorCode.UNKNOWN


def classify_error(exc: BaseException) -> str:
    """
    Classify an exception into an ErrorCode.
    A typed JobError code wins; otherwise the message is sniffed.
    """
    if isinstance(exc, JobError) and exc.code:
        return exc.code
    return classify_message(str(exc))
