"""
Article content extraction.
Fetches a page, reduces it to plain text, asks the LLM for a clean
{title, body} and falls back to HTML heuristics when the LLM cannot help.
"""

import logging

import requests

from readaloud.core.config import ExtractorSettings
from readaloud.core.constants import (
    BROWSER_HEADERS, NON_RETRYABLE_LLM_PATTERNS, FALLBACK_BODY_CHARS, ErrorCode,
)
from readaloud.core.error_codes import JobError, FetchError
from readaloud.core.html_text import (
    html_to_plain_text, heuristic_title, humanize_url, looks_like_html, truncate,
    collapse_whitespace,
)
from readaloud.core.llm_client import ChatClient
from readaloud.core.llm_parse import parse_llm_response

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You extract readable article content from web pages for text-to-speech. "
    "Always respond with one valid JSON object and nothing else."
)

_USER_PROMPT = """Extract the main article from the page text below.
Return a JSON object with exactly two string fields:
- "title": the article headline
- "body": the article text as continuous, readable prose

Remove from the body: ads, navigation, menus, cookie notices, author bylines,
publication dates, reading-time badges, share counts, image captions,
related-article links and source attributions.
Keep the article in its original language.

URL: {url}

Page text:
{text}

Respond ONLY with the JSON object, no Markdown."""


def _is_non_retryable(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(p in message for p in NON_RETRYABLE_LLM_PATTERNS)


class ContentExtractor:
    """Fetch → plain text → LLM {title, body}, with heuristic fallback."""

    def __init__(self, settings: ExtractorSettings, chat_client: ChatClient | None = None,
                 session: requests.Session | None = None):
        self.settings = settings
        self.session = session or requests.Session()
        self.chat = chat_client or ChatClient(
            api_key=settings.api_key,
            api_base=settings.api_base,
            model=settings.model,
            timeout=settings.timeout,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            session=self.session,
        )

    # ── Public API ──────────────────────────────────────────────────

    def extract(self, url: str) -> dict:
        """Fetch `url` and return {'title', 'body'}."""
        html = self.fetch(url)
        plain = html_to_plain_text(html)
        text = truncate(plain, self.settings.max_length)

        result = self._extract_with_llm(url, text)
        if result:
            return result

        logger.info("Falling back to heuristic extraction for %s", url)
        return self._fallback(
            title=heuristic_title(html, url),
            plain_text=plain,
        )

    def clean(self, raw_content: str, provided_title: str | None = None,
              url: str | None = None) -> dict:
        """Like extract() but for content the client already captured."""
        if looks_like_html(raw_content):
            plain = html_to_plain_text(raw_content)
            fallback_title = provided_title or heuristic_title(raw_content, url)
        else:
            plain = collapse_whitespace(raw_content)
            fallback_title = provided_title or humanize_url(url) or "Untitled"

        text = truncate(plain, self.settings.max_length)
        if provided_title:
            text = f"Title hint: {provided_title}\n\n{text}"

        result = self._extract_with_llm(url or "", text)
        if result:
            return result

        logger.info("Falling back to heuristic cleanup (url=%s)", url)
        return self._fallback(title=fallback_title, plain_text=plain)

    def fetch(self, url: str) -> str:
        logger.info("Fetching %s", url)
        try:
            resp = self.session.get(url, headers=BROWSER_HEADERS,
                                    timeout=self.settings.url_timeout)
        except requests.exceptions.Timeout:
            raise FetchError(url, f"Fetching {url} timed out")
        except requests.exceptions.RequestException as e:
            raise FetchError(url, f"Failed to fetch URL {url}: {e}")

        if not 200 <= resp.status_code < 300:
            raise FetchError(url, f"Failed to fetch URL {url} (HTTP {resp.status_code})",
                             status_code=resp.status_code)

        logger.info("Fetched %s (%d chars)", url, len(resp.text))
        return resp.text

    # ── Internals ───────────────────────────────────────────────────

    def _extract_with_llm(self, url: str, text: str) -> dict | None:
        """Up to max_retries attempts; None when every attempt failed."""
        prompt = _USER_PROMPT.format(url=url, text=text)
        last_error = None

        for attempt in range(1, self.settings.max_retries + 1):
            try:
                content = self.chat.complete(SYSTEM_PROMPT, prompt)
                result = parse_llm_response(content)
                if result:
                    logger.info("LLM extraction succeeded on attempt %d", attempt)
                    return result
                last_error = ValueError("LLM response did not contain a usable title/body")
                logger.warning("LLM attempt %d/%d returned unparseable content",
                               attempt, self.settings.max_retries)
            except JobError as e:
                last_error = e
                logger.warning("LLM attempt %d/%d failed: %s",
                               attempt, self.settings.max_retries, e)
                if _is_non_retryable(e):
                    logger.warning("Non-retryable LLM error, giving up early")
                    break

        logger.warning("LLM extraction failed after retries: %s", last_error)
        return None

    def _fallback(self, title: str, plain_text: str) -> dict:
        body = plain_text[:FALLBACK_BODY_CHARS].strip()
        if not body:
            raise JobError(ErrorCode.INVALID_CONTENT, "No readable content found")
        return {'title': title, 'body': body}
