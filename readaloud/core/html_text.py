"""
HTML → plain text conversion and heuristic title detection.
Strips boilerplate elements (navigation, ads, comments, ...) before
flattening to a single whitespace-collapsed line of text.
"""

import re
import logging
from urllib.parse import urlparse, unquote

from bs4 import BeautifulSoup

from readaloud.core.constants import (
    BOILERPLATE_TAGS, BOILERPLATE_ATTR_RE, TRUNCATION_MARKER,
)

logger = logging.getLogger(__name__)

_HTML_SNIFF_RE = re.compile(
    r'<\s*(?:html|body|head|div|p|article|section|span|br|h[1-6]|a\s|script|style|meta)\b',
    re.IGNORECASE,
)
_BOILERPLATE_ATTR = re.compile(BOILERPLATE_ATTR_RE, re.IGNORECASE)
_WHITESPACE_RE = re.compile(r'\s+')
_SLUG_SPLIT_RE = re.compile(r'[-_+]+')
_FILE_EXT_RE = re.compile(r'\.(?:html?|php|aspx?|jsp)$', re.IGNORECASE)


def looks_like_html(content: str) -> bool:
    """Cheap tag sniff deciding whether raw content needs HTML conversion."""
    return bool(_HTML_SNIFF_RE.search(content or ""))


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _is_boilerplate(tag) -> bool:
    if tag.attrs is None:
        return False
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    values = list(classes) + [tag.get("id") or ""]
    return any(_BOILERPLATE_ATTR.search(v) for v in values if v)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(' ', text).strip()


def truncate(text: str, max_length: int) -> str:
    if len(text) > max_length:
        return text[:max_length] + TRUNCATION_MARKER
    return text


def html_to_plain_text(html: str, max_length: int | None = None) -> str:
    """
    Convert an HTML document to readable plain text.
    Entities are decoded by the parser; whitespace is collapsed.
    """
    soup = _parse(html)
    root = soup.body or soup

    for tag in root.find_all(BOILERPLATE_TAGS):
        tag.decompose()

    for tag in root.find_all(_is_boilerplate):
        # a parent may already have taken this node with it
        if tag.decomposed:
            continue
        tag.decompose()

    text = collapse_whitespace(root.get_text(separator=' '))
    logger.debug("HTML %d chars -> text %d chars", len(html), len(text))
    if max_length is not None:
        text = truncate(text, max_length)
    return text


def humanize_url(url: str | None) -> str | None:
    """
    Turn the last meaningful path segment of a URL into a title.
    https://site.com/blog/my-great-post.html -> "My great post"
    """
    if not url:
        return None
    parsed = urlparse(url if "://" in url else f"https://{url}")
    segments = [s for s in parsed.path.split('/') if s]
    for segment in reversed(segments):
        segment = _FILE_EXT_RE.sub('', unquote(segment))
        words = [w for w in _SLUG_SPLIT_RE.split(segment) if w]
        if words and not segment.isdigit():
            title = ' '.join(words)
            return title[0].upper() + title[1:]
    return parsed.netloc or None


def heuristic_title(html: str | None, url: str | None = None) -> str:
    """og:title, then <title>, then first <h1>, then the URL slug."""
    if html:
        soup = _parse(html)

        og = soup.find("meta", attrs={"property": "og:title"})
        if og and og.get("content", "").strip():
            return collapse_whitespace(og["content"])

        if soup.title and soup.title.get_text(strip=True):
            return collapse_whitespace(soup.title.get_text())

        h1 = soup.find("h1")
        if h1 and h1.get_text(strip=True):
            return collapse_whitespace(h1.get_text())

    return humanize_url(url) or "Untitled"
