"""
Parse {title, body} out of an LLM completion.

Models wrap JSON in Markdown fences, prepend chatter or trail commentary.
Each strategy below is a pure function tried in order; the first that
yields a valid result wins.
"""

import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r'^\s*```(?:json)?\s*', re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r'\s*```\s*$')
_TITLE_BODY_RE = re.compile(
    r'\{[^{}]*"title"[^{}]*"body"[^{}]*\}|\{[^{}]*"body"[^{}]*"title"[^{}]*\}',
    re.DOTALL,
)


def _validated(data) -> dict | None:
    """Keep only dicts whose title and body are non-empty strings."""
    if not isinstance(data, dict):
        return None
    title = data.get('title')
    body = data.get('body')
    if not isinstance(title, str) or not isinstance(body, str):
        return None
    title, body = title.strip(), body.strip()
    if not title or not body:
        return None
    return {'title': title, 'body': body}


def _loads(text: str):
    try:
        return json.loads(text)
    except ValueError:
        return None


def parse_direct_json(content: str) -> dict | None:
    return _validated(_loads(content.strip()))


def parse_fenced_json(content: str) -> dict | None:
    stripped = _FENCE_OPEN_RE.sub('', content)
    stripped = _FENCE_CLOSE_RE.sub('', stripped)
    return _validated(_loads(stripped.strip()))


def parse_title_body_object(content: str) -> dict | None:
    """Flat {...} that mentions both "title" and "body"."""
    for match in _TITLE_BODY_RE.finditer(content):
        result = _validated(_loads(match.group(0)))
        if result:
            return result
    return None


def parse_any_json_object(content: str) -> dict | None:
    """
    Scan for balanced {...} spans (string-aware) and try each as JSON.
    Handles bodies containing braces that defeat the flat regex.
    """
    decoder = json.JSONDecoder()
    start = content.find('{')
    while start != -1:
        try:
            data, _end = decoder.raw_decode(content, start)
        except ValueError:
            data = None
        result = _validated(data)
        if result:
            return result
        start = content.find('{', start + 1)
    return None


PARSE_STRATEGIES = [
    parse_direct_json,
    parse_fenced_json,
    parse_title_body_object,
    parse_any_json_object,
]


def parse_llm_response(content: str | None) -> dict | None:
    """Run PARSE_STRATEGIES in order; None when none succeeds."""
    if not content or not content.strip():
        return None
    for strategy in PARSE_STRATEGIES:
        result = strategy(content)
        if result:
            logger.debug("LLM response parsed by %s", strategy.__name__)
            return result
    return None
