"""
Pattern based rewrites for JSON, CSS and JavaScript bodies.

Each rewriter is a pure function over a block of text. TextStreamRewriter
feeds them incrementally, holding back only the unfinished tail of the
stream so a match is never split across chunks.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional
from urllib.parse import urlsplit

from .urls import map_host, rewrite_hosts_in_text, rewrite_url

logger = logging.getLogger(__name__)

# Longest run held back while waiting for a line break in minified bodies.
MAX_HOLD = 64 * 1024

_JSON_STRING = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_CSS_URL = re.compile(
    r"""url\(\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^)'"\s]*))\s*\)""",
    re.IGNORECASE,
)
_CSS_IMPORT = re.compile(r"""(?P<lead>@import\s+)(?P<q>["'])(?P<url>[^"']*)(?P=q)""", re.IGNORECASE)
_JS_LITERAL = re.compile(r"""(?P<q>['"])(?P<body>(?:\\.|(?!(?P=q))[^\\\r\n])*)(?P=q)""")
_JS_URL_START = re.compile(r"^(?:https?:)?(?://|\\/\\/)", re.IGNORECASE)
_HOSTNAME = re.compile(r"(?:[a-z0-9\-]+\.)+[a-z0-9\-]+", re.IGNORECASE)


def rewrite_json(text: str, masked_url: str, request_url: str) -> str:
    """Rewrite target references inside JSON string literals only."""

    def _replace(match: re.Match) -> str:
        return rewrite_hosts_in_text(match.group(0), masked_url, request_url, escaped=True)

    return _JSON_STRING.sub(_replace, text)


def rewrite_css(text: str, masked_url: str, request_url: str) -> str:
    """Rewrite url(...) and @import targets; rewritten references are emitted as url("...")."""

    def _replace_url(match: re.Match) -> str:
        url = next(g for g in (match.group("dq"), match.group("sq"), match.group("bare")) if g is not None)
        new_url = rewrite_url(url, masked_url, request_url)
        if new_url == url:
            return match.group(0)
        quoted = new_url.replace('"', "%22")
        return f'url("{quoted}")'

    def _replace_import(match: re.Match) -> str:
        url = match.group("url")
        new_url = rewrite_url(url, masked_url, request_url)
        if new_url == url:
            return match.group(0)
        quoted = new_url.replace('"', "%22")
        return f'{match.group("lead")}"{quoted}"'

    text = _CSS_URL.sub(_replace_url, text)
    return _CSS_IMPORT.sub(_replace_import, text)


def rewrite_js(text: str, masked_url: str, request_url: str) -> str:
    """Rewrite quoted literals that are full URLs or bare target hostnames."""
    masked_host = (urlsplit(masked_url).hostname or "").lower()
    if not masked_host or masked_host not in text.lower():
        return text

    def _replace(match: re.Match) -> str:
        body = match.group("body")
        if _JS_URL_START.match(body):
            new_body = rewrite_hosts_in_text(body, masked_url, request_url, escaped=True)
        elif _HOSTNAME.fullmatch(body):
            new_body = map_host(body, masked_host, request_url) or body
        else:
            return match.group(0)
        if new_body == body:
            return match.group(0)
        quote = match.group("q")
        return f"{quote}{new_body}{quote}"

    return _JS_LITERAL.sub(_replace, text)


def _last_match_end(pattern: re.Pattern, text: str) -> int:
    end = 0
    for match in pattern.finditer(text):
        end = match.end()
    return end


def json_safe_cut(buffer: str) -> int:
    """Cut after the last complete string literal, before an unterminated one."""
    end = _last_match_end(_JSON_STRING, buffer)
    pending = buffer.find('"', end)
    return len(buffer) if pending == -1 else pending


def _line_cut(pattern: re.Pattern) -> Callable[[str], int]:
    def cut(buffer: str) -> int:
        newline = buffer.rfind("\n")
        if newline != -1:
            return newline + 1
        if len(buffer) > MAX_HOLD:
            return _last_match_end(pattern, buffer) or len(buffer)
        return 0

    return cut


css_safe_cut = _line_cut(_CSS_URL)
js_safe_cut = _line_cut(_JS_LITERAL)


class TextStreamRewriter:
    """Apply a text rewriter to a stream of decoded chunks."""

    def __init__(
        self,
        rewrite: Callable[[str, str, str], str],
        safe_cut: Callable[[str], int],
        masked_url: str,
        request_url: str,
    ):
        self._rewrite = rewrite
        self._safe_cut = safe_cut
        self._masked_url = masked_url
        self._request_url = request_url
        self._buffer = ""

    def _apply(self, text: str) -> str:
        if not text:
            return text
        try:
            return self._rewrite(text, self._masked_url, self._request_url)
        except Exception as e:
            logger.warning("Text rewrite failed, passing block through: %s", e)
            return text

    def feed(self, chunk: str) -> str:
        self._buffer += chunk
        cut = self._safe_cut(self._buffer)
        ready, self._buffer = self._buffer[:cut], self._buffer[cut:]
        return self._apply(ready)

    def close(self) -> str:
        rest, self._buffer = self._buffer, ""
        return self._apply(rest)


def create_text_rewriter(kind: str, masked_url: str, request_url: str) -> Optional[TextStreamRewriter]:
    if kind == "json":
        return TextStreamRewriter(rewrite_json, json_safe_cut, masked_url, request_url)
    if kind == "css":
        return TextStreamRewriter(rewrite_css, css_safe_cut, masked_url, request_url)
    if kind == "js":
        return TextStreamRewriter(rewrite_js, js_safe_cut, masked_url, request_url)
    return None
