"""
Streaming HTML rewriting for masked pages.

The transformer is a single forward pass over the document built on the
incremental tokenizer in html.parser: feed() takes whatever bytes the
origin has produced so far and returns the markup that is ready, while the
tokenizer buffers partial tags. Start tags that need no change are emitted
exactly as they appeared in the source.
"""

from __future__ import annotations

import logging
import re
from html.parser import HTMLParser
from typing import List, Optional, Tuple

from .text_rewriters import rewrite_css
from .urls import rewrite_hosts_in_text, rewrite_srcset, rewrite_url, url_hostname

logger = logging.getLogger(__name__)

ANALYTICS_HOSTS = (
    "googletagmanager.com",
    "google-analytics.com",
    "analytics.google.com",
    "doubleclick.net",
    "connect.facebook.net",
    "static.hotjar.com",
    "script.hotjar.com",
    "cdn.segment.com",
    "plausible.io",
    "www.clarity.ms",
)

URL_ATTRS = frozenset({"href", "src", "data-src", "action", "formaction", "poster"})
SRCSET_ATTRS = frozenset({"srcset", "data-srcset"})
SELF_URL_META = frozenset({"og:url", "twitter:url"})
ANALYTICS_LINK_RELS = frozenset({"preconnect", "dns-prefetch"})

# Text runs longer than this are flushed at the last line break.
MAX_TEXT_HOLD = 64 * 1024

_REFRESH_URL = re.compile(r"(?P<lead>;\s*url\s*=\s*['\"]?)(?P<url>[^'\"]+)", re.IGNORECASE)
_ANALYTICS_REF = re.compile(
    r"(?<![\w.\-])(?:[a-z0-9\-]+\.)*(?:" + "|".join(re.escape(h) for h in ANALYTICS_HOSTS) + r")(?![\w\-])",
    re.IGNORECASE,
)

Attrs = List[Tuple[str, Optional[str]]]


def is_analytics_host(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    hostname = hostname.lower()
    return any(hostname == h or hostname.endswith("." + h) for h in ANALYTICS_HOSTS)


def _escape_attr(value: str) -> str:
    return value.replace("&", "&amp;").replace('"', "&quot;")


def serialize_start_tag(tag: str, attrs: Attrs, self_closing: bool = False) -> str:
    parts = [tag]
    for name, value in attrs:
        parts.append(name if value is None else f'{name}="{_escape_attr(value)}"')
    return "<" + " ".join(parts) + (" />" if self_closing else ">")


class _MarkupRewriter(HTMLParser):
    """SAX-style callbacks that write the transformed document into an output buffer."""

    def __init__(self, masked_url: str, request_url: str):
        super().__init__(convert_charrefs=False)
        self.masked_url = masked_url
        self.request_url = request_url
        self.out: List[str] = []
        self._text: List[str] = []
        self._text_len = 0
        self._raw_tag: Optional[str] = None
        self._drop_tag: Optional[str] = None
        # Start tag of an inline script, emitted once its body is known.
        self._held_script: Optional[str] = None

    # -- output helpers -------------------------------------------------

    def _emit(self, piece: str) -> None:
        if self._drop_tag is None:
            self.out.append(piece)

    def _rewrite_text(self, text: str) -> str:
        try:
            if self._raw_tag == "script":
                return rewrite_hosts_in_text(text, self.masked_url, self.request_url, escaped=True)
            if self._raw_tag == "style":
                return rewrite_css(text, self.masked_url, self.request_url)
            return rewrite_hosts_in_text(text, self.masked_url, self.request_url)
        except Exception as e:
            logger.warning("Text node rewrite failed, passing through: %s", e)
            return text

    def _release_script(self) -> None:
        if self._held_script is not None:
            self._emit(self._held_script)
            self._held_script = None

    def flush_text(self, force: bool = True) -> None:
        # Oversized or unterminated inline scripts are kept.
        self._release_script()
        if not self._text:
            return
        text = "".join(self._text)
        self._text, self._text_len = [], 0
        if not force:
            cut = text.rfind("\n") + 1
            if cut:
                text, rest = text[:cut], text[cut:]
                if rest:
                    self._text, self._text_len = [rest], len(rest)
        self._emit(self._rewrite_text(text))

    def _hold_text(self, text: str) -> None:
        if self._drop_tag is not None:
            return
        self._text.append(text)
        self._text_len += len(text)
        if self._text_len > MAX_TEXT_HOLD:
            self.flush_text(force=False)

    # -- tokenizer callbacks --------------------------------------------

    def handle_starttag(self, tag, attrs):
        self._start(tag, attrs, self_closing=False)

    def handle_startendtag(self, tag, attrs):
        self._start(tag, attrs, self_closing=True)

    def handle_endtag(self, tag):
        if tag == "script" and self._held_script is not None:
            body = "".join(self._text)
            if _ANALYTICS_REF.search(body):
                logger.debug("Dropping inline analytics script")
                self._held_script = None
                self._text, self._text_len = [], 0
                self._raw_tag = None
                return
        self.flush_text()
        if tag == self._raw_tag:
            self._raw_tag = None
        if self._drop_tag is not None:
            if tag == self._drop_tag:
                self._drop_tag = None
            return
        self._emit(f"</{tag}>")

    def handle_data(self, data):
        self._hold_text(data)

    def handle_entityref(self, name):
        self._hold_text(f"&{name};")

    def handle_charref(self, name):
        self._hold_text(f"&#{name};")

    def handle_comment(self, data):
        self.flush_text()

    def handle_decl(self, decl):
        self.flush_text()
        self._emit(f"<!{decl}>")

    def handle_pi(self, data):
        self.flush_text()
        self._emit(f"<?{data}>")

    def unknown_decl(self, data):
        self.flush_text()
        self._emit(f"<![{data}]]>")

    # -- element rules --------------------------------------------------

    def _start(self, tag: str, attrs: Attrs, self_closing: bool) -> None:
        self.flush_text()
        raw = self.get_starttag_text() or serialize_start_tag(tag, attrs, self_closing)

        if self._drop_tag is not None:
            return

        try:
            new_attrs = self._rewrite_attrs(tag, attrs)
        except Exception as e:
            logger.warning("Could not rewrite <%s>, passing through: %s", tag, e)
            new_attrs = attrs

        if tag in ("script", "style") and not self_closing:
            self._raw_tag = tag

        if new_attrs is None:
            # Element removed. A script is never void, even when written
            # <script ... />, so everything up to </script> goes with it.
            if tag == "script":
                self._drop_tag = tag
            return

        start = raw if new_attrs == attrs else serialize_start_tag(tag, new_attrs, self_closing)
        if tag == "script" and not self_closing and not any(name == "src" for name, _ in attrs):
            self._held_script = start
        else:
            self._emit(start)

    def _rewrite_attrs(self, tag: str, attrs: Attrs) -> Optional[Attrs]:
        """Return rewritten attributes, or None when the element must be dropped."""
        values = {name: value for name, value in attrs}

        if tag == "script" and values.get("src"):
            if is_analytics_host(url_hostname(values["src"], self.masked_url)):
                logger.debug("Dropping analytics script %s", values["src"])
                return None

        rels = set((values.get("rel") or "").lower().split())
        if tag == "link" and values.get("href"):
            if rels & ANALYTICS_LINK_RELS and is_analytics_host(url_hostname(values["href"], self.masked_url)):
                logger.debug("Dropping analytics link %s", values["href"])
                return None

        meta_key = (values.get("property") or values.get("name") or "").lower()
        http_equiv = (values.get("http-equiv") or "").lower()

        new_attrs: Attrs = []
        for name, value in attrs:
            if value is None:
                new_attrs.append((name, value))
                continue

            if tag == "link" and name == "href" and "canonical" in rels:
                value = self.request_url
            elif tag == "meta" and name == "content":
                value = self._rewrite_meta_content(meta_key, http_equiv, value)
            elif name in URL_ATTRS:
                value = rewrite_url(value, self.masked_url, self.request_url)
            elif name in SRCSET_ATTRS:
                value = rewrite_srcset(value, self.masked_url, self.request_url)
            elif name == "style":
                value = rewrite_css(value, self.masked_url, self.request_url)
            new_attrs.append((name, value))
        return new_attrs

    def _rewrite_meta_content(self, meta_key: str, http_equiv: str, value: str) -> str:
        if meta_key in SELF_URL_META:
            return self.request_url
        if http_equiv == "refresh":
            return _REFRESH_URL.sub(
                lambda m: m.group("lead") + rewrite_url(m.group("url"), self.masked_url, self.request_url),
                value,
            )
        if value.lstrip().lower().startswith(("http://", "https://", "//")):
            return rewrite_url(value, self.masked_url, self.request_url)
        return rewrite_hosts_in_text(value, self.masked_url, self.request_url)


class StreamingMarkupTransformer:
    """
    Incremental HTML transformer.

    feed() accepts decoded text in arbitrary chunks and returns the output
    that is ready; close() flushes everything that is still buffered.
    """

    def __init__(self, masked_url: str, request_url: str):
        self._parser = _MarkupRewriter(masked_url, request_url)

    def _drain(self) -> str:
        out = "".join(self._parser.out)
        self._parser.out.clear()
        return out

    def feed(self, chunk: str) -> str:
        self._parser.feed(chunk)
        return self._drain()

    def close(self) -> str:
        self._parser.close()
        self._parser.flush_text()
        return self._drain()


def rewrite_html(html: str, masked_url: str, request_url: str) -> str:
    """Convenience wrapper for a complete document."""
    transformer = StreamingMarkupTransformer(masked_url, request_url)
    return transformer.feed(html) + transformer.close()
