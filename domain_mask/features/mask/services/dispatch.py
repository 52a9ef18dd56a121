"""
Pick a body transform from the response content type and run it over the
origin's byte stream.
"""

from __future__ import annotations

import codecs
import logging
from typing import Iterable, Iterator

from .markup import StreamingMarkupTransformer
from .text_rewriters import create_text_rewriter

logger = logging.getLogger(__name__)

HTML_TYPES = frozenset({"text/html", "application/xhtml+xml"})
JSON_TYPES = frozenset({"application/json", "text/json"})
CSS_TYPES = frozenset({"text/css"})
JS_TYPES = frozenset(
    {
        "text/javascript",
        "application/javascript",
        "application/x-javascript",
        "application/ecmascript",
        "text/ecmascript",
    }
)


def parse_content_type(content_type: str) -> tuple:
    """Return (mimetype, charset) with the charset defaulting to utf-8."""
    mimetype, _, params = (content_type or "").partition(";")
    charset = "utf-8"
    for param in params.split(";"):
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            charset = value.strip().strip("\"'")
    try:
        codecs.lookup(charset)
    except LookupError:
        logger.debug("Unknown charset %r, falling back to utf-8", charset)
        charset = "utf-8"
    return mimetype.strip().lower(), charset


def select_transform(content_type: str) -> str:
    """Classify a content type as html, json, css, js or passthrough."""
    mimetype, _ = parse_content_type(content_type)
    if mimetype in HTML_TYPES:
        return "html"
    if mimetype in JSON_TYPES or mimetype.endswith("+json"):
        return "json"
    if mimetype in CSS_TYPES:
        return "css"
    if mimetype in JS_TYPES:
        return "js"
    return "passthrough"


def create_transformer(kind: str, masked_url: str, request_url: str):
    if kind == "html":
        return StreamingMarkupTransformer(masked_url, request_url)
    return create_text_rewriter(kind, masked_url, request_url)


def transform_stream(chunks: Iterable[bytes], content_type: str, ctx) -> Iterator[bytes]:
    """
    Lazily transform an origin body.

    Bytes are decoded incrementally with the declared charset and
    surrogateescape, so undecodable bytes survive the round trip unchanged.
    Output order always follows input order; nothing is read ahead of the
    consumer.
    """
    kind = select_transform(content_type)
    if kind == "passthrough":
        yield from chunks
        return

    _, charset = parse_content_type(content_type)
    transformer = create_transformer(kind, ctx.masked_url, ctx.request_url)
    decoder = codecs.getincrementaldecoder(charset)(errors="surrogateescape")
    encoder = codecs.getincrementalencoder(charset)(errors="surrogateescape")

    for chunk in chunks:
        if not chunk:
            continue
        out = transformer.feed(decoder.decode(chunk))
        if out:
            yield encoder.encode(out)

    tail = transformer.feed(decoder.decode(b"", final=True)) + transformer.close()
    final = encoder.encode(tail, final=True)
    if final:
        yield final
