"""
URL coordinate transform between the target origin and the alias domain.

Golden rule: a URL that points at the target (or one of its subdomains)
keeps everything after its authority byte for byte; only the scheme and
host[:port] move to the request's authority. Anything else, including
strings that fail to parse, comes back untouched.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Optional
from urllib.parse import SplitResult, urlsplit

from ..errors import MalformedURL

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_AUTHORITY_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.\-]*:)?//[^/?#\\]*")

# Separator spellings that show up in inline scripts and JSON payloads.
_PLAIN_DELIMS = r"://"
_ESCAPED_DELIMS = r"://|:\\/\\/|%3[aA]%2[fF]%2[fF]|:\\u002[fF]\\u002[fF]"


@lru_cache(maxsize=64)
def _split(url: str) -> SplitResult:
    return urlsplit(url)


def eq_host(a: str, b: str) -> bool:
    """Compare hostnames, ignoring a leading www."""
    strip = lambda h: re.sub(r"^www\.", "", (h or "").lower())  # noqa: E731
    return strip(a) == strip(b)


def request_authority(request_url: str) -> str:
    """Return host[:port] of the request URL without any userinfo."""
    parts = _split(request_url)
    host = parts.hostname or ""
    return f"{host}:{parts.port}" if parts.port else host


def map_host(hostname: str, masked_host: str, request_url: str) -> Optional[str]:
    """
    Map a target hostname (or subdomain of it) onto the request authority.

    api.target.com -> api.<alias>[:port]. Returns None when hostname is not
    under masked_host.
    """
    hostname = (hostname or "").lower()
    masked_host = (masked_host or "").lower()
    if not hostname or not masked_host:
        return None

    if hostname == masked_host:
        prefix = ""
    elif hostname.endswith("." + masked_host):
        prefix = hostname[: -len(masked_host)]
    else:
        return None
    return prefix + request_authority(request_url)


def _absolute_form(candidate: str, masked_url: str) -> Optional[str]:
    """Return candidate as an absolute URL, or None when it is not an http(s) reference."""
    if candidate.startswith("//"):
        return f"{_split(masked_url).scheme}:{candidate}"
    if candidate.startswith("/"):
        # Root-relative paths always live on the origin that served them.
        masked = _split(masked_url)
        return f"{masked.scheme}://{masked.netloc}{candidate}"

    match = _SCHEME_RE.match(candidate)
    if not match:
        # Document-relative, fragment-only or garbage: the browser resolves
        # these against the alias page already.
        return None
    if match.group(1).lower() not in ("http", "https"):
        return None
    return candidate


def _resolve(candidate: str, masked_url: str) -> Optional[SplitResult]:
    absolute = _absolute_form(candidate, masked_url)
    if absolute is None:
        return None
    try:
        parts = urlsplit(absolute)
        parts.port  # raises ValueError for a non-numeric or out-of-range port
    except ValueError as exc:
        raise MalformedURL(candidate) from exc
    return parts


def url_hostname(url: str, masked_url: str) -> Optional[str]:
    """Hostname an http(s) reference points at once resolved, or None."""
    if not url:
        return None
    try:
        parts = _resolve(url.strip(), masked_url)
    except MalformedURL:
        return None
    if parts is None or not parts.hostname:
        return None
    return parts.hostname.lower()


def rewrite_url(original_url: str, masked_url: str, request_url: str) -> str:
    """
    Move original_url from target coordinates to request coordinates.

    - data: URIs and non-http schemes are returned unchanged
    - absolute, protocol-relative and root-relative references to the
      target host (or a subdomain) become absolute URLs on the request
      authority with path, query and fragment copied verbatim
    - everything else, including unparseable input, is returned unchanged
    """
    if not original_url or not isinstance(original_url, str):
        return original_url

    candidate = original_url.strip()
    if candidate[:5].lower() == "data:":
        return original_url

    try:
        parts = _resolve(candidate, masked_url)
    except MalformedURL:
        return original_url
    if parts is None or parts.scheme.lower() not in ("http", "https"):
        return original_url

    request = _split(request_url)
    hostname = (parts.hostname or "").lower()
    if hostname == (request.hostname or "").lower():
        # Already in alias coordinates.
        return original_url

    new_netloc = map_host(hostname, _split(masked_url).hostname, request_url)
    if new_netloc is None:
        return original_url

    absolute = _absolute_form(candidate, masked_url)
    rest = _AUTHORITY_RE.sub("", absolute, count=1)
    return f"{request.scheme}://{new_netloc}{rest}"


def rewrite_srcset(value: str, masked_url: str, request_url: str) -> str:
    """Rewrite each candidate of a srcset list, keeping width/density descriptors."""
    if not value:
        return value

    entries = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        url, _, descriptor = entry.partition(" ")
        url = rewrite_url(url, masked_url, request_url)
        descriptor = descriptor.strip()
        entries.append(f"{url} {descriptor}" if descriptor else url)
    return ", ".join(entries)


@lru_cache(maxsize=32)
def _host_pattern(masked_host: str, escaped: bool) -> re.Pattern:
    delims = _ESCAPED_DELIMS if escaped else _PLAIN_DELIMS
    return re.compile(
        r"(?:(?P<scheme>\bhttps?)(?P<delim>" + delims + r")|(?<![\w.\-*]))"
        r"(?P<wildcard>\*\.)?"
        r"(?P<host>(?:[a-z0-9\-]+\.)*" + re.escape(masked_host) + r")"
        r"(?P<port>:\d+)?"
        r"(?![\w\-]|\.[a-z0-9])",
        re.IGNORECASE,
    )


def rewrite_hosts_in_text(text: str, masked_url: str, request_url: str, escaped: bool = False) -> str:
    """
    Replace occurrences of the target host inside free text.

    Matches bare hostnames, scheme-qualified origins and protocol-relative
    references with full-hostname boundaries, so notexample.com never
    matches example.com. With escaped=True the JSON/JS spellings of the
    scheme separator (\\/\\/, %3A%2F%2F, \\u002F) are recognised too.
    """
    if not text:
        return text

    masked_host = _split(masked_url).hostname
    if not masked_host or masked_host.lower() not in text.lower():
        return text

    request = _split(request_url)

    def _replace(match: re.Match) -> str:
        new_netloc = map_host(match.group("host"), masked_host, request_url)
        if new_netloc is None:
            return match.group(0)
        # CSP sources allow a *. wildcard label in front of the host.
        new_netloc = (match.group("wildcard") or "") + new_netloc
        if match.group("scheme"):
            return f"{request.scheme}{match.group('delim')}{new_netloc}"
        return new_netloc

    return _host_pattern(masked_host.lower(), escaped).sub(_replace, text)


def to_target_url(url: str, alias_hostnames: Iterable[str], target_url: str) -> str:
    """
    Inverse transform for outbound request headers (Referer, Origin).

    https://alias/x -> https://target/x; subdomains keep their level.
    Values that do not point at an alias host are returned unchanged.
    """
    if not url:
        return url
    try:
        parts = urlsplit(url.strip())
        hostname = (parts.hostname or "").lower()
    except ValueError:
        return url
    if parts.scheme.lower() not in ("http", "https"):
        return url

    target = _split(target_url)
    for alias in alias_hostnames:
        alias = alias.lower()
        if hostname == alias:
            prefix = ""
        elif hostname.endswith("." + alias):
            prefix = hostname[: -len(alias)]
        else:
            continue
        rest = _AUTHORITY_RE.sub("", url.strip(), count=1)
        return f"{target.scheme}://{prefix}{target.netloc}{rest}"
    return url
