"""
Request forwarding headers and response header rewrites.

Two phases:
- forward_headers() builds the header set sent to the origin
- rewrite_response_headers() mutates the origin's response headers in place
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Tuple
from urllib.parse import urljoin, urlsplit

from werkzeug.datastructures import Headers

from domain_mask.models.mask_config import MaskConfig

from .gate import RewriteContext
from .urls import eq_host, map_host, request_authority, rewrite_hosts_in_text, rewrite_url, to_target_url

logger = logging.getLogger(__name__)

ROBOTS_TAG = "noindex, nofollow, noarchive, nosnippet"

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Never forwarded upstream; Accept-Encoding is dropped so bodies arrive decoded.
EXCLUDED_REQUEST_HEADERS = HOP_BY_HOP | {"host", "content-length", "accept-encoding", "x-forwarded-host", "x-forwarded-proto"}

# Bodies are re-streamed, so framing headers from the origin no longer apply.
EXCLUDED_RESPONSE_HEADERS = HOP_BY_HOP | {"content-length", "content-encoding"}

CSP_HEADERS = ("Content-Security-Policy", "Content-Security-Policy-Report-Only")

_COOKIE_DOMAIN = re.compile(r";\s*Domain=[^;]*", re.IGNORECASE)
_LINK_TARGET = re.compile(r"<([^>]*)>")


def forward_headers(incoming: Iterable[Tuple[str, str]], ctx: RewriteContext, config: MaskConfig) -> Headers:
    """Build the origin-bound header set from the client's request headers."""
    headers = Headers()
    for name, value in incoming:
        name_lower = name.lower()
        if name_lower in EXCLUDED_REQUEST_HEADERS:
            continue
        if name_lower in ("origin", "referer"):
            value = to_target_url(value, config.alias_hostnames, config.target_domain)
        headers.add(name, value)

    headers["X-Forwarded-Host"] = ctx.request_host
    headers["X-Forwarded-Proto"] = "https"
    return headers


def rewrite_location(location: str, ctx: RewriteContext, target_hostname: str) -> str:
    """
    Move a redirect that points at the target onto the request authority.

    The target itself (www. ignored) maps to the request host; subdomains
    keep their level, so api.target becomes api.alias.
    """
    try:
        resolved = urlsplit(urljoin(ctx.target_url, location.strip()))
        hostname = resolved.hostname or ""
    except ValueError:
        return location
    if eq_host(hostname, target_hostname):
        netloc = request_authority(ctx.request_url)
    else:
        netloc = map_host(hostname, target_hostname, ctx.request_url)
        if netloc is None:
            return location

    request = urlsplit(ctx.request_url)
    rebuilt = f"{request.scheme}://{netloc}{resolved.path}"
    if resolved.query:
        rebuilt += f"?{resolved.query}"
    if resolved.fragment:
        rebuilt += f"#{resolved.fragment}"
    return rebuilt


def rewrite_cookie_domain(set_cookie: str, domain: str) -> str:
    return _COOKIE_DOMAIN.sub(f"; Domain={domain}", set_cookie)


def cookie_domain_for(ctx: RewriteContext, config: MaskConfig) -> str:
    if config.cookie_domain_mode == "alias":
        return ctx.request_hostname
    return config.target_hostname


def rewrite_response_headers(headers: Headers, ctx: RewriteContext, config: MaskConfig) -> Headers:
    """Apply the masking rules to an origin response's headers, in place."""
    for name in {key.lower() for key in headers.keys()}:
        if name in EXCLUDED_RESPONSE_HEADERS:
            headers.remove(name)

    headers["X-Robots-Tag"] = ROBOTS_TAG
    target_hostname = config.target_hostname

    location = headers.get("Location")
    if location:
        headers["Location"] = rewrite_location(location, ctx, target_hostname)

    content_location = headers.get("Content-Location")
    if content_location:
        headers["Content-Location"] = rewrite_url(content_location, ctx.masked_url, ctx.request_url)

    allow_origin = headers.get("Access-Control-Allow-Origin")
    if allow_origin and allow_origin != "*":
        headers["Access-Control-Allow-Origin"] = rewrite_url(allow_origin, ctx.masked_url, ctx.request_url)

    cookies = headers.getlist("Set-Cookie")
    if cookies:
        domain = cookie_domain_for(ctx, config)
        headers.remove("Set-Cookie")
        for cookie in cookies:
            headers.add("Set-Cookie", rewrite_cookie_domain(cookie, domain))

    for csp_name in CSP_HEADERS:
        csp = headers.get(csp_name)
        if csp and target_hostname in csp.lower():
            headers[csp_name] = rewrite_hosts_in_text(csp, ctx.masked_url, ctx.request_url)

    headers.remove("Strict-Transport-Security")

    content_type = (headers.get("Content-Type") or "").lower()
    if "text/html" in content_type:
        headers["Link"] = f'<{ctx.request_url}>; rel="canonical"'
    else:
        links = headers.getlist("Link")
        if links:
            headers.remove("Link")
            for link in links:
                headers.add(
                    "Link",
                    _LINK_TARGET.sub(lambda m: f"<{rewrite_url(m.group(1), ctx.masked_url, ctx.request_url)}>", link),
                )

    return headers
