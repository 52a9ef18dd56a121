"""
Mask routes: every request on an alias host is forwarded to the target
origin and the response is rewritten back into alias coordinates.

Validated -> Fetched -> BodyTransformed -> HeadersRewritten -> Emitted,
with early exits to 403 (unknown host), 502 (origin failure) and 500.
"""

from __future__ import annotations

import logging
import traceback

import requests
from flask import Response, current_app, request
from werkzeug.datastructures import Headers

from .blueprint import ROBOTS_TXT, bp
from .errors import UnauthorizedHost, UpstreamUnavailable
from .http_session import _SESSION
from .services.dispatch import select_transform, transform_stream
from .services.gate import RequestGate
from .services.headers import forward_headers, rewrite_response_headers

logger = logging.getLogger(__name__)

METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]

# Redirects and 304 reach the client so the Location rule can apply.
PASSTHROUGH_STATUSES = frozenset({301, 302, 303, 304, 307, 308})

CHUNK_SIZE = 8192


def _text(body: str, status: int) -> Response:
    return Response(body, status=status, content_type="text/plain")


@bp.route("/robots.txt", methods=["GET"])
def robots_txt():
    """Keep the alias out of search indexes."""
    return Response(
        ROBOTS_TXT,
        status=200,
        content_type="text/plain",
        headers={"Cache-Control": "public, max-age=86400"},
    )


def fetch_upstream(ctx, config) -> requests.Response:
    """Single attempt at the origin; raises UpstreamUnavailable on network error or failing status."""
    headers = forward_headers(request.headers.items(), ctx, config)
    body = request.get_data()

    try:
        resp = _SESSION.request(
            method=request.method,
            url=ctx.target_url,
            headers=dict(headers.items()),
            data=body or None,
            allow_redirects=False,
            stream=True,
            timeout=config.upstream_timeout,
        )
    except requests.exceptions.RequestException as e:
        raise UpstreamUnavailable(f"Error contacting origin: {e}") from e

    if not (200 <= resp.status_code < 300 or resp.status_code in PASSTHROUGH_STATUSES):
        resp.close()
        raise UpstreamUnavailable(f"Origin answered {resp.status_code}", status_code=resp.status_code)

    return resp


def _upstream_headers(resp: requests.Response) -> Headers:
    """Copy origin headers keeping every Set-Cookie value separately."""
    try:
        return Headers(list(resp.raw.headers.items()))
    except AttributeError:
        return Headers(list(resp.headers.items()))


@bp.route("/", defaults={"path": ""}, methods=METHODS)
@bp.route("/<path:path>", methods=METHODS)
def mask(path: str):
    """Forward the request to the target origin and mask its response."""
    config = current_app.config["MASK_CONFIG"]

    try:
        ctx = RequestGate(config).open(request.url)
    except UnauthorizedHost as e:
        logger.warning("Rejected request for %s: host not in alias set", e.hostname)
        return _text("Not allowed", 403)

    try:
        resp = fetch_upstream(ctx, config)
    except UpstreamUnavailable as e:
        logger.error("Upstream failure for %s %s: %s", request.method, ctx.target_url, e)
        return _text("Failed to process request", 502)
    except Exception as e:
        logger.error(f"Unexpected error before contacting origin for /{path}: {e}\n{traceback.format_exc()}")
        return _text("Woops - something went wrong", 500)

    try:
        headers = rewrite_response_headers(_upstream_headers(resp), ctx, config)
        content_type = headers.get("Content-Type", "")
        if config.is_development:
            logger.debug(
                "Masking %s %s -> %s (%s, %s)",
                request.method,
                ctx.request_url,
                ctx.target_url,
                resp.status_code,
                select_transform(content_type),
            )

        body = transform_stream(resp.iter_content(chunk_size=CHUNK_SIZE), content_type, ctx)
    except Exception as e:
        resp.close()
        logger.error(f"Unexpected error masking {ctx.target_url}: {e}\n{traceback.format_exc()}")
        return _text("Woops - something went wrong", 500)

    def generate():
        # Pulled by the WSGI server as the client drains; closing the
        # generator on disconnect releases the origin connection.
        try:
            for piece in body:
                if piece:
                    yield piece
        except requests.exceptions.RequestException as e:
            logger.error("Error streaming content from %s: %s", ctx.target_url, e)
        finally:
            resp.close()

    return Response(generate(), status=resp.status_code, headers=headers)
