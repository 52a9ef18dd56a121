"""
Inbound host validation and per-request rewrite coordinates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from domain_mask.models.mask_config import MaskConfig

from ..errors import UnauthorizedHost

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewriteContext:
    """
    Snapshot of the coordinates for one request.

    request_url is exactly what the client asked for (scheme, host and port
    included); target_url is the same path and query on the origin.
    """

    alias_url: str
    target_url: str
    request_url: str

    @property
    def masked_url(self) -> str:
        return self.target_url

    @property
    def request_hostname(self) -> str:
        return urlsplit(self.request_url).hostname or ""

    @property
    def request_host(self) -> str:
        return urlsplit(self.request_url).netloc


class RequestGate:
    """The only place raw inbound URLs are validated."""

    def __init__(self, config: MaskConfig):
        self.config = config

    def open(self, request_url: str) -> RewriteContext:
        """Validate the request host and build its RewriteContext; raises UnauthorizedHost."""
        parts = urlsplit(request_url)
        hostname = (parts.hostname or "").lower()
        if not self.config.is_alias_host(hostname):
            raise UnauthorizedHost(hostname)

        alias_url = next(a for a in self.config.alias_domains if urlsplit(a).hostname == hostname)
        target_url = f"{self.config.target_domain}{parts.path or '/'}"
        if parts.query:
            target_url += f"?{parts.query}"

        ctx = RewriteContext(alias_url=alias_url, target_url=target_url, request_url=request_url)
        logger.debug("Gate open: request=%s target=%s", ctx.request_url, ctx.target_url)
        return ctx
