"""
Deployment configuration for the domain mask.

IMPORTANT: The rewrite engine never reads the environment itself; the
frozen MaskConfig built here is passed explicitly through the pipeline.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple
from urllib.parse import urlsplit

COOKIE_DOMAIN_MODES = ("target", "alias")


def normalize_origin(value: str) -> str:
    """Add https:// to a bare host and drop any path, returning scheme://host[:port]."""
    value = (value or "").strip()
    if not re.match(r"^https?://", value, re.IGNORECASE):
        value = f"https://{value}"
    parts = urlsplit(value)
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


@dataclass(frozen=True)
class MaskConfig:
    """Immutable per-deployment configuration shared by all requests."""

    alias_domains: Tuple[str, ...]
    target_domain: str
    environment: str = "production"
    cookie_domain_mode: str = "target"
    upstream_timeout: float = 30.0
    alias_hostnames: frozenset = field(init=False, repr=False)

    def __post_init__(self):
        if not self.alias_domains:
            raise ValueError("ALIAS_DOMAIN must name at least one host")
        if not self.target_domain:
            raise ValueError("TARGET_DOMAIN is required")
        if self.cookie_domain_mode not in COOKIE_DOMAIN_MODES:
            raise ValueError(
                f"COOKIE_DOMAIN_MODE must be one of {', '.join(COOKIE_DOMAIN_MODES)}, got {self.cookie_domain_mode!r}"
            )

        aliases = tuple(normalize_origin(a) for a in self.alias_domains)
        object.__setattr__(self, "alias_domains", aliases)
        object.__setattr__(self, "target_domain", normalize_origin(self.target_domain))
        object.__setattr__(self, "alias_hostnames", frozenset(urlsplit(a).hostname for a in aliases))

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def target_hostname(self) -> str:
        return urlsplit(self.target_domain).hostname or ""

    def is_alias_host(self, hostname: Optional[str]) -> bool:
        return bool(hostname) and hostname.lower() in self.alias_hostnames

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MaskConfig":
        """Build the configuration from ALIAS_DOMAIN, TARGET_DOMAIN and friends."""
        env = os.environ if environ is None else environ
        aliases = tuple(a.strip() for a in env.get("ALIAS_DOMAIN", "").split(",") if a.strip())
        return cls(
            alias_domains=aliases,
            target_domain=env.get("TARGET_DOMAIN", "").strip(),
            environment=env.get("ENVIRONMENT", "production").strip().lower() or "production",
            cookie_domain_mode=env.get("COOKIE_DOMAIN_MODE", "target").strip().lower() or "target",
            upstream_timeout=float(env.get("UPSTREAM_TIMEOUT", "30")),
        )
