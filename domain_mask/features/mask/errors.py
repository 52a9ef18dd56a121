"""
Error taxonomy for the mask pipeline.
"""


class MaskError(Exception):
    """Base exception for domain mask failures."""


class UnauthorizedHost(MaskError):
    """Inbound host is not one of the configured alias domains."""

    def __init__(self, hostname):
        super().__init__(f"Host not allowed: {hostname}")
        self.hostname = hostname


class UpstreamUnavailable(MaskError):
    """The origin could not be reached or answered with a failing status."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class MalformedURL(MaskError, ValueError):
    """A URL-like string could not be resolved; recovered inside the rewrite engine."""
