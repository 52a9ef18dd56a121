"""
Mask blueprint and route registration.
"""

from flask import Blueprint

bp = Blueprint("mask", __name__)

ROBOTS_TXT = "User-agent: *\nDisallow: /"

# Import routes for side effects (decorators attach to bp)
from . import routes  # noqa: E402,F401
